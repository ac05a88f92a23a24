# src/kanban_sync/export/csv_export.py

from __future__ import annotations

import csv
import io
import logging
import time
from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path

from ..stats.filters import AreaTally, TaskStats
from ..tasks.task_models import Task

logger = logging.getLogger(__name__)

BOM = "\ufeff"

TASK_HEADERS = [
    "Título",
    "Descripción",
    "Asignado a",
    "Área",
    "Prioridad",
    "Estado",
    "Fecha vencimiento",
    "Fecha creación",
]


def _fmt_datetime(ms: int | None) -> str:
    if not ms:
        return ""
    return datetime.fromtimestamp(ms / 1000).strftime("%d/%m/%Y, %H:%M:%S")


def _render(rows: Iterable[list[str]], *, quote_all: bool) -> str:
    buf = io.StringIO()
    writer = csv.writer(
        buf,
        quoting=csv.QUOTE_ALL if quote_all else csv.QUOTE_MINIMAL,
        lineterminator="\n",
    )
    writer.writerows(rows)
    # No trailing newline after the last row.
    return buf.getvalue().rstrip("\n")


def tasks_to_csv(tasks: Iterable[Task]) -> str:
    """BOM-prefixed CSV, one row per task, every field quoted."""
    rows = [TASK_HEADERS]
    for t in tasks:
        rows.append(
            [
                t.title or "",
                t.description or "",
                t.assigned_to or "",
                t.area or "",
                t.priority.value,
                t.status.value,
                _fmt_datetime(t.due_at),
                _fmt_datetime(t.created_at),
            ]
        )
    return BOM + _render(rows, quote_all=True)


def stats_to_csv(stats: TaskStats, by_area: Mapping[str, AreaTally]) -> str:
    rows: list[list[str]] = [
        ["RESUMEN GENERAL"],
        ["Total de tareas", str(stats.total)],
        ["Completadas", str(stats.completed)],
        ["Pendientes", str(stats.pending)],
        ["En proceso", str(stats.in_progress)],
        ["En revisión", str(stats.in_review)],
        ["Vencidas", str(stats.overdue)],
        [],
        ["TAREAS POR ÁREA"],
        ["Área", "Pendiente", "En proceso", "En revisión", "Cerrada", "Vencidas", "Total"],
    ]
    for area, tally in by_area.items():
        rows.append(
            [
                area,
                str(tally.pendiente),
                str(tally.en_proceso),
                str(tally.en_revision),
                str(tally.cerrada),
                str(tally.overdue),
                str(tally.total),
            ]
        )
    return BOM + _render(rows, quote_all=False)


def write_csv(content: str, directory: str | Path, basename: str = "tareas") -> Path:
    """Write `content` to <directory>/<basename>_<epoch-ms>.csv and return the path."""
    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / f"{basename}_{int(time.time() * 1000)}.csv"
    path.write_text(content, encoding="utf-8")
    logger.info("CSV written to %s (%d bytes)", path, len(content.encode("utf-8")))
    return path
