# src/kanban_sync/stats/filters.py

"""Pure helpers over the synchronized task list (no I/O)."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from ..config import DEFAULT_AREAS
from ..tasks.task_models import Task, TaskPriority, TaskStatus, epoch_ms

# Tasks without an area are reported under this one.
FALLBACK_AREA = "Administración"


@dataclass(slots=True, frozen=True)
class FilterCriteria:
    search_text: str = ""
    area: str = ""
    responsible: str = ""
    priority: str = ""
    overdue: bool = False

    @property
    def is_empty(self) -> bool:
        return not (self.search_text or self.area or self.responsible or self.priority or self.overdue)


def apply_filters(
    tasks: Iterable[Task],
    criteria: FilterCriteria | None = None,
    *,
    now_ms: int | None = None,
) -> list[Task]:
    """AND of every non-empty criterion; order is preserved, tasks are not copied."""
    items = list(tasks)
    if criteria is None or criteria.is_empty:
        return items

    now = epoch_ms() if now_ms is None else now_ms
    needle = criteria.search_text.strip().lower()

    out: list[Task] = []
    for t in items:
        if needle and needle not in (t.title or "").lower():
            continue
        if criteria.area and t.area != criteria.area:
            continue
        if criteria.responsible and t.assigned_to != criteria.responsible:
            continue
        if criteria.priority and t.priority != criteria.priority:
            continue
        if criteria.overdue and t.due_at >= now:
            continue
        out.append(t)
    return out


@dataclass(slots=True)
class AreaTally:
    pendiente: int = 0
    en_proceso: int = 0
    en_revision: int = 0
    cerrada: int = 0
    overdue: int = 0
    total: int = 0

    def count(self, status: TaskStatus) -> int:
        return int(getattr(self, status.value))


def group_by_area(
    tasks: Iterable[Task],
    areas: Iterable[str] = DEFAULT_AREAS,
    *,
    now_ms: int | None = None,
) -> dict[str, AreaTally]:
    now = epoch_ms() if now_ms is None else now_ms
    groups: dict[str, AreaTally] = {area: AreaTally() for area in areas}

    for t in tasks:
        area = t.area or FALLBACK_AREA
        tally = groups.setdefault(area, AreaTally())
        setattr(tally, t.status.value, tally.count(t.status) + 1)
        tally.total += 1
        if t.is_overdue(now):
            tally.overdue += 1

    return groups


def critical_tasks(tasks: Iterable[Task]) -> list[Task]:
    """High priority and still open, earliest due first."""
    return sorted(
        (t for t in tasks if t.priority == TaskPriority.ALTA and not t.is_closed),
        key=lambda t: t.due_at,
    )


def overdue_tasks(tasks: Iterable[Task], *, now_ms: int | None = None) -> list[Task]:
    now = epoch_ms() if now_ms is None else now_ms
    return sorted((t for t in tasks if t.is_overdue(now)), key=lambda t: t.due_at)


@dataclass(slots=True, frozen=True)
class TaskStats:
    total: int
    completed: int
    pending: int
    in_progress: int
    in_review: int
    overdue: int


def summarize(tasks: Iterable[Task], *, now_ms: int | None = None) -> TaskStats:
    now = epoch_ms() if now_ms is None else now_ms
    items = list(tasks)
    by_status = {s: 0 for s in TaskStatus}
    for t in items:
        by_status[t.status] += 1
    return TaskStats(
        total=len(items),
        completed=by_status[TaskStatus.CERRADA],
        pending=by_status[TaskStatus.PENDIENTE],
        in_progress=by_status[TaskStatus.EN_PROCESO],
        in_review=by_status[TaskStatus.EN_REVISION],
        overdue=sum(1 for t in items if t.is_overdue(now)),
    )
