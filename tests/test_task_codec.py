# tests/test_task_codec.py

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from kanban_sync.core.ports import StoreDocument
from kanban_sync.stores.timestamps import SERVER_TIMESTAMP, StoreTimestamp
from kanban_sync.tasks.task_codec import changes_to_document, coerce_due_at, document_to_task, to_millis
from kanban_sync.tasks.task_models import TaskPriority, TaskStatus


def test_document_timestamps_become_epoch_ms() -> None:
    doc = StoreDocument(
        id="x",
        data={
            "title": "A",
            "dueAt": StoreTimestamp(seconds=5, nanos=250_000_000),
            "createdAt": None,
            "updatedAt": datetime(2026, 1, 1, tzinfo=timezone.utc),
            "priority": "urgente",
            "status": None,
        },
    )

    task = document_to_task(doc, now_ms=42)

    assert task.due_at == 5250
    assert task.created_at == 42
    assert task.updated_at == int(datetime(2026, 1, 1, tzinfo=timezone.utc).timestamp() * 1000)
    assert task.priority == TaskPriority.MEDIA
    assert task.status == TaskStatus.PENDIENTE


def test_to_millis_unresolved_values_use_default() -> None:
    assert to_millis(SERVER_TIMESTAMP, default=7) == 7
    assert to_millis("ayer", default=7) == 7
    assert to_millis(True, default=7) == 7
    assert to_millis(1234.9, default=7) == 1234


def test_coerce_due_at_rejects_invalid_values() -> None:
    assert coerce_due_at(1000) == 1000
    for bad in (None, "mañana", True, float("inf")):
        with pytest.raises(ValueError):
            coerce_due_at(bad)


def test_changes_use_store_field_names() -> None:
    doc = changes_to_document({"assigned_to": "ana@x", "due_at": 2000, "status": TaskStatus.CERRADA})

    assert doc == {"assignedTo": "ana@x", "dueAt": StoreTimestamp(seconds=2), "status": "cerrada"}
    with pytest.raises(ValueError):
        changes_to_document({"owner": "x"})
