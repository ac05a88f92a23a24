# src/kanban_sync/tasks/task_codec.py

"""
Normalization boundary between store documents and Task objects.

Read side: store timestamps -> epoch ms; unresolved (pending server
assignment) timestamps become "now" so date arithmetic keeps working.
Write side: epoch ms -> StoreTimestamp; snake_case -> camelCase fields.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from ..core.ports import StoreDocument
from ..stores.timestamps import SERVER_TIMESTAMP, StoreTimestamp
from .task_models import Task, TaskPriority, TaskStatus

logger = logging.getLogger(__name__)

# python attribute -> document field
FIELD_NAMES: dict[str, str] = {
    "title": "title",
    "description": "description",
    "area": "area",
    "assigned_to": "assignedTo",
    "priority": "priority",
    "status": "status",
    "due_at": "dueAt",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "created_by": "createdBy",
    "created_by_name": "createdByName",
    "department": "department",
    "notification_id": "notificationId",
    "tags": "tags",
    "estimated_hours": "estimatedHours",
}


def to_millis(value: Any, *, default: int) -> int:
    """Convert any timestamp-ish value to epoch ms; unknown values -> default."""
    if value is None or value is SERVER_TIMESTAMP:
        return default
    to_ms = getattr(value, "to_millis", None)
    if callable(to_ms):
        return int(to_ms())
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    logger.debug("Unrecognized timestamp value %r; using default", value)
    return default


def coerce_due_at(value: Any) -> int:
    """Validate a caller-supplied due instant. Raises ValueError when invalid."""
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"due_at must be epoch milliseconds or a datetime, got {value!r}")
    if value != value or value in (float("inf"), float("-inf")):
        raise ValueError("due_at must be a finite instant")
    return int(value)


def _opt_str(v: Any) -> str | None:
    if v is None:
        return None
    s = str(v)
    return s if s else None


def _opt_float(v: Any) -> float | None:
    if v is None or isinstance(v, bool):
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def document_to_task(doc: StoreDocument, *, now_ms: int) -> Task:
    data = doc.data or {}
    tags_raw = data.get("tags") or ()
    tags = tuple(str(t) for t in tags_raw) if isinstance(tags_raw, (list, tuple)) else ()

    return Task(
        id=doc.id,
        title=str(data.get("title") or ""),
        description=str(data.get("description") or ""),
        area=_opt_str(data.get("area")),
        assigned_to=_opt_str(data.get("assignedTo")),
        priority=TaskPriority.from_raw(data.get("priority")),
        status=TaskStatus.from_raw(data.get("status")),
        due_at=to_millis(data.get("dueAt"), default=now_ms),
        created_at=to_millis(data.get("createdAt"), default=now_ms),
        updated_at=to_millis(data.get("updatedAt"), default=now_ms),
        created_by=_opt_str(data.get("createdBy")),
        created_by_name=_opt_str(data.get("createdByName")),
        department=_opt_str(data.get("department")),
        notification_id=_opt_str(data.get("notificationId")),
        tags=tags,
        estimated_hours=_opt_float(data.get("estimatedHours")),
    )


def _encode_value(attr: str, value: Any) -> Any:
    if attr == "due_at":
        return StoreTimestamp.from_millis(coerce_due_at(value))
    if attr in ("priority", "status") and value is not None:
        return str(value)
    if attr == "tags":
        return list(value or ())
    return value


def changes_to_document(changes: Mapping[str, Any]) -> dict[str, Any]:
    """Encode a partial change set (attribute names) into document fields."""
    out: dict[str, Any] = {}
    for attr, value in changes.items():
        name = FIELD_NAMES.get(attr)
        if name is None:
            raise ValueError(f"Unknown task field: {attr}")
        out[name] = _encode_value(attr, value)
    return out


def new_task_document(task: Task) -> dict[str, Any]:
    """Document for a create: server-assigned created/updated timestamps."""
    data = changes_to_document(
        {
            "title": task.title,
            "description": task.description,
            "area": task.area,
            "assigned_to": task.assigned_to,
            "priority": task.priority,
            "status": task.status,
            "due_at": task.due_at,
            "created_by": task.created_by,
            "created_by_name": task.created_by_name,
            "department": task.department or "",
            "tags": task.tags,
            "estimated_hours": task.estimated_hours,
        }
    )
    data["createdAt"] = SERVER_TIMESTAMP
    data["updatedAt"] = SERVER_TIMESTAMP
    return data


def task_to_record(task: Task) -> dict[str, Any]:
    """JSON-friendly form (epoch ms) used by the local snapshot store."""
    return {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "area": task.area,
        "assignedTo": task.assigned_to,
        "priority": task.priority.value,
        "status": task.status.value,
        "dueAt": task.due_at,
        "createdAt": task.created_at,
        "updatedAt": task.updated_at,
        "createdBy": task.created_by,
        "createdByName": task.created_by_name,
        "department": task.department,
        "notificationId": task.notification_id,
        "tags": list(task.tags),
        "estimatedHours": task.estimated_hours,
    }


def record_to_task(record: Mapping[str, Any], *, now_ms: int) -> Task:
    data = dict(record)
    doc_id = str(data.pop("id", "") or "")
    return document_to_task(StoreDocument(id=doc_id, data=data), now_ms=now_ms)
