# src/kanban_sync/tasks/task_models.py

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum

MS_PER_MINUTE = 60 * 1000
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR


def epoch_ms() -> int:
    return int(time.time() * 1000)


class TaskStatus(StrEnum):
    PENDIENTE = "pendiente"
    EN_PROCESO = "en_proceso"
    EN_REVISION = "en_revision"
    CERRADA = "cerrada"

    @classmethod
    def from_raw(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDIENTE
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDIENTE


class TaskPriority(StrEnum):
    ALTA = "alta"
    MEDIA = "media"
    BAJA = "baja"

    @classmethod
    def from_raw(cls, raw: str | None) -> TaskPriority:
        if not raw:
            return cls.MEDIA
        try:
            return cls(raw)
        except ValueError:
            return cls.MEDIA


@dataclass(slots=True, frozen=True)
class Task:
    """
    Normalized task as seen by the app.

    All instants are epoch milliseconds. Store-native timestamp values never
    reach this type (see task_codec).
    """

    id: str
    title: str
    due_at: int
    created_at: int
    updated_at: int

    description: str = ""
    area: str | None = None
    assigned_to: str | None = None
    priority: TaskPriority = TaskPriority.MEDIA
    status: TaskStatus = TaskStatus.PENDIENTE

    created_by: str | None = None
    created_by_name: str | None = None
    department: str | None = None

    # Handle of the scheduled due-soon reminder (at most one per task).
    notification_id: str | None = None

    tags: tuple[str, ...] = ()
    estimated_hours: float | None = None

    # True while the entry only exists locally (optimistic create/update).
    provisional: bool = False

    @property
    def is_closed(self) -> bool:
        return self.status == TaskStatus.CERRADA

    def is_overdue(self, now_ms: int) -> bool:
        return not self.is_closed and self.due_at < now_ms


# Fields a caller may change through update_task().
MUTABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "area",
        "assigned_to",
        "priority",
        "status",
        "due_at",
        "department",
        "notification_id",
        "tags",
        "estimated_hours",
    }
)


class SnapshotSource(StrEnum):
    CACHE = "cache"  # pre-populated from a fresh cache before the store answered
    STORE = "store"  # authoritative push
    LOCAL = "local"  # optimistic change or rollback applied locally
    FALLBACK = "fallback"  # store error; last known data (or nothing)
    DENIED = "denied"  # no usable role


@dataclass(slots=True, frozen=True)
class TaskListSnapshot:
    tasks: tuple[Task, ...]
    source: SnapshotSource
    received_at: int = field(default_factory=epoch_ms)

    def __len__(self) -> int:
        return len(self.tasks)
