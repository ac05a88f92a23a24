# src/kanban_sync/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the remote store / notification backends swappable and makes
testing easier.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from ..tasks.task_queries import QuerySpec


class StoreError(Exception):
    """
    Error raised by store adapters.

    `code` follows the usual realtime-database vocabulary:
    permission-denied, not-found, unavailable, resource-exhausted, ...
    """

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code
        self.message = message or code


@dataclass(slots=True, frozen=True)
class StoreDocument:
    id: str
    data: dict[str, Any] = field(default_factory=dict)


SnapshotCallback = Callable[[list[StoreDocument]], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class RemoteTaskStore(Protocol):
    """
    Realtime document collection.

    subscribe() pushes a full snapshot of matching documents on every change
    (ordered as the query asks). Writes are async.
    """

    def subscribe(
        self,
        query: QuerySpec,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe: ...

    def add(self, collection: str, data: dict[str, Any]) -> Awaitable[str]: ...

    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> Awaitable[None]: ...

    def delete(self, collection: str, doc_id: str) -> Awaitable[None]: ...


@dataclass(slots=True, frozen=True)
class NotificationPayload:
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)


class NotificationService(Protocol):
    """Local (on-device) notification backend."""

    def request_permission(self) -> Awaitable[bool]: ...

    def schedule_at(self, at_ms: int, payload: NotificationPayload) -> Awaitable[str]: ...

    def cancel(self, handle: str) -> Awaitable[None]: ...


class AssignmentNotifier(Protocol):
    """Tells an assignee that a task was created for them (e-mail, push, ...)."""

    def notify_task_assigned(self, task: Any, assignee: str) -> Awaitable[None]: ...


class ReminderCanceller(Protocol):
    """Cancels a scheduled reminder by handle; best-effort, never raises."""

    def cancel_reminder(self, handle: str | None) -> Awaitable[None]: ...
