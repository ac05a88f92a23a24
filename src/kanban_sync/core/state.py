# src/kanban_sync/core/state.py

from __future__ import annotations

from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from ..reminders.local_notifications import AsyncioNotificationService
from ..reminders.reminder_scheduler import ReminderScheduler
from ..tasks.snapshot_store import SnapshotStore
from ..tasks.task_models import Task
from ..tasks.task_sync import TaskSubscription, TaskSyncCore
from .ports import RemoteTaskStore
from .session import Session

if TYPE_CHECKING:
    from ..cli.loop_thread import LoopRunner

T = TypeVar("T")


@dataclass
class AppState:
    settings: Any

    store: RemoteTaskStore
    core: TaskSyncCore
    reminders: ReminderScheduler
    notifications: AsyncioNotificationService
    snapshot_store: SnapshotStore | None = None

    session: Session | None = None
    subscription: TaskSubscription | None = None
    runner: LoopRunner | None = None
    on_update: Callable[[list[Task]], None] | None = None

    # Daily reminder handles per task id (due-soon handles live on the task itself).
    daily_handles: dict[str, list[str]] = field(default_factory=dict)

    def run(self, coro: Coroutine[Any, Any, T], timeout: float | None = 30.0) -> T:
        """Run a coroutine on the app loop from the console thread."""
        if self.runner is None:
            coro.close()
            raise RuntimeError("Event loop is not running")
        return self.runner.run(coro, timeout=timeout)
