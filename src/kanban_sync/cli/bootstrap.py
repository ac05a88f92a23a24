# src/kanban_sync/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (store/core/reminders).
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from ..config import get_settings
from ..core.ports import RemoteTaskStore
from ..core.session import Session
from ..core.state import AppState
from ..reminders.local_notifications import AsyncioNotificationService, FiredNotification
from ..reminders.reminder_scheduler import ReminderScheduler
from ..stores.in_memory import InMemoryTaskStore
from ..tasks.snapshot_store import SnapshotStore
from ..tasks.task_sync import TaskSyncCore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.snapshot_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.export_dir.mkdir(parents=True, exist_ok=True)


def create_initial_state(
    *,
    settings=None,
    store: RemoteTaskStore | None = None,
    on_notification: Callable[[FiredNotification], None] | None = None,
) -> AppState:
    """
    Create AppState from the provided settings (get_settings() when None).

    The loop runner is attached by the caller; nothing here needs a running loop.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    if store is None:
        store = InMemoryTaskStore()

    snapshot_store: SnapshotStore | None
    try:
        snapshot_store = SnapshotStore(settings.snapshot_db_path)
    except Exception:
        # The app still works without the offline fallback.
        logger.exception("Snapshot store unavailable at %s", settings.snapshot_db_path)
        snapshot_store = None

    notifications = AsyncioNotificationService(on_fire=on_notification)
    reminders = ReminderScheduler(notifications)
    core = TaskSyncCore(
        store,
        collection=settings.collection_name,
        freshness_seconds=settings.cache_freshness_seconds,
        snapshot_store=snapshot_store,
        notifier=reminders,
        reminders=reminders,
    )

    session = Session.from_raw(
        settings.session_role,
        settings.session_email,
        settings.session_department,
    )

    return AppState(
        settings=settings,
        store=store,
        core=core,
        reminders=reminders,
        notifications=notifications,
        snapshot_store=snapshot_store,
        session=session,
    )
