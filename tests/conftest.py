# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from kanban_sync.config import DEFAULT_AREAS
from kanban_sync.core.session import Session
from kanban_sync.reminders.reminder_scheduler import ReminderScheduler
from kanban_sync.tasks.snapshot_store import SnapshotStore
from kanban_sync.tasks.task_sync import TaskSyncCore

from .fakes import FailingStore, FixedClock, RecordingNotificationService, RecordingNotifier


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the CLI.

    A SimpleNamespace rather than the real config keeps unit tests isolated
    from the environment.
    """
    return SimpleNamespace(
        app_name="kanban-test",
        log_level="DEBUG",
        data_dir=tmp_path,
        snapshot_db_path=tmp_path / "snapshots.sqlite3",
        export_dir=tmp_path / "exports",
        collection_name="tasks",
        cache_freshness_seconds=30.0,
        due_reminder_minutes=10,
        daily_reminders_enabled=True,
        countdown_interval_seconds=0.01,
        areas=list(DEFAULT_AREAS),
        session_role="admin",
        session_email="admin@example.com",
        session_department="",
    )


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture()
def store(clock: FixedClock) -> FailingStore:
    return FailingStore(clock=clock)


@pytest.fixture()
def notifications() -> RecordingNotificationService:
    return RecordingNotificationService()


@pytest.fixture()
def reminders(notifications: RecordingNotificationService, clock: FixedClock) -> ReminderScheduler:
    return ReminderScheduler(notifications, clock=clock)


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def snapshot_store(tmp_path: Path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "snapshots.sqlite3")


@pytest.fixture()
def core(
    store: FailingStore,
    snapshot_store: SnapshotStore,
    notifier: RecordingNotifier,
    reminders: ReminderScheduler,
    clock: FixedClock,
) -> TaskSyncCore:
    return TaskSyncCore(
        store,
        collection="tasks",
        freshness_seconds=30.0,
        snapshot_store=snapshot_store,
        notifier=notifier,
        reminders=reminders,
        clock=clock,
    )


@pytest.fixture()
def admin() -> Session:
    return Session.from_raw("admin", "admin@example.com")

