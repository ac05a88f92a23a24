# tests/test_task_sync.py

from __future__ import annotations

import asyncio

import pytest

from kanban_sync.core.session import Role, Session
from kanban_sync.stores.timestamps import SERVER_TIMESTAMP, StoreTimestamp
from kanban_sync.tasks.task_errors import NotFoundError, PermissionDeniedError, UnavailableError
from kanban_sync.tasks.task_models import MS_PER_DAY, SnapshotSource, TaskStatus
from kanban_sync.tasks.task_queries import (
    AllTasksQuery,
    AreaTasksQuery,
    AssigneeTasksQuery,
    FieldFilter,
    query_for_session,
)
from kanban_sync.tasks.task_sync import TaskSyncCore

from .fakes import BASE_MS, FailingStore, store_error, task_doc


def _ids(tasks) -> list[str]:
    return [t.id for t in tasks]


def test_query_for_session_picks_one_variant_per_role() -> None:
    admin_q = query_for_session(Session.from_raw("admin", "a@x"))
    jefe_q = query_for_session(Session.from_raw("jefe", "j@x", "Obras"))
    op_q = query_for_session(Session.from_raw("operativo", "ana@x"))

    assert isinstance(admin_q, AllTasksQuery)
    assert isinstance(jefe_q, AreaTasksQuery)
    assert isinstance(op_q, AssigneeTasksQuery)

    assert admin_q.to_spec("tasks").filters == ()
    assert jefe_q.to_spec("tasks").filters == (FieldFilter("area", "==", "Obras"),)
    assert op_q.to_spec("tasks").filters == (FieldFilter("assignedTo", "==", "ana@x"),)

    order = op_q.to_spec("tasks").order_by
    assert order is not None and order.field == "createdAt" and order.descending

    assert query_for_session(Session.from_raw("visitante", "v@x")) is None
    assert query_for_session(None) is None


def test_operativo_sees_only_assigned_tasks_newest_first(core: TaskSyncCore, store: FailingStore) -> None:
    store.put("tasks", "a", task_doc("A", created_at=BASE_MS - 2000, assignedTo="ana@x"))
    store.put("tasks", "b", task_doc("B", created_at=BASE_MS - 1000, assignedTo="ana@x"))
    store.put("tasks", "c", task_doc("C", created_at=BASE_MS - 500, assignedTo="luis@x"))

    updates: list[list] = []
    sub = core.subscribe(Session.from_raw("operativo", "ana@x"), updates.append)

    assert _ids(updates[-1]) == ["b", "a"]
    assert sub.latest is not None and sub.latest.source == SnapshotSource.STORE
    assert _ids(core.tasks) == ["b", "a"]


def test_jefe_sees_only_own_area(core: TaskSyncCore, store: FailingStore) -> None:
    store.put("tasks", "a", task_doc("A", created_at=BASE_MS, area="Obras"))
    store.put("tasks", "b", task_doc("B", created_at=BASE_MS, area="Tesorería"))

    core.subscribe(Session.from_raw(Role.JEFE, "j@x", "Obras"))

    assert _ids(core.tasks) == ["a"]


def test_remote_change_replaces_list(core: TaskSyncCore, store: FailingStore, admin: Session) -> None:
    store.put("tasks", "a", task_doc("A", created_at=BASE_MS - 1000))
    updates: list[list] = []
    core.subscribe(admin, updates.append)

    # Another client writes.
    store.put("tasks", "b", task_doc("B", created_at=BASE_MS))
    store.put("tasks", "a", task_doc("A2", created_at=BASE_MS - 1000))

    assert [len(u) for u in updates] == [1, 2, 2]
    assert [t.title for t in core.tasks] == ["B", "A2"]


@pytest.mark.asyncio
async def test_create_is_visible_before_store_confirms(
    core: TaskSyncCore, store: FailingStore, admin: Session, clock
) -> None:
    updates: list[list] = []
    core.subscribe(admin, updates.append)

    task_id = await core.create_task(
        title="  Informe mensual ",
        due_at=clock.now + MS_PER_DAY,
        area="Obras",
        priority="alta",
    )

    assert len(updates) == 3
    provisional = updates[1][0]
    assert provisional.provisional
    assert provisional.id.startswith("tmp-")
    assert provisional.title == "Informe mensual"

    confirmed = updates[2][0]
    assert confirmed.id == task_id
    assert not confirmed.provisional
    assert confirmed.created_at == clock.now
    assert confirmed.created_by == "admin@example.com"

    _, _, written = store.writes[0]
    assert written["createdAt"] is SERVER_TIMESTAMP
    assert written["dueAt"] == StoreTimestamp.from_millis(clock.now + MS_PER_DAY)
    assert written["department"] == ""


@pytest.mark.asyncio
async def test_create_without_session_identity_uses_anonymous(core: TaskSyncCore, store: FailingStore, clock) -> None:
    core.subscribe(Session.from_raw("admin"))

    await core.create_task(title="X", due_at=clock.now + 1000)

    _, _, written = store.writes[0]
    assert written["createdBy"] == "anonymous"
    assert written["createdByName"] == "Usuario Anónimo"


@pytest.mark.asyncio
async def test_create_failure_removes_provisional_entry(
    core: TaskSyncCore, store: FailingStore, admin: Session, clock
) -> None:
    updates: list[list] = []
    core.subscribe(admin, updates.append)
    store.fail_next["add"] = store_error("permission-denied")

    with pytest.raises(PermissionDeniedError) as ei:
        await core.create_task(title="Informe", due_at=clock.now + MS_PER_DAY)

    assert ei.value.user_message == "No tienes permisos para crear tareas"
    assert len(updates[1]) == 1
    assert updates[-1] == []
    assert core.tasks == []
    assert core.cache.pending_count == 0


@pytest.mark.asyncio
async def test_create_rejects_invalid_input(core: TaskSyncCore, store: FailingStore, admin: Session) -> None:
    core.subscribe(admin)

    with pytest.raises(ValueError):
        await core.create_task(title="   ", due_at=BASE_MS)
    with pytest.raises(ValueError):
        await core.create_task(title="X", due_at=float("nan"))

    assert store.writes == []


@pytest.mark.asyncio
async def test_update_failure_restores_exact_previous_task(
    core: TaskSyncCore, store: FailingStore, admin: Session
) -> None:
    store.put("tasks", "t1", task_doc("A", created_at=BASE_MS - 1000))
    updates: list[list] = []
    core.subscribe(admin, updates.append)
    original = core.get_task("t1")
    store.fail_next["update"] = store_error("unavailable")

    with pytest.raises(UnavailableError) as ei:
        await core.update_task("t1", {"status": "en_proceso"})

    assert ei.value.retryable
    assert updates[-2][0].status == TaskStatus.EN_PROCESO
    assert updates[-2][0].provisional
    assert core.get_task("t1") == original
    assert updates[-1] == [original]


@pytest.mark.asyncio
async def test_update_sets_server_updated_at(
    core: TaskSyncCore, store: FailingStore, admin: Session, clock
) -> None:
    store.put("tasks", "t1", task_doc("A", created_at=BASE_MS - 1000))
    core.subscribe(admin)
    clock.advance(5000)

    await core.update_task("t1", {"status": TaskStatus.EN_REVISION})

    _, doc_id, written = store.writes[-1]
    assert doc_id == "t1"
    assert written == {"status": "en_revision", "updatedAt": SERVER_TIMESTAMP}

    stored = store.documents("tasks")[0].data
    assert stored["updatedAt"] == StoreTimestamp.from_millis(clock.now)

    task = core.get_task("t1")
    assert task is not None
    assert task.status == TaskStatus.EN_REVISION
    assert task.updated_at == clock.now
    assert not task.provisional


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(core: TaskSyncCore, store: FailingStore, admin: Session) -> None:
    store.put("tasks", "t1", task_doc("A", created_at=BASE_MS))
    core.subscribe(admin)

    with pytest.raises(ValueError):
        await core.update_task("t1", {"created_by": "mallory"})

    assert store.writes == []


@pytest.mark.asyncio
async def test_delete_failure_restores_task(core: TaskSyncCore, store: FailingStore, admin: Session, notifications) -> None:
    store.put("tasks", "t1", task_doc("A", created_at=BASE_MS, notificationId="n-old"))
    updates: list[list] = []
    core.subscribe(admin, updates.append)
    store.fail_next["delete"] = store_error("permission-denied")

    with pytest.raises(PermissionDeniedError):
        await core.delete_task("t1")

    assert updates[-2] == []
    assert _ids(core.tasks) == ["t1"]
    assert notifications.cancelled == []


@pytest.mark.asyncio
async def test_delete_of_missing_task_is_non_fatal(
    core: TaskSyncCore, store: FailingStore, admin: Session, notifications
) -> None:
    store.put("tasks", "t1", task_doc("A", created_at=BASE_MS, notificationId="n-old"))
    core.subscribe(admin)
    store.fail_next["delete"] = store_error("not-found")

    with pytest.raises(NotFoundError) as ei:
        await core.delete_task("t1")

    assert ei.value.fatal is False
    assert ei.value.user_message == "La tarea no existe o ya fue eliminada"
    assert core.tasks == []
    assert notifications.cancelled == ["n-old"]


@pytest.mark.asyncio
async def test_delete_cancels_scheduled_reminder(
    core: TaskSyncCore, store: FailingStore, admin: Session, notifications
) -> None:
    store.put("tasks", "t1", task_doc("A", created_at=BASE_MS, notificationId="n-old"))
    core.subscribe(admin)

    await core.delete_task("t1")

    assert store.documents("tasks") == []
    assert core.tasks == []
    assert notifications.cancelled == ["n-old"]


def test_no_role_yields_single_empty_update(core: TaskSyncCore, store: FailingStore) -> None:
    updates: list[list] = []

    sub = core.subscribe(Session.from_raw("visitante", "v@x"), updates.append)

    assert updates == [[]]
    assert sub.closed
    assert sub.latest is not None and sub.latest.source == SnapshotSource.DENIED
    assert store.subscribe_calls == []


def test_resubscribe_tears_down_previous_subscription(
    core: TaskSyncCore, store: FailingStore, admin: Session
) -> None:
    first_updates: list[list] = []
    first = core.subscribe(admin, first_updates.append)
    second = core.subscribe(Session.from_raw("operativo", "ana@x"))

    assert first.closed
    assert not second.closed
    assert store.listener_count == 1

    store.put("tasks", "x", task_doc("X", created_at=BASE_MS, assignedTo="ana@x"))

    assert len(first_updates) == 1
    assert _ids(core.tasks) == ["x"]


def test_close_is_idempotent_and_silences_callbacks(
    core: TaskSyncCore, store: FailingStore, admin: Session
) -> None:
    updates: list[list] = []
    sub = core.subscribe(admin, updates.append)

    sub.close()
    sub.close()
    store.put("tasks", "x", task_doc("X", created_at=BASE_MS))

    assert store.listener_count == 0
    assert updates == [[]]


def test_subscription_error_falls_back_to_cached_list(
    core: TaskSyncCore, store: FailingStore, admin: Session
) -> None:
    store.put("tasks", "a", task_doc("A", created_at=BASE_MS - 1000))
    store.put("tasks", "b", task_doc("B", created_at=BASE_MS))
    updates: list[list] = []
    sub = core.subscribe(admin, updates.append)

    store.fail_listeners(store_error("unavailable"))

    assert sub.latest is not None and sub.latest.source == SnapshotSource.FALLBACK
    assert _ids(updates[-1]) == ["b", "a"]
    assert isinstance(sub.last_error, UnavailableError)


def test_subscription_error_without_cache_uses_saved_snapshot(
    core: TaskSyncCore, store: FailingStore, admin: Session, snapshot_store, clock
) -> None:
    store.put("tasks", "a", task_doc("A", created_at=BASE_MS))
    core.subscribe(admin)

    offline = FailingStore(clock=clock)
    offline.fail_subscribe = store_error("unavailable")
    other = TaskSyncCore(offline, snapshot_store=snapshot_store, clock=clock)
    updates: list[list] = []

    sub = other.subscribe(admin, updates.append)

    assert sub.latest is not None and sub.latest.source == SnapshotSource.FALLBACK
    assert [t.title for t in updates[-1]] == ["A"]


def test_subscription_error_without_any_data_yields_empty(admin: Session, clock) -> None:
    offline = FailingStore(clock=clock)
    offline.fail_subscribe = store_error("permission-denied")
    core = TaskSyncCore(offline, clock=clock)
    updates: list[list] = []

    sub = core.subscribe(admin, updates.append)

    assert updates == [[]]
    assert isinstance(sub.last_error, PermissionDeniedError)


@pytest.mark.asyncio
async def test_fresh_cache_is_delivered_before_store(
    core: TaskSyncCore, store: FailingStore, admin: Session, clock
) -> None:
    store.put("tasks", "a", task_doc("A", created_at=BASE_MS))
    core.subscribe(admin)

    again = core.subscribe(admin)
    first = await again.next_snapshot(timeout=1.0)
    second = await again.next_snapshot(timeout=1.0)
    assert first.source == SnapshotSource.CACHE
    assert _ids(first.tasks) == ["a"]
    assert second.source == SnapshotSource.STORE

    clock.advance(31_000)
    stale = core.subscribe(admin)
    assert (await stale.next_snapshot(timeout=1.0)).source == SnapshotSource.STORE


@pytest.mark.asyncio
async def test_cached_list_does_not_leak_into_other_scope(
    core: TaskSyncCore, store: FailingStore, admin: Session
) -> None:
    store.put("tasks", "a", task_doc("A", created_at=BASE_MS, assignedTo="luis@x"))
    store.put("tasks", "b", task_doc("B", created_at=BASE_MS, assignedTo="ana@x"))
    core.subscribe(admin)

    sub = core.subscribe(Session.from_raw("operativo", "ana@x"))
    snap = await sub.next_snapshot(timeout=1.0)

    assert snap.source == SnapshotSource.STORE
    assert _ids(snap.tasks) == ["b"]


@pytest.mark.asyncio
async def test_assignment_notification_failure_does_not_fail_create(
    core: TaskSyncCore, admin: Session, notifier, clock
) -> None:
    core.subscribe(admin)
    notifier.fail = True

    task_id = await core.create_task(title="X", due_at=clock.now + MS_PER_DAY, assigned_to="ana@x")
    await core.drain()

    assert notifier.calls == [(task_id, "ana@x")]
    assert _ids(core.tasks) == [task_id]


@pytest.mark.asyncio
async def test_overlapping_updates_both_rejected_restore_original(
    core: TaskSyncCore, store: FailingStore, admin: Session
) -> None:
    store.put("tasks", "t1", task_doc("A", created_at=BASE_MS - 1000))
    core.subscribe(admin)
    original = core.get_task("t1")
    store.hold.add("update")

    first = asyncio.create_task(core.update_task("t1", {"status": "cerrada"}))
    second = asyncio.create_task(core.update_task("t1", {"title": "B"}))
    await asyncio.sleep(0)
    assert len(store.gates) == 2

    both = core.get_task("t1")
    assert both is not None
    assert (both.status, both.title, both.provisional) == (TaskStatus.CERRADA, "B", True)

    store.gates[0].set_exception(store_error("permission-denied"))
    with pytest.raises(PermissionDeniedError):
        await first

    only_second = core.get_task("t1")
    assert only_second is not None
    assert (only_second.status, only_second.title) == (TaskStatus.PENDIENTE, "B")

    store.gates[1].set_exception(store_error("permission-denied"))
    with pytest.raises(PermissionDeniedError):
        await second

    assert core.get_task("t1") == original
    assert core.cache.pending_count == 0


@pytest.mark.asyncio
async def test_rejected_update_under_accepted_one_keeps_only_accepted_change(
    core: TaskSyncCore, store: FailingStore, admin: Session
) -> None:
    store.put("tasks", "t1", task_doc("A", created_at=BASE_MS - 1000))
    core.subscribe(admin)
    store.hold.add("update")

    first = asyncio.create_task(core.update_task("t1", {"status": "cerrada"}))
    second = asyncio.create_task(core.update_task("t1", {"title": "B"}))
    await asyncio.sleep(0)

    store.gates[0].set_exception(store_error("unavailable"))
    with pytest.raises(UnavailableError):
        await first
    store.gates[1].set_result(None)
    await second

    task = core.get_task("t1")
    assert task is not None
    assert (task.status, task.title, task.provisional) == (TaskStatus.PENDIENTE, "B", False)


@pytest.mark.asyncio
async def test_rejected_delete_over_pending_update(
    core: TaskSyncCore, store: FailingStore, admin: Session
) -> None:
    store.put("tasks", "t1", task_doc("A", created_at=BASE_MS - 1000))
    core.subscribe(admin)
    original = core.get_task("t1")
    store.hold.update({"update", "delete"})

    update = asyncio.create_task(core.update_task("t1", {"status": "en_proceso"}))
    delete = asyncio.create_task(core.delete_task("t1"))
    await asyncio.sleep(0)
    assert core.tasks == []

    store.gates[1].set_exception(store_error("permission-denied"))
    with pytest.raises(PermissionDeniedError):
        await delete
    shown = core.get_task("t1")
    assert shown is not None and shown.status == TaskStatus.EN_PROCESO

    store.gates[0].set_exception(store_error("permission-denied"))
    with pytest.raises(PermissionDeniedError):
        await update
    assert core.get_task("t1") == original


@pytest.mark.asyncio
async def test_snapshot_wins_over_rejected_in_flight_update(
    core: TaskSyncCore, store: FailingStore, admin: Session
) -> None:
    store.put("tasks", "t1", task_doc("A", created_at=BASE_MS - 1000))
    updates: list[list] = []
    core.subscribe(admin, updates.append)
    store.hold.add("update")

    pending = asyncio.create_task(core.update_task("t1", {"status": "en_proceso"}))
    await asyncio.sleep(0)
    store.put("tasks", "t1", task_doc("A remoto", created_at=BASE_MS - 1000, status="en_revision"))
    remote = core.get_task("t1")

    store.gates[0].set_exception(store_error("unavailable"))
    with pytest.raises(UnavailableError):
        await pending

    assert remote is not None and not remote.provisional
    assert core.get_task("t1") == remote
    assert updates[-1] == [remote]


@pytest.mark.asyncio
async def test_snapshot_wins_over_confirmed_in_flight_update(
    core: TaskSyncCore, store: FailingStore, admin: Session
) -> None:
    store.put("tasks", "t1", task_doc("A", created_at=BASE_MS - 1000))
    core.subscribe(admin)
    store.hold.add("update")

    pending = asyncio.create_task(core.update_task("t1", {"status": "en_proceso"}))
    await asyncio.sleep(0)
    store.put("tasks", "t1", task_doc("A remoto", created_at=BASE_MS - 1000, status="en_revision"))

    store.gates[0].set_result(None)
    await pending

    task = core.get_task("t1")
    assert task is not None
    assert (task.title, task.status, task.provisional) == ("A remoto", TaskStatus.EN_PROCESO, False)


@pytest.mark.asyncio
async def test_snapshot_wins_over_rejected_in_flight_delete(
    core: TaskSyncCore, store: FailingStore, admin: Session
) -> None:
    store.put("tasks", "t1", task_doc("A", created_at=BASE_MS - 1000))
    core.subscribe(admin)
    store.hold.add("delete")

    pending = asyncio.create_task(core.delete_task("t1"))
    await asyncio.sleep(0)
    assert core.tasks == []

    store.put("tasks", "t1", task_doc("A remoto", created_at=BASE_MS - 1000))
    assert [t.title for t in core.tasks] == ["A remoto"]

    store.gates[0].set_exception(store_error("permission-denied"))
    with pytest.raises(PermissionDeniedError):
        await pending

    assert [t.title for t in core.tasks] == ["A remoto"]
    assert core.cache.pending_count == 0


class _RecordingCanceller:
    def __init__(self) -> None:
        self.handles: list[str | None] = []

    async def cancel_reminder(self, handle: str | None) -> None:
        self.handles.append(handle)


@pytest.mark.asyncio
async def test_delete_cancels_through_any_reminder_canceller(store: FailingStore, admin: Session, clock) -> None:
    store.put("tasks", "t1", task_doc("A", created_at=BASE_MS, notificationId="n-7"))
    canceller = _RecordingCanceller()
    core = TaskSyncCore(store, reminders=canceller, clock=clock)
    core.subscribe(admin)

    await core.delete_task("t1")

    assert canceller.handles == ["n-7"]
