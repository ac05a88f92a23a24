# src/kanban_sync/tasks/task_sync.py

from __future__ import annotations

"""
Task synchronization core.

Owns one role-scoped realtime subscription against the remote store, a local
TaskCache (authoritative snapshot + optimistic layers), and the mutation
operations (create/update/delete) with rollback on failure.

Threading model: everything runs on one asyncio loop. Store callbacks are
expected on that same loop.
"""

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Callable, Coroutine, Iterable, Mapping
from dataclasses import replace
from datetime import datetime
from typing import Any

from ..core.ports import AssignmentNotifier, ReminderCanceller, RemoteTaskStore, StoreDocument, Unsubscribe
from ..core.session import Session
from ..stores.timestamps import SERVER_TIMESTAMP
from .snapshot_store import SnapshotStore
from .task_cache import PendingMutation, TaskCache
from .task_codec import changes_to_document, coerce_due_at, document_to_task, new_task_document
from .task_errors import NotFoundError, TaskOperation, classify_error
from .task_models import (
    MUTABLE_FIELDS,
    SnapshotSource,
    Task,
    TaskListSnapshot,
    TaskPriority,
    TaskStatus,
    epoch_ms,
)
from .task_queries import query_for_session

logger = logging.getLogger(__name__)

OnUpdate = Callable[[list[Task]], None]

# Older snapshots are obsolete once a newer one exists; keep only a few buffered.
_MAX_BUFFERED_SNAPSHOTS = 16


class TaskSubscription:
    """
    Cancellable stream of TaskListSnapshot events.

    Consumers either pass an on_update callback to TaskSyncCore.subscribe()
    or iterate:

        async for snap in sub:
            render(snap.tasks)

    close() is idempotent; once it returns no callback runs and iteration ends
    after the already-buffered snapshots.
    """

    def __init__(self, query_key: str | None, on_update: OnUpdate | None = None) -> None:
        self._query_key = query_key
        self._on_update = on_update
        self._closed = False
        self._store_unsubscribe: Unsubscribe | None = None
        self._pending: deque[TaskListSnapshot] = deque(maxlen=_MAX_BUFFERED_SNAPSHOTS)
        self._wakeup = asyncio.Event()
        self.latest: TaskListSnapshot | None = None
        self.last_error: Exception | None = None
        self.delivered = 0

    @property
    def query_key(self) -> str | None:
        return self._query_key

    @property
    def closed(self) -> bool:
        return self._closed

    def _attach(self, unsubscribe: Unsubscribe) -> None:
        if self._closed:
            # Closed from inside the first callback, before the store returned.
            self._call_store_unsubscribe(unsubscribe)
            return
        self._store_unsubscribe = unsubscribe

    def _deliver(self, snapshot: TaskListSnapshot) -> None:
        if self._closed:
            return
        self.latest = snapshot
        self.delivered += 1
        self._pending.append(snapshot)
        self._wakeup.set()
        if self._on_update is not None:
            try:
                self._on_update(list(snapshot.tasks))
            except Exception:
                logger.exception("on_update callback failed (source=%s)", snapshot.source.value)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._on_update = None
        unsub, self._store_unsubscribe = self._store_unsubscribe, None
        if unsub is not None:
            self._call_store_unsubscribe(unsub)
        self._wakeup.set()

    # Alias matching the usual "unsubscribe function" vocabulary.
    unsubscribe = close

    @staticmethod
    def _call_store_unsubscribe(unsub: Unsubscribe) -> None:
        try:
            unsub()
        except Exception:
            logger.warning("Store unsubscribe failed", exc_info=True)

    def __aiter__(self) -> TaskSubscription:
        return self

    async def __anext__(self) -> TaskListSnapshot:
        while True:
            if self._pending:
                return self._pending.popleft()
            if self._closed:
                raise StopAsyncIteration
            self._wakeup.clear()
            await self._wakeup.wait()

    async def next_snapshot(self, timeout: float | None = None) -> TaskListSnapshot:
        return await asyncio.wait_for(self.__anext__(), timeout=timeout)


class TaskSyncCore:
    """
    Role-scoped, eventually consistent view of tasks plus optimistic mutations.

    One instance holds at most one live subscription. Consumers get the
    instance by explicit composition (see cli/bootstrap.py); there is no
    module-level state.
    """

    def __init__(
        self,
        store: RemoteTaskStore,
        *,
        collection: str = "tasks",
        freshness_seconds: float = 30.0,
        snapshot_store: SnapshotStore | None = None,
        notifier: AssignmentNotifier | None = None,
        reminders: ReminderCanceller | None = None,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self._store = store
        self._collection = collection
        self._clock = clock
        self._cache = TaskCache(freshness_seconds=freshness_seconds, clock=clock)
        self._snapshot_store = snapshot_store
        self._notifier = notifier
        self._reminders = reminders

        self.session: Session | None = None
        self._active: TaskSubscription | None = None
        self._background: set[asyncio.Task[Any]] = set()

    # ---- read side ----

    @property
    def tasks(self) -> list[Task]:
        return self._cache.visible()

    @property
    def cache(self) -> TaskCache:
        return self._cache

    @property
    def active_subscription(self) -> TaskSubscription | None:
        sub = self._active
        return sub if sub is not None and not sub.closed else None

    def get_task(self, task_id: str) -> Task | None:
        return self._cache.get(task_id)

    # ---- subscription ----

    def subscribe(self, session: Session | None, on_update: OnUpdate | None = None) -> TaskSubscription:
        """
        Open the role-scoped subscription for `session`.

        - no usable role: on_update([]) right away, returns a closed subscription
        - a previous subscription of this core is torn down first
        - a fresh cache for the same query is delivered before the store answers
        """
        self._close_active()
        self.session = session

        query = query_for_session(session)
        if query is None:
            logger.warning(
                "Subscription refused: no usable role (role=%r)",
                getattr(session, "role", None),
            )
            denied = TaskSubscription(None, on_update)
            denied._deliver(TaskListSnapshot(tasks=(), source=SnapshotSource.DENIED, received_at=self._clock()))
            denied.close()
            return denied

        spec = query.to_spec(self._collection)
        key = spec.key
        sub = TaskSubscription(key, on_update)
        self._active = sub

        if self._cache.is_fresh(key):
            logger.debug("Pre-populating from cache key=%s", key)
            self._deliver(sub, SnapshotSource.CACHE)
        elif not self._cache.holds(key):
            # Different scope: nothing cached may leak into this one.
            self._cache.reset(key)

        logger.info("Subscribing role=%s key=%s", query.role.value, key)
        try:
            unsubscribe = self._store.subscribe(
                spec,
                lambda docs: self._on_snapshot(sub, docs),
                lambda err: self._on_error(sub, err),
            )
        except Exception as exc:
            self._on_error(sub, exc)
            return sub

        sub._attach(unsubscribe)
        return sub

    def _close_active(self) -> None:
        sub, self._active = self._active, None
        if sub is not None and not sub.closed:
            logger.debug("Closing previous subscription key=%s", sub.query_key)
            sub.close()

    def _is_current(self, sub: TaskSubscription) -> bool:
        return sub is self._active and not sub.closed

    def _deliver(self, sub: TaskSubscription, source: SnapshotSource, tasks: Iterable[Task] | None = None) -> None:
        items = tuple(self._cache.visible() if tasks is None else tasks)
        sub._deliver(TaskListSnapshot(tasks=items, source=source, received_at=self._clock()))

    def _on_snapshot(self, sub: TaskSubscription, docs: list[StoreDocument]) -> None:
        if not self._is_current(sub) or sub.query_key is None:
            return

        now = self._clock()
        tasks: list[Task] = []
        for doc in docs:
            try:
                tasks.append(document_to_task(doc, now_ms=now))
            except Exception:
                logger.exception("Skipping malformed task document id=%s", getattr(doc, "id", "?"))

        self._cache.replace(sub.query_key, tasks)
        sub.last_error = None
        self._persist(sub.query_key, tasks)
        logger.debug("Snapshot applied key=%s tasks=%d", sub.query_key, len(tasks))
        self._deliver(sub, SnapshotSource.STORE)

    def _on_error(self, sub: TaskSubscription, err: Exception) -> None:
        if not self._is_current(sub) or sub.query_key is None:
            return

        typed = classify_error(err, TaskOperation.SUBSCRIBE)
        sub.last_error = typed
        logger.warning("Task subscription error code=%s: %s", typed.code, typed.user_message)

        key = sub.query_key
        if self._cache.holds(key):
            self._deliver(sub, SnapshotSource.FALLBACK)
            return

        self._deliver(sub, SnapshotSource.FALLBACK, self._load_persisted(key))

    def _persist(self, query_key: str, tasks: list[Task]) -> None:
        if self._snapshot_store is None:
            return
        try:
            self._snapshot_store.save(query_key, tasks)
        except Exception:
            logger.exception("Failed to persist snapshot key=%s", query_key)

    def _load_persisted(self, query_key: str) -> list[Task]:
        if self._snapshot_store is None:
            return []
        try:
            return self._snapshot_store.load(query_key) or []
        except Exception:
            logger.exception("Failed to load persisted snapshot key=%s", query_key)
            return []

    def _emit_local(self) -> None:
        sub = self._active
        if sub is not None and not sub.closed:
            self._deliver(sub, SnapshotSource.LOCAL)

    # ---- mutations ----

    async def create_task(
        self,
        *,
        title: str,
        due_at: int | float | datetime,
        description: str = "",
        area: str | None = None,
        assigned_to: str | None = None,
        priority: TaskPriority | str = TaskPriority.MEDIA,
        status: TaskStatus | str = TaskStatus.PENDIENTE,
        department: str | None = None,
        tags: Iterable[str] = (),
        estimated_hours: float | None = None,
        session: Session | None = None,
    ) -> str:
        """
        Create a task; returns the id assigned by the store.

        A provisional copy is visible until the store answers. On failure the
        provisional copy is removed and a TaskSyncError subclass is raised.
        """
        clean_title = (title or "").strip()
        if not clean_title:
            raise ValueError("title is required")
        due_ms = coerce_due_at(due_at)

        who = session or self.session
        now = self._clock()
        draft = Task(
            id="",
            title=clean_title,
            due_at=due_ms,
            created_at=now,
            updated_at=now,
            description=description or "",
            area=area or None,
            assigned_to=(assigned_to or "").strip() or None,
            priority=TaskPriority(priority),
            status=TaskStatus(status),
            created_by=who.creator_id if who else "anonymous",
            created_by_name=who.creator_name if who else "Usuario Anónimo",
            department=department or "",
            tags=tuple(tags),
            estimated_hours=estimated_hours,
        )

        m = self._cache.begin_create(draft)
        self._emit_local()

        try:
            task_id = await self._store.add(self._collection, new_task_document(draft))
        except Exception as exc:
            self._finish(m, ok=False)
            typed = classify_error(exc, TaskOperation.CREATE)
            logger.warning("Task create failed code=%s title=%r", typed.code, clean_title)
            raise typed from exc

        self._finish(m, ok=True)
        logger.info("Task created id=%s area=%s assigned_to=%s", task_id, draft.area, draft.assigned_to)

        if draft.assigned_to and self._notifier is not None:
            self._spawn(self._notify_assigned(replace(draft, id=task_id), draft.assigned_to))
        return task_id

    async def update_task(self, task_id: str, changes: Mapping[str, Any]) -> None:
        """
        Apply a partial update (attribute names of Task).

        The cached copy is patched right away; on failure it is restored to
        the exact pre-update state and a TaskSyncError subclass is raised.
        """
        if not changes:
            return
        unknown = set(changes) - MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        normalized = self._normalize_changes(changes)
        doc = changes_to_document(normalized)
        doc["updatedAt"] = SERVER_TIMESTAMP

        m = self._cache.begin_update(task_id, {**normalized, "updated_at": self._clock()})
        if m.pre_image is not None:
            self._emit_local()

        try:
            await self._store.update(self._collection, task_id, doc)
        except Exception as exc:
            self._finish(m, ok=False)
            typed = classify_error(exc, TaskOperation.UPDATE, task_id=task_id)
            logger.warning("Task update failed id=%s code=%s fields=%s", task_id, typed.code, sorted(changes))
            raise typed from exc

        self._finish(m, ok=True)
        logger.info("Task updated id=%s fields=%s", task_id, sorted(changes))

    async def delete_task(self, task_id: str) -> None:
        """
        Delete a task and cancel its scheduled reminder.

        NotFoundError (task already gone) is raised too, but is non-fatal:
        the task stays removed locally.
        """
        m = self._cache.begin_delete(task_id)
        if m.pre_image is not None:
            self._emit_local()

        try:
            await self._store.delete(self._collection, task_id)
        except Exception as exc:
            typed = classify_error(exc, TaskOperation.DELETE, task_id=task_id)
            if isinstance(typed, NotFoundError):
                self._finish(m, ok=True)
                logger.info("Task %s was already removed", task_id)
                await self._cancel_reminder(m.pre_image)
            else:
                self._finish(m, ok=False)
                logger.warning("Task delete failed id=%s code=%s", task_id, typed.code)
            raise typed from exc

        self._finish(m, ok=True)
        logger.info("Task deleted id=%s", task_id)
        await self._cancel_reminder(m.pre_image)

    def _finish(self, m: PendingMutation, *, ok: bool) -> None:
        changed = self._cache.confirm(m) if ok else self._cache.roll_back(m)
        if changed:
            self._emit_local()

    @staticmethod
    def _normalize_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
        out = dict(changes)
        if "title" in out:
            title = (out["title"] or "").strip()
            if not title:
                raise ValueError("title cannot be empty")
            out["title"] = title
        if "due_at" in out:
            out["due_at"] = coerce_due_at(out["due_at"])
        if "priority" in out:
            out["priority"] = TaskPriority(out["priority"])
        if "status" in out:
            out["status"] = TaskStatus(out["status"])
        if "tags" in out:
            out["tags"] = tuple(out["tags"] or ())
        return out

    # ---- side effects ----

    async def _notify_assigned(self, task: Task, assignee: str) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.notify_task_assigned(task, assignee)
        except Exception:
            logger.warning("Assignment notification failed task_id=%s to=%s", task.id, assignee, exc_info=True)

    async def _cancel_reminder(self, task: Task | None) -> None:
        if self._reminders is None or task is None or not task.notification_id:
            return
        await self._reminders.cancel_reminder(task.notification_id)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        t = asyncio.get_running_loop().create_task(coro)
        self._background.add(t)
        t.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for fire-and-forget work (assignment notifications) to finish."""
        while self._background:
            pending = list(self._background)
            await asyncio.gather(*pending, return_exceptions=True)
            self._background.difference_update(pending)

    def close(self) -> None:
        """Tear down the subscription and cancel background work."""
        self._close_active()
        for t in list(self._background):
            with contextlib.suppress(Exception):
                t.cancel()
        self._background.clear()
