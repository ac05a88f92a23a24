# src/kanban_sync/tasks/task_cache.py

"""
Local, disposable view of the task list owned by one TaskSyncCore.

Layers (bottom to top):
- authoritative list: the last snapshot pushed by the store, replaced wholesale
- overlays: per-task stack of optimistic mutations, applied in start order
- provisional creates: local-only tasks with temporary ids

Every optimistic change is tracked by a PendingMutation. A rolled-back
mutation is removed from its stack, so the visible task is always the
authoritative copy plus the mutations that are still in flight or were
accepted. An authoritative snapshot drops every stack; mutations finishing
after it find nothing of theirs left and change nothing.
"""

from __future__ import annotations

import itertools
import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

from .task_models import Task, epoch_ms

logger = logging.getLogger(__name__)


class MutationKind(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class MutationState(StrEnum):
    APPLYING = "applying"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"


@dataclass(slots=True)
class PendingMutation:
    kind: MutationKind
    task_id: str
    token: int
    pre_image: Task | None
    # Task attribute changes of an UPDATE.
    changes: dict[str, Any] = field(default_factory=dict)
    state: MutationState = MutationState.APPLYING

    @property
    def done(self) -> bool:
        return self.state != MutationState.APPLYING


class TaskCache:
    def __init__(
        self,
        *,
        freshness_seconds: float = 30.0,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self._freshness_ms = int(max(0.0, freshness_seconds) * 1000)
        self._clock = clock
        self._tokens = itertools.count(1)

        self._query_key: str | None = None
        self._tasks: list[Task] = []
        self._refreshed_at: int | None = None

        self._overlays: dict[str, list[PendingMutation]] = {}
        self._provisional: dict[str, tuple[int, Task]] = {}

    # ---- authoritative layer ----

    @property
    def query_key(self) -> str | None:
        return self._query_key

    @property
    def refreshed_at(self) -> int | None:
        return self._refreshed_at

    def replace(self, query_key: str, tasks: list[Task]) -> None:
        """Install an authoritative snapshot. Drops every optimistic layer."""
        dropped = self.pending_count
        self._query_key = query_key
        self._tasks = list(tasks)
        self._refreshed_at = self._clock()
        self._overlays.clear()
        self._provisional.clear()
        if dropped:
            logger.debug("Snapshot superseded %d optimistic entries", dropped)

    def reset(self, query_key: str | None = None) -> None:
        self._query_key = query_key
        self._tasks = []
        self._refreshed_at = None
        self._overlays.clear()
        self._provisional.clear()

    def holds(self, query_key: str) -> bool:
        """True when the cache has received at least one snapshot for query_key."""
        return self._query_key == query_key and self._refreshed_at is not None

    def is_fresh(self, query_key: str) -> bool:
        if not self.holds(query_key) or self._refreshed_at is None:
            return False
        return self._clock() - self._refreshed_at <= self._freshness_ms

    # ---- read ----

    @staticmethod
    def _compose(base: Task, stack: list[PendingMutation]) -> Task | None:
        task = base
        in_flight = False
        for m in stack:
            if m.kind == MutationKind.DELETE:
                return None
            task = replace(task, **m.changes)
            in_flight = in_flight or not m.done
        return replace(task, provisional=in_flight)

    def _apply_overlays(self, base: Task) -> Task | None:
        stack = self._overlays.get(base.id)
        return base if not stack else self._compose(base, stack)

    def visible(self) -> list[Task]:
        # Newest provisional first, matching the createdAt-desc order of the store.
        out = [t for _, t in reversed(list(self._provisional.values()))]
        for task in self._tasks:
            shown = self._apply_overlays(task)
            if shown is not None:
                out.append(shown)
        return out

    def get(self, task_id: str) -> Task | None:
        entry = self._provisional.get(task_id)
        if entry is not None:
            return entry[1]
        for task in self._tasks:
            if task.id == task_id:
                return self._apply_overlays(task)
        return None

    @property
    def pending_count(self) -> int:
        return sum(len(s) for s in self._overlays.values()) + len(self._provisional)

    # ---- optimistic writes ----

    def begin_create(self, task: Task) -> PendingMutation:
        temp_id = f"tmp-{uuid.uuid4().hex[:12]}"
        token = next(self._tokens)
        self._provisional[temp_id] = (token, replace(task, id=temp_id, provisional=True))
        return PendingMutation(kind=MutationKind.CREATE, task_id=temp_id, token=token, pre_image=None)

    def begin_update(self, task_id: str, changes: Mapping[str, Any]) -> PendingMutation:
        current = self.get(task_id)
        m = PendingMutation(
            kind=MutationKind.UPDATE,
            task_id=task_id,
            token=next(self._tokens),
            pre_image=current,
            changes=dict(changes),
        )
        if current is not None and task_id not in self._provisional:
            self._overlays.setdefault(task_id, []).append(m)
        # Otherwise nothing to patch locally; the write still goes to the store.
        return m

    def begin_delete(self, task_id: str) -> PendingMutation:
        current = self.get(task_id)
        m = PendingMutation(
            kind=MutationKind.DELETE,
            task_id=task_id,
            token=next(self._tokens),
            pre_image=current,
        )
        if current is not None and task_id not in self._provisional:
            self._overlays.setdefault(task_id, []).append(m)
        return m

    def confirm(self, m: PendingMutation) -> bool:
        """Mark m confirmed. Returns True if the visible list changed."""
        if m.done:
            return False
        changed = False
        if m.kind == MutationKind.CREATE:
            # The real document arrives with the next snapshot push.
            changed = self._drop_provisional(m)
        elif m.kind == MutationKind.UPDATE:
            # Still stacked: the task may stop being provisional.
            changed = self._owns_layer(m)
        # DELETE: the removal layer stays until the snapshot drops the task.
        m.state = MutationState.CONFIRMED
        return changed

    def roll_back(self, m: PendingMutation) -> bool:
        """Undo m if its layer is still in place. Returns True if the visible list changed."""
        if m.done:
            return False
        changed = False
        if m.kind == MutationKind.CREATE:
            changed = self._drop_provisional(m)
        elif self._owns_layer(m):
            stack = [x for x in self._overlays[m.task_id] if x.token != m.token]
            if stack:
                self._overlays[m.task_id] = stack
            else:
                del self._overlays[m.task_id]
            changed = True
        m.state = MutationState.ROLLED_BACK
        return changed

    def _owns_layer(self, m: PendingMutation) -> bool:
        return any(x.token == m.token for x in self._overlays.get(m.task_id, ()))

    def _drop_provisional(self, m: PendingMutation) -> bool:
        entry = self._provisional.get(m.task_id)
        if entry is not None and entry[0] == m.token:
            del self._provisional[m.task_id]
            return True
        return False
