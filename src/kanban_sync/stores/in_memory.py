# src/kanban_sync/stores/in_memory.py

from __future__ import annotations

"""
In-process realtime document store.

Implements the RemoteTaskStore port with the same observable behaviour the
app relies on from a hosted realtime database:
- every change pushes a full snapshot to each matching listener
- server timestamps are resolved when the write lands
- filters ('==', '!=') and a single order-by field
- documents missing the order-by field are excluded from ordered queries
- a listener that received an error is dead

Used by the console front end and the tests.
"""

import itertools
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..core.ports import ErrorCallback, SnapshotCallback, StoreDocument, StoreError, Unsubscribe
from ..tasks.task_models import epoch_ms
from ..tasks.task_queries import QuerySpec
from .timestamps import SERVER_TIMESTAMP, StoreTimestamp

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Listener:
    query: QuerySpec
    on_snapshot: SnapshotCallback
    on_error: ErrorCallback


def _sort_value(v: Any) -> Any:
    to_ms = getattr(v, "to_millis", None)
    return to_ms() if callable(to_ms) else v


class InMemoryTaskStore:
    def __init__(self, *, clock: Callable[[], int] = epoch_ms) -> None:
        self._clock = clock
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._listeners: dict[int, _Listener] = {}
        self._listener_ids = itertools.count(1)
        self.subscribe_calls: list[QuerySpec] = []

    # ---- port ----

    def subscribe(
        self,
        query: QuerySpec,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        lid = next(self._listener_ids)
        listener = _Listener(query=query, on_snapshot=on_snapshot, on_error=on_error)
        self._listeners[lid] = listener
        self.subscribe_calls.append(query)
        logger.debug("Listener %s attached key=%s", lid, query.key)

        self._push(listener)

        def unsubscribe() -> None:
            if self._listeners.pop(lid, None) is not None:
                logger.debug("Listener %s detached", lid)

        return unsubscribe

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        self._collections.setdefault(collection, {})[doc_id] = self._resolve(data)
        self._notify(collection)
        return doc_id

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        docs = self._collections.get(collection, {})
        if doc_id not in docs:
            raise StoreError("not-found", f"No document to update: {collection}/{doc_id}")
        docs[doc_id] = {**docs[doc_id], **self._resolve(data)}
        self._notify(collection)

    async def delete(self, collection: str, doc_id: str) -> None:
        docs = self._collections.get(collection, {})
        if doc_id not in docs:
            raise StoreError("not-found", f"No document to delete: {collection}/{doc_id}")
        del docs[doc_id]
        self._notify(collection)

    # ---- helpers (seeding, diagnostics, failure simulation) ----

    def put(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Write a document directly (as another client would) and push."""
        self._collections.setdefault(collection, {})[doc_id] = self._resolve(data)
        self._notify(collection)

    def documents(self, collection: str) -> list[StoreDocument]:
        return [StoreDocument(id=k, data=dict(v)) for k, v in self._collections.get(collection, {}).items()]

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def fail_listeners(self, error: Exception, *, collection: str | None = None) -> int:
        """Deliver `error` to listeners (optionally of one collection) and drop them."""
        hit = [
            (lid, ls)
            for lid, ls in self._listeners.items()
            if collection is None or ls.query.collection == collection
        ]
        for lid, listener in hit:
            self._listeners.pop(lid, None)
            try:
                listener.on_error(error)
            except Exception:
                logger.exception("Listener %s error callback failed", lid)
        return len(hit)

    # ---- internals ----

    def _resolve(self, data: dict[str, Any]) -> dict[str, Any]:
        now = StoreTimestamp.from_millis(self._clock())
        return {k: (now if v is SERVER_TIMESTAMP else v) for k, v in data.items()}

    def _notify(self, collection: str) -> None:
        for listener in list(self._listeners.values()):
            if listener.query.collection == collection:
                self._push(listener)

    def _push(self, listener: _Listener) -> None:
        try:
            docs = self._run_query(listener.query)
        except Exception as exc:
            logger.exception("Query evaluation failed key=%s", listener.query.key)
            listener.on_error(exc)
            return
        try:
            listener.on_snapshot(docs)
        except Exception:
            logger.exception("Snapshot listener failed key=%s", listener.query.key)

    def _run_query(self, query: QuerySpec) -> list[StoreDocument]:
        rows = list(self._collections.get(query.collection, {}).items())

        for flt in query.filters:
            if flt.op == "==":
                rows = [(k, v) for k, v in rows if v.get(flt.field) == flt.value]
            elif flt.op == "!=":
                rows = [(k, v) for k, v in rows if flt.field in v and v.get(flt.field) != flt.value]
            else:
                raise StoreError("invalid-argument", f"Unsupported filter operator: {flt.op}")

        if query.order_by is not None:
            name = query.order_by.field
            rows = [(k, v) for k, v in rows if v.get(name) is not None]
            rows.sort(key=lambda kv: _sort_value(kv[1][name]), reverse=query.order_by.descending)

        return [StoreDocument(id=k, data=dict(v)) for k, v in rows]
