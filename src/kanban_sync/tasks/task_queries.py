# src/kanban_sync/tasks/task_queries.py

"""
Role-scoped query specifications.

Each role maps to exactly one variant. A variant only describes the query
(filters + ordering); the store adapter evaluates it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..core.session import Role, Session


@dataclass(slots=True, frozen=True)
class FieldFilter:
    field: str
    op: str
    value: Any


@dataclass(slots=True, frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(slots=True, frozen=True)
class QuerySpec:
    collection: str
    filters: tuple[FieldFilter, ...] = ()
    order_by: OrderBy | None = None

    @property
    def key(self) -> str:
        """Stable identity used to tell cached results of different scopes apart."""
        parts = [self.collection]
        parts.extend(f"{f.field}{f.op}{f.value!r}" for f in self.filters)
        if self.order_by is not None:
            parts.append(f"order:{self.order_by.field}:{'desc' if self.order_by.descending else 'asc'}")
        return "|".join(parts)


_NEWEST_FIRST = OrderBy("createdAt", descending=True)


@dataclass(slots=True, frozen=True)
class AllTasksQuery:
    role = Role.ADMIN

    def to_spec(self, collection: str) -> QuerySpec:
        return QuerySpec(collection=collection, order_by=_NEWEST_FIRST)


@dataclass(slots=True, frozen=True)
class AreaTasksQuery:
    area: str
    role = Role.JEFE

    def to_spec(self, collection: str) -> QuerySpec:
        return QuerySpec(
            collection=collection,
            filters=(FieldFilter("area", "==", self.area),),
            order_by=_NEWEST_FIRST,
        )


@dataclass(slots=True, frozen=True)
class AssigneeTasksQuery:
    email: str
    role = Role.OPERATIVO

    def to_spec(self, collection: str) -> QuerySpec:
        return QuerySpec(
            collection=collection,
            filters=(FieldFilter("assignedTo", "==", self.email),),
            order_by=_NEWEST_FIRST,
        )


RoleQuery = AllTasksQuery | AreaTasksQuery | AssigneeTasksQuery


def query_for_session(session: Session | None) -> RoleQuery | None:
    """Pick the query variant for a session; None means "no access"."""
    if session is None or session.role is None:
        return None
    if session.role == Role.ADMIN:
        return AllTasksQuery()
    if session.role == Role.JEFE:
        return AreaTasksQuery(area=session.department)
    if session.role == Role.OPERATIVO:
        return AssigneeTasksQuery(email=session.email)
    return None
