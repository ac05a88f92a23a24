# src/kanban_sync/core/session.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Role(StrEnum):
    """
    Role taxonomy.

    - admin: sees every task
    - jefe: sees the tasks of their department (area)
    - operativo: sees only tasks assigned to them
    """

    ADMIN = "admin"
    JEFE = "jefe"
    OPERATIVO = "operativo"

    @classmethod
    def parse(cls, raw: str | Role | None) -> Role | None:
        # Unknown roles map to None ("no access"), never to a default role.
        if raw is None:
            return None
        if isinstance(raw, Role):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return None


@dataclass(slots=True, frozen=True)
class Session:
    role: Role | None
    email: str = ""
    department: str = ""
    user_id: str | None = None
    display_name: str | None = None

    @classmethod
    def from_raw(
        cls,
        role: str | Role | None,
        email: str | None = None,
        department: str | None = None,
        *,
        user_id: str | None = None,
        display_name: str | None = None,
    ) -> Session:
        return cls(
            role=Role.parse(role),
            email=(email or "").strip(),
            department=(department or "").strip(),
            user_id=user_id,
            display_name=display_name,
        )

    @property
    def can_create(self) -> bool:
        return self.role in (Role.ADMIN, Role.JEFE)

    @property
    def can_delete(self) -> bool:
        # Tasks are only ever hard-deleted by an admin.
        return self.role == Role.ADMIN

    @property
    def creator_id(self) -> str:
        return self.user_id or self.email or "anonymous"

    @property
    def creator_name(self) -> str:
        return self.display_name or self.email or "Usuario Anónimo"
