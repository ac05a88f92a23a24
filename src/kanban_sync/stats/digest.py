# src/kanban_sync/stats/digest.py

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from ..tasks.task_models import MS_PER_DAY, Task, epoch_ms


@dataclass(slots=True, frozen=True)
class DailyDigest:
    """
    Morning summary for one assignee.

    Buckets (open tasks only):
    - overdue:   due < now
    - due_today: 0 < due - now <= 24h
    - due_soon:  24h < due - now <= 48h
    """

    email: str
    overdue: tuple[Task, ...]
    due_today: tuple[Task, ...]
    due_soon: tuple[Task, ...]
    total: int

    @property
    def overdue_count(self) -> int:
        return len(self.overdue)

    @property
    def due_today_count(self) -> int:
        return len(self.due_today)

    @property
    def due_soon_count(self) -> int:
        return len(self.due_soon)


def build_daily_digest(tasks: Iterable[Task], email: str, *, now_ms: int | None = None) -> DailyDigest:
    now = epoch_ms() if now_ms is None else now_ms
    mine = [t for t in tasks if t.assigned_to == email and not t.is_closed]

    overdue = [t for t in mine if t.due_at < now]
    due_today = [t for t in mine if 0 < t.due_at - now <= MS_PER_DAY]
    due_soon = [t for t in mine if MS_PER_DAY < t.due_at - now <= 2 * MS_PER_DAY]

    return DailyDigest(
        email=email,
        overdue=tuple(overdue),
        due_today=tuple(due_today),
        due_soon=tuple(due_soon),
        total=len(mine),
    )
