# src/kanban_sync/reminders/countdown.py

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass

from ..tasks.task_models import epoch_ms

logger = logging.getLogger(__name__)

OVERDUE_LABEL = "Vencida"


@dataclass(slots=True, frozen=True)
class Countdown:
    remaining_ms: int
    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: int = 0

    @property
    def overdue(self) -> bool:
        return self.remaining_ms <= 0

    @property
    def label(self) -> str:
        if self.overdue:
            return OVERDUE_LABEL
        if self.days > 0:
            return f"{self.days}d {self.hours}h"
        return f"{self.hours:02d}:{self.minutes:02d}:{self.seconds:02d}"


def compute_countdown(due_at_ms: int, now_ms: int | None = None) -> Countdown:
    now = epoch_ms() if now_ms is None else now_ms
    remaining = int(due_at_ms) - int(now)
    if remaining <= 0:
        return Countdown(remaining_ms=remaining)

    total_seconds = remaining // 1000
    days, rest = divmod(total_seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    return Countdown(remaining_ms=remaining, days=days, hours=hours, minutes=minutes, seconds=seconds)


class CountdownTicker:
    """
    Recompute a countdown at a fixed cadence while something displays it.

    The owner must call stop() when the view goes away.
    """

    def __init__(
        self,
        due_at_ms: int,
        on_tick: Callable[[Countdown], None],
        *,
        interval_seconds: float = 1.0,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self._due_at_ms = int(due_at_ms)
        self._on_tick = on_tick
        self._interval = max(0.01, float(interval_seconds))
        self._clock = clock
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            cd = compute_countdown(self._due_at_ms, self._clock())
            try:
                self._on_tick(cd)
            except Exception:
                logger.exception("Countdown tick callback failed")
            await asyncio.sleep(self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
