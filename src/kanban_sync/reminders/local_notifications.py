# src/kanban_sync/reminders/local_notifications.py

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass

from ..core.ports import NotificationPayload
from ..tasks.task_models import epoch_ms

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class FiredNotification:
    handle: str
    fired_at: int
    payload: NotificationPayload


class AsyncioNotificationService:
    """
    NotificationService that fires payloads on the running asyncio loop.

    Stands in for the device notification center in the console front end:
    each scheduled payload becomes a loop timer, delivered through `on_fire`.
    """

    def __init__(
        self,
        on_fire: Callable[[FiredNotification], None] | None = None,
        *,
        granted: bool = True,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self._on_fire = on_fire
        self.granted = granted
        self._clock = clock
        self._ids = itertools.count(1)
        self._timers: dict[str, asyncio.TimerHandle] = {}

    async def request_permission(self) -> bool:
        return self.granted

    async def schedule_at(self, at_ms: int, payload: NotificationPayload) -> str:
        handle = f"local-{next(self._ids)}"
        delay = max(0.0, (int(at_ms) - self._clock()) / 1000.0)
        loop = asyncio.get_running_loop()
        self._timers[handle] = loop.call_later(delay, self._fire, handle, payload)
        logger.debug("Notification %s scheduled in %.1fs: %s", handle, delay, payload.title)
        return handle

    async def cancel(self, handle: str) -> None:
        timer = self._timers.pop(handle, None)
        if timer is None:
            logger.debug("Notification %s already fired or unknown", handle)
            return
        timer.cancel()
        logger.debug("Notification %s cancelled", handle)

    @property
    def scheduled(self) -> list[str]:
        return list(self._timers)

    def _fire(self, handle: str, payload: NotificationPayload) -> None:
        if self._timers.pop(handle, None) is None:
            return
        logger.info("Notification %s fired: %s", handle, payload.title)
        if self._on_fire is None:
            return
        try:
            self._on_fire(FiredNotification(handle=handle, fired_at=self._clock(), payload=payload))
        except Exception:
            logger.exception("Notification callback failed handle=%s", handle)

    def shutdown(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
