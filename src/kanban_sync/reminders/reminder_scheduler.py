# src/kanban_sync/reminders/reminder_scheduler.py

from __future__ import annotations

"""
Reminder scheduling policy.

Decides when local notifications fire relative to a task's due time and
manages their handles. Scheduling is best-effort: every failure path
returns None / [] and logs, nothing is raised to the caller.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from enum import StrEnum

from ..core.ports import NotificationPayload, NotificationService
from ..stats.digest import DailyDigest
from ..tasks.task_models import MS_PER_DAY, MS_PER_MINUTE, Task, epoch_ms

logger = logging.getLogger(__name__)

DEFAULT_MINUTES_BEFORE = 10


class ReminderKind(StrEnum):
    """Value of the `type` key in notification payload data."""

    DUE_SOON = "due_soon"
    DAILY = "daily_reminder"
    ASSIGNMENT = "assignment"
    DIGEST = "daily_digest"


def _fmt_date(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime("%d/%m/%Y")


class ReminderScheduler:
    def __init__(
        self,
        notifications: NotificationService,
        *,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self._notifications = notifications
        self._clock = clock

    async def _permission_granted(self) -> bool:
        try:
            return bool(await self._notifications.request_permission())
        except Exception:
            logger.warning("Notification permission check failed", exc_info=True)
            return False

    async def schedule_due_reminder(
        self,
        task: Task,
        minutes_before: int = DEFAULT_MINUTES_BEFORE,
    ) -> str | None:
        """
        Schedule the "due soon" reminder `minutes_before` ahead of task.due_at.

        Returns None when the trigger is not in the future or permission is
        missing. Callers cancel any previous handle first (see
        reschedule_due_reminder).
        """
        trigger_at = task.due_at - int(minutes_before) * MS_PER_MINUTE
        if trigger_at <= self._clock():
            logger.debug("Due reminder skipped (trigger in the past) task_id=%s", task.id)
            return None

        if not await self._permission_granted():
            logger.info("Due reminder skipped (no permission) task_id=%s", task.id)
            return None

        payload = NotificationPayload(
            title=f"Recordatorio: {task.title or 'Tarea'}",
            body=f'La tarea "{task.title}" vence en {minutes_before} minutos.',
            data={"taskId": task.id, "type": ReminderKind.DUE_SOON, "dueAt": task.due_at},
        )
        try:
            handle = await self._notifications.schedule_at(trigger_at, payload)
        except Exception:
            logger.warning("Failed to schedule due reminder task_id=%s", task.id, exc_info=True)
            return None

        logger.info("Due reminder scheduled task_id=%s handle=%s at=%s", task.id, handle, trigger_at)
        return handle

    async def reschedule_due_reminder(
        self,
        task: Task,
        minutes_before: int = DEFAULT_MINUTES_BEFORE,
    ) -> str | None:
        """Cancel task.notification_id (if any), then schedule a new one."""
        if task.notification_id:
            await self.cancel_reminder(task.notification_id)
        if task.is_closed:
            return None
        return await self.schedule_due_reminder(task, minutes_before)

    async def schedule_daily_reminders(self, task: Task) -> list[str]:
        """One reminder every 24h from now, strictly before the due time."""
        if task.is_closed:
            return []

        now = self._clock()
        if now + MS_PER_DAY >= task.due_at:
            return []

        if not await self._permission_granted():
            return []

        handles: list[str] = []
        due_label = _fmt_date(task.due_at)
        trigger_at = now + MS_PER_DAY
        while trigger_at < task.due_at:
            payload = NotificationPayload(
                title="Recordatorio diario",
                body=f'Tarea pendiente: "{task.title}" - Vence: {due_label}',
                data={"taskId": task.id, "type": ReminderKind.DAILY, "dueAt": task.due_at},
            )
            try:
                handles.append(await self._notifications.schedule_at(trigger_at, payload))
            except Exception:
                logger.warning("Failed to schedule daily reminder task_id=%s", task.id, exc_info=True)
                break
            trigger_at += MS_PER_DAY

        logger.info("Daily reminders scheduled task_id=%s count=%d", task.id, len(handles))
        return handles

    async def cancel_reminder(self, handle: str | None) -> None:
        if not handle:
            return
        try:
            await self._notifications.cancel(handle)
        except Exception:
            logger.warning("Failed to cancel reminder handle=%s", handle, exc_info=True)

    async def cancel_reminders(self, handles: Iterable[str | None]) -> None:
        for handle in handles or ():
            await self.cancel_reminder(handle)

    async def notify_assignment(self, task: Task) -> str | None:
        """Immediate "new task assigned" notification."""
        if not task.assigned_to:
            return None
        if not await self._permission_granted():
            return None

        payload = NotificationPayload(
            title="Nueva tarea asignada",
            body=f'Te han asignado: "{task.title}" - Vence: {_fmt_date(task.due_at)}',
            data={"taskId": task.id, "type": ReminderKind.ASSIGNMENT, "assignedTo": task.assigned_to},
        )
        try:
            return await self._notifications.schedule_at(self._clock(), payload)
        except Exception:
            logger.warning("Failed to send assignment notification task_id=%s", task.id, exc_info=True)
            return None

    async def notify_task_assigned(self, task: Task, assignee: str) -> None:
        # AssignmentNotifier port, so the sync core can use the scheduler directly.
        await self.notify_assignment(task)

    async def notify_daily_digest(self, digest: DailyDigest) -> str | None:
        if digest.total == 0:
            return None
        if not await self._permission_granted():
            return None

        payload = NotificationPayload(
            title="Resumen diario de tareas",
            body=(
                f"Vencidas: {digest.overdue_count} · Vencen hoy: {digest.due_today_count} · "
                f"Próximas: {digest.due_soon_count} · Total: {digest.total}"
            ),
            data={"type": ReminderKind.DIGEST, "email": digest.email},
        )
        try:
            return await self._notifications.schedule_at(self._clock(), payload)
        except Exception:
            logger.warning("Failed to send daily digest to=%s", digest.email, exc_info=True)
            return None
