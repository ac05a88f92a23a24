# src/kanban_sync/cli/commands.py

from __future__ import annotations

import asyncio
import inspect
import logging
import shlex
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from typing import cast

from ..core.session import Session
from ..core.state import AppState
from ..export.csv_export import stats_to_csv, tasks_to_csv, write_csv
from ..reminders.countdown import CountdownTicker, compute_countdown
from ..stats.digest import build_daily_digest
from ..stats.filters import FilterCriteria, apply_filters, critical_tasks, group_by_area, summarize
from ..tasks.task_errors import NotFoundError, TaskSyncError
from ..tasks.task_models import MS_PER_MINUTE, Task, TaskStatus, epoch_ms

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /tasks, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        try:
            parts = shlex.split(line[1:])
        except ValueError:
            parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except Exception:
            nparams = 3

        try:
            if nparams >= 3:
                return cast(CommandHandler3, handler)(state, args, emit)
            return cast(CommandHandler2, handler)(state, args)
        except TaskSyncError as e:
            hint = " (puedes reintentar)" if e.retryable else ""
            return f"{e.user_message}{hint}"
        except ValueError as e:
            return f"Invalid input: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- helpers ----


def _split_kv(args: list[str]) -> tuple[list[str], dict[str, str]]:
    words: list[str] = []
    kv: dict[str, str] = {}
    for a in args:
        key, sep, value = a.partition("=")
        if sep and key:
            kv[key.lower()] = value
        else:
            words.append(a)
    return words, kv


def _parse_due(raw: str, now_ms: int) -> int:
    """'90' / '90m' minutes, '2h', '3d' from now, or an ISO date/time."""
    s = raw.strip().lower()
    units = {"m": MS_PER_MINUTE, "h": 60 * MS_PER_MINUTE, "d": 24 * 60 * MS_PER_MINUTE}
    if s and s[-1] in units and s[:-1].lstrip("+").isdigit():
        return now_ms + int(s[:-1].lstrip("+")) * units[s[-1]]
    if s.lstrip("+").isdigit():
        return now_ms + int(s.lstrip("+")) * MS_PER_MINUTE
    try:
        return int(datetime.fromisoformat(raw).timestamp() * 1000)
    except ValueError:
        raise ValueError(f"cannot parse due date {raw!r}") from None


def _find_task(state: AppState, raw: str) -> Task:
    """Exact id or unique id prefix among the visible tasks."""
    tasks = state.core.tasks
    for t in tasks:
        if t.id == raw:
            return t
    matches = [t for t in tasks if t.id.startswith(raw)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise ValueError(f"no visible task with id {raw!r}")
    raise ValueError(f"id prefix {raw!r} is ambiguous ({len(matches)} tasks)")


def _fmt_due(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime("%d/%m/%Y %H:%M")


def _task_line(t: Task, now_ms: int) -> str:
    cd = compute_countdown(t.due_at, now_ms)
    flag = "*" if t.provisional else " "
    who = t.assigned_to or "-"
    area = t.area or "-"
    return (
        f"{flag}{t.id[:8]}  [{t.status.value:<11}] {t.priority.value:<5} "
        f"{t.title}  ({area}; {who}; vence {_fmt_due(t.due_at)}; {cd.label})"
    )


def _require_session(state: AppState) -> Session:
    if state.session is None or state.session.role is None:
        raise ValueError("log in first: /login <role> <email> [department]")
    return state.session


def open_subscription(state: AppState, session: Session) -> None:
    """Switch the session and (re)subscribe on the app loop."""

    async def _subscribe():
        return state.core.subscribe(session, state.on_update)

    state.session = session
    state.subscription = state.run(_subscribe())


async def _cancel_all_reminders(state: AppState, task: Task) -> None:
    await state.reminders.cancel_reminder(task.notification_id)
    await state.reminders.cancel_reminders(state.daily_handles.pop(task.id, []))


async def _replace_due_reminder(
    state: AppState,
    task: Task,
    minutes_before: int,
    changes: dict[str, object] | None = None,
) -> str | None:
    """
    Schedule the due reminder for the changed task, store `changes` together
    with the new handle, then cancel the old handle. If the store rejects the
    write the new handle is cancelled and the old one stays.
    """
    changed = replace(task, **changes) if changes else task
    handle = None
    if not changed.is_closed:
        handle = await state.reminders.schedule_due_reminder(changed, minutes_before)
    try:
        await state.core.update_task(task.id, {**(changes or {}), "notification_id": handle})
    except Exception:
        await state.reminders.cancel_reminder(handle)
        raise
    await state.reminders.cancel_reminder(task.notification_id)
    return handle


# ---- commands ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_login(state: AppState, args: list[str]) -> str:
    """
    /login <role> <email> [department...]
    """
    if len(args) < 2:
        return "Usage: /login <admin|jefe|operativo> <email> [department]"

    session = Session.from_raw(args[0], args[1], " ".join(args[2:]))
    open_subscription(state, session)
    if session.role is None:
        return f"Unknown role {args[0]!r}: no access."
    return f"Logged in as {session.email} ({session.role.value}). Visible tasks: {len(state.core.tasks)}"


def cmd_whoami(state: AppState, args: list[str]) -> str:
    s = state.session
    if s is None or s.role is None:
        return "Not logged in."
    sub = state.subscription
    live = "live" if sub is not None and not sub.closed else "closed"
    err = f", last error: {sub.last_error}" if sub is not None and sub.last_error else ""
    dept = f", department {s.department}" if s.department else ""
    return f"{s.email} ({s.role.value}{dept}); subscription {live}{err}"


def cmd_refresh(state: AppState, args: list[str]) -> str:
    """Re-open the subscription (e.g. after a connection error)."""
    open_subscription(state, _require_session(state))
    return f"Re-subscribed. Visible tasks: {len(state.core.tasks)}"


def cmd_tasks(state: AppState, args: list[str]) -> str:
    """
    /tasks [q=text] [area=..] [resp=email] [prio=alta|media|baja] [overdue]
    """
    _require_session(state)
    words, kv = _split_kv(args)
    criteria = FilterCriteria(
        search_text=kv.get("q", ""),
        area=kv.get("area", ""),
        responsible=kv.get("resp", ""),
        priority=kv.get("prio", ""),
        overdue="overdue" in words,
    )
    now = epoch_ms()
    tasks = apply_filters(state.core.tasks, criteria, now_ms=now)
    if not tasks:
        return "No tasks."
    lines = [f"{len(tasks)} task(s):"]
    lines.extend(_task_line(t, now) for t in tasks)
    return "\n".join(lines)


def cmd_new(state: AppState, args: list[str]) -> str:
    """
    /new <title words> due=<90m|2h|3d|ISO> [area=..] [to=email] [prio=..] [desc=..]
    """
    session = _require_session(state)
    if not session.can_create:
        return "Solo admin o jefe pueden crear tareas."

    words, kv = _split_kv(args)
    if "due" not in kv:
        return "Usage: /new <title> due=<90m|2h|3d|ISO> [area=..] [to=email] [prio=..] [desc=..]"

    now = epoch_ms()
    area = kv.get("area") or (session.department or None)
    settings = state.settings

    async def _create() -> str:
        task_id = await state.core.create_task(
            title=" ".join(words),
            due_at=_parse_due(kv["due"], now),
            description=kv.get("desc", ""),
            area=area,
            assigned_to=kv.get("to"),
            priority=kv.get("prio", "media"),
            department=session.department,
        )
        task = state.core.get_task(task_id)
        if task is None:
            return task_id

        handle = await state.reminders.schedule_due_reminder(task, settings.due_reminder_minutes)
        if handle:
            await state.core.update_task(task_id, {"notification_id": handle})
        if settings.daily_reminders_enabled:
            state.daily_handles[task_id] = await state.reminders.schedule_daily_reminders(task)
        return task_id

    task_id = state.run(_create())
    return f"Task created: {task_id}"


def cmd_status(state: AppState, args: list[str]) -> str:
    """
    /status <id> <pendiente|en_proceso|en_revision|cerrada>
    """
    _require_session(state)
    if len(args) < 2:
        return "Usage: /status <id> <pendiente|en_proceso|en_revision|cerrada>"
    task = _find_task(state, args[0])
    status = TaskStatus(args[1].lower())

    closing = status == TaskStatus.CERRADA and bool(task.notification_id or task.id in state.daily_handles)

    async def _update() -> None:
        changes: dict[str, object] = {"status": status}
        if closing:
            changes["notification_id"] = None
        await state.core.update_task(task.id, changes)
        if closing:
            await _cancel_all_reminders(state, task)

    state.run(_update())
    return f"{task.title}: {status.value}"


def cmd_assign(state: AppState, args: list[str]) -> str:
    _require_session(state)
    if len(args) < 2:
        return "Usage: /assign <id> <email>"
    task = _find_task(state, args[0])
    state.run(state.core.update_task(task.id, {"assigned_to": args[1]}))
    return f"{task.title}: asignada a {args[1]}"


def cmd_postpone(state: AppState, args: list[str]) -> str:
    """
    /postpone <id> <minutes>
    """
    _require_session(state)
    if len(args) < 2 or not args[1].lstrip("-").isdigit():
        return "Usage: /postpone <id> <minutes>"
    task = _find_task(state, args[0])
    new_due = task.due_at + int(args[1]) * MS_PER_MINUTE
    minutes_before = state.settings.due_reminder_minutes

    handle = state.run(_replace_due_reminder(state, task, minutes_before, {"due_at": new_due}))
    note = "" if handle else " (sin recordatorio)"
    return f"{task.title}: vence {_fmt_due(new_due)}{note}"


def cmd_delete(state: AppState, args: list[str]) -> str:
    session = _require_session(state)
    if not session.can_delete:
        return "Solo admin puede eliminar tareas."
    if not args:
        return "Usage: /delete <id>"
    task = _find_task(state, args[0])

    async def _delete() -> None:
        # The core cancels the due reminder; daily ones go once the task is gone.
        try:
            await state.core.delete_task(task.id)
        except NotFoundError:
            await state.reminders.cancel_reminders(state.daily_handles.pop(task.id, []))
            raise
        await state.reminders.cancel_reminders(state.daily_handles.pop(task.id, []))

    try:
        state.run(_delete())
    except NotFoundError as e:
        return f"{task.title}: {e.user_message}"
    return f"Task deleted: {task.title}"


def cmd_remind(state: AppState, args: list[str]) -> str:
    """
    /remind <id> [minutes_before]
    """
    _require_session(state)
    if not args:
        return "Usage: /remind <id> [minutes_before]"
    task = _find_task(state, args[0])
    minutes = int(args[1]) if len(args) > 1 else state.settings.due_reminder_minutes

    handle = state.run(_replace_due_reminder(state, task, minutes))
    if not handle:
        return "No se programó el recordatorio (ya pasó la hora o no hay permiso)."
    return f"Recordatorio programado {minutes} min antes ({handle})."


def cmd_countdown(
    state: AppState,
    args: list[str],
    emit: CommandEmitter | None = None,
) -> str:
    """
    /countdown <id>            -> one reading
    /countdown <id> <seconds>  -> live ticker for a few seconds
    """
    _require_session(state)
    if not args:
        return "Usage: /countdown <id> [seconds]"
    task = _find_task(state, args[0])
    seconds = float(args[1]) if len(args) > 1 else 0.0

    if seconds <= 0 or emit is None:
        return f"{task.title}: {compute_countdown(task.due_at).label}"

    async def _watch() -> None:
        ticker = CountdownTicker(
            task.due_at,
            lambda cd: emit(f"{task.title}: {cd.label}"),
            interval_seconds=state.settings.countdown_interval_seconds,
        )
        ticker.start()
        try:
            await asyncio.sleep(seconds)
        finally:
            await ticker.stop()

    state.run(_watch(), timeout=seconds + 5.0)
    return "Countdown stopped."


def cmd_report(state: AppState, args: list[str]) -> str:
    _require_session(state)
    now = epoch_ms()
    tasks = state.core.tasks
    stats = summarize(tasks, now_ms=now)
    lines = [
        "Resumen:",
        f"  total {stats.total} | pendientes {stats.pending} | en proceso {stats.in_progress} | "
        f"en revisión {stats.in_review} | cerradas {stats.completed} | vencidas {stats.overdue}",
        "Por área:",
    ]
    for area, tally in group_by_area(tasks, state.settings.areas, now_ms=now).items():
        lines.append(
            f"  {area}: {tally.pendiente}/{tally.en_proceso}/{tally.en_revision}/{tally.cerrada} "
            f"(vencidas {tally.overdue}, total {tally.total})"
        )
    crit = critical_tasks(tasks)
    lines.append(f"Críticas: {len(crit)}")
    lines.extend("  " + _task_line(t, now) for t in crit)
    return "\n".join(lines)


def cmd_digest(state: AppState, args: list[str]) -> str:
    session = _require_session(state)
    email = args[0] if args else session.email
    digest = build_daily_digest(state.core.tasks, email)
    state.run(state.reminders.notify_daily_digest(digest))
    return (
        f"{email}: vencidas {digest.overdue_count}, vencen hoy {digest.due_today_count}, "
        f"próximas {digest.due_soon_count}, total {digest.total}"
    )


def cmd_export(state: AppState, args: list[str]) -> str:
    """
    /export        -> visible tasks as CSV
    /export stats  -> statistics report as CSV
    """
    _require_session(state)
    tasks = state.core.tasks
    out_dir = state.settings.export_dir
    if args and args[0].lower() == "stats":
        content = stats_to_csv(summarize(tasks), group_by_area(tasks, state.settings.areas))
        path = write_csv(content, out_dir, "reporte_estadisticas")
    else:
        path = write_csv(tasks_to_csv(tasks), out_dir, "tareas")
    return f"Exported to {path}"


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("login", cmd_login, help_text="Switch session: /login <role> <email> [department].")
registry.register("whoami", cmd_whoami, help_text="Show the current session and subscription state.")
registry.register("refresh", cmd_refresh, help_text="Re-open the task subscription.")
registry.register(
    "tasks", cmd_tasks, help_text="List tasks: /tasks [q=..] [area=..] [resp=..] [prio=..] [overdue].", aliases=["ls"]
)
registry.register("new", cmd_new, help_text="Create: /new <title> due=<90m|2h|3d|ISO> [area=..] [to=..] [prio=..].")
registry.register("status", cmd_status, help_text="Change status: /status <id> <status>.")
registry.register("assign", cmd_assign, help_text="Reassign: /assign <id> <email>.")
registry.register("postpone", cmd_postpone, help_text="Move the due date: /postpone <id> <minutes>.")
registry.register("delete", cmd_delete, help_text="Delete a task: /delete <id>.", aliases=["rm"])
registry.register("remind", cmd_remind, help_text="(Re)schedule the due reminder: /remind <id> [minutes].")
registry.register("countdown", cmd_countdown, help_text="Time left: /countdown <id> [seconds].")
registry.register("report", cmd_report, help_text="Statistics by area and critical tasks.")
registry.register("digest", cmd_digest, help_text="Daily digest for an assignee: /digest [email].")
registry.register("export", cmd_export, help_text="Write CSV: /export | /export stats.")
