# src/kanban_sync/cli/console.py

from __future__ import annotations

import logging
import sys
from datetime import datetime

from ..core.state import AppState
from ..reminders.local_notifications import FiredNotification
from ..tasks.task_models import Task
from .commands import registry as command_registry

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    try:
        if sys.stdout.isatty():
            sys.stdout.write("\033[1A\033[2K\r")
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        else:
            print(line)
    except Exception:
        print(line)


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def print_notification(fired: FiredNotification) -> None:
    """on_fire hook for the local notification service."""
    _print_ts(f"[AVISO] {fired.payload.title}: {fired.payload.body}")


def make_update_printer():
    """on_update hook: report remote changes to the visible task count."""
    last: dict[str, int] = {}

    def _on_update(tasks: list[Task]) -> None:
        n = len(tasks)
        if last.get("count") != n:
            last["count"] = n
            _print_ts(f"[SYNC] {n} visible task(s)")

    return _on_update


def run_console_loop(state: AppState) -> None:
    app_name = str(getattr(getattr(state, "settings", None), "app_name", "kanban"))
    logger.info("Console started (%s).", app_name)
    _print_ts("[CONSOLE] Use /help for commands. Use /exit to quit.\n")

    while True:
        try:
            user_input = input(">>> ").strip()
            _rewrite_prev_line(f"[{_ts_local()}] >>> {user_input}")
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            response = command_registry.handle(state, user_input, emit=_print_ts)
        except TimeoutError:
            logger.warning("Command timed out: %s", user_input)
            response = "The operation timed out; the store may be unreachable."
        except Exception:
            logger.exception("Command handler crashed.")
            response = "Internal error while handling a command."

        if response is None:
            response = "Commands start with '/'. Use /help to list them."
        print(f"[{_ts_local()}] {response}")

    logger.info("Console finished.")
