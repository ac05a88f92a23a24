# src/kanban_sync/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, starts the asyncio loop thread that
hosts the sync core, subscribes the configured session and runs the
console REPL in the main thread.
"""

from __future__ import annotations

import logging
import signal

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..logging_setup import setup_logging
from .commands import open_subscription
from .console import make_update_printer, print_notification, run_console_loop
from .loop_thread import start_loop_in_background

logger = logging.getLogger(__name__)


def _shutdown(state) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    runner = state.runner

    async def _close() -> None:
        state.core.close()
        state.notifications.shutdown()

    if runner is not None:
        try:
            runner.run(_close(), timeout=5.0)
        except Exception:
            logger.debug("Core shutdown failed.", exc_info=True)
        runner.stop()
        runner.join(timeout=10.0)

    # SnapshotStore uses short-lived sqlite connections per call; no explicit close required.


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    # Reuse the same settings object.
    state = create_initial_state(settings=settings, on_notification=print_notification)
    state.on_update = make_update_printer()

    state.runner = start_loop_in_background()
    if state.runner is None:
        logger.error("Cannot start without an event loop.")
        return

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        raise KeyboardInterrupt

    try:
        signal.signal(signal.SIGTERM, _handle_signal)
    except Exception:
        # Some platforms may not support SIGTERM.
        pass

    try:
        if state.session is not None and state.session.role is not None:
            open_subscription(state, state.session)
            logger.info("Session %s (%s) subscribed.", state.session.email, state.session.role.value)
        else:
            logger.warning("Configured role %r is not usable; use /login.", settings.session_role)
        run_console_loop(state)
    except KeyboardInterrupt:
        pass
    finally:
        _shutdown(state)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
