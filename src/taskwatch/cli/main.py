# src/taskwatch/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then starts:
- the engine loop (reminders, daily report, delivery, Matrix) in a background thread,
- the console REPL in the main thread (optional).
"""

from __future__ import annotations

import logging
import signal
import threading

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..connectors.engine import start_engine_in_background
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()

    log_file = setup_logging(settings)
    logger.info("Starting %s (full log: %s)...", getattr(settings, "app_name", "taskwatch"), log_file)

    state = create_initial_state(settings=settings)

    engine = start_engine_in_background(state)
    if engine is None:
        logger.error("Engine failed to start; exiting.")
        return

    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    try:
        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)
    except Exception:
        # Some platforms may not support SIGTERM, etc.
        pass

    try:
        if settings.console_enabled:
            run_console_loop(state)
            stop_main.set()
        else:
            logger.info("Console disabled. Running background connectors only. Press Ctrl+C to stop.")
            stop_main.wait()
    finally:
        engine.stop()
        engine.join(timeout=15.0)
        if not state.store.save():
            logger.warning("Final task snapshot was not written.")
        logger.info("Bye.")


if __name__ == "__main__":
    main()
