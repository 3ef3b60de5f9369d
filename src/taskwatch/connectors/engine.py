# src/taskwatch/connectors/engine.py

"""
Background engine.

One thread owns one asyncio loop. On it run:
- the notification dispatcher (every notice is a task on this loop),
- the reminder scheduler and the daily reporter polling loops,
- the Matrix connector, when enabled (its client must live on the same loop
  that sends through it).

The console REPL stays in the main thread because input() blocks.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from dataclasses import dataclass

from ..core.state import AppState
from ..tasks.daily_report import run_daily_reporter
from ..tasks.reminder_scheduler import run_reminder_scheduler

logger = logging.getLogger(__name__)

DRAIN_TIMEOUT_SECONDS = 5.0


async def _run_engine(state: AppState, stop_event: asyncio.Event) -> None:
    settings = state.settings
    interval = float(getattr(settings, "reminder_interval_seconds", 60))

    state.dispatcher.bind(asyncio.get_running_loop())

    periodic = [
        asyncio.create_task(run_reminder_scheduler(state.scheduler, interval_seconds=interval)),
        asyncio.create_task(run_daily_reporter(state.reporter, interval_seconds=interval)),
    ]

    matrix_task: asyncio.Task | None = None
    if getattr(settings, "matrix_enabled", False):
        from .matrix_connector import run_matrix_bot

        matrix_task = asyncio.create_task(run_matrix_bot(state, stop_event))

    logger.info("Engine started (interval=%.0fs, matrix=%s).", interval, matrix_task is not None)

    try:
        await stop_event.wait()
    finally:
        for job in periodic:
            job.cancel()
        await asyncio.gather(*periodic, return_exceptions=True)

        # Let in-flight notices finish while transports are still attached.
        try:
            await asyncio.wait_for(state.dispatcher.drain(), timeout=DRAIN_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Some notices were still in flight at shutdown.")
        state.dispatcher.shutdown()

        if matrix_task is not None:
            matrix_task.cancel()
            with contextlib.suppress(BaseException):
                await matrix_task

        logger.info("Engine stopped.")


@dataclass
class EngineRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except Exception:
            logger.debug("Failed to signal engine stop.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_engine_in_background(state: AppState) -> EngineRunner | None:
    """
    Start the engine loop in a daemon thread and wait until it is ready.
    """
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(_run_engine(state, stop_event))
        except Exception:
            logger.exception("Engine crashed.")
        finally:
            with contextlib.suppress(Exception):
                loop.stop()
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="taskwatch-engine", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Engine thread did not initialize properly.")
        return None

    logger.info("Engine background thread started.")
    return EngineRunner(thread=t, loop=loop, stop_event=stop_event)
