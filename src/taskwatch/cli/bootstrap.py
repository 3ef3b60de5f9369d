# src/taskwatch/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires store, identities, delivery and the periodic jobs into AppState.

Connectors attach their transports later, when they are up.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import Clock
from ..core.state import AppState
from ..core.transport import CompositeTransport
from ..tasks.daily_report import DailyReporter
from ..tasks.delivery import DeliveryRouter, NotificationDispatcher
from ..tasks.identity import IdentityRegistry
from ..tasks.reminder_scheduler import ReminderScheduler
from ..tasks.task_service import TaskService, utc_now
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.matrix_store_path.mkdir(parents=True, exist_ok=True)
    settings.tasks_path.parent.mkdir(parents=True, exist_ok=True)
    settings.identities_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, clock: Clock = utc_now) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = TaskStore(settings.tasks_path)
    identities = IdentityRegistry(settings.identities_path)

    transport = CompositeTransport()
    router = DeliveryRouter(
        transport,
        identities,
        max_rate_limit_retries=settings.rate_limit_max_retries,
        default_retry_seconds=settings.rate_limit_default_retry_seconds,
    )
    dispatcher = NotificationDispatcher(router)

    state = AppState(
        settings=settings,
        store=store,
        identities=identities,
        transport=transport,
        router=router,
        dispatcher=dispatcher,
        service=TaskService(store, identities, dispatcher, settings, clock=clock),
        scheduler=ReminderScheduler(store, dispatcher, settings, clock=clock),
        reporter=DailyReporter(store, identities, dispatcher, settings, clock=clock),
    )
    logger.info("State ready: tasks=%d identities=%d", store.count_tasks(), len(identities))
    return state
