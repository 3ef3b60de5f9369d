# src/taskwatch/core/state.py

"""
Application state container.

AppState is a simple dependency holder shared by connectors and command handlers.
Keep it lightweight: no I/O here; construction happens in cli/bootstrap.py.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from ..tasks.daily_report import DailyReporter
from ..tasks.delivery import DeliveryRouter, NotificationDispatcher
from ..tasks.identity import IdentityRegistry
from ..tasks.reminder_scheduler import ReminderScheduler
from ..tasks.task_service import TaskService
from ..tasks.task_store import TaskStore
from .transport import CompositeTransport


@dataclass
class AppState:
    # Settings object (typically taskwatch.config.Settings)
    settings: Any

    store: TaskStore
    identities: IdentityRegistry
    transport: CompositeTransport
    router: DeliveryRouter
    dispatcher: NotificationDispatcher
    service: TaskService
    scheduler: ReminderScheduler
    reporter: DailyReporter

    # Serializes command handling across connector threads.
    lock: threading.RLock = field(default_factory=threading.RLock)
