# src/taskwatch/tasks/reminder_scheduler.py

from __future__ import annotations

"""
Reminder scheduler.

A small polling loop that, every tick:
- sweeps all open tasks with a future deadline,
- decides which reminder keys are due (custom instants or the default
  priority schedule) and which tasks need the one-shot "nobody took it" nudge,
- records every fired key before anything is sent,
- hands the resulting notices to the outbox.

Recipient choice and fallback belong to the delivery router, not the scheduler.
"""

import asyncio
import copy
import logging
import math
from datetime import datetime, timedelta

from ..core.ports import Clock, Outbox
from .deadlines import format_local, humanize_left, instant_key
from .delivery import Audience, Notice
from .task_models import Task, TaskStatus
from .task_service import task_affordances, utc_now
from .task_store import Sweep, TaskStore

logger = logging.getLogger(__name__)


def minutes_left(deadline: datetime, now: datetime) -> int:
    return math.floor((deadline - now).total_seconds() / 60)


def hours_left(deadline: datetime, now: datetime) -> int:
    """Whole hours remaining, rounded up from whole minutes."""
    return math.ceil(minutes_left(deadline, now) / 60)


def due_default_key(task: Task, now: datetime) -> str | None:
    """
    The default-schedule key whose window contains now, if not fired yet.

    Key "Nh" owns the half-open window (N-1, N] hours before the deadline
    ("4-5h" owns (3, 5]), so exactly one tick lands in it.
    """
    if task.deadline is None:
        return None
    left = hours_left(task.deadline, now)
    for key, hours in task.category.default_schedule.items():
        if left in hours and key not in task.fired_default_reminders:
            return key
    return None


def due_custom_instants(task: Task, now: datetime, catch_up: timedelta) -> tuple[list[datetime], list[datetime]]:
    """Split unfired, already-passed instants into (send now, too late to send)."""
    due: list[datetime] = []
    late: list[datetime] = []
    for instant in task.custom_reminder_instants:
        if instant > now or instant_key(instant) in task.fired_custom_reminders:
            continue
        if now - instant < catch_up:
            due.append(instant)
        else:
            late.append(instant)
    return due, late


class ReminderScheduler:
    def __init__(
        self,
        store: TaskStore,
        outbox: Outbox,
        settings,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._outbox = outbox
        self._settings = settings
        self._clock = clock
        self._catch_up = timedelta(minutes=int(getattr(settings, "catch_up_minutes", 60)))

    def tick(self, now: datetime | None = None) -> list[Notice]:
        now = now or self._clock()
        notices: list[Notice] = []

        with self._store.sweep() as batch:
            for task in batch.tasks:
                if task.status.is_terminal or task.deadline is None:
                    continue
                if minutes_left(task.deadline, now) <= 0:
                    continue
                notices.extend(self._evaluate(task, now, batch))

        for notice in notices:
            self._outbox.submit(notice)
        if notices:
            logger.debug("Reminder tick at %s: %d notices", now.isoformat(), len(notices))
        return notices

    def _evaluate(self, task: Task, now: datetime, batch: Sweep) -> list[Notice]:
        out: list[Notice] = []

        if task.custom_mode:
            due, late = due_custom_instants(task, now, self._catch_up)
            for instant in late:
                task.fired_custom_reminders.add(instant_key(instant))
                batch.dirty = True
                logger.info("Task %s: custom reminder %s is past the catch-up window; dropped", task.id, instant)
            if due:
                for instant in due:
                    task.fired_custom_reminders.add(instant_key(instant))
                batch.dirty = True
                out.append(self._reminder_notice(task, now, kind="reminder:custom"))
        else:
            key = due_default_key(task, now)
            if key is not None:
                task.fired_default_reminders.add(key)
                batch.dirty = True
                out.append(self._reminder_notice(task, now, kind=f"reminder:{key}"))

        if (
            task.status is TaskStatus.NEW
            and not task.not_taken_reminder_sent
            and now - task.created_at >= task.category.unclaimed_wait
        ):
            task.not_taken_reminder_sent = True
            batch.dirty = True
            out.append(self._unclaimed_notice(task))

        return out

    def _reminder_notice(self, task: Task, now: datetime, *, kind: str) -> Notice:
        left = humanize_left(task.deadline - now)  # type: ignore[operator]
        deadline = format_local(task.deadline, self._settings.timezone)
        lines = [f"⏰ Reminder! Task #{task.id} \"{task.title}\"", f"Deadline in {left} ({deadline})."]

        if task.claimant_name:
            affordances = task_affordances(task.id, "done")
        else:
            if task.mentioned_handle:
                lines.append(f"⚠️ @{task.mentioned_handle}, don't forget to take the task!")
            else:
                lines.append("⚠️ Nobody has taken this task yet.")
            affordances = task_affordances(task.id, "take", "done")

        return Notice(
            task=copy.deepcopy(task),
            text="\n".join(lines),
            audience=Audience.ASSIGNEE,
            affordances=affordances,
            echo_to_author=True,
            kind=kind,
        )

    @staticmethod
    def _unclaimed_notice(task: Task) -> Notice:
        assigned = f"@{task.mentioned_handle}" if task.mentioned_handle else "nobody"
        return Notice(
            task=copy.deepcopy(task),
            text=f"⚠️ Task #{task.id} \"{task.title}\" has not been taken yet!\nAssigned: {assigned}",
            audience=Audience.CONVERSATION,
            affordances=task_affordances(task.id, "take"),
            kind="unclaimed",
        )


async def run_reminder_scheduler(
        scheduler: ReminderScheduler,
        *,
        interval_seconds: float = 60.0,
) -> None:
    """
    Polling loop around ReminderScheduler.tick().

    A crashed tick is logged and the loop keeps going.
    To stop the scheduler, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))

    while True:
        try:
            scheduler.tick()
        except Exception:
            logger.exception("Reminder tick failed")
        await asyncio.sleep(sleep_s)
