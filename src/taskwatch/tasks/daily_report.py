# src/taskwatch/tasks/daily_report.py

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from ..core.ports import Clock, Outbox
from .deadlines import format_local
from .delivery import Audience, Notice
from .identity import IdentityRegistry, normalize_handle
from .task_models import Task, TaskStatus
from .task_service import utc_now
from .task_store import TaskStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DigestGroup:
    """Tasks that share one report: a conversation, or one author's private tasks."""

    key: str
    tasks: list[Task] = field(default_factory=list)

    @property
    def anchor(self) -> Task:
        return self.tasks[0]

    def participants(self) -> list[str]:
        out: list[str] = []
        for t in self.tasks:
            for handle in (t.author_name, t.claimant_name, t.mentioned_handle):
                h = normalize_handle(handle)
                if h and h not in out:
                    out.append(h)
        return out


def group_tasks(tasks: list[Task]) -> list[DigestGroup]:
    groups: dict[str, DigestGroup] = {}
    for t in tasks:
        if t.is_private or not t.origin_conversation:
            key = f"author:{normalize_handle(t.author_name)}"
        else:
            key = f"conversation:{t.origin_conversation}"
        groups.setdefault(key, DigestGroup(key=key)).tasks.append(t)
    return list(groups.values())


def _local_date(value: datetime | None, tz) -> date | None:
    return value.astimezone(tz).date() if value is not None else None


def render_digest(group: DigestGroup, *, today: date, tz) -> str | None:
    """Report text for one group, or None when there is nothing to say today."""
    completed = [t for t in group.tasks if t.status is TaskStatus.COMPLETED and _local_date(t.completed_at, tz) == today]
    rejected = [t for t in group.tasks if t.status is TaskStatus.REJECTED and _local_date(t.rejected_at, tz) == today]
    claimed = [t for t in group.tasks if t.status is TaskStatus.CLAIMED]
    new = [t for t in group.tasks if t.status is TaskStatus.NEW]

    if not (completed or rejected or claimed or new):
        return None

    def open_line(t: Task) -> str:
        responsible = t.claimant_name or (f"@{t.mentioned_handle}" if t.mentioned_handle else "unassigned")
        return f"#{t.id} - {t.title}\n   Responsible: {responsible}\n   Deadline: {format_local(t.deadline, tz, '%d.%m %H:%M')}"

    def closed_line(t: Task) -> str:
        return f"#{t.id} - {t.title} ({t.claimant_name or t.author_name})"

    sections = [
        ("✅ Completed today:", completed, closed_line),
        ("🚫 Rejected today:", rejected, closed_line),
        ("🔹 In progress:", claimed, open_line),
        ("📌 Not taken yet:", new, open_line),
    ]

    lines = [f"📊 Daily report for {today.strftime('%d.%m.%Y')}:"]
    for title, items, fmt in sections:
        lines.append("")
        lines.append(title)
        if not items:
            lines.append("  none")
        for t in items:
            lines.append(fmt(t))
    return "\n".join(lines)


class DailyReporter:
    def __init__(
        self,
        store: TaskStore,
        identities: IdentityRegistry,
        outbox: Outbox,
        settings,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._identities = identities
        self._outbox = outbox
        self._settings = settings
        self._clock = clock
        # In memory only: a restart inside the window sends the report again.
        self._last_run: date | None = None

    @property
    def last_run(self) -> date | None:
        return self._last_run

    def _in_window(self, local_now: datetime) -> bool:
        at = self._settings.daily_report_time
        start = local_now.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)
        end = start + timedelta(minutes=int(getattr(self._settings, "catch_up_minutes", 60)))
        return start <= local_now < end

    def maybe_run(self, now: datetime | None = None) -> int:
        """Send today's digests if it is report time and they have not gone out yet."""
        now = now or self._clock()
        tz = self._settings.timezone
        local_now = now.astimezone(tz)
        today = local_now.date()

        if self._last_run == today or not self._in_window(local_now):
            return 0
        self._last_run = today

        sent = 0
        for group in group_tasks(self._store.list_tasks()):
            text = render_digest(group, today=today, tz=tz)
            if text is None:
                continue
            sent += self._submit_group(group, text)

        logger.info("Daily report for %s: %d digests submitted", today.isoformat(), sent)
        return sent

    def _submit_group(self, group: DigestGroup, text: str) -> int:
        addresses: list[str] = []
        for handle in group.participants():
            address = self._identities.resolve(handle)
            if address is None:
                addresses = []
                break
            if address not in addresses:
                addresses.append(address)

        if not addresses:
            logger.debug("Digest %s goes to the conversation", group.key)
            self._outbox.submit(Notice(task=group.anchor, text=text, audience=Audience.CONVERSATION, kind="digest"))
            return 1

        for address in addresses:
            self._outbox.submit(
                Notice(task=group.anchor, text=text, audience=Audience.ADDRESS, recipient=address, kind="digest")
            )
        return len(addresses)


async def run_daily_reporter(reporter: DailyReporter, *, interval_seconds: float = 60.0) -> None:
    """Cancel the coroutine to stop it."""
    sleep_s = max(0.01, float(interval_seconds))

    while True:
        try:
            reporter.maybe_run()
        except Exception:
            logger.exception("Daily report failed")
        await asyncio.sleep(sleep_s)
