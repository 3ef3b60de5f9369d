# src/taskwatch/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    new -> claimed -> completed, new|claimed -> rejected.
    Deletion is not a status: deleted tasks leave the store.
    """

    NEW = "new"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.REJECTED)

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.NEW
        try:
            return cls(raw)
        except ValueError:
            return cls.NEW


# key -> hours_left values that trigger it
DefaultSchedule = dict[str, frozenset[int]]


def _hour_keys(*hours: int) -> DefaultSchedule:
    return {f"{h}h": frozenset({h}) for h in hours}


_SCHEDULES: dict[str, DefaultSchedule] = {
    "urgent": _hour_keys(96, 72, 24, 12, 6, 2, 1),
    "normal": _hour_keys(48, 24, 12, 6, 2),
    "optional": {**_hour_keys(24), "4-5h": frozenset({4, 5})},
}

_UNCLAIMED_WAIT_HOURS = {"urgent": 2, "normal": 3, "optional": 4}
_PRIORITIES = {"urgent": "high", "normal": "medium", "optional": "low"}
_PREFIXES = {"$": "urgent", "#": "normal", "!": "optional"}


class Category(StrEnum):
    URGENT = "urgent"
    NORMAL = "normal"
    OPTIONAL = "optional"

    @property
    def priority(self) -> str:
        return _PRIORITIES[self.value]

    @property
    def default_schedule(self) -> DefaultSchedule:
        return _SCHEDULES[self.value]

    @property
    def unclaimed_wait(self) -> timedelta:
        return timedelta(hours=_UNCLAIMED_WAIT_HOURS[self.value])

    @classmethod
    def from_prefix(cls, symbol: str) -> Category | None:
        raw = _PREFIXES.get(symbol)
        return cls(raw) if raw else None


class InputKind(StrEnum):
    CUSTOM_SCHEDULE = "custom_schedule"
    NEW_DEADLINE = "new_deadline"
    REASON = "reason"


@dataclass(slots=True)
class PendingInput:
    """The single open prompt on a task: which actor we wait for, and what for."""

    kind: InputKind
    actor_id: str
    requested_at: datetime


@dataclass(slots=True)
class PendingDeadlineChange:
    proposed_deadline: datetime
    proposed_by: str
    proposed_by_name: str
    reason: str | None = None

    @property
    def is_actionable(self) -> bool:
        # The author only sees the proposal once the reason is in.
        return self.reason is not None


@dataclass(slots=True)
class Task:
    id: int
    title: str
    category: Category
    status: TaskStatus

    author_id: str
    author_name: str
    created_at: datetime
    deadline: datetime | None

    origin_conversation: str | None = None
    is_private: bool = False
    mentioned_handle: str | None = None

    claimant_id: str | None = None
    claimant_name: str | None = None
    completed_at: datetime | None = None
    rejected_at: datetime | None = None

    fired_default_reminders: set[str] = field(default_factory=set)
    custom_reminder_instants: list[datetime] = field(default_factory=list)
    fired_custom_reminders: set[str] = field(default_factory=set)
    use_default_schedule: bool = True
    not_taken_reminder_sent: bool = False

    pending_change: PendingDeadlineChange | None = None
    pending_input: PendingInput | None = None

    @property
    def priority(self) -> str:
        return self.category.priority

    @property
    def custom_mode(self) -> bool:
        return not self.use_default_schedule and bool(self.custom_reminder_instants)

    def reset_reminders(self) -> None:
        """Void everything fired against the old deadline."""
        self.fired_default_reminders.clear()
        self.fired_custom_reminders.clear()


@dataclass(frozen=True, slots=True)
class Actor:
    """Who is acting: stable transport id plus the public handle used for routing."""

    id: str
    handle: str


@dataclass(frozen=True, slots=True)
class ConversationRef:
    """Where an action came from. Private conversations have no shared origin."""

    conversation_id: str | None
    is_private: bool = False
