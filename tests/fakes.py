# tests/fakes.py

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from taskwatch.core.ports import Affordance, SendResult
from taskwatch.tasks.delivery import Notice
from taskwatch.tasks.task_models import Actor

ALICE = Actor(id="@alice:example.org", handle="alice")
BOB = Actor(id="@bob:example.org", handle="bob")
CAROL = Actor(id="@carol:example.org", handle="carol")

TZ = ZoneInfo("Europe/Kyiv")


def local(day: int, hour: int, minute: int = 0, month: int = 3, year: int = 2025) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=TZ)


class FakeClock:
    """Settable 'now' passed wherever production code takes a Clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@dataclass(slots=True)
class RecordingOutbox:
    """Outbox that keeps notices instead of delivering them."""

    notices: list[Notice] = field(default_factory=list)

    def submit(self, notice: Notice) -> None:
        self.notices.append(notice)

    def of_kind(self, kind: str) -> list[Notice]:
        return [n for n in self.notices if n.kind == kind]

    def kinds(self) -> list[str]:
        return [n.kind for n in self.notices]

    def clear(self) -> None:
        self.notices.clear()


@dataclass(slots=True)
class SentMessage:
    address: str
    text: str
    affordances: tuple[Affordance, ...]


@dataclass(slots=True)
class FakeTransport:
    """
    Fake Transport used by delivery tests.

    - scripts: per-address queue of results returned before falling back to success
    - failing: addresses that always fail
    - crashing: addresses whose send raises
    """

    sent: list[SentMessage] = field(default_factory=list)
    scripts: dict[str, list[SendResult]] = field(default_factory=dict)
    failing: set[str] = field(default_factory=set)
    crashing: set[str] = field(default_factory=set)

    async def send_to_address(
        self,
        address: str,
        text: str,
        affordances: Sequence[Affordance] = (),
    ) -> SendResult:
        self.sent.append(SentMessage(address=address, text=text, affordances=tuple(affordances)))
        if address in self.crashing:
            raise RuntimeError("connection reset")
        if address in self.failing:
            return SendResult.failed("forbidden")
        queue = self.scripts.get(address)
        if queue:
            return queue.pop(0)
        return SendResult.success()

    def addresses(self) -> list[str]:
        return [m.address for m in self.sent]


class RecordingSleep:
    """Stand-in for asyncio.sleep that returns immediately."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
