# src/taskwatch/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps transports/storage swappable and makes testing easier.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any, Awaitable, Protocol

Clock = Callable[[], datetime]
# Returns a timezone-aware "now"; tests pass a settable fake.


@dataclass(frozen=True, slots=True)
class Affordance:
    """A suggested follow-up action: a button on rich transports, a hint line on plain ones."""

    label: str
    command: str


class SendStatus(StrEnum):
    OK = "ok"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class SendResult:
    status: SendStatus
    retry_after: float | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is SendStatus.OK

    @classmethod
    def success(cls) -> SendResult:
        return cls(SendStatus.OK)

    @classmethod
    def rate_limited(cls, retry_after: float | None) -> SendResult:
        return cls(SendStatus.RATE_LIMITED, retry_after=retry_after)

    @classmethod
    def failed(cls, error: str) -> SendResult:
        return cls(SendStatus.FAILED, error=error)


class Transport(Protocol):
    """
    Connector-side port: deliver one text to one address.

    Must not raise for ordinary delivery problems; report them as
    SendResult.failed / SendResult.rate_limited instead.
    """

    def send_to_address(
            self,
            address: str,
            text: str,
            affordances: Sequence[Affordance] = (),
    ) -> Awaitable[SendResult]: ...


class IdentityLookup(Protocol):
    def resolve(self, handle: str | None) -> str | None: ...


class Outbox(Protocol):
    """Where the core drops notices; delivery happens elsewhere, off the caller's path."""

    def submit(self, notice: Any) -> None: ...
