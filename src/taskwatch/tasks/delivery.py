# src/taskwatch/tasks/delivery.py

"""
Delivery routing.

The router decides WHO gets a notice and in which order to try them:

  assignee:  claimant -> mentioned party -> final sink
  author / claimant / proposer / mentioned:  that party -> final sink
  conversation:  final sink

The final sink is the origin conversation for group tasks and the author's
private address for tasks created in a private chat. Exactly one successful
send ends the chain. A rate-limited send is retried against the same target
after the transport's backoff; any other failure moves on to the next target.

The dispatcher runs every notice as its own asyncio task so a slow or
rate-limited send never blocks a command handler or the reminder loop.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum

from ..core.ports import Affordance, IdentityLookup, SendResult, SendStatus, Transport
from .task_models import Task

logger = logging.getLogger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


class Audience(StrEnum):
    ASSIGNEE = "assignee"
    AUTHOR = "author"
    CLAIMANT = "claimant"
    PROPOSER = "proposer"
    MENTIONED = "mentioned"
    CONVERSATION = "conversation"
    ADDRESS = "address"


@dataclass(frozen=True, slots=True)
class Notice:
    """
    One notification about one task.

    recipient is a handle for PROPOSER and a raw address for ADDRESS;
    other audiences derive the party from the task snapshot.
    """

    task: Task
    text: str
    audience: Audience
    affordances: tuple[Affordance, ...] = ()
    recipient: str | None = None
    echo_to_author: bool = False
    kind: str = "notice"


@dataclass(slots=True)
class DeliveryReport:
    notice: Notice
    delivered_to: str | None
    attempts: list[tuple[str, SendStatus]] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return self.delivered_to is not None


class DeliveryRouter:
    def __init__(
        self,
        transport: Transport,
        identities: IdentityLookup,
        *,
        max_rate_limit_retries: int = 5,
        default_retry_seconds: float = 5.0,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._identities = identities
        self._max_retries = max(0, int(max_rate_limit_retries))
        self._default_retry = max(0.0, float(default_retry_seconds))
        self._sleep = sleep

    # ---- routing ----

    def final_sink(self, task: Task) -> str | None:
        if task.is_private or not task.origin_conversation:
            return self._identities.resolve(task.author_name)
        return task.origin_conversation

    def targets_for(self, notice: Notice) -> list[str]:
        task = notice.task
        audience = notice.audience
        resolve = self._identities.resolve

        if audience is Audience.ADDRESS:
            return [notice.recipient] if notice.recipient else []

        candidates: list[str | None] = []
        if audience is Audience.ASSIGNEE:
            if task.claimant_name:
                candidates.append(resolve(task.claimant_name))
            elif task.mentioned_handle:
                candidates.append(resolve(task.mentioned_handle))
        elif audience is Audience.AUTHOR:
            candidates.append(resolve(task.author_name))
        elif audience is Audience.CLAIMANT:
            candidates.append(resolve(task.claimant_name))
        elif audience is Audience.MENTIONED:
            candidates.append(resolve(task.mentioned_handle))
        elif audience is Audience.PROPOSER:
            candidates.append(resolve(notice.recipient))

        candidates.append(self.final_sink(task))

        out: list[str] = []
        for address in candidates:
            if address and address not in out:
                out.append(address)
        return out

    # ---- sending ----

    async def deliver(self, notice: Notice) -> DeliveryReport:
        targets = self.targets_for(notice)
        report = DeliveryReport(notice=notice, delivered_to=None)

        for address in targets:
            result = await self._send_with_backoff(address, notice.text, notice.affordances)
            report.attempts.append((address, result.status))
            if result.ok:
                report.delivered_to = address
                logger.info("Task %s %s delivered to %s", notice.task.id, notice.kind, address)
                return report
            logger.warning(
                "Task %s %s: delivery to %s failed (%s); trying next target",
                notice.task.id,
                notice.kind,
                address,
                result.error or result.status.value,
            )

        logger.error(
            "Task %s %s was not delivered (targets=%s)",
            notice.task.id,
            notice.kind,
            targets or "none",
        )
        return report

    async def send_best_effort(self, address: str | None, text: str) -> bool:
        """Single attempt, failures logged and swallowed."""
        if not address:
            return False
        try:
            result = await self._transport.send_to_address(address, text, ())
        except Exception:
            logger.debug("Best-effort send to %s crashed.", address, exc_info=True)
            return False
        if not result.ok:
            logger.debug("Best-effort send to %s failed: %s", address, result.error or result.status.value)
        return result.ok

    async def echo_to_author(self, report: DeliveryReport) -> None:
        """Tell the author a reminder went out (or failed), unless they were the one who got it."""
        task = report.notice.task
        author_address = self._identities.resolve(task.author_name)
        if not author_address or author_address == report.delivered_to:
            return
        who = task.claimant_name or task.mentioned_handle or "the conversation"
        if report.delivered:
            text = f"ℹ️ Reminder for task #{task.id} \"{task.title}\" was sent to {who}."
        else:
            text = f"⚠️ Reminder for task #{task.id} \"{task.title}\" could not be delivered to {who}."
        await self.send_best_effort(author_address, text)

    async def _send_with_backoff(
        self,
        address: str,
        text: str,
        affordances: tuple[Affordance, ...],
    ) -> SendResult:
        retries = 0
        while True:
            try:
                result = await self._transport.send_to_address(address, text, affordances)
            except Exception as e:
                logger.exception("Transport crashed while sending to %s", address)
                return SendResult.failed(repr(e))

            if result.status is not SendStatus.RATE_LIMITED:
                return result

            if retries >= self._max_retries:
                return SendResult.failed("rate limit retries exhausted")

            retries += 1
            delay = result.retry_after if result.retry_after is not None else self._default_retry
            logger.info("Rate limited on %s; resending in %.1fs (retry %d)", address, delay, retries)
            await self._sleep(delay)


class NotificationDispatcher:
    """
    Outbox bound to the engine event loop.

    submit() may be called from any thread (console REPL, Matrix callbacks,
    the scheduler itself). Each notice becomes an independent coroutine on the
    loop; shutdown() cancels whatever is still in flight.
    """

    def __init__(self, router: DeliveryRouter, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._router = router
        self._loop = loop
        self._lock = threading.Lock()
        self._backlog: list[Notice] = []
        self._inflight: set[concurrent.futures.Future[DeliveryReport]] = set()

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        with self._lock:
            self._loop = loop
            backlog, self._backlog = self._backlog, []
        for notice in backlog:
            self.submit(notice)

    def submit(self, notice: Notice) -> None:
        with self._lock:
            loop = self._loop
            if loop is None or loop.is_closed():
                # Held until the engine loop is bound.
                self._backlog.append(notice)
                return
        fut = asyncio.run_coroutine_threadsafe(self._run(notice), loop)
        with self._lock:
            self._inflight.add(fut)
        fut.add_done_callback(self._forget)

    def _forget(self, fut: concurrent.futures.Future[DeliveryReport]) -> None:
        with self._lock:
            self._inflight.discard(fut)

    async def _run(self, notice: Notice) -> DeliveryReport:
        report = await self._router.deliver(notice)
        if notice.echo_to_author:
            await self._router.echo_to_author(report)
        return report

    async def drain(self) -> None:
        """Wait for every in-flight notice (used on shutdown and in tests)."""
        with self._lock:
            pending = list(self._inflight)
        if pending:
            await asyncio.gather(*(asyncio.wrap_future(f) for f in pending), return_exceptions=True)

    def shutdown(self) -> None:
        with self._lock:
            pending = list(self._inflight)
            dropped = len(self._backlog)
            self._backlog.clear()
        for fut in pending:
            fut.cancel()
        if pending or dropped:
            logger.info("Dispatcher stopped: cancelled=%d unsent_backlog=%d", len(pending), dropped)
