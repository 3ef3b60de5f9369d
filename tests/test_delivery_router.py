# tests/test_delivery_router.py

from __future__ import annotations

import asyncio

import pytest

from taskwatch.core.ports import SendResult, SendStatus
from taskwatch.tasks.delivery import Audience, DeliveryRouter, Notice, NotificationDispatcher
from taskwatch.tasks.task_models import Category, Task, TaskStatus

from .fakes import FakeTransport, RecordingSleep, local

ROOM = "!room:example.org"
ALICE_DM = "!alice-dm:example.org"
BOB_DM = "!bob-dm:example.org"
CAROL_DM = "!carol-dm:example.org"


def _task(**overrides) -> Task:
    fields = dict(
        id=7,
        title="Ship it",
        category=Category.URGENT,
        status=TaskStatus.NEW,
        author_id="@alice:example.org",
        author_name="alice",
        created_at=local(10, 9),
        deadline=local(10, 18),
        origin_conversation=ROOM,
    )
    fields.update(overrides)
    return Task(**fields)


def _claimed(**overrides) -> Task:
    return _task(status=TaskStatus.CLAIMED, claimant_id="@bob:example.org", claimant_name="bob", **overrides)


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def router(transport, identities, sleep) -> DeliveryRouter:
    identities.register("alice", ALICE_DM)
    identities.register("bob", BOB_DM)
    return DeliveryRouter(transport, identities, max_rate_limit_retries=3, default_retry_seconds=5, sleep=sleep)


def test_assignee_chain(router, identities) -> None:
    assert router.targets_for(Notice(_claimed(), "x", Audience.ASSIGNEE)) == [BOB_DM, ROOM]

    # Mentioned party only counts while nobody has claimed the task.
    identities.register("carol", CAROL_DM)
    assert router.targets_for(Notice(_task(mentioned_handle="carol"), "x", Audience.ASSIGNEE)) == [CAROL_DM, ROOM]
    assert router.targets_for(Notice(_claimed(mentioned_handle="carol"), "x", Audience.ASSIGNEE)) == [BOB_DM, ROOM]

    # Unregistered parties are skipped.
    assert router.targets_for(Notice(_task(mentioned_handle="dave"), "x", Audience.ASSIGNEE)) == [ROOM]


def test_private_task_sinks_to_author(router) -> None:
    task = _task(origin_conversation=None, is_private=True)
    assert router.targets_for(Notice(task, "x", Audience.ASSIGNEE)) == [ALICE_DM]
    assert router.targets_for(Notice(task, "x", Audience.CONVERSATION)) == [ALICE_DM]


def test_party_audiences_fall_back_to_conversation(router) -> None:
    task = _claimed()
    assert router.targets_for(Notice(task, "x", Audience.AUTHOR)) == [ALICE_DM, ROOM]
    assert router.targets_for(Notice(task, "x", Audience.CLAIMANT)) == [BOB_DM, ROOM]
    assert router.targets_for(Notice(task, "x", Audience.PROPOSER, recipient="bob")) == [BOB_DM, ROOM]
    assert router.targets_for(Notice(task, "x", Audience.CONVERSATION)) == [ROOM]
    assert router.targets_for(Notice(task, "x", Audience.ADDRESS, recipient="!x:example.org")) == ["!x:example.org"]


@pytest.mark.asyncio
async def test_first_success_ends_the_chain(router, transport) -> None:
    report = await router.deliver(Notice(_claimed(), "ping", Audience.ASSIGNEE))

    assert report.delivered_to == BOB_DM
    assert transport.addresses() == [BOB_DM]


@pytest.mark.asyncio
async def test_failure_falls_through_to_conversation(router, transport) -> None:
    transport.failing.add(BOB_DM)

    report = await router.deliver(Notice(_claimed(), "ping", Audience.ASSIGNEE))

    assert report.delivered_to == ROOM
    assert report.attempts == [(BOB_DM, SendStatus.FAILED), (ROOM, SendStatus.OK)]


@pytest.mark.asyncio
async def test_crashing_transport_counts_as_failure(router, transport) -> None:
    transport.crashing.add(BOB_DM)
    report = await router.deliver(Notice(_claimed(), "ping", Audience.ASSIGNEE))
    assert report.delivered_to == ROOM


@pytest.mark.asyncio
async def test_rate_limit_retries_same_target(router, transport, sleep) -> None:
    transport.scripts[BOB_DM] = [SendResult.rate_limited(2.0), SendResult.rate_limited(None)]

    report = await router.deliver(Notice(_claimed(), "ping", Audience.ASSIGNEE))

    assert report.delivered_to == BOB_DM
    assert transport.addresses() == [BOB_DM, BOB_DM, BOB_DM]
    assert sleep.delays == [2.0, 5.0]


@pytest.mark.asyncio
async def test_rate_limit_retries_are_capped(router, transport, sleep) -> None:
    transport.scripts[BOB_DM] = [SendResult.rate_limited(1.0)] * 10

    report = await router.deliver(Notice(_claimed(), "ping", Audience.ASSIGNEE))

    assert report.delivered_to == ROOM
    assert transport.addresses().count(BOB_DM) == 4
    assert sleep.delays == [1.0, 1.0, 1.0]


@pytest.mark.asyncio
async def test_nothing_deliverable(router, transport) -> None:
    transport.failing.update({BOB_DM, ROOM})
    report = await router.deliver(Notice(_claimed(), "ping", Audience.ASSIGNEE))
    assert not report.delivered
    assert [a for a, _ in report.attempts] == [BOB_DM, ROOM]


@pytest.mark.asyncio
async def test_echo_to_author(router, transport) -> None:
    notice = Notice(_claimed(), "⏰ Reminder!", Audience.ASSIGNEE, echo_to_author=True)

    report = await router.deliver(notice)
    await router.echo_to_author(report)

    assert transport.addresses() == [BOB_DM, ALICE_DM]
    assert "was sent to bob" in transport.sent[-1].text


@pytest.mark.asyncio
async def test_echo_reports_failed_delivery(router, transport) -> None:
    transport.failing.update({BOB_DM, ROOM})
    report = await router.deliver(Notice(_claimed(), "⏰", Audience.ASSIGNEE, echo_to_author=True))
    await router.echo_to_author(report)
    assert "could not be delivered" in transport.sent[-1].text


@pytest.mark.asyncio
async def test_no_echo_when_author_got_it(router, transport) -> None:
    task = _task(origin_conversation=None, is_private=True)
    report = await router.deliver(Notice(task, "⏰", Audience.ASSIGNEE, echo_to_author=True))
    await router.echo_to_author(report)
    assert transport.addresses() == [ALICE_DM]


@pytest.mark.asyncio
async def test_dispatcher_holds_backlog_until_bound(router, transport) -> None:
    dispatcher = NotificationDispatcher(router)
    dispatcher.submit(Notice(_claimed(), "early", Audience.ASSIGNEE))
    assert transport.sent == []

    dispatcher.bind(asyncio.get_running_loop())
    await asyncio.sleep(0)
    await dispatcher.drain()

    assert [m.text for m in transport.sent] == ["early"]


@pytest.mark.asyncio
async def test_dispatcher_runs_echo(router, transport) -> None:
    dispatcher = NotificationDispatcher(router, asyncio.get_running_loop())
    dispatcher.submit(Notice(_claimed(), "⏰ Reminder!", Audience.ASSIGNEE, echo_to_author=True))
    await asyncio.sleep(0)
    await dispatcher.drain()

    assert transport.addresses() == [BOB_DM, ALICE_DM]
