# tests/test_daily_report.py

from __future__ import annotations

import pytest

from taskwatch.tasks.daily_report import DailyReporter, group_tasks, render_digest
from taskwatch.tasks.delivery import Audience
from taskwatch.tasks.task_models import Category, TaskStatus

from .fakes import TZ, local

ROOM = "!room:example.org"


@pytest.fixture()
def reporter(store, identities, outbox, settings, clock) -> DailyReporter:
    return DailyReporter(store, identities, outbox, settings, clock=clock)


def _add(store, title, status=TaskStatus.NEW, **fields):
    base = dict(
        title=title,
        category=Category.NORMAL,
        status=status,
        author_id="@alice:example.org",
        author_name="alice",
        created_at=local(10, 9),
        deadline=local(11, 18),
        origin_conversation=ROOM,
    )
    base.update(fields)
    return store.add(**base)


@pytest.fixture()
def room_tasks(store):
    _add(
        store,
        "Ship it",
        TaskStatus.COMPLETED,
        claimant_id="@bob:example.org",
        claimant_name="bob",
        completed_at=local(10, 15),
    )
    _add(store, "Review", TaskStatus.CLAIMED, claimant_id="@bob:example.org", claimant_name="bob")
    _add(store, "Plan sprint")
    _add(store, "Old", TaskStatus.COMPLETED, completed_at=local(9, 15))


def test_digest_sections(store, room_tasks) -> None:
    [group] = group_tasks(store.list_tasks())
    text = render_digest(group, today=local(10, 18).date(), tz=TZ)

    completed, rest = text.split("🚫 Rejected today:")
    assert "#1 - Ship it (bob)" in completed
    assert "Old" not in text
    in_progress, new = rest.split("📌 Not taken yet:")
    assert "#2 - Review" in in_progress
    assert "#3 - Plan sprint" in new


def test_nothing_to_report_for_stale_group(store) -> None:
    _add(store, "Old", TaskStatus.COMPLETED, completed_at=local(9, 15))
    [group] = group_tasks(store.list_tasks())
    assert render_digest(group, today=local(10, 18).date(), tz=TZ) is None


def test_registered_participants_get_private_copies(reporter, identities, outbox, room_tasks) -> None:
    identities.register("alice", "!alice-dm:example.org")
    identities.register("bob", "!bob-dm:example.org")

    assert reporter.maybe_run(local(10, 18)) == 2

    assert [n.audience for n in outbox.notices] == [Audience.ADDRESS, Audience.ADDRESS]
    assert {n.recipient for n in outbox.notices} == {"!alice-dm:example.org", "!bob-dm:example.org"}
    assert all(n.kind == "digest" for n in outbox.notices)


def test_unregistered_participant_sends_to_conversation(reporter, identities, outbox, room_tasks) -> None:
    identities.register("alice", "!alice-dm:example.org")

    assert reporter.maybe_run(local(10, 18, 5)) == 1
    [notice] = outbox.notices
    assert notice.audience is Audience.CONVERSATION
    assert notice.task.origin_conversation == ROOM


def test_runs_once_per_day_inside_window(reporter, outbox, room_tasks) -> None:
    assert reporter.maybe_run(local(10, 17, 59)) == 0
    assert reporter.maybe_run(local(10, 18, 0)) == 1
    assert reporter.maybe_run(local(10, 18, 30)) == 0
    assert reporter.last_run == local(10, 18).date()
    assert len(outbox.notices) == 1


def test_missed_window_is_skipped(reporter, room_tasks) -> None:
    assert reporter.maybe_run(local(10, 19, 0)) == 0
    assert reporter.last_run is None


def test_private_tasks_grouped_by_author(store, reporter, outbox) -> None:
    _add(store, "Mine", origin_conversation=None, is_private=True)
    _add(store, "Also mine", origin_conversation=None, is_private=True, mentioned_handle="zed")
    _add(store, "Bob's", origin_conversation=None, is_private=True, author_id="@bob:example.org", author_name="bob")

    groups = group_tasks(store.list_tasks())
    assert [len(g.tasks) for g in groups] == [2, 1]

    assert reporter.maybe_run(local(10, 18)) == 2
    assert [n.task.author_name for n in outbox.notices] == ["alice", "bob"]
    assert all(n.audience is Audience.CONVERSATION for n in outbox.notices)
