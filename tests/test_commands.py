# tests/test_commands.py

from __future__ import annotations

from taskwatch.cli.commands import CommandRegistry, MessageContext, dispatch_message, registry
from taskwatch.tasks.task_models import ConversationRef, TaskStatus

from .fakes import ALICE, BOB, local

ROOM = ConversationRef("!room:example.org")


def _in_room(actor) -> MessageContext:
    return MessageContext(actor=actor, conversation=ROOM)


def _in_dm(actor, address: str) -> MessageContext:
    return MessageContext(actor=actor, conversation=ConversationRef(address, is_private=True), address=address)


def test_command_registry_routes_with_args(state) -> None:
    reg = CommandRegistry()
    seen = []

    def handler(state, args, ctx):
        seen.append((args, ctx.actor.handle))
        return "ok"

    reg.register("a", handler, "a", aliases=["alpha"])

    assert reg.handle(state, "/a x y", _in_room(ALICE)) == "ok"
    assert reg.handle(state, "/ALPHA", _in_room(BOB)) == "ok"
    assert seen == [(["x", "y"], "alice"), ([], "bob")]


def test_command_registry_unknown_and_non_command(state) -> None:
    reg = CommandRegistry()
    assert reg.handle(state, "hello", _in_room(ALICE)) is None
    assert "Unknown command" in (reg.handle(state, "/nope", _in_room(ALICE)) or "")
    assert "Empty command" in (reg.handle(state, "/", _in_room(ALICE)) or "")


def test_help_lists_every_command(state) -> None:
    text = dispatch_message(state, "/help", _in_room(ALICE))
    for name in ("start", "take", "done", "reject", "delete", "tasks", "tasks_status",
                 "deadline", "propose", "confirm", "decline", "remind"):
        assert f"/{name} - " in text


def test_create_claim_complete_flow(state) -> None:
    reply = dispatch_message(state, "$ Fix the login page @bob 25.12 14:30", _in_room(ALICE))

    assert "Task #1 created" in reply
    assert "/take 1" in reply
    task = state.store.get(1)
    assert task.title == "Fix the login page"
    assert task.mentioned_handle == "bob"
    assert task.deadline == local(25, 14, 30, month=12)

    assert "taken by bob" in dispatch_message(state, "/take 1", _in_room(BOB))
    assert "completed" in dispatch_message(state, "/done 1", _in_room(BOB))
    assert state.store.get(1).status is TaskStatus.COMPLETED


def test_errors_become_replies(state) -> None:
    dispatch_message(state, "# Write notes", _in_room(ALICE))

    assert dispatch_message(state, "/take", _in_room(BOB)) == "Usage: /take N"
    assert dispatch_message(state, "/take abc", _in_room(BOB)) == "Usage: /take N"
    assert dispatch_message(state, "/take 99", _in_room(BOB)) == "Task #99 not found."
    assert "Only the author" in dispatch_message(state, "/delete 1", _in_room(BOB))
    assert "Invalid deadline format" in dispatch_message(state, "/deadline 1 tomorrow noon", _in_room(ALICE))

    dispatch_message(state, "/reject 1", _in_room(BOB))
    assert "already rejected" in dispatch_message(state, "/take 1", _in_room(BOB))


def test_unexpected_errors_are_contained(state, monkeypatch) -> None:
    def boom(*args, **kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(state.service, "status_summary", boom)
    assert dispatch_message(state, "/tasks_status", _in_room(ALICE)) == "Internal error while handling the message."


def test_deadline_command_both_forms(state) -> None:
    dispatch_message(state, "# Write notes", _in_room(ALICE))

    assert "Deadline updated" in dispatch_message(state, "/deadline 1 11.03 10:00", _in_room(ALICE))
    assert state.store.get(1).deadline == local(11, 10)

    assert "Send the new deadline" in dispatch_message(state, "/deadline 1", _in_room(ALICE))
    assert "Deadline updated" in dispatch_message(state, "12.03 10:00", _in_room(ALICE))
    assert state.store.get(1).deadline == local(12, 10)


def test_proposal_flow_through_commands(state) -> None:
    dispatch_message(state, "# Write notes", _in_room(ALICE))
    dispatch_message(state, "/take 1", _in_room(BOB))

    assert "Send the reason" in dispatch_message(state, "/propose 1 11.03 12:00", _in_room(BOB))
    assert "sent to the author" in dispatch_message(state, "blocked by review", _in_room(BOB))
    assert "moved to 11.03, 12:00" in dispatch_message(state, "/confirm 1", _in_room(ALICE))
    assert "no deadline proposal" in dispatch_message(state, "/decline 1", _in_room(ALICE))


def test_propose_with_inline_reason(state) -> None:
    dispatch_message(state, "# Write notes", _in_room(ALICE))
    reply = dispatch_message(state, "/propose 1 11.03 12:00 waiting for the API", _in_room(BOB))
    assert "sent to the author" in reply
    assert state.store.get(1).pending_change.reason == "waiting for the API"
    assert dispatch_message(state, "/propose 1", _in_room(BOB)).startswith("Usage:")


def test_remind_custom_then_schedule(state) -> None:
    dispatch_message(state, "# Write notes", _in_room(ALICE))

    assert "When should I remind" in dispatch_message(state, "/remind 1 custom", _in_room(ALICE))
    assert "Reminders for task #1 set" in dispatch_message(state, "2h, 17:30", _in_room(ALICE))
    assert state.store.get(1).custom_reminder_instants == [local(10, 16), local(10, 17, 30)]
    assert "default" in dispatch_message(state, "/remind 1 default", _in_room(ALICE))


def test_out_of_range_schedule_gets_format_hint(state) -> None:
    dispatch_message(state, "# Write notes", _in_room(ALICE))
    dispatch_message(state, "/remind 1 custom", _in_room(ALICE))

    reply = dispatch_message(state, "99999999999h", _in_room(ALICE))
    assert reply.startswith("Could not read any reminder time.")


def test_start_registers_private_address(state) -> None:
    assert "private chat" in dispatch_message(state, "/start", _in_room(BOB))
    assert state.identities.resolve("bob") is None

    reply = dispatch_message(state, "/start", _in_dm(BOB, "!bob-dm:example.org"))
    assert "@bob" in reply
    assert state.identities.resolve("bob") == "!bob-dm:example.org"


def test_listing_commands(state) -> None:
    assert dispatch_message(state, "/tasks", _in_room(ALICE)) == "📭 No active tasks"

    dispatch_message(state, "# Write notes", _in_room(ALICE))
    dispatch_message(state, "! Tidy the wiki", _in_room(ALICE))
    dispatch_message(state, "/done 2", _in_room(BOB))

    listing = dispatch_message(state, "/tasks", _in_room(BOB))
    assert "#1 - Write notes" in listing
    assert "Tidy the wiki" not in listing

    status = dispatch_message(state, "/tasks_status", _in_room(BOB))
    assert "#2 - Tidy the wiki" in status.split("✅ Completed:")[1]


def test_plain_chatter_gets_no_reply(state) -> None:
    assert dispatch_message(state, "good morning team", _in_room(ALICE)) is None
    assert dispatch_message(state, "   ", _in_room(ALICE)) is None


def test_registry_is_populated() -> None:
    assert registry.build_help().startswith("Available commands:")
