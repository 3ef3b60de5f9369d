# src/taskwatch/cli/commands.py

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from ..core.state import AppState
from ..core.transport import with_affordances
from ..errors import TaskError
from ..tasks.intents import TaskIntent, parse_task_message
from ..tasks.task_models import Actor, ConversationRef
from ..tasks.task_service import ActionResult, task_affordances

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MessageContext:
    """
    Who sent a message and from where.

    address is the sender's private delivery address when the message came
    through a private channel; /start registers it.
    """

    actor: Actor
    conversation: ConversationRef
    address: str | None = None


CommandHandler = Callable[[AppState, list[str], MessageContext], str]


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /take, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(self, state: AppState, line: str, ctx: MessageContext) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."
        return handler(state, args, ctx)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        lines.append("")
        lines.append("Create a task by starting a message with $ (urgent), # (normal) or ! (optional):")
        lines.append("  $ Fix the login page @bob 25.12 14:30")
        return "\n".join(lines)


registry = CommandRegistry()


def _task_id(args: list[str], usage: str) -> int:
    if not args:
        raise ValueError(f"Usage: {usage}")
    try:
        return int(args[0].lstrip("#"))
    except ValueError:
        raise ValueError(f"Usage: {usage}") from None


def _reply(result: ActionResult, *names: str) -> str:
    if result.task is None or not names:
        return result.reply
    return with_affordances(result.reply, task_affordances(result.task.id, *names))


def cmd_help(state: AppState, args: list[str], ctx: MessageContext) -> str:
    return registry.build_help()


def cmd_start(state: AppState, args: list[str], ctx: MessageContext) -> str:
    if not ctx.address:
        return "Send /start to me in a private chat to receive personal notifications."
    state.identities.register(ctx.actor.handle, ctx.address)
    return f"👋 Hi @{ctx.actor.handle}! Personal task notifications will come to this chat."


def cmd_take(state: AppState, args: list[str], ctx: MessageContext) -> str:
    task_id = _task_id(args, "/take N")
    return _reply(state.service.claim(task_id, ctx.actor), "done", "propose")


def cmd_done(state: AppState, args: list[str], ctx: MessageContext) -> str:
    task_id = _task_id(args, "/done N")
    return state.service.complete(task_id, ctx.actor).reply


def cmd_reject(state: AppState, args: list[str], ctx: MessageContext) -> str:
    task_id = _task_id(args, "/reject N")
    return state.service.reject(task_id, ctx.actor).reply


def cmd_delete(state: AppState, args: list[str], ctx: MessageContext) -> str:
    task_id = _task_id(args, "/delete N")
    return state.service.delete(task_id, ctx.actor).reply


def cmd_tasks(state: AppState, args: list[str], ctx: MessageContext) -> str:
    service = state.service
    active = [t for t in service.visible_tasks(ctx.conversation, ctx.actor) if not t.status.is_terminal]
    if not active:
        return "📭 No active tasks"
    blocks = ["📋 Active tasks:"]
    for t in active:
        names = ("done",) if t.claimant_id else ("take", "done")
        blocks.append(with_affordances(service.describe(t), task_affordances(t.id, *names)))
    return "\n\n".join(blocks)


def cmd_tasks_status(state: AppState, args: list[str], ctx: MessageContext) -> str:
    return state.service.status_summary(ctx.conversation, ctx.actor)


def cmd_deadline(state: AppState, args: list[str], ctx: MessageContext) -> str:
    """
    /deadline N               -> ask for the new deadline (next message)
    /deadline N DD.MM HH:MM   -> set it right away
    """
    task_id = _task_id(args, "/deadline N [DD.MM HH:MM]")
    if len(args) == 1:
        return state.service.request_deadline_change(task_id, ctx.actor).reply
    return state.service.change_deadline(task_id, ctx.actor, " ".join(args[1:3])).reply


def cmd_propose(state: AppState, args: list[str], ctx: MessageContext) -> str:
    """
    /propose N DD.MM HH:MM [reason]
    Without a reason, the next message from the proposer is taken as the reason.
    """
    usage = "/propose N DD.MM HH:MM [reason]"
    task_id = _task_id(args, usage)
    if len(args) < 3:
        raise ValueError(f"Usage: {usage}")
    reason = " ".join(args[3:]) or None
    return state.service.propose_deadline_change(task_id, ctx.actor, " ".join(args[1:3]), reason).reply


def cmd_confirm(state: AppState, args: list[str], ctx: MessageContext) -> str:
    task_id = _task_id(args, "/confirm N")
    return state.service.confirm_deadline_change(task_id, ctx.actor).reply


def cmd_decline(state: AppState, args: list[str], ctx: MessageContext) -> str:
    task_id = _task_id(args, "/decline N")
    return state.service.reject_deadline_change(task_id, ctx.actor).reply


def cmd_remind(state: AppState, args: list[str], ctx: MessageContext) -> str:
    usage = "/remind N default|custom"
    task_id = _task_id(args, usage)
    if len(args) < 2:
        raise ValueError(f"Usage: {usage}")
    return state.service.choose_reminder_mode(task_id, ctx.actor, args[1]).reply


def create_from_intent(state: AppState, intent: TaskIntent, ctx: MessageContext) -> str:
    result = state.service.create(
        ctx.actor,
        intent.title,
        intent.category,
        conversation=ctx.conversation,
        deadline_text=intent.deadline_text,
        mentioned_handle=intent.mentioned_handle,
    )
    return _reply(result, "take", "done", "deadline", "remind", "delete")


def dispatch_message(state: AppState, text: str, ctx: MessageContext) -> str | None:
    """
    Entry point for every inbound message from any connector.

    Slash commands go to the registry, prefixed messages create tasks, anything
    else answers the sender's open prompt (if there is one). Returns the reply
    for the sender's conversation, or None when there is nothing to say.
    """
    text = (text or "").strip()
    if not text:
        return None

    try:
        with state.lock:
            if text.startswith("/"):
                return registry.handle(state, text, ctx)

            intent = parse_task_message(text)
            if intent is not None:
                return create_from_intent(state, intent, ctx)

            result = state.service.handle_free_text(ctx.actor, text)
            return result.reply if result is not None else None
    except TaskError as e:
        logger.debug("Task operation refused for %s: %s", ctx.actor.handle, e.message)
        return e.message
    except ValueError as e:
        return str(e)
    except Exception:
        logger.exception("Message handler crashed.")
        return "Internal error while handling the message."


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("start", cmd_start, help_text="Register this private chat for personal notifications.")
registry.register("take", cmd_take, help_text="Take a task: /take N.")
registry.register("done", cmd_done, help_text="Mark a task completed: /done N.")
registry.register("reject", cmd_reject, help_text="Reject a task: /reject N.")
registry.register("delete", cmd_delete, help_text="Delete a task (author only): /delete N.")
registry.register("tasks", cmd_tasks, help_text="List active tasks.")
registry.register("tasks_status", cmd_tasks_status, help_text="Active, completed and rejected tasks.")
registry.register(
    "deadline", cmd_deadline, help_text="Change a deadline (author only): /deadline N [DD.MM HH:MM]."
)
registry.register(
    "propose", cmd_propose, help_text="Propose a new deadline: /propose N DD.MM HH:MM [reason]."
)
registry.register("confirm", cmd_confirm, help_text="Accept a deadline proposal (author): /confirm N.")
registry.register("decline", cmd_decline, help_text="Decline a deadline proposal (author): /decline N.")
registry.register(
    "remind", cmd_remind, help_text="Reminder mode (author): /remind N default | /remind N custom."
)
