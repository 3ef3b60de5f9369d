# src/taskwatch/tasks/task_service.py

"""
Task lifecycle and deadline negotiation.

Every operation follows the same path:
  validate -> mutate (under the store lock) -> persist -> submit notices

Validation happens before the first field is touched, so a raised TaskError
never leaves a half-applied change. Notices go to the outbox after the
snapshot is written; delivery problems cannot undo a transition.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from ..core.ports import Affordance, Clock, Outbox
from ..errors import (
    AlreadyTerminal,
    InputPending,
    NoPendingProposal,
    NotAuthor,
    NotFound,
    ProposalPending,
)
from .deadlines import (
    default_deadline,
    format_local,
    parse_custom_schedule,
    parse_deadline,
)
from .delivery import Audience, Notice
from .identity import IdentityRegistry, normalize_handle
from .task_models import (
    Actor,
    Category,
    ConversationRef,
    InputKind,
    PendingDeadlineChange,
    PendingInput,
    Task,
    TaskStatus,
)
from .task_store import TaskStore

logger = logging.getLogger(__name__)

# An unanswered prompt expires after this long: it stops blocking other actors
# and stops capturing its owner's plain messages.
PROMPT_TTL = timedelta(minutes=30)

_AFFORDANCES = {
    "take": ("🏃 Take", "/take {id}"),
    "done": ("✅ Done", "/done {id}"),
    "reject": ("🚫 Reject", "/reject {id}"),
    "delete": ("🗑️ Delete", "/delete {id}"),
    "deadline": ("✏️ Change deadline", "/deadline {id}"),
    "propose": ("🕓 Propose deadline", "/propose {id} DD.MM HH:MM"),
    "remind": ("⏰ Custom reminders", "/remind {id} custom"),
    "confirm": ("👍 Accept", "/confirm {id}"),
    "decline": ("👎 Decline", "/decline {id}"),
}


def task_affordances(task_id: int, *names: str) -> tuple[Affordance, ...]:
    return tuple(
        Affordance(label=_AFFORDANCES[n][0], command=_AFFORDANCES[n][1].format(id=task_id))
        for n in names
    )


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class ActionResult:
    reply: str
    task: Task | None = None


class TaskService:
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

    @property
    def tz(self):
        return self._settings.timezone

    def _fmt(self, value: datetime | None) -> str:
        return format_local(value, self.tz)

    # ---- helpers ----

    def _notify(
        self,
        task: Task,
        text: str,
        audience: Audience,
        *,
        affordances: tuple[Affordance, ...] = (),
        recipient: str | None = None,
        kind: str = "notice",
    ) -> None:
        self._outbox.submit(
            Notice(
                task=task,
                text=text,
                audience=audience,
                affordances=affordances,
                recipient=recipient,
                kind=kind,
            )
        )

    @staticmethod
    def _ensure_not_terminal(task: Task, action: str) -> None:
        if task.status.is_terminal:
            raise AlreadyTerminal(f"Task #{task.id} is already {task.status.value}; cannot {action}.", task.id)

    @staticmethod
    def _ensure_author(task: Task, actor: Actor, action: str) -> None:
        if task.author_id != actor.id:
            raise NotAuthor(f"⛔ Only the author of task #{task.id} can {action}.", task.id)

    def _ensure_prompt_free(self, task: Task, actor: Actor, now: datetime) -> None:
        prompt = task.pending_input
        if prompt is None or prompt.actor_id == actor.id:
            return
        if now - prompt.requested_at >= PROMPT_TTL:
            return
        raise InputPending(f"Task #{task.id} is waiting for someone else's answer; try again later.", task.id)

    @staticmethod
    def _open_prompt(task: Task, kind: InputKind, actor: Actor, now: datetime) -> None:
        """Replace whatever prompt was open; an abandoned reason-less proposal goes with it."""
        prompt = task.pending_input
        if prompt is not None and prompt.kind is InputKind.REASON:
            change = task.pending_change
            if change is not None and not change.is_actionable:
                task.pending_change = None
        task.pending_input = PendingInput(kind=kind, actor_id=actor.id, requested_at=now)

    @staticmethod
    def _close_prompt(task: Task, actor: Actor, kind: InputKind) -> None:
        prompt = task.pending_input
        if prompt is not None and prompt.actor_id == actor.id and prompt.kind is kind:
            task.pending_input = None

    # ---- lifecycle ----

    def create(
        self,
        actor: Actor,
        title: str,
        category: Category,
        *,
        conversation: ConversationRef,
        deadline_text: str | None = None,
        mentioned_handle: str | None = None,
    ) -> ActionResult:
        title = (title or "").strip()
        if not title:
            raise ValueError("Task title is required.")

        now = self._clock()
        if deadline_text:
            deadline = parse_deadline(deadline_text, now=now, tz=self.tz)
        else:
            deadline = default_deadline(now=now, tz=self.tz, at=self._settings.default_deadline_time)

        mentioned = normalize_handle(mentioned_handle) or None
        task = self._store.add(
            title=title,
            category=category,
            status=TaskStatus.NEW,
            author_id=actor.id,
            author_name=actor.handle,
            created_at=now,
            deadline=deadline,
            origin_conversation=None if conversation.is_private else conversation.conversation_id,
            is_private=conversation.is_private,
            mentioned_handle=mentioned,
        )
        logger.info(
            "Task %s created by %s category=%s deadline=%s mentioned=%s",
            task.id,
            actor.handle,
            category.value,
            deadline.isoformat(),
            mentioned,
        )

        lines = [
            f"✅ Task #{task.id} created: \"{task.title}\"",
            f"Category: {category.value} (priority {category.priority})",
            f"Deadline: {self._fmt(deadline)}",
        ]
        if mentioned:
            if self._identities.resolve(mentioned):
                lines.append(f"Assigned to @{mentioned}")
                self._notify(
                    task,
                    (
                        f"📌 You were given task #{task.id} by {task.author_name}:\n\"{task.title}\"\n"
                        f"Category: {category.value}\nDeadline: {self._fmt(deadline)}"
                    ),
                    Audience.MENTIONED,
                    affordances=task_affordances(task.id, "take", "done", "propose"),
                    kind="assignment",
                )
            else:
                lines.append(f"⚠️ @{mentioned} has not started the bot yet; reminders go to this chat.")
        return ActionResult("\n".join(lines), task)

    def claim(self, task_id: int, actor: Actor) -> ActionResult:
        with self._store.mutate(task_id) as task:
            self._ensure_not_terminal(task, "take it")
            previous = task.claimant_name
            task.status = TaskStatus.CLAIMED
            task.claimant_id = actor.id
            task.claimant_name = actor.handle
            snap = copy.deepcopy(task)

        if previous and previous != actor.handle:
            logger.info("Task %s re-claimed: %s -> %s", task_id, previous, actor.handle)
        else:
            logger.info("Task %s claimed by %s", task_id, actor.handle)

        if snap.author_id != actor.id:
            self._notify(
                snap,
                f"🔹 Task #{snap.id} \"{snap.title}\" was taken by {actor.handle}",
                Audience.AUTHOR,
                kind="claimed",
            )
        return ActionResult(f"🔹 Task #{snap.id} taken by {actor.handle}", snap)

    def complete(self, task_id: int, actor: Actor) -> ActionResult:
        with self._store.mutate(task_id) as task:
            self._ensure_not_terminal(task, "complete it")
            task.status = TaskStatus.COMPLETED
            task.completed_at = self._clock()
            task.pending_change = None
            task.pending_input = None
            snap = copy.deepcopy(task)

        logger.info("Task %s completed by %s", task_id, actor.handle)
        if snap.author_id != actor.id:
            self._notify(
                snap,
                f"✅ Task #{snap.id} \"{snap.title}\" was completed by {actor.handle}",
                Audience.AUTHOR,
                kind="completed",
            )
        return ActionResult(f"✅ Task #{snap.id} completed!", snap)

    def reject(self, task_id: int, actor: Actor) -> ActionResult:
        with self._store.mutate(task_id) as task:
            self._ensure_not_terminal(task, "reject it")
            task.status = TaskStatus.REJECTED
            task.rejected_at = self._clock()
            task.pending_change = None
            task.pending_input = None
            snap = copy.deepcopy(task)

        logger.info("Task %s rejected by %s", task_id, actor.handle)
        if snap.author_id != actor.id:
            self._notify(
                snap,
                f"🚫 Task #{snap.id} \"{snap.title}\" was rejected by {actor.handle}",
                Audience.AUTHOR,
                kind="rejected",
            )
        return ActionResult(f"🚫 Task #{snap.id} rejected.", snap)

    def delete(self, task_id: int, actor: Actor) -> ActionResult:
        with self._store.lock:
            task = self._store.get(task_id)
            if task is None:
                raise NotFound(task_id)
            self._ensure_author(task, actor, "delete it")
            removed = self._store.remove(task_id)

        logger.info("Task %s deleted by %s", task_id, actor.handle)
        if removed.claimant_id and removed.claimant_id != actor.id:
            self._notify(
                removed,
                f"🗑️ Task #{removed.id} \"{removed.title}\" was deleted by the author",
                Audience.CLAIMANT,
                kind="deleted",
            )
        return ActionResult(f"🗑️ Task #{removed.id} deleted", removed)

    # ---- deadline: direct change by the author ----

    def request_deadline_change(self, task_id: int, actor: Actor) -> ActionResult:
        now = self._clock()
        with self._store.mutate(task_id) as task:
            self._ensure_author(task, actor, "change the deadline")
            self._ensure_not_terminal(task, "change the deadline")
            self._ensure_prompt_free(task, actor, now)
            self._open_prompt(task, InputKind.NEW_DEADLINE, actor, now)
            snap = copy.deepcopy(task)
        return ActionResult(f"Send the new deadline for task #{snap.id} (DD.MM HH:MM):", snap)

    def change_deadline(self, task_id: int, actor: Actor, text: str) -> ActionResult:
        now = self._clock()
        with self._store.mutate(task_id) as task:
            self._ensure_author(task, actor, "change the deadline")
            self._ensure_not_terminal(task, "change the deadline")
            new_deadline = parse_deadline(text, now=now, tz=self.tz)
            task.deadline = new_deadline
            task.reset_reminders()
            self._close_prompt(task, actor, InputKind.NEW_DEADLINE)
            snap = copy.deepcopy(task)

        logger.info("Task %s deadline set to %s by author", task_id, new_deadline.isoformat())
        if snap.claimant_id and snap.claimant_id != actor.id:
            self._notify(
                snap,
                f"⚡ Deadline of task #{snap.id} \"{snap.title}\" changed to {self._fmt(new_deadline)}",
                Audience.CLAIMANT,
                kind="deadline_changed",
            )
        return ActionResult(f"✅ Deadline updated: {self._fmt(new_deadline)}", snap)

    # ---- deadline: negotiation ----

    def propose_deadline_change(
        self,
        task_id: int,
        actor: Actor,
        text: str,
        reason: str | None = None,
    ) -> ActionResult:
        now = self._clock()
        reason = (reason or "").strip() or None
        with self._store.mutate(task_id) as task:
            self._ensure_not_terminal(task, "change the deadline")
            change = task.pending_change
            if change is not None and self._proposal_blocks(task, change, actor, now):
                raise ProposalPending(
                    f"Task #{task.id} already has a deadline proposal from {change.proposed_by_name}.",
                    task.id,
                )
            self._ensure_prompt_free(task, actor, now)
            proposed = parse_deadline(text, now=now, tz=self.tz)

            if reason is None:
                self._open_prompt(task, InputKind.REASON, actor, now)
            elif task.pending_input is not None and task.pending_input.kind is InputKind.REASON:
                # Belonged to the proposal being replaced.
                task.pending_input = None
            task.pending_change = PendingDeadlineChange(
                proposed_deadline=proposed,
                proposed_by=actor.id,
                proposed_by_name=actor.handle,
                reason=reason,
            )
            snap = copy.deepcopy(task)

        logger.info("Task %s: %s proposes deadline %s", task_id, actor.handle, proposed.isoformat())
        if reason is None:
            return ActionResult(f"Why should task #{snap.id} move to {self._fmt(proposed)}? Send the reason:", snap)
        self._notify_author_of_proposal(snap)
        return ActionResult(f"📨 Proposal for task #{snap.id} sent to the author.", snap)

    @staticmethod
    def _proposal_blocks(task: Task, change: PendingDeadlineChange, actor: Actor, now: datetime) -> bool:
        if change.is_actionable:
            return True
        if change.proposed_by == actor.id:
            return False
        # Reason never arrived: the proposal dies with its prompt.
        prompt = task.pending_input
        return prompt is not None and prompt.kind is InputKind.REASON and now - prompt.requested_at < PROMPT_TTL

    def supply_reason(self, task_id: int, actor: Actor, text: str) -> ActionResult:
        reason = (text or "").strip()
        with self._store.mutate(task_id) as task:
            prompt = task.pending_input
            change = task.pending_change
            if (
                prompt is None
                or prompt.kind is not InputKind.REASON
                or prompt.actor_id != actor.id
                or change is None
                or change.proposed_by != actor.id
            ):
                raise NoPendingProposal(f"No deadline proposal on task #{task.id} is waiting for your reason.", task.id)
            if not reason:
                raise ValueError("The reason must not be empty.")
            change.reason = reason
            task.pending_input = None
            snap = copy.deepcopy(task)

        self._notify_author_of_proposal(snap)
        return ActionResult(f"📨 Proposal for task #{snap.id} sent to the author.", snap)

    def _notify_author_of_proposal(self, task: Task) -> None:
        change = task.pending_change
        if change is None:
            return
        self._notify(
            task,
            (
                f"🕓 {change.proposed_by_name} proposes moving the deadline of task #{task.id} "
                f"\"{task.title}\" from {self._fmt(task.deadline)} to {self._fmt(change.proposed_deadline)}.\n"
                f"Reason: {change.reason}"
            ),
            Audience.AUTHOR,
            affordances=task_affordances(task.id, "confirm", "decline"),
            kind="proposal",
        )

    def _take_actionable_proposal(self, task: Task, actor: Actor, action: str) -> PendingDeadlineChange:
        self._ensure_author(task, actor, action)
        change = task.pending_change
        if change is None or not change.is_actionable:
            raise NoPendingProposal(f"Task #{task.id} has no deadline proposal to {action.split()[0]}.", task.id)
        return change

    def confirm_deadline_change(self, task_id: int, actor: Actor) -> ActionResult:
        with self._store.mutate(task_id) as task:
            change = self._take_actionable_proposal(task, actor, "confirm a deadline proposal")
            task.deadline = change.proposed_deadline
            task.reset_reminders()
            task.pending_change = None
            snap = copy.deepcopy(task)

        logger.info("Task %s: deadline proposal by %s confirmed", task_id, change.proposed_by_name)
        self._notify(
            snap,
            f"👍 Your new deadline for task #{snap.id} \"{snap.title}\" was accepted: {self._fmt(snap.deadline)}",
            Audience.PROPOSER,
            recipient=change.proposed_by_name,
            kind="proposal_confirmed",
        )
        return ActionResult(f"✅ Deadline of task #{snap.id} moved to {self._fmt(snap.deadline)}", snap)

    def reject_deadline_change(self, task_id: int, actor: Actor) -> ActionResult:
        with self._store.mutate(task_id) as task:
            change = self._take_actionable_proposal(task, actor, "decline a deadline proposal")
            task.pending_change = None
            snap = copy.deepcopy(task)

        logger.info("Task %s: deadline proposal by %s declined", task_id, change.proposed_by_name)
        self._notify(
            snap,
            (
                f"👎 Your new deadline for task #{snap.id} \"{snap.title}\" was declined; "
                f"it stays {self._fmt(snap.deadline)}"
            ),
            Audience.PROPOSER,
            recipient=change.proposed_by_name,
            kind="proposal_declined",
        )
        return ActionResult(f"Deadline proposal for task #{snap.id} declined.", snap)

    # ---- reminder mode ----

    def choose_reminder_mode(self, task_id: int, actor: Actor, mode: str) -> ActionResult:
        mode = (mode or "").strip().lower()
        if mode not in ("default", "custom"):
            raise ValueError("Reminder mode must be 'default' or 'custom'.")

        now = self._clock()
        with self._store.mutate(task_id) as task:
            self._ensure_author(task, actor, "choose reminders")
            self._ensure_not_terminal(task, "change reminders")
            if mode == "default":
                task.use_default_schedule = True
                task.custom_reminder_instants = []
                task.fired_custom_reminders.clear()
                self._close_prompt(task, actor, InputKind.CUSTOM_SCHEDULE)
            else:
                self._ensure_prompt_free(task, actor, now)
                self._open_prompt(task, InputKind.CUSTOM_SCHEDULE, actor, now)
            snap = copy.deepcopy(task)

        if mode == "default":
            return ActionResult(f"⏰ Task #{snap.id} uses the default {snap.category.value} reminder schedule.", snap)
        return ActionResult(
            f"⏰ When should I remind about task #{snap.id}? "
            "Send times like '2h, 30m' (before the deadline), 'HH:MM' or 'DD.MM HH:MM'.",
            snap,
        )

    def supply_custom_schedule(self, task_id: int, actor: Actor, text: str) -> ActionResult:
        now = self._clock()
        with self._store.mutate(task_id) as task:
            self._ensure_author(task, actor, "choose reminders")
            self._ensure_not_terminal(task, "change reminders")
            deadline = task.deadline or default_deadline(
                now=now, tz=self.tz, at=self._settings.default_deadline_time
            )
            instants = parse_custom_schedule(text, now=now, deadline=deadline, tz=self.tz)
            task.use_default_schedule = False
            task.custom_reminder_instants = instants
            task.fired_custom_reminders.clear()
            self._close_prompt(task, actor, InputKind.CUSTOM_SCHEDULE)
            snap = copy.deepcopy(task)

        logger.info("Task %s custom reminders: %s", task_id, [i.isoformat() for i in instants])
        when = ", ".join(self._fmt(i) for i in instants)
        return ActionResult(f"⏰ Reminders for task #{snap.id} set: {when}", snap)

    # ---- free text routing ----

    def handle_free_text(self, actor: Actor, text: str) -> ActionResult | None:
        """Feed a plain message to the actor's most recent open prompt, if any."""
        task = self._store.find_pending_input(actor.id, newer_than=self._clock() - PROMPT_TTL)
        if task is None or task.pending_input is None:
            return None

        kind = task.pending_input.kind
        if kind is InputKind.NEW_DEADLINE:
            return self.change_deadline(task.id, actor, text)
        if kind is InputKind.REASON:
            return self.supply_reason(task.id, actor, text)
        return self.supply_custom_schedule(task.id, actor, text)

    # ---- listing ----

    def visible_tasks(self, conversation: ConversationRef, actor: Actor) -> list[Task]:
        """Tasks that belong to this conversation, or to the actor in a private chat."""
        out = []
        for t in self._store.list_tasks():
            if conversation.is_private:
                if actor.id in (t.author_id, t.claimant_id) or (
                    t.mentioned_handle and t.mentioned_handle == normalize_handle(actor.handle)
                ):
                    out.append(t)
            elif t.origin_conversation == conversation.conversation_id:
                out.append(t)
        return out

    def describe(self, task: Task) -> str:
        responsible = task.claimant_name or (f"@{task.mentioned_handle}" if task.mentioned_handle else "unassigned")
        lines = [
            f"#{task.id} - {task.title}",
            f"Status: {task.status.value}",
            f"Responsible: {responsible}",
            f"Deadline: {self._fmt(task.deadline)}",
        ]
        change = task.pending_change
        if change is not None and change.is_actionable:
            lines.append(f"Proposed deadline: {self._fmt(change.proposed_deadline)} ({change.proposed_by_name})")
        return "\n".join(lines)

    def status_summary(self, conversation: ConversationRef, actor: Actor) -> str:
        tasks = self.visible_tasks(conversation, actor)
        if not tasks:
            return "📭 No tasks yet"

        active = [t for t in tasks if not t.status.is_terminal]
        done = [t for t in tasks if t.status is TaskStatus.COMPLETED]
        rejected = [t for t in tasks if t.status is TaskStatus.REJECTED]

        def block(title: str, items: list[Task], with_status: bool = False) -> list[str]:
            lines = [title]
            if not items:
                lines.append("  none")
            for t in items:
                suffix = f" ({t.status.value})" if with_status else ""
                lines.append(f"  #{t.id} - {t.title}{suffix}")
            return lines

        lines = ["📊 Task status:"]
        lines += block("📌 Active:", active, with_status=True)
        lines += block("✅ Completed:", done)
        lines += block("🚫 Rejected:", rejected)
        return "\n".join(lines)
