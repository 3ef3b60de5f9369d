# src/taskwatch/errors.py

"""Task operation errors.

Every error carries a message meant for the actor who triggered it; command
handlers turn it into the reply text. None of them leaves a partial state change.
"""

from __future__ import annotations


class TaskError(Exception):
    """Base exception for all task operation failures."""

    def __init__(self, message: str, task_id: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.task_id = task_id


class InvalidDeadlineFormat(TaskError):
    """Malformed or impossible date/time."""


class AlreadyTerminal(TaskError):
    """Action attempted on a completed or rejected task."""


class NotAuthor(TaskError):
    """Only the task author may do this."""


class NotFound(TaskError):
    """Referenced task id does not exist."""

    def __init__(self, task_id: int) -> None:
        super().__init__(f"Task #{task_id} not found.", task_id)


class NoPendingProposal(TaskError):
    """Confirm/decline with no actionable deadline proposal."""


class ProposalPending(TaskError):
    """A deadline proposal is already open for the task."""


class InputPending(TaskError):
    """Another actor already has an open prompt on the task."""


class UnparsableSchedule(TaskError):
    """Custom reminder text yielded no usable instants."""

    FORMAT_HINT = (
        "Use comma separated entries: 'DD.MM HH:MM', 'HH:MM' (today) "
        "or '<hours>h' before the deadline, e.g. '2h, 0.5h, 25.12 09:00'."
    )

    def __init__(self, task_id: int | None = None) -> None:
        super().__init__(f"Could not read any reminder time. {self.FORMAT_HINT}", task_id)
