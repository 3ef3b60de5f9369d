# src/taskwatch/tasks/task_store.py

from __future__ import annotations

import contextlib
import copy
import json
import logging
import os
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..errors import NotFound
from .task_models import (
    Category,
    InputKind,
    PendingDeadlineChange,
    PendingInput,
    Task,
    TaskStatus,
)

logger = logging.getLogger(__name__)

_EPOCH = datetime.fromtimestamp(0, UTC)


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _str_to_dt(raw: Any) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw))
    except ValueError:
        logger.warning("Bad timestamp in task snapshot: %r", raw)
        return None


def task_to_record(task: Task) -> dict[str, Any]:
    change = task.pending_change
    prompt = task.pending_input
    return {
        "id": task.id,
        "title": task.title,
        "category": task.category.value,
        "status": task.status.value,
        "author_id": task.author_id,
        "author_name": task.author_name,
        "created_at": _dt_to_str(task.created_at),
        "deadline": _dt_to_str(task.deadline),
        "origin_conversation": task.origin_conversation,
        "is_private": task.is_private,
        "mentioned_handle": task.mentioned_handle,
        "claimant_id": task.claimant_id,
        "claimant_name": task.claimant_name,
        "completed_at": _dt_to_str(task.completed_at),
        "rejected_at": _dt_to_str(task.rejected_at),
        "fired_default_reminders": sorted(task.fired_default_reminders),
        "custom_reminder_instants": [_dt_to_str(i) for i in task.custom_reminder_instants],
        "fired_custom_reminders": sorted(task.fired_custom_reminders),
        "use_default_schedule": task.use_default_schedule,
        "not_taken_reminder_sent": task.not_taken_reminder_sent,
        "pending_change": None
        if change is None
        else {
            "proposed_deadline": _dt_to_str(change.proposed_deadline),
            "proposed_by": change.proposed_by,
            "proposed_by_name": change.proposed_by_name,
            "reason": change.reason,
        },
        "pending_input": None
        if prompt is None
        else {
            "kind": prompt.kind.value,
            "actor_id": prompt.actor_id,
            "requested_at": _dt_to_str(prompt.requested_at),
        },
    }


def record_to_task(rec: dict[str, Any]) -> Task:
    change_rec = rec.get("pending_change")
    change = None
    if isinstance(change_rec, dict) and _str_to_dt(change_rec.get("proposed_deadline")):
        change = PendingDeadlineChange(
            proposed_deadline=_str_to_dt(change_rec["proposed_deadline"]),  # type: ignore[arg-type]
            proposed_by=str(change_rec.get("proposed_by") or ""),
            proposed_by_name=str(change_rec.get("proposed_by_name") or ""),
            reason=change_rec.get("reason"),
        )

    prompt_rec = rec.get("pending_input")
    prompt = None
    if isinstance(prompt_rec, dict):
        try:
            prompt = PendingInput(
                kind=InputKind(prompt_rec.get("kind")),
                actor_id=str(prompt_rec.get("actor_id") or ""),
                requested_at=_str_to_dt(prompt_rec.get("requested_at")) or _EPOCH,
            )
        except ValueError:
            prompt = None

    instants = [_str_to_dt(i) for i in rec.get("custom_reminder_instants") or []]

    return Task(
        id=int(rec["id"]),
        title=str(rec.get("title") or ""),
        category=Category(rec.get("category") or Category.NORMAL.value),
        status=TaskStatus.from_db(rec.get("status")),
        author_id=str(rec.get("author_id") or ""),
        author_name=str(rec.get("author_name") or ""),
        created_at=_str_to_dt(rec.get("created_at")) or _EPOCH,
        deadline=_str_to_dt(rec.get("deadline")),
        origin_conversation=rec.get("origin_conversation"),
        is_private=bool(rec.get("is_private", False)),
        mentioned_handle=rec.get("mentioned_handle"),
        claimant_id=rec.get("claimant_id"),
        claimant_name=rec.get("claimant_name"),
        completed_at=_str_to_dt(rec.get("completed_at")),
        rejected_at=_str_to_dt(rec.get("rejected_at")),
        fired_default_reminders=set(rec.get("fired_default_reminders") or []),
        custom_reminder_instants=[i for i in instants if i is not None],
        fired_custom_reminders=set(rec.get("fired_custom_reminders") or []),
        use_default_schedule=bool(rec.get("use_default_schedule", True)),
        not_taken_reminder_sent=bool(rec.get("not_taken_reminder_sent", False)),
        pending_change=change,
        pending_input=prompt,
    )


@dataclass(slots=True)
class Sweep:
    tasks: list[Task] = field(default_factory=list)
    dirty: bool = False


class TaskStore:
    """
    In-memory task set mirrored to a JSON snapshot file.

    - one RLock guards every read and mutation; the reminder loop, the daily
      report and command handlers all go through it
    - every mutation rewrites the whole snapshot (temp file + os.replace)
    - ids only grow while the process runs; on load next id is max(id) + 1
    """

    def __init__(self, path: str | Path = "tasks.json") -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._tasks: dict[int, Task] = {}
        self._next_id = 1
        self.load()
        logger.info("TaskStore ready path=%s total=%s next_id=%s", self._path, len(self._tasks), self._next_id)

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    # ---- persistence ----

    def load(self) -> None:
        with self._lock:
            self._tasks = {}
            if self._path.exists():
                try:
                    data = json.loads(self._path.read_text("utf-8"))
                    if not isinstance(data, list):
                        raise ValueError("Expected a JSON list of tasks")
                    for rec in data:
                        task = record_to_task(rec)
                        self._tasks[task.id] = task
                except Exception:
                    logger.exception("Failed to load tasks from %s; starting empty.", self._path)
                    self._tasks = {}
            self._next_id = max(self._tasks, default=0) + 1

    def save(self) -> bool:
        """Write the whole snapshot. Returns False (and logs) when the file is unwritable."""
        with self._lock:
            payload = json.dumps(
                [task_to_record(t) for t in self._tasks.values()],
                ensure_ascii=False,
                indent=2,
            )
            tmp = self._path.with_suffix(".tmp")
            try:
                tmp.write_text(payload, "utf-8")
                os.replace(tmp, self._path)
            except OSError:
                logger.exception("Failed to save tasks to %s; in-memory state stays authoritative.", self._path)
                return False
            logger.debug("Saved %d tasks to %s", len(self._tasks), self._path)
            return True

    # ---- public API ----

    def count_tasks(self) -> int:
        with self._lock:
            return len(self._tasks)

    @property
    def next_id(self) -> int:
        return self._next_id

    def add(self, **fields: Any) -> Task:
        with self._lock:
            task = Task(id=self._next_id, **fields)
            self._next_id += 1
            self._tasks[task.id] = task
            self.save()
            logger.debug("Task added id=%s category=%s deadline=%s", task.id, task.category.value, task.deadline)
            return copy.deepcopy(task)

    def get(self, task_id: int) -> Task | None:
        with self._lock:
            task = self._tasks.get(int(task_id))
            return copy.deepcopy(task) if task is not None else None

    def list_tasks(self) -> list[Task]:
        with self._lock:
            return [copy.deepcopy(self._tasks[k]) for k in sorted(self._tasks)]

    @contextlib.contextmanager
    def mutate(self, task_id: int) -> Iterator[Task]:
        """
        Yield the live task under the store lock and persist on clean exit.

        If the body raises, nothing is saved. Callers must validate before
        touching fields so an error never leaves a half-applied change.
        """
        with self._lock:
            task = self._tasks.get(int(task_id))
            if task is None:
                raise NotFound(int(task_id))
            yield task
            self.save()

    @contextlib.contextmanager
    def sweep(self) -> Iterator[Sweep]:
        """
        Yield every live task (id order) under the lock.

        Used by the periodic loops; the snapshot is written only if the caller
        marked the sweep dirty.
        """
        with self._lock:
            batch = Sweep(tasks=[self._tasks[k] for k in sorted(self._tasks)])
            yield batch
            if batch.dirty:
                self.save()

    def remove(self, task_id: int) -> Task:
        with self._lock:
            task = self._tasks.pop(int(task_id), None)
            if task is None:
                raise NotFound(int(task_id))
            self.save()
            return task

    def find_pending_input(self, actor_id: str, *, newer_than: datetime | None = None) -> Task | None:
        """Most recent task holding an open prompt for this actor (only prompts opened after newer_than)."""
        with self._lock:
            waiting = [
                t
                for t in self._tasks.values()
                if t.pending_input is not None
                and t.pending_input.actor_id == actor_id
                and (newer_than is None or t.pending_input.requested_at > newer_than)
            ]
            if not waiting:
                return None
            latest = max(waiting, key=lambda t: t.pending_input.requested_at)  # type: ignore[union-attr]
            return copy.deepcopy(latest)
