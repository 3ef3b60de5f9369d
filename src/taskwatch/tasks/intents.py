# src/taskwatch/tasks/intents.py

"""
Inbound message parsing for task creation.

  $ Fix prod login @bob 25.12 14:30   -> urgent, assigned to bob, explicit deadline
  # Write release notes               -> normal, default deadline
  ! Tidy the wiki @carol              -> optional, assigned to carol

The category prefix must be the first character. A trailing date-time is the
deadline; the first @handle is the mentioned party; every @handle is removed
from the title.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .task_models import Category

_PREFIX_RE = re.compile(r"^\s*([$#!])\s*(.*)$", re.DOTALL)
_TRAILING_DEADLINE_RE = re.compile(r"\s+(\d{1,2}\.\d{1,2}(?:\.\d{4})?\s+\d{1,2}:\d{2})\s*$")
_MENTION_RE = re.compile(r"@([\w.\-]+)")
_SPACES_RE = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class TaskIntent:
    category: Category
    title: str
    deadline_text: str | None = None
    mentioned_handle: str | None = None


def parse_task_message(text: str) -> TaskIntent | None:
    """Return a creation intent, or None when the message is not a task."""
    m = _PREFIX_RE.match(text or "")
    if not m:
        return None
    category = Category.from_prefix(m.group(1))
    if category is None:
        return None

    body = " " + m.group(2).strip()
    deadline_text = None
    dm = _TRAILING_DEADLINE_RE.search(body)
    if dm:
        deadline_text = _SPACES_RE.sub(" ", dm.group(1))
        body = body[: dm.start()]

    mention = _MENTION_RE.search(body)
    mentioned = mention.group(1) if mention else None

    title = _SPACES_RE.sub(" ", _MENTION_RE.sub("", body)).strip()
    if not title:
        return None
    return TaskIntent(category=category, title=title, deadline_text=deadline_text, mentioned_handle=mentioned)
