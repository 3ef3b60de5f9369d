# src/taskwatch/tasks/deadlines.py

"""
Date/time parsing for deadlines and custom reminder schedules.

All user-facing times are local to the configured timezone; everything
returned here is timezone-aware.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, time, timedelta, tzinfo

from ..errors import InvalidDeadlineFormat, UnparsableSchedule

DEADLINE_HINT = "Use DD.MM HH:MM (e.g. 25.12 14:30)."

_DEADLINE_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})(?:\.(\d{4}))?\s+(\d{1,2}):(\d{2})$")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_RELATIVE_RE = re.compile(r"^(\d+(?:\.\d+)?)\s*(h|m)?$", re.IGNORECASE)


def parse_deadline(text: str, *, now: datetime, tz: tzinfo) -> datetime:
    """
    Parse "DD.MM HH:MM" (current local year) or "DD.MM.YYYY HH:MM".

    Raises InvalidDeadlineFormat for malformed text and impossible dates (31.02).
    """
    m = _DEADLINE_RE.match((text or "").strip())
    if not m:
        raise InvalidDeadlineFormat(f"Invalid deadline format. {DEADLINE_HINT}")
    day, month, year, hour, minute = m.groups()
    local_year = int(year) if year else now.astimezone(tz).year
    try:
        return datetime(local_year, int(month), int(day), int(hour), int(minute), tzinfo=tz)
    except ValueError:
        raise InvalidDeadlineFormat(f"Invalid date. {DEADLINE_HINT}") from None


def default_deadline(*, now: datetime, tz: tzinfo, at: time) -> datetime:
    """Same local day at the policy time (18:00 unless configured)."""
    local = now.astimezone(tz)
    return datetime.combine(local.date(), at, tzinfo=tz)


def parse_custom_schedule(
    text: str,
    *,
    now: datetime,
    deadline: datetime,
    tz: tzinfo,
) -> list[datetime]:
    """
    Parse a comma/newline separated list of reminder instants.

    Accepted entries:
    - "DD.MM HH:MM" / "DD.MM.YYYY HH:MM" absolute local time
    - "HH:MM" today, local time
    - "2h", "1.5", "90m" before the deadline

    Entries in the past or not before the deadline are dropped. Result is
    sorted and de-duplicated; an empty result raises UnparsableSchedule.
    """
    out: set[datetime] = set()
    for raw in re.split(r"[,;\n]+", text or ""):
        entry = raw.strip()
        if not entry:
            continue
        instant = _parse_schedule_entry(entry, now=now, deadline=deadline, tz=tz)
        if instant is None:
            continue
        if now <= instant < deadline:
            out.add(instant)

    if not out:
        raise UnparsableSchedule()
    return sorted(out)


def _parse_schedule_entry(entry: str, *, now: datetime, deadline: datetime, tz: tzinfo) -> datetime | None:
    m = _RELATIVE_RE.match(entry)
    if m:
        amount = float(m.group(1))
        if amount <= 0:
            return None
        unit = (m.group(2) or "h").lower()
        try:
            delta = timedelta(minutes=amount) if unit == "m" else timedelta(hours=amount)
            return (deadline - delta).replace(second=0, microsecond=0)
        except (OverflowError, ValueError):
            # Further back than datetime can represent.
            return None

    m = _TIME_RE.match(entry)
    if m:
        try:
            at = time(int(m.group(1)), int(m.group(2)))
        except ValueError:
            return None
        return datetime.combine(now.astimezone(tz).date(), at, tzinfo=tz)

    try:
        return parse_deadline(entry, now=now, tz=tz)
    except InvalidDeadlineFormat:
        return None


def instant_key(instant: datetime) -> str:
    """Stable fired-set key for a custom reminder instant."""
    return instant.astimezone(UTC).isoformat()


def format_local(value: datetime | None, tz: tzinfo, fmt: str = "%d.%m, %H:%M") -> str:
    if value is None:
        return "not set"
    return value.astimezone(tz).strftime(fmt)


def humanize_left(delta: timedelta) -> str:
    minutes = max(0, int(delta.total_seconds() // 60))
    hours, minutes = divmod(minutes, 60)
    if hours and minutes:
        return f"{hours} h {minutes} min"
    if hours:
        return f"{hours} h"
    return f"{minutes} min"
