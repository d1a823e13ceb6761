import math
from datetime import time
from typing import List, Optional

DEADLINE_STEP_MINUTES = 15
LAST_MINUTE_OF_DAY = 23 * 60 + 59


def compute_default_deadlines(interval_count: int, start_hour: int, end_hour: int) -> List[time]:
    """Spread one deadline per interval evenly across the active window.

    Each deadline is rounded to the nearest quarter hour (ties round up) and
    the hour is clamped to 23. Adjacent entries may be equal after rounding.
    """
    if interval_count <= 0:
        return []

    total_minutes = (end_hour - start_hour) * 60
    interval = total_minutes / interval_count

    deadlines = []
    for i in range(1, interval_count + 1):
        raw_minutes = start_hour * 60 + math.floor(interval * i + 0.5)
        rounded = ((raw_minutes + 7) // DEADLINE_STEP_MINUTES) * DEADLINE_STEP_MINUTES
        hour = min(rounded // 60, 23)
        minute = rounded % 60
        deadlines.append(time(hour, minute))
    return deadlines


def parse_deadlines(stored: Optional[str]) -> List[time]:
    """Parse a comma-joined list of HH:MM values, skipping unreadable entries"""
    if not stored:
        return []

    deadlines = []
    for part in stored.split(','):
        try:
            deadlines.append(time.fromisoformat(part.strip()))
        except ValueError:
            print(f"⚠️ Ignoring unreadable deadline '{part}'")
    return deadlines


def format_deadlines(deadlines: List[time]) -> str:
    return ','.join(d.strftime('%H:%M') for d in deadlines)


def resolve_deadlines(stored: Optional[str], interval_count: int, start_hour: int, end_hour: int) -> List[time]:
    """Return the stored deadlines if they match the goal, else the computed default.

    A stored list whose length differs from the interval count is discarded as
    a whole, never partially reused.
    """
    if stored is not None:
        parsed = parse_deadlines(stored)
        if len(parsed) == interval_count:
            return parsed
        print(f"⚠️ Stored deadlines ({len(parsed)}) do not match goal ({interval_count}), recomputing")
    return compute_default_deadlines(interval_count, start_hour, end_hour)


def _to_minutes(t: time) -> int:
    return t.hour * 60 + t.minute


def _from_minutes(minutes: int) -> time:
    minutes = max(0, min(LAST_MINUTE_OF_DAY, minutes))
    return time(minutes // 60, minutes % 60)


def set_deadline(deadlines: List[time], index: int, new_time: time) -> List[time]:
    """Replace one deadline and shift its neighbours to keep the list ordered.

    Later entries that are not strictly after their predecessor are pushed to
    predecessor + 15 minutes; earlier entries are pulled back the same way.
    Out-of-range indices leave the list unchanged.
    """
    updated = list(deadlines)
    if not 0 <= index < len(updated):
        return updated

    updated[index] = new_time

    for i in range(index + 1, len(updated)):
        if _to_minutes(updated[i]) <= _to_minutes(updated[i - 1]):
            updated[i] = _from_minutes(_to_minutes(updated[i - 1]) + DEADLINE_STEP_MINUTES)

    for i in range(index - 1, -1, -1):
        if _to_minutes(updated[i]) >= _to_minutes(updated[i + 1]):
            updated[i] = _from_minutes(_to_minutes(updated[i + 1]) - DEADLINE_STEP_MINUTES)

    return updated
