"""
Time-of-day arithmetic for booth slots.

Times travel as zero-padded ``HH:MM`` strings. Anything coming from storage or
clients (``9:00``, ``09:00:00``) is normalized to that five-character form
before it is compared, otherwise string comparison silently lies.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

MINUTES_PER_DAY = 24 * 60

TimeLike = str | int


def to_utc(dt: datetime) -> datetime:
    """Ensure a datetime is UTC-aware, handling both aware and naive inputs."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_time(value: str) -> str:
    """Return ``value`` as ``HH:MM``. Raises ValueError on garbage."""
    parts = str(value).strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM") from None
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError(f"Invalid time {value!r}, out of range")
    return f"{hours:02d}:{minutes:02d}"


def to_minutes(value: TimeLike) -> int:
    if isinstance(value, int):
        return value
    hh, mm = normalize_time(value).split(":")
    return int(hh) * 60 + int(mm)


def minutes_to_time(total: int) -> str:
    total %= MINUTES_PER_DAY
    return f"{total // 60:02d}:{total % 60:02d}"


def overlaps(a_start: TimeLike, a_end: TimeLike, b_start: TimeLike, b_end: TimeLike) -> bool:
    """Half-open interval intersection: ``[a_start, a_end)`` vs ``[b_start, b_end)``."""
    return to_minutes(a_start) < to_minutes(b_end) and to_minutes(a_end) > to_minutes(
        b_start
    )


def duration_minutes(start: str, end: str) -> int:
    """Length of a session. ``end <= start`` means the session crosses midnight."""
    s, e = to_minutes(start), to_minutes(end)
    if e <= s:
        e += MINUTES_PER_DAY
    return e - s


def normalized_interval(start: str, end: str) -> tuple[int, int]:
    s = to_minutes(start)
    return s, s + duration_minutes(start, end)


def absolute_interval(day: date, start: str, end: str) -> tuple[int, int]:
    """Interval in minutes since the epoch day, so neighbouring dates compare."""
    base = day.toordinal() * MINUTES_PER_DAY
    s, e = normalized_interval(start, end)
    return base + s, base + e


def within_operating_hours(
    slot_start: str, slot_end: str, open_time: str, close_time: str
) -> bool:
    """True if the slot fits the operating window, overnight windows included."""
    o_start, o_end = normalized_interval(open_time, close_time)
    s_start, s_end = normalized_interval(slot_start, slot_end)
    if s_start >= o_start and s_end <= o_end:
        return True
    # after-midnight slot of an overnight window, e.g. 01:00 inside 18:00-02:00
    s_start += MINUTES_PER_DAY
    s_end += MINUTES_PER_DAY
    return s_start >= o_start and s_end <= o_end
