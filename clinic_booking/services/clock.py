"""Wall-clock arithmetic for a single working day.

Times cross the module boundary as zero-padded ``"HH:MM"`` strings and are
handled internally as minutes since midnight. Every public helper accepts
either form and answers in the form it was given.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:  # pragma: no cover
    from clinic_booking.services.scheduling import DoctorTimings

ClockValue = Union[str, int]

MINUTES_PER_DAY = 24 * 60

_CLOCK_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")


def parse_clock(value: ClockValue) -> int:
    """Return minutes since midnight for ``"H:MM"``/``"HH:MM"`` (or an int)."""

    if isinstance(value, bool):
        raise ValueError(f"invalid_clock:{value!r}")
    if isinstance(value, int):
        minutes = value
    else:
        match = _CLOCK_RE.match(value or "")
        if not match:
            raise ValueError(f"invalid_clock:{value!r}")
        hours, mins = int(match.group(1)), int(match.group(2))
        if hours > 23 or mins > 59:
            raise ValueError(f"invalid_clock:{value!r}")
        minutes = hours * 60 + mins
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"invalid_clock:{value!r}")
    return minutes


def format_clock(minutes: int) -> str:
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValueError(f"clock_out_of_day:{minutes}")
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def _answer(original: ClockValue, minutes: int) -> ClockValue:
    if isinstance(original, str):
        return format_clock(minutes)
    return minutes


def add_minutes(time: ClockValue, minutes: int) -> ClockValue:
    """Add ``minutes`` to a clock value.

    String results past 23:59 raise ``ValueError``; minute integers are
    returned as-is so callers can compare an end time against the day's end.
    """

    return _answer(time, parse_clock(time) + minutes)


def is_in_break(time: ClockValue, timings: "DoctorTimings") -> bool:
    # Half-open: starting exactly at break_end is fine, at break_start is not.
    value = parse_clock(time)
    return timings.break_start_minutes <= value < timings.break_end_minutes


def skip_break_if_needed(time: ClockValue, timings: "DoctorTimings") -> ClockValue:
    if is_in_break(time, timings):
        return _answer(time, timings.break_end_minutes)
    return time


def overlaps_break(start: ClockValue, duration: int, timings: "DoctorTimings") -> bool:
    """True when ``[start, start + duration)`` intersects the break window."""

    begin = parse_clock(start)
    return begin < timings.break_end_minutes and begin + duration > timings.break_start_minutes
