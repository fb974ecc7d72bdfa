"""
Task Assistant — Time Expression Resolver.

Turns the time phrases people type into chat ("tomorrow 6pm", "at 17:30",
"in 2 hours", "friday") into absolute, timezone-aware instants, and parses
the short duration tokens used by /snooze ("2h", "30m", "1h30m").

No I/O: this module only transforms data. Callers pass `now` explicitly,
already converted to the reference timezone.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

logger = logging.getLogger(__name__)

END_OF_DAY = time(23, 59)
TONIGHT_DEFAULT = time(21, 0)

_WEEKDAYS = (
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
)

_DAY_WORD_RE = re.compile(r"\b(today|tonight|tomorrow|tmrw|tmr)\b", re.IGNORECASE)
_WEEKDAY_RE = re.compile(
    r"\b(?:on\s+)?(?:next\s+)?(" + "|".join(_WEEKDAYS) + r")\b", re.IGNORECASE,
)

# 5pm, 5 pm, 5:30pm, 5:30 p.m.
_CLOCK_12H_RE = re.compile(
    r"\b(?:at\s+)?(\d{1,2})(?::(\d{2}))?\s*([ap])\.?m\.?(?![a-z])", re.IGNORECASE,
)
# 17:30, at 9:05 (but not the "5:30" inside "5:30 pm")
_CLOCK_24H_RE = re.compile(
    r"\b(?:at\s+)?(\d{1,2}):(\d{2})\b(?!\s*[ap]\.?m(?![a-z]))", re.IGNORECASE,
)
# at 5
_AT_HOUR_RE = re.compile(
    r"\bat\s+(\d{1,2})(?![\d:])(?!\s*[ap]\.?m(?![a-z]))", re.IGNORECASE,
)
# "tomorrow 5" / "tonight at 9": a bare hour right after a day word
_HOUR_AFTER_DAY_RE = re.compile(
    r"\s+(?:at\s+)?(\d{1,2})(?![\d:])(?!\s*[ap]\.?m(?![a-z]))", re.IGNORECASE,
)

_OFFSET_LONG_RE = re.compile(
    r"\bin\s+(\d+|an?|one)\s*"
    r"(minutes?|mins?|m|hours?|hrs?|hr|h|days?|d|weeks?|wks?|w)\b",
    re.IGNORECASE,
)
_OFFSET_COMPACT_RE = re.compile(r"\bin\s+(\d+[dhm](?:\d+[dhm])+)\b", re.IGNORECASE)
_OFFSET_HALF_HOUR_RE = re.compile(r"\bin\s+half\s+an?\s+hour\b", re.IGNORECASE)

_DURATION_RE = re.compile(r"^(?:(\d+)d)?(?:(\d+)h)?(?:(\d+)m)?$", re.IGNORECASE)

_UNIT_SECONDS = {
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 7 * 86400,
}


@dataclass(frozen=True)
class TimeMatch:
    """A resolved due instant plus where in the text it was found."""

    due: datetime
    spans: tuple[tuple[int, int], ...]

    def strip_from(self, text: str) -> str:
        """Return `text` with the matched phrase(s) removed."""
        out = text
        for start, end in sorted(self.spans, reverse=True):
            out = out[:start] + " " + out[end:]
        return out


@dataclass(frozen=True)
class _Clock:
    span: tuple[int, int]
    hour: int
    minute: int
    has_meridiem: bool


@dataclass(frozen=True)
class _Day:
    span: tuple[int, int]
    day: date
    word: str


@dataclass(frozen=True)
class _Offset:
    span: tuple[int, int]
    delta: timedelta


class _InvalidClock(ValueError):
    """A clock-looking token with out-of-range hour or minute."""


def end_of_day(now: datetime) -> datetime:
    """23:59 on `now`'s local calendar day."""
    return datetime.combine(now.date(), END_OF_DAY, tzinfo=now.tzinfo)


def parse_duration(token: str) -> timedelta | None:
    """Parse a compact duration token: "2h", "30m", "1d", "1h30m", "90m".

    Returns None for anything else, including zero durations.
    """
    if not token:
        return None
    match = _DURATION_RE.match(token.strip())
    if match is None or not any(match.groups()):
        return None
    days, hours, minutes = (int(g) if g else 0 for g in match.groups())
    try:
        delta = timedelta(days=days, hours=hours, minutes=minutes)
    except OverflowError:
        return None
    if delta <= timedelta(0):
        return None
    return delta


def _amount(raw: str) -> int:
    raw = raw.lower()
    if raw in ("a", "an", "one"):
        return 1
    return int(raw)


def _overlaps(span: tuple[int, int], others: list[tuple[int, int]]) -> bool:
    return any(span[0] < o[1] and o[0] < span[1] for o in others)


def _find_offsets(text: str) -> list[_Offset]:
    offsets: list[_Offset] = []
    for m in _OFFSET_HALF_HOUR_RE.finditer(text):
        offsets.append(_Offset(m.span(), timedelta(minutes=30)))
    for m in _OFFSET_COMPACT_RE.finditer(text):
        delta = parse_duration(m.group(1))
        if delta is not None:
            offsets.append(_Offset(m.span(), delta))
    taken = [o.span for o in offsets]
    for m in _OFFSET_LONG_RE.finditer(text):
        if _overlaps(m.span(), taken):
            continue
        unit = m.group(2).lower()[0]
        seconds = _amount(m.group(1)) * _UNIT_SECONDS[unit]
        try:
            delta = timedelta(seconds=seconds)
        except OverflowError:
            logger.debug("Offset out of range in %r", text)
            continue
        offsets.append(_Offset(m.span(), delta))
    return offsets


def _find_days(text: str, today: date) -> list[_Day]:
    days: list[_Day] = []
    for m in _DAY_WORD_RE.finditer(text):
        word = m.group(1).lower()
        if word in ("tomorrow", "tmrw", "tmr"):
            days.append(_Day(m.span(), today + timedelta(days=1), "tomorrow"))
        else:
            days.append(_Day(m.span(), today, word))
    for m in _WEEKDAY_RE.finditer(text):
        target = _WEEKDAYS.index(m.group(1).lower())
        ahead = (target - today.weekday()) % 7 or 7
        days.append(_Day(m.span(), today + timedelta(days=ahead), m.group(1).lower()))
    return days


def _check_clock(hour: int, minute: int, twelve_hour: bool) -> None:
    if twelve_hour and not 1 <= hour <= 12:
        raise _InvalidClock(f"hour {hour} out of range for a 12-hour clock")
    if not twelve_hour and not 0 <= hour <= 23:
        raise _InvalidClock(f"hour {hour} out of range")
    if not 0 <= minute <= 59:
        raise _InvalidClock(f"minute {minute} out of range")


def _find_clocks(text: str, days: list[_Day]) -> list[_Clock]:
    clocks: list[_Clock] = []
    for m in _CLOCK_12H_RE.finditer(text):
        hour, minute = int(m.group(1)), int(m.group(2) or 0)
        _check_clock(hour, minute, twelve_hour=True)
        hour %= 12
        if m.group(3).lower() == "p":
            hour += 12
        clocks.append(_Clock(m.span(), hour, minute, has_meridiem=True))

    for m in _CLOCK_24H_RE.finditer(text):
        if _overlaps(m.span(), [c.span for c in clocks]):
            continue
        hour, minute = int(m.group(1)), int(m.group(2))
        _check_clock(hour, minute, twelve_hour=False)
        clocks.append(_Clock(m.span(), hour, minute, has_meridiem=False))

    bare: list[tuple[tuple[int, int], int]] = []
    for d in days:
        m = _HOUR_AFTER_DAY_RE.match(text, d.span[1])
        if m:
            bare.append((m.span(), int(m.group(1))))
    for m in _AT_HOUR_RE.finditer(text):
        bare.append((m.span(), int(m.group(1))))
    for span, hour in bare:
        if _overlaps(span, [c.span for c in clocks]):
            continue
        _check_clock(hour, 0, twelve_hour=False)
        clocks.append(_Clock(span, hour, 0, has_meridiem=False))
    return clocks


def resolve_time_expression(text: str, now: datetime) -> TimeMatch | None:
    """Find a single time expression in `text` and resolve it against `now`.

    Returns None when nothing is found, when a clock is out of range, or when
    the phrases contradict each other (two clocks, two days, or an "in N ..."
    offset mixed with a day or clock).
    """
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    if not text:
        return None

    try:
        offsets = _find_offsets(text)
        days = _find_days(text, now.date())
        clocks = _find_clocks(text, days)
    except _InvalidClock as exc:
        logger.debug("Rejected time expression in %r: %s", text, exc)
        return None

    if not (offsets or days or clocks):
        return None
    if len(offsets) > 1 or len(days) > 1 or len(clocks) > 1:
        logger.debug("Ambiguous time expression in %r", text)
        return None
    if offsets and (days or clocks):
        logger.debug("Offset mixed with day/clock in %r", text)
        return None

    if offsets:
        offset = offsets[0]
        try:
            due = now + offset.delta
        except OverflowError:
            logger.debug("Offset out of range in %r", text)
            return None
        return TimeMatch(due=due, spans=(offset.span,))

    day = days[0] if days else None
    clock = clocks[0] if clocks else None
    spans = tuple(x.span for x in (day, clock) if x is not None)

    if day is None:
        candidate = datetime.combine(
            now.date(), time(clock.hour, clock.minute), tzinfo=now.tzinfo,
        )
        if candidate <= now:
            candidate = datetime.combine(
                now.date() + timedelta(days=1),
                time(clock.hour, clock.minute),
                tzinfo=now.tzinfo,
            )
        return TimeMatch(due=candidate, spans=spans)

    if clock is None:
        at = TONIGHT_DEFAULT if day.word == "tonight" else END_OF_DAY
        return TimeMatch(due=datetime.combine(day.day, at, tzinfo=now.tzinfo), spans=spans)

    hour = clock.hour
    if day.word == "tonight" and not clock.has_meridiem and hour < 12:
        hour += 12
    due = datetime.combine(day.day, time(hour, clock.minute), tzinfo=now.tzinfo)
    return TimeMatch(due=due, spans=spans)
