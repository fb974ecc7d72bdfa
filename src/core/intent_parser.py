"""
Task Assistant — Intent & Command Parser.

Classifies an incoming chat message as one of:

- an explicit slash command (/add, /next, /today, /list, /done, /snooze,
  /start, /help) with positional arguments,
- a natural-language intent ("what's next", "today's tasks",
  "mark task 2 done"), or
- nothing at all, in which case the text is treated as new task(s).

Pure functions, no I/O. A parse miss is never an error: callers fall back
to task extraction or reply with a usage hint.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime

from src.core.time_resolver import parse_duration, resolve_time_expression

logger = logging.getLogger(__name__)

__all__ = [
    "COMMAND_VERBS",
    "Command",
    "NaturalIntent",
    "interpret_natural_intent",
    "parse_command",
    "parse_duration",
    "parse_index",
    "parse_snooze_target",
]

COMMAND_VERBS = frozenset({"add", "next", "today", "list", "done", "snooze", "start", "help"})

_ORDINALS = {
    "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5,
    "sixth": 6, "seventh": 7, "eighth": 8, "ninth": 9, "tenth": 10,
}

_NEXT_RE = re.compile(
    r"^\s*next\s*\??\s*$"
    r"|\bwhat(?:'?s| is)\s+(?:up\s+)?next\b"
    r"|\bnext\s+(?:task|up|thing)\b"
    r"|\bwhat\s+should\s+i\s+do\s+(?:now|next)\b",
    re.IGNORECASE,
)
_TODAY_RE = re.compile(
    r"\btoday'?s\s+(?:tasks?|plan|list|agenda)\b"
    r"|\b(?:tasks?|plan|agenda)\s+(?:for\s+)?today\b"
    r"|\bwhat(?:'?s| is| do i have)\b.*\btoday\b",
    re.IGNORECASE,
)
_LIST_RE = re.compile(
    r"^\s*(?:tasks|todos?|list)\s*\??\s*$"
    r"|^\s*(?:(?:can|could)\s+you\s+|please\s+)?(?:list|show)(?:\s+me)?(?:\s+all)?"
    r"(?:\s+(?:my|the))?(?:\s+open)?\s+(?:tasks|todos?|to-dos)\s*[?.!]?\s*$"
    r"|^\s*(?:all\s+)?my\s+(?:open\s+)?(?:tasks|todos?|to-dos)\s*[?.!]?\s*$"
    r"|\bwhat(?:'?s| is| do i have)\s+(?:left\s+)?(?:to\s+do|pending|open)\b",
    re.IGNORECASE,
)
_DONE_RE = re.compile(
    r"\b(?:mark|set|tick|check)\b.*\b(?:done|complete|completed|finished|off)\b"
    r"|\b(?:done|finished|completed)\s+(?:with\s+)?(?:task|the|#|no\.?)"
    r"|\bi\s+(?:finished|completed|did)\b"
    r"|\b(?:task\s*#?\s*\d+|#\d+)\s+(?:is\s+)?(?:done|complete|completed|finished)\b",
    re.IGNORECASE,
)
_TASK_NUMBER_RE = re.compile(r"\b(?:task|no\.|number)\s*#?\s*(\d+)\b|#(\d+)\b", re.IGNORECASE)
# "the 3rd one", "second task"; a bare "3rd" is usually a date
_ORDINAL_REF_RE = re.compile(
    r"\b(?:(\d+)(?:st|nd|rd|th)|(" + "|".join(_ORDINALS) + r"))\s+(?:one|task|item)\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class Command:
    """An explicit slash command: verb plus whitespace-split arguments."""

    verb: str
    args: list[str] = field(default_factory=list)
    payload: str = ""     # everything after the verb, untouched


@dataclass(frozen=True)
class NaturalIntent:
    """An intent recognized in free text.

    kind: "next" | "today" | "list" | "done"
    index: 1-based task number for "done".
    """

    kind: str
    index: int | None = None


def parse_command(text: str) -> Command | None:
    """Parse "/verb arg1 arg2" into a Command.

    Returns None when the text is not a slash command or the verb is unknown.
    A "@BotName" suffix on the verb is ignored.
    """
    stripped = (text or "").strip()
    if not stripped.startswith("/"):
        return None

    head, _, rest = stripped[1:].partition(" ")
    verb = head.split("@", 1)[0].lower()
    if verb not in COMMAND_VERBS:
        logger.debug("Unknown command verb: %r", verb)
        return None

    payload = rest.strip()
    return Command(verb=verb, args=payload.split(), payload=payload)


def parse_index(token: str | None) -> int | None:
    """Return a positive integer from `token`, or None."""
    if token is None:
        return None
    token = token.strip().lstrip("#")
    if not token.isdigit():
        return None
    value = int(token)
    return value if value > 0 else None


def _extract_index(text: str) -> int | None:
    m = _TASK_NUMBER_RE.search(text)
    if m:
        return parse_index(m.group(1) or m.group(2))
    m = _ORDINAL_REF_RE.search(text)
    if m:
        if m.group(1):
            return parse_index(m.group(1))
        return _ORDINALS[m.group(2).lower()]
    return None


def interpret_natural_intent(text: str) -> NaturalIntent | None:
    """Detect a query/command phrased in plain language.

    A "done" intent without a recognizable task number is dropped, so the
    text is handled as a new task instead.
    """
    if not text or not text.strip():
        return None

    if _DONE_RE.search(text):
        index = _extract_index(text)
        if index is None:
            logger.debug("Done intent without index, treating as task text: %r", text)
            return None
        return NaturalIntent(kind="done", index=index)
    if _TODAY_RE.search(text):
        return NaturalIntent(kind="today")
    if _NEXT_RE.search(text):
        return NaturalIntent(kind="next")
    if _LIST_RE.search(text):
        return NaturalIntent(kind="list")
    return None


def parse_snooze_target(args: list[str], now: datetime) -> datetime | None:
    """Resolve the new due instant for /snooze from the words after the index.

    "2h" → now + 2h; "tomorrow 9am" → that instant. None if neither parses.
    """
    if not args:
        return None
    delta = parse_duration(args[0]) if len(args) == 1 else None
    if delta is not None:
        try:
            return now + delta
        except OverflowError:
            return None
    match = resolve_time_expression(" ".join(args), now)
    if match is None:
        return None
    return match.due
