"""
Task Assistant — Task Extractor.

Splits a free-form message into task candidates, each with a title and a
due instant: "buy milk; call mom tomorrow 6pm" gives two tasks.

Separator grammar (applied in this order):
  1. line breaks
  2. semicolons
  3. list conjunctions: "and then", "and also", ", then", ", also"

Each segment is then cleaned of bullets/numbering and filler prefixes
("remind me to", "i need to", "todo:"), its time phrase is resolved and
cut from the title.

No I/O: output depends only on the text and `now`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime

from src.core.time_resolver import end_of_day, resolve_time_expression

logger = logging.getLogger(__name__)

POLICY_END_OF_DAY = "end_of_day"
POLICY_CLARIFY = "clarify"

_LINE_SPLIT_RE = re.compile(r"[\r\n]+")
_SEMICOLON_SPLIT_RE = re.compile(r"\s*;\s*")
_CONJUNCTION_SPLIT_RE = re.compile(
    r",?\s+and\s+(?:then|also)\s+|,\s*(?:then|also)\s+", re.IGNORECASE,
)

_BULLET_RE = re.compile(r"^\s*(?:[-*•·]+|\d{1,2}[.)])\s+")
_FILLER_RE = re.compile(
    r"^\s*(?:"
    r"please\s+|"
    r"remind\s+me\s+(?:to|about)\s+|"
    r"don'?t\s+forget\s+(?:to\s+)?|"
    r"i\s+(?:need|have|want)\s+to\s+|"
    r"i\s+must\s+|"
    r"need\s+to\s+|"
    r"(?:todo|to-do|task)\s*:\s*|"
    r"add\s+(?:a\s+)?task\s*:?\s*"
    r")+",
    re.IGNORECASE,
)
_DANGLING_RE = re.compile(
    r"(?:^|\s)(?:at|by|on|due|before|until|for)\s*$"
    r"|^\s*(?:at|by|due)\s+",
    re.IGNORECASE,
)
_SPACES_RE = re.compile(r"\s{2,}")
_EDGE_PUNCT = " \t,.;:!?-–—"


@dataclass(frozen=True)
class TaskCandidate:
    """A task parsed from text, not yet stored.

    due_at is None only under the "clarify" policy when no time was given.
    """

    title: str
    due_at: datetime | None
    time_asserted: bool = False


def split_segments(text: str) -> list[str]:
    """Split text into raw task segments using the separator grammar above."""
    segments: list[str] = []
    for line in _LINE_SPLIT_RE.split(text or ""):
        for part in _SEMICOLON_SPLIT_RE.split(line):
            for piece in _CONJUNCTION_SPLIT_RE.split(part):
                piece = _BULLET_RE.sub("", piece)
                piece = _FILLER_RE.sub("", piece).strip(_EDGE_PUNCT)
                if piece:
                    segments.append(piece)
    return segments


def clean_title(raw: str, connectives: bool = True) -> str:
    """Collapse whitespace and edge punctuation.

    With `connectives`, also drop the "at"/"by"/"on" left behind once a
    time phrase has been cut out ("pay rent by" -> "pay rent").
    """
    title = _SPACES_RE.sub(" ", raw).strip(_EDGE_PUNCT)
    if not connectives:
        return title
    previous = None
    while previous != title:
        previous = title
        title = _DANGLING_RE.sub("", title).strip(_EDGE_PUNCT)
    return title


def extract_tasks_from_text(
    text: str,
    now: datetime,
    undated_policy: str = POLICY_END_OF_DAY,
) -> list[TaskCandidate]:
    """Turn free text into task candidates.

    Args:
        text: The message (or /add payload).
        now: Aware "now" in the reference timezone.
        undated_policy: "end_of_day" gives undated tasks a due instant of
            23:59 today; "clarify" leaves due_at None so the caller can ask.

    Returns:
        Candidates in the order they appear in the text; may be empty.
    """
    if undated_policy not in (POLICY_END_OF_DAY, POLICY_CLARIFY):
        raise ValueError(f"Unknown undated policy: {undated_policy!r}")

    candidates: list[TaskCandidate] = []
    for segment in split_segments(text):
        match = resolve_time_expression(segment, now)
        if match is not None:
            title = clean_title(match.strip_from(segment))
            due_at: datetime | None = match.due
        else:
            title = clean_title(segment, connectives=False)
            due_at = end_of_day(now) if undated_policy == POLICY_END_OF_DAY else None

        if not title:
            logger.debug("Dropping segment with empty title: %r", segment)
            continue
        candidates.append(
            TaskCandidate(title=title, due_at=due_at, time_asserted=match is not None)
        )

    logger.info("Extracted %d task(s) from %d chars", len(candidates), len(text or ""))
    return candidates
