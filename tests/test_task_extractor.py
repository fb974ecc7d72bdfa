"""Tests for src.core.task_extractor — splitting messages into tasks."""

from datetime import datetime

import pytest

from src.core.task_extractor import (
    POLICY_CLARIFY,
    POLICY_END_OF_DAY,
    TaskCandidate,
    clean_title,
    extract_tasks_from_text,
    split_segments,
)


class TestSplitSegments:
    def test_semicolons(self):
        assert split_segments("buy milk; call mom") == ["buy milk", "call mom"]

    def test_bulleted_lines(self):
        assert split_segments("- buy milk\n- call mom") == ["buy milk", "call mom"]

    def test_numbered_lines(self):
        assert split_segments("1. pay rent\n2) call bank") == ["pay rent", "call bank"]

    def test_and_then(self):
        assert split_segments("pay rent and then call bank") == ["pay rent", "call bank"]

    def test_plain_and_is_not_a_separator(self):
        assert split_segments("call mom and dad") == ["call mom and dad"]

    def test_filler_prefixes_removed(self):
        assert split_segments("Please remind me to water plants.") == ["water plants"]
        assert split_segments("todo: file taxes") == ["file taxes"]

    def test_blank_pieces_dropped(self):
        assert split_segments("buy milk;;\n\n") == ["buy milk"]


class TestCleanTitle:
    def test_collapses_whitespace(self):
        assert clean_title("  call   mom  ") == "call mom"

    def test_drops_dangling_connective(self):
        assert clean_title("pay rent by ") == "pay rent"

    def test_keeps_connective_when_disabled(self):
        assert clean_title("turn the heater on", connectives=False) == "turn the heater on"


class TestExtractTasks:
    def test_two_tasks_one_timed(self, now, tz):
        tasks = extract_tasks_from_text("buy milk; call mom tomorrow 6pm", now)
        assert tasks == [
            TaskCandidate(
                title="buy milk",
                due_at=datetime(2026, 10, 19, 23, 59, tzinfo=tz),
                time_asserted=False,
            ),
            TaskCandidate(
                title="call mom",
                due_at=datetime(2026, 10, 20, 18, 0, tzinfo=tz),
                time_asserted=True,
            ),
        ]

    def test_connective_stripped_with_time(self, now, tz):
        [task] = extract_tasks_from_text("pay rent by tomorrow 10am", now)
        assert task.title == "pay rent"
        assert task.due_at == datetime(2026, 10, 20, 10, 0, tzinfo=tz)

    def test_at_phrase_removed(self, now, tz):
        [task] = extract_tasks_from_text("meeting at 5pm", now)
        assert task.title == "meeting"
        assert task.due_at == datetime(2026, 10, 19, 17, 0, tzinfo=tz)

    def test_time_only_segment_is_dropped(self, now):
        assert extract_tasks_from_text("tomorrow 6pm", now) == []

    def test_empty_text(self, now):
        assert extract_tasks_from_text("", now) == []
        assert extract_tasks_from_text("  ;  ", now) == []

    def test_clarify_policy_leaves_undated(self, now, tz):
        tasks = extract_tasks_from_text("buy milk; call mom 6pm", now, POLICY_CLARIFY)
        assert tasks[0].title == "buy milk"
        assert tasks[0].due_at is None
        assert tasks[1].due_at == datetime(2026, 10, 19, 18, 0, tzinfo=tz)

    def test_deterministic(self, now):
        text = "- water plants\n- pay rent by friday; call bank in 2 hours"
        assert extract_tasks_from_text(text, now) == extract_tasks_from_text(text, now)

    def test_every_timed_task_is_in_the_future(self, now):
        text = "standup 9am; lunch 1pm; gym tonight; call in 45 min"
        tasks = extract_tasks_from_text(text, now, POLICY_END_OF_DAY)
        assert len(tasks) == 4
        assert all(t.due_at > now for t in tasks)

    def test_out_of_range_offset_keeps_the_task(self, now, tz):
        [task] = extract_tasks_from_text("call mom in 99999999999 hours", now)
        assert task.title == "call mom in 99999999999 hours"
        assert task.due_at == datetime(2026, 10, 19, 23, 59, tzinfo=tz)
        assert task.time_asserted is False

    def test_unknown_policy_rejected(self, now):
        with pytest.raises(ValueError):
            extract_tasks_from_text("buy milk", now, "ask_later")
