"""Tests for src.data.db — TaskDB and DispatchDB (SQLite storage)."""

from datetime import datetime, timedelta, timezone

import pytest

from src.data.db import TaskDB
from src.data.models import STATUS_DONE


class TestTaskDBAddAndList:
    def test_add_task_returns_task(self, task_db, now):
        task = task_db.add_task(12345, "Buy milk", now + timedelta(hours=2), now=now)
        assert task.id is not None
        assert task.title == "Buy milk"
        assert task.due_at == now + timedelta(hours=2)
        assert task.is_open
        assert task.pre_reminder_sent is False
        assert task.due_reminder_sent is False
        assert task.created_at == now

    def test_instants_come_back_as_utc(self, task_db, now):
        task = task_db.add_task(12345, "Buy milk", now)
        stored = task_db.get_task(task.id)
        assert stored.due_at.tzinfo is not None
        assert stored.due_at.utcoffset() == timedelta(0)
        assert stored.due_at == now

    def test_add_tasks_keeps_input_order(self, task_db, now):
        tasks = task_db.add_tasks(12345, [
            ("A", now + timedelta(hours=3)),
            ("B", now + timedelta(hours=1)),
        ])
        assert [t.title for t in tasks] == ["A", "B"]
        assert tasks[0].id < tasks[1].id

    def test_list_open_sorted_by_due_then_id(self, task_db, now):
        due = now + timedelta(hours=1)
        task_db.add_task(12345, "Later", now + timedelta(hours=5))
        task_db.add_task(12345, "First tie", due)
        task_db.add_task(12345, "Second tie", due)
        titles = [t.title for t in task_db.list_open(12345)]
        assert titles == ["First tie", "Second tie", "Later"]

    def test_list_open_is_per_user(self, task_db, now):
        task_db.add_task(1, "Mine", now)
        task_db.add_task(2, "Theirs", now)
        assert [t.title for t in task_db.list_open(1)] == ["Mine"]

    def test_list_open_excludes_done(self, task_db, now):
        a = task_db.add_task(12345, "A", now)
        task_db.add_task(12345, "B", now)
        task_db.mark_done(a.id, now=now)
        assert [t.title for t in task_db.list_open(12345)] == ["B"]
        assert task_db.get_task(a.id).status == STATUS_DONE

    def test_get_task_missing(self, task_db):
        assert task_db.get_task(999) is None

    def test_naive_datetime_rejected(self, task_db):
        with pytest.raises(ValueError):
            task_db.add_task(12345, "Naive", datetime(2026, 10, 19, 18, 0))

    def test_persists_across_instances(self, tmp_db_path, now):
        TaskDB(db_path=tmp_db_path).add_task(12345, "Survivor", now)
        assert TaskDB(db_path=tmp_db_path).list_open(12345)[0].title == "Survivor"


class TestTaskDBUpdates:
    def test_mark_done(self, task_db, now):
        task = task_db.add_task(12345, "A", now)
        assert task_db.mark_done(task.id, now=now) is True
        stored = task_db.get_task(task.id)
        assert stored.status == STATUS_DONE
        assert stored.completed_at == now

    def test_mark_done_twice(self, task_db, now):
        task = task_db.add_task(12345, "A", now)
        task_db.mark_done(task.id, now=now)
        assert task_db.mark_done(task.id, now=now) is False

    def test_reschedule_resets_flags(self, task_db, now):
        task = task_db.add_task(12345, "A", now)
        task_db.mark_reminder_sent(task.id, "pre", now)
        task_db.mark_reminder_sent(task.id, "due", now)
        new_due = now + timedelta(hours=2)
        assert task_db.reschedule(task.id, new_due) is True
        stored = task_db.get_task(task.id)
        assert stored.due_at == new_due
        assert stored.pre_reminder_sent is False
        assert stored.due_reminder_sent is False

    def test_reschedule_done_task(self, task_db, now):
        task = task_db.add_task(12345, "A", now)
        task_db.mark_done(task.id, now=now)
        assert task_db.reschedule(task.id, now + timedelta(hours=1)) is False


class TestReminderQueries:
    def test_pre_candidates_window(self, task_db, now):
        window = timedelta(minutes=30)
        inside = task_db.add_task(12345, "Inside", now + timedelta(minutes=20))
        edge = task_db.add_task(12345, "Edge", now + window)
        task_db.add_task(12345, "Far", now + timedelta(hours=2))
        task_db.add_task(12345, "Past", now - timedelta(minutes=1))
        ids = [t.id for t in task_db.fetch_pre_reminder_candidates(now, window)]
        assert ids == [inside.id, edge.id]

    def test_pre_candidates_skip_sent(self, task_db, now):
        task = task_db.add_task(12345, "A", now + timedelta(minutes=10))
        task_db.mark_reminder_sent(task.id, "pre", task.due_at)
        assert task_db.fetch_pre_reminder_candidates(now, timedelta(minutes=30)) == []

    def test_due_candidates(self, task_db, now):
        past = task_db.add_task(12345, "Past", now - timedelta(minutes=5))
        exact = task_db.add_task(12345, "Exact", now)
        task_db.add_task(12345, "Future", now + timedelta(minutes=5))
        done = task_db.add_task(12345, "Done", now - timedelta(hours=1))
        task_db.mark_done(done.id, now=now)
        ids = [t.id for t in task_db.fetch_due_reminder_candidates(now)]
        assert ids == [past.id, exact.id]

    def test_due_flag_blocks_pre(self, task_db, now):
        task = task_db.add_task(12345, "A", now + timedelta(minutes=10))
        task_db.mark_reminder_sent(task.id, "due", task.due_at)
        assert task_db.fetch_pre_reminder_candidates(now, timedelta(minutes=30)) == []

    def test_mark_reminder_sent_requires_same_due(self, task_db, now):
        task = task_db.add_task(12345, "A", now)
        task_db.reschedule(task.id, now + timedelta(hours=1))
        assert task_db.mark_reminder_sent(task.id, "due", now) is False
        assert task_db.get_task(task.id).due_reminder_sent is False

    def test_mark_reminder_sent_unknown_kind(self, task_db, now):
        task = task_db.add_task(12345, "A", now)
        with pytest.raises(ValueError):
            task_db.mark_reminder_sent(task.id, "later", now)


class TestTaskEvents:
    def test_log_and_list(self, task_db, now):
        task = task_db.add_task(12345, "A", now)
        event = task_db.log_event(task.id, 555, "task_created", {"taskId": task.id})
        assert event.id is not None
        events = task_db.list_events(task.id)
        assert len(events) == 1
        assert events[0].event_type == "task_created"
        assert events[0].payload == {"taskId": task.id}
        assert events[0].chat_id == 555


class TestDispatchDB:
    def test_claim_is_exclusive(self, dispatch_db, now):
        assert dispatch_db.claim("task:1", "pre", now, 300) is True
        assert dispatch_db.claim("task:1", "pre", now, 300) is False

    def test_kinds_are_independent(self, dispatch_db, now):
        assert dispatch_db.claim("task:1", "pre", now, 300) is True
        assert dispatch_db.claim("task:1", "due", now, 300) is True

    def test_release_allows_reclaim(self, dispatch_db, now):
        dispatch_db.claim("task:1", "pre", now, 300)
        dispatch_db.release("task:1", "pre")
        assert dispatch_db.claim("task:1", "pre", now, 300) is True

    def test_expired_lease_taken_over(self, dispatch_db, now):
        dispatch_db.claim("user:1", "digest:2026-10-19", now, 300)
        later = now + timedelta(seconds=301)
        assert dispatch_db.claim("user:1", "digest:2026-10-19", later, 300) is True

    def test_live_lease_not_taken_over(self, dispatch_db, now):
        dispatch_db.claim("user:1", "digest:2026-10-19", now, 300)
        later = now + timedelta(seconds=120)
        assert dispatch_db.claim("user:1", "digest:2026-10-19", later, 300) is False
