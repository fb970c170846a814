"""Unit tests for deferred task storage."""

import sqlite3
from datetime import datetime, timedelta

import pytest

from behavior_profile.queue.models import AITask, TaskType
from behavior_profile.queue.storage import PendingTaskStorage


def _task(task_id, minutes=0):
    return AITask(
        type=TaskType.TOPIC_INFERENCE,
        payload={"page_id": f"page-{task_id}"},
        id=task_id,
        created_at=datetime(2026, 3, 1, 10, 0) + timedelta(minutes=minutes),
    )


class TestPendingTaskStorage:
    """Tests for PendingTaskStorage SQLite operations."""

    @pytest.fixture
    def storage(self, tmp_path):
        """Create a temporary storage instance."""
        return PendingTaskStorage(db_path=str(tmp_path / "tasks.db"))

    def test_add_and_get_oldest_first(self, storage):
        """Test pending tasks come back oldest first up to the limit."""
        storage.add(_task("late", minutes=5))
        storage.add(_task("early", minutes=0))
        storage.add(_task("middle", minutes=2))

        tasks = storage.get_pending(2)

        assert [t.id for t in tasks] == ["early", "middle"]
        assert tasks[0].payload.page_id == "page-early"
        assert storage.count_pending() == 3

    def test_release_and_complete(self, storage):
        """Test status transitions through released to done or failed."""
        storage.add(_task("a"))
        storage.add(_task("b", minutes=1))

        storage.mark_released(["a", "b"])
        assert storage.count_pending() == 0
        assert storage.get_pending(10) == []
        assert storage.get_status("a") == "released"

        storage.mark_done("a")
        storage.mark_done("b", success=False, error="model down")

        assert storage.get_status("a") == "done"
        assert storage.get_status("b") == "failed"
        assert storage.get_status("missing") is None

    def test_requeue_released(self, storage):
        """Test released tasks can be returned to pending."""
        storage.add(_task("a"))
        storage.mark_released(["a"])

        assert storage.requeue_released() == 1
        assert storage.get_status("a") == "pending"
        assert storage.requeue_released() == 0

    def test_unreadable_row_marked_failed(self, storage, tmp_path):
        """Test corrupt rows are skipped and marked failed."""
        storage.add(_task("good", minutes=1))
        conn = sqlite3.connect(str(tmp_path / "tasks.db"))
        conn.execute(
            "INSERT INTO pending_tasks (id, task_type, status, created_at, data) "
            "VALUES (?, ?, ?, ?, ?)",
            ("bad", "topic_inference", "pending", "2026-03-01T09:00:00", "{not json"),
        )
        conn.commit()
        conn.close()

        tasks = storage.get_pending(10)

        assert [t.id for t in tasks] == ["good"]
        assert storage.get_status("bad") == "failed"

    def test_mark_released_empty(self, storage):
        """Test an empty release is a no-op."""
        storage.mark_released([])
        assert storage.count_pending() == 0
