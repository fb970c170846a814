"""SQLite storage for deferred background tasks.

Producers park low-urgency work here; the background releaser hands it
to the scheduler in small batches. Rows move through
``pending -> released -> done | failed``. Released rows whose worker
never reported back can be returned to ``pending`` with
:meth:`PendingTaskStorage.requeue_released`.
"""

import json
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from behavior_profile.logging import get_logger
from behavior_profile.queue.models import AITask, TaskPayloadError

log = get_logger("behavior_profile.queue.storage")

STATUS_PENDING = "pending"
STATUS_RELEASED = "released"
STATUS_DONE = "done"
STATUS_FAILED = "failed"


class PendingTaskStorage:
    """SQLite storage for background tasks awaiting release."""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS pending_tasks (
        id TEXT PRIMARY KEY,
        task_type TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        created_at DATETIME NOT NULL,
        released_at DATETIME,
        completed_at DATETIME,
        last_error TEXT,
        data TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_pending_status ON pending_tasks(status, created_at);
    """

    def __init__(self, db_path: str = "data/tasks.db"):
        """Initialize the pending task storage.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()

    def _initialize_db(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(self.SCHEMA)
            conn.commit()
        log.info("pending_task_storage_initialized", db_path=str(self._db_path))

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def add(self, task: AITask) -> None:
        """Park a task until the releaser picks it up."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO pending_tasks (id, task_type, status, created_at, data)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    task.id,
                    task.type.value,
                    STATUS_PENDING,
                    task.created_at.isoformat(),
                    json.dumps(task.to_dict()),
                ),
            )
            conn.commit()
        log.debug("pending_task_added", task_id=task.id, task_type=task.type.value)

    def count_pending(self) -> int:
        """Number of tasks waiting for release."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM pending_tasks WHERE status = ?",
                (STATUS_PENDING,),
            ).fetchone()
        return int(row["count"])

    def get_pending(self, limit: int) -> list[AITask]:
        """Oldest pending tasks, at most ``limit``.

        Rows that no longer parse are marked failed and skipped.
        """
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT id, data FROM pending_tasks
                WHERE status = ?
                ORDER BY created_at
                LIMIT ?
                """,
                (STATUS_PENDING, limit),
            ).fetchall()

        tasks: list[AITask] = []
        for row in rows:
            try:
                tasks.append(AITask.from_dict(json.loads(row["data"])))
            except (TaskPayloadError, json.JSONDecodeError) as e:
                log.warning("pending_task_unreadable", task_id=row["id"], error=str(e))
                self.mark_done(row["id"], success=False, error=str(e))
        return tasks

    def mark_released(self, task_ids: list[str]) -> None:
        """Flag tasks as handed to the scheduler."""
        if not task_ids:
            return
        now = datetime.now().isoformat()
        with self._get_connection() as conn:
            conn.executemany(
                "UPDATE pending_tasks SET status = ?, released_at = ? WHERE id = ?",
                [(STATUS_RELEASED, now, task_id) for task_id in task_ids],
            )
            conn.commit()

    def mark_done(self, task_id: str, success: bool = True, error: str | None = None) -> None:
        """Record the outcome of a released task."""
        with self._get_connection() as conn:
            conn.execute(
                """
                UPDATE pending_tasks
                SET status = ?, completed_at = ?, last_error = ?
                WHERE id = ?
                """,
                (
                    STATUS_DONE if success else STATUS_FAILED,
                    datetime.now().isoformat(),
                    error,
                    task_id,
                ),
            )
            conn.commit()

    def requeue_released(self) -> int:
        """Return every released task to pending.

        Returns:
            Number of rows requeued.
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "UPDATE pending_tasks SET status = ?, released_at = NULL WHERE status = ?",
                (STATUS_PENDING, STATUS_RELEASED),
            )
            conn.commit()
            count = cursor.rowcount
        if count:
            log.info("released_tasks_requeued", count=count)
        return count

    def get_status(self, task_id: str) -> str | None:
        """Current status of a task, None when unknown."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT status FROM pending_tasks WHERE id = ?",
                (task_id,),
            ).fetchone()
        return row["status"] if row else None
