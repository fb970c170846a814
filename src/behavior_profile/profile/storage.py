"""SQLite storage for profile records.

A small get/put record store holding, per user:
- The long-term profile
- The short-term profile history (newest first, capped) and last snapshot
- The generated profile summaries

Every write is a single transaction, so a failed write leaves the
previously stored record in place.
"""

import json
import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from behavior_profile.logging import get_logger
from behavior_profile.profile.models import LongTermProfile, ShortTermProfile

log = get_logger("behavior_profile.profile.storage")

DEFAULT_HISTORY_LIMIT = 50


class ProfileStorageError(Exception):
    """Raised when a profile record cannot be read or written."""


@dataclass
class ProfileSummaries:
    """Natural-language summaries derived from the profiles."""

    combined_summary: str
    ltp_summary: str
    stp_summary: str
    generated_at: datetime

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "combined_summary": self.combined_summary,
            "ltp_summary": self.ltp_summary,
            "stp_summary": self.stp_summary,
            "generated_at": self.generated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProfileSummaries":
        """Create summaries from a dictionary."""
        generated = data.get("generated_at")
        return cls(
            combined_summary=str(data.get("combined_summary", "")),
            ltp_summary=str(data.get("ltp_summary", "")),
            stp_summary=str(data.get("stp_summary", "")),
            generated_at=datetime.fromisoformat(generated) if generated else datetime.now(),
        )


class ProfileStorage:
    """SQLite record store for profile data."""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS profile_records (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    );
    """

    LTP = "ltp"
    LAST_STP = "last_stp"
    STP_HISTORY = "stp_history"
    SUMMARIES = "summaries"

    def __init__(
        self,
        db_path: str = "data/profile.db",
        user_id: str = "default",
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        """Initialize the profile storage.

        Args:
            db_path: Path to the SQLite database file.
            user_id: Fixed key the profile records are stored under.
            history_limit: Number of short-term profiles kept in history.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._user_id = user_id
        self._history_limit = history_limit
        self._initialize_db()

    def _initialize_db(self) -> None:
        """Initialize the database schema."""
        try:
            with self._get_connection() as conn:
                conn.executescript(self.SCHEMA)
                conn.commit()
        except sqlite3.Error as e:
            raise ProfileStorageError(f"Failed to initialize profile storage: {e}") from e
        log.info("profile_storage_initialized", db_path=str(self._db_path))

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection.

        Yields:
            SQLite connection with row factory enabled.
        """
        conn = sqlite3.connect(str(self._db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _key(self, kind: str) -> str:
        return f"{self._user_id}:{kind}"

    # === Raw record access ===

    def get(self, key: str) -> Any:
        """Get a record by key (None when absent).

        Raises:
            ProfileStorageError: On database errors or unreadable JSON.
        """
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT value FROM profile_records WHERE key = ?",
                    (key,),
                ).fetchone()
        except sqlite3.Error as e:
            raise ProfileStorageError(f"Failed to read {key}: {e}") from e

        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as e:
            raise ProfileStorageError(f"Corrupt record {key}: {e}") from e

    def put(self, key: str, value: Any) -> None:
        """Insert or replace a record.

        Raises:
            ProfileStorageError: On database or serialisation errors.
        """
        self.put_many({key: value})

    def put_many(self, records: dict[str, Any]) -> None:
        """Insert or replace several records in one transaction.

        Either every record is written or none is.

        Raises:
            ProfileStorageError: On database or serialisation errors.
        """
        rows = []
        now = datetime.now().isoformat()
        for key, value in records.items():
            try:
                rows.append((key, json.dumps(value), now))
            except (TypeError, ValueError) as e:
                raise ProfileStorageError(f"Record {key} is not serialisable: {e}") from e

        try:
            with self._get_connection() as conn:
                conn.executemany(
                    """
                    INSERT INTO profile_records (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    rows,
                )
                conn.commit()
        except sqlite3.Error as e:
            raise ProfileStorageError(f"Failed to write {', '.join(records)}: {e}") from e

    # === Long-term profile ===

    def load_ltp(self) -> LongTermProfile:
        """Load the long-term profile, or the empty template.

        A stored record that fails validation is treated as absent.
        """
        data = self.get(self._key(self.LTP))
        if data is None:
            return LongTermProfile.empty()
        try:
            return LongTermProfile.from_dict(data)
        except ValidationError as e:
            log.warning("stored_ltp_invalid", errors=e.error_count())
            return LongTermProfile.empty()

    def save_ltp(self, ltp: LongTermProfile) -> None:
        """Persist the long-term profile."""
        self.put(self._key(self.LTP), ltp.to_dict())
        log.debug("ltp_saved", sessions_seen=ltp.sessions_seen, topics=len(ltp.topic_cumulative))

    def repair(self) -> None:
        """Rebuild the record table and drop unreadable profile records."""
        self._initialize_db()
        for kind in (self.LTP, self.LAST_STP, self.STP_HISTORY, self.SUMMARIES):
            key = self._key(kind)
            try:
                self.get(key)
            except ProfileStorageError:
                log.warning("profile_record_dropped", key=key)
                try:
                    with self._get_connection() as conn:
                        conn.execute("DELETE FROM profile_records WHERE key = ?", (key,))
                        conn.commit()
                except sqlite3.Error as e:
                    raise ProfileStorageError(f"Failed to repair {key}: {e}") from e
        log.info("profile_storage_repaired")

    # === Short-term profiles ===

    def append_stp(self, stp: ShortTermProfile) -> None:
        """Add a snapshot to the history and point ``last_stp`` at it.

        Both records are written together, so a failed write leaves
        neither changed.
        """
        history = self.get(self._key(self.STP_HISTORY)) or []
        entry = stp.to_dict()
        entry["saved_at"] = datetime.now().isoformat()
        history.insert(0, entry)
        del history[self._history_limit :]

        self.put_many(
            {
                self._key(self.STP_HISTORY): history,
                self._key(self.LAST_STP): stp.to_dict(),
            }
        )
        log.debug("stp_saved", session_id=stp.session_id, history_size=len(history))

    def get_last_stp(self) -> ShortTermProfile | None:
        """Most recent short-term profile."""
        data = self.get(self._key(self.LAST_STP))
        return ShortTermProfile.from_dict(data) if data else None

    def get_stp_history(self, limit: int | None = None) -> list[ShortTermProfile]:
        """Short-term profiles, newest first."""
        history = self.get(self._key(self.STP_HISTORY)) or []
        if limit is not None:
            history = history[:limit]
        return [ShortTermProfile.from_dict(item) for item in history]

    def has_stp(self, session_id: str) -> bool:
        """Whether a snapshot for the session is already in the history."""
        history = self.get(self._key(self.STP_HISTORY)) or []
        return any(item.get("session_id") == session_id for item in history)

    # === Summaries ===

    def save_summaries(self, summaries: ProfileSummaries) -> None:
        """Persist generated summaries."""
        self.put(self._key(self.SUMMARIES), summaries.to_dict())

    def get_summaries(self) -> ProfileSummaries | None:
        """Latest generated summaries."""
        data = self.get(self._key(self.SUMMARIES))
        return ProfileSummaries.from_dict(data) if data else None
