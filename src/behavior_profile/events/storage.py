"""SQLite storage for activity events.

Holds the search and page events recorded per session plus a small
system-state table (e.g. the last seen session id). Events are stored as
JSON documents keyed by event id and indexed by session.
"""

import json
import sqlite3
from collections.abc import Generator, Iterable
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from behavior_profile.events.models import (
    PageEvent,
    SearchEnrichment,
    SearchEvent,
    TopicDomain,
)
from behavior_profile.logging import get_logger

log = get_logger("behavior_profile.events.storage")


class EventStorage:
    """SQLite storage for search and page events."""

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS search_events (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL,
        timestamp DATETIME,
        processed INTEGER DEFAULT 0,
        data TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS page_events (
        id TEXT PRIMARY KEY,
        session_id TEXT NOT NULL,
        start_time DATETIME,
        data TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS system_state (
        key TEXT PRIMARY KEY,
        value TEXT,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    );

    CREATE INDEX IF NOT EXISTS idx_search_session ON search_events(session_id);
    CREATE INDEX IF NOT EXISTS idx_page_session ON page_events(session_id);
    """

    def __init__(self, db_path: str = "data/events.db"):
        """Initialize the event storage.

        Args:
            db_path: Path to the SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()

    def _initialize_db(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.executescript(self.SCHEMA)
            conn.commit()
        log.info("event_storage_initialized", db_path=str(self._db_path))

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

    # === Search events ===

    def save_search(self, event: SearchEvent) -> None:
        """Insert or replace a search event."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO search_events (id, session_id, timestamp, processed, data)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.session_id,
                    event.timestamp.isoformat(),
                    int(event.processed),
                    json.dumps(event.to_dict()),
                ),
            )
            conn.commit()

    def get_search(self, event_id: str) -> SearchEvent | None:
        """Get a search event by id."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT data FROM search_events WHERE id = ?",
                (event_id,),
            ).fetchone()
        return SearchEvent.from_dict(json.loads(row["data"])) if row else None

    def get_searches_by_session(self, session_id: str) -> list[SearchEvent]:
        """Get all search events of a session, oldest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT data FROM search_events WHERE session_id = ? ORDER BY timestamp",
                (session_id,),
            ).fetchall()
        return [SearchEvent.from_dict(json.loads(row["data"])) for row in rows]

    def get_unprocessed_searches(self, limit: int = 20) -> list[SearchEvent]:
        """Get search events still waiting for enrichment."""
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT data FROM search_events
                WHERE processed = 0
                ORDER BY timestamp
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [SearchEvent.from_dict(json.loads(row["data"])) for row in rows]

    def apply_search_enrichment(
        self, event_id: str, enrichment: SearchEnrichment
    ) -> SearchEvent | None:
        """Attach enrichment to a stored search event.

        Enrichment happens once; an already processed event is returned
        unchanged.

        Returns:
            The stored event, or None when the id is unknown.
        """
        event = self.get_search(event_id)
        if event is None:
            log.warning("search_event_not_found", event_id=event_id)
            return None
        if event.processed:
            log.debug("search_event_already_enriched", event_id=event_id)
            return event
        enriched = event.with_enrichment(enrichment)
        self.save_search(enriched)
        return enriched

    # === Page events ===

    def save_page(self, event: PageEvent) -> None:
        """Insert or replace a page event."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO page_events (id, session_id, start_time, data)
                VALUES (?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.session_id,
                    event.start_time.isoformat() if event.start_time else None,
                    json.dumps(event.to_dict()),
                ),
            )
            conn.commit()

    def get_page(self, event_id: str) -> PageEvent | None:
        """Get a page event by id."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT data FROM page_events WHERE id = ?",
                (event_id,),
            ).fetchone()
        return PageEvent.from_dict(json.loads(row["data"])) if row else None

    def get_pages_by_session(self, session_id: str) -> list[PageEvent]:
        """Get all page events of a session, oldest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT data FROM page_events WHERE session_id = ? ORDER BY start_time",
                (session_id,),
            ).fetchall()
        return [PageEvent.from_dict(json.loads(row["data"])) for row in rows]

    def apply_page_topics(
        self, event_id: str, topic_domains: Iterable[TopicDomain]
    ) -> PageEvent | None:
        """Store inferred topic domains on a page event."""
        event = self.get_page(event_id)
        if event is None:
            log.warning("page_event_not_found", event_id=event_id)
            return None
        updated = event.with_topics(tuple(topic_domains))
        self.save_page(updated)
        return updated

    # === System state ===

    def get_state(self, key: str) -> Any:
        """Get a system-state value (None when unset)."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT value FROM system_state WHERE key = ?",
                (key,),
            ).fetchone()
        return json.loads(row["value"]) if row and row["value"] is not None else None

    def set_state(self, key: str, value: Any) -> None:
        """Set a system-state value."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO system_state (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, json.dumps(value), datetime.now().isoformat()),
            )
            conn.commit()
