"""Unit tests for the profile storage module."""

import sqlite3
from datetime import datetime

import pytest

from behavior_profile.profile.models import LongTermProfile, ShortTermProfile, TopicScore
from behavior_profile.profile.storage import (
    ProfileStorage,
    ProfileStorageError,
    ProfileSummaries,
)


def _stp(session_id):
    return ShortTermProfile(
        session_id=session_id,
        session_length_min=5.0,
        engagement_confidence=0.7,
        dominant_topic="Science",
        intent_focus="informational",
        intent_scores={"informational": 1.0},
        topic_cumulative={"Science": TopicScore(0.5, 1.0)},
        raw_evidence=("query: black holes",),
        calculated_at=datetime(2026, 3, 1, 12, 0),
    )


class TestProfileStorage:
    """Tests for ProfileStorage SQLite operations."""

    @pytest.fixture
    def storage(self, tmp_path):
        """Create a temporary storage instance."""
        return ProfileStorage(db_path=str(tmp_path / "profile.db"), history_limit=3)

    def test_load_ltp_defaults_to_template(self, storage):
        """Test a fresh store returns the empty template."""
        ltp = storage.load_ltp()

        assert ltp == LongTermProfile.empty()
        assert ltp.ewma_focus == 0.5
        assert ltp.ewma_depth == 0.5
        assert ltp.confidence == 0.0

    def test_save_and_load_ltp(self, storage):
        """Test a profile round-trips through the store."""
        ltp = LongTermProfile(
            topic_cumulative={"Science": 2.5},
            sessions_seen=3,
            ewma_focus=0.6,
            ewma_depth=0.4,
            intent_aggregate={"informational": 0.8},
            last_updated=datetime(2026, 3, 1, 12, 0),
            confidence=0.375,
        )

        storage.save_ltp(ltp)

        assert storage.load_ltp() == ltp

    def test_invalid_stored_ltp_reads_as_template(self, storage):
        """Test a record missing fields is treated as absent."""
        storage.put("default:ltp", {"topic_cumulative": {"Science": 1.0}})
        assert storage.load_ltp() == LongTermProfile.empty()

    def test_keys_are_per_user(self, tmp_path):
        """Test two user ids do not share records."""
        db_path = str(tmp_path / "profile.db")
        a = ProfileStorage(db_path=db_path, user_id="a")
        b = ProfileStorage(db_path=db_path, user_id="b")

        a.save_ltp(LongTermProfile(sessions_seen=1, confidence=0.125))

        assert a.load_ltp().sessions_seen == 1
        assert b.load_ltp().sessions_seen == 0

    def test_stp_history_newest_first_and_capped(self, storage):
        """Test the history keeps the newest snapshots only."""
        for i in range(5):
            storage.append_stp(_stp(f"s{i}"))

        history = storage.get_stp_history()

        assert [stp.session_id for stp in history] == ["s4", "s3", "s2"]
        assert storage.get_last_stp().session_id == "s4"
        assert storage.has_stp("s3") is True
        assert storage.has_stp("s0") is False

    def test_stp_round_trip(self, storage):
        """Test a snapshot is restored field for field."""
        stp = _stp("s1")
        storage.append_stp(stp)
        assert storage.get_last_stp() == stp

    def test_summaries(self, storage):
        """Test summaries round-trip."""
        assert storage.get_summaries() is None
        summaries = ProfileSummaries(
            combined_summary="combined",
            ltp_summary="long",
            stp_summary="short",
            generated_at=datetime(2026, 3, 1, 12, 0),
        )

        storage.save_summaries(summaries)

        assert storage.get_summaries() == summaries

    def test_corrupt_record_raises_storage_error(self, storage, tmp_path):
        """Test unreadable JSON surfaces as ProfileStorageError."""
        conn = sqlite3.connect(str(tmp_path / "profile.db"))
        conn.execute(
            "INSERT INTO profile_records (key, value) VALUES (?, ?)", ("default:ltp", "{broken")
        )
        conn.commit()
        conn.close()

        with pytest.raises(ProfileStorageError):
            storage.load_ltp()

    def test_repair_drops_corrupt_records(self, storage, tmp_path):
        """Test repair removes unreadable records and keeps good ones."""
        storage.append_stp(_stp("s1"))
        conn = sqlite3.connect(str(tmp_path / "profile.db"))
        conn.execute(
            "INSERT INTO profile_records (key, value) VALUES (?, ?)", ("default:ltp", "{broken")
        )
        conn.commit()
        conn.close()

        storage.repair()

        assert storage.load_ltp() == LongTermProfile.empty()
        assert storage.get_last_stp().session_id == "s1"

    def test_unserialisable_value(self, storage):
        """Test values that are not JSON raise ProfileStorageError."""
        with pytest.raises(ProfileStorageError):
            storage.put("default:bad", {"value": object()})

    def test_put_many_unserialisable_writes_nothing(self, storage):
        """Test one bad value keeps every record in the batch from being written."""
        with pytest.raises(ProfileStorageError):
            storage.put_many({"default:good": {"value": 1}, "default:bad": {"value": object()}})

        assert storage.get("default:good") is None

    def test_append_stp_failed_write_leaves_both_records(self, storage, tmp_path):
        """Test a write failing on the last snapshot leaves the history untouched."""
        storage.append_stp(_stp("s1"))
        conn = sqlite3.connect(str(tmp_path / "profile.db"))
        for event in ("INSERT", "UPDATE"):
            conn.execute(
                f"""
                CREATE TRIGGER block_last_stp_{event.lower()} BEFORE {event} ON profile_records
                WHEN NEW.key = 'default:last_stp'
                BEGIN SELECT RAISE(ABORT, 'disk full'); END
                """
            )
        conn.commit()
        conn.close()

        with pytest.raises(ProfileStorageError, match="disk full"):
            storage.append_stp(_stp("s2"))

        assert [s.session_id for s in storage.get_stp_history()] == ["s1"]
        assert storage.get_last_stp().session_id == "s1"
        assert storage.has_stp("s2") is False
