"""Long-term profile updater.

Merges each session's short-term profile into the durable long-term
profile:
- Cold start seeds the profile from the first good session
- Warm updates decay old topic momentum, add the new session's raw
  scores weighted by its engagement confidence, and smooth focus, depth
  and intents with an EWMA
- The merged profile is validated and written once
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from behavior_profile.logging import get_logger
from behavior_profile.profile.models import (
    MAX_SESSIONS,
    LongTermProfile,
    ShortTermProfile,
    validate_ltp,
)
from behavior_profile.profile.storage import ProfileStorageError

log = get_logger("behavior_profile.profile.longterm")

# Decay rate per day: scores fall to 1/e after 30 days.
DECAY_LAMBDA = 1 / 30
EWMA_ALPHA = 0.1
# Sessions below this engagement confidence neither seed nor grow confidence.
MIN_SESSION_CONFIDENCE = 0.5

_SECONDS_PER_DAY = 86400


class LtpStore(Protocol):
    """Persistence needed by the updater."""

    def load_ltp(self) -> LongTermProfile: ...

    def save_ltp(self, ltp: LongTermProfile) -> None: ...

    def repair(self) -> None: ...


@dataclass
class LtpUpdateResult:
    """Outcome of merging and persisting a short-term profile."""

    success: bool
    ltp: LongTermProfile
    error: str | None = None
    reset: bool = False


def decay_factor(
    last_updated: datetime | None, now: datetime | None, rate: float = DECAY_LAMBDA
) -> float:
    """Exponential decay ``exp(-rate * days)`` clamped to [0, 1].

    Returns 1 when there is no previous timestamp.
    """
    if last_updated is None:
        return 1.0
    now = now or datetime.now()
    days = (now - last_updated).total_seconds() / _SECONDS_PER_DAY
    return max(0.0, min(1.0, math.exp(-rate * days)))


def ewma(old: float, sample: float | None, alpha: float = EWMA_ALPHA) -> float:
    """Exponentially weighted moving average step."""
    if sample is None:
        return old
    return (1 - alpha) * old + alpha * sample


def session_confidence(sessions_seen: int) -> float:
    """Profile confidence after ``sessions_seen`` accepted sessions."""
    return min(1.0, sessions_seen / MAX_SESSIONS)


def cold_start(stp: ShortTermProfile) -> LongTermProfile:
    """Seed a long-term profile from the first session.

    Sessions without data or with low engagement confidence are
    rejected and the empty template is returned.
    """
    if stp.is_empty or stp.engagement_confidence < MIN_SESSION_CONFIDENCE:
        log.info(
            "ltp_cold_start_rejected",
            session_id=stp.session_id,
            engagement_confidence=stp.engagement_confidence,
            empty=stp.is_empty,
        )
        return LongTermProfile.empty()

    return LongTermProfile(
        topic_cumulative=stp.raw_scores,
        sessions_seen=1,
        ewma_focus=stp.engagement_confidence,
        ewma_depth=1 - stp.diversity_entropy,
        intent_aggregate=dict(stp.intent_scores),
        last_updated=stp.calculated_at,
        confidence=session_confidence(1),
    )


def warm_update(current: LongTermProfile, stp: ShortTermProfile) -> LongTermProfile:
    """Fold a session into an established profile.

    Raw topic scores are decayed and then added to, never renormalized,
    so momentum compounds across sessions.
    """
    factor = decay_factor(current.last_updated, stp.calculated_at)
    weight = stp.engagement_confidence

    topics = {topic: score * factor for topic, score in current.topic_cumulative.items()}
    for topic, raw in stp.raw_scores.items():
        topics[topic] = topics.get(topic, 0.0) + raw * weight

    intents = dict(current.intent_aggregate)
    for intent, score in stp.intent_scores.items():
        intents[intent] = ewma(intents.get(intent, 0.0), score)

    sessions_seen = current.sessions_seen
    if stp.engagement_confidence >= MIN_SESSION_CONFIDENCE:
        sessions_seen += 1

    return LongTermProfile(
        topic_cumulative=topics,
        sessions_seen=sessions_seen,
        ewma_focus=ewma(current.ewma_focus, stp.engagement_confidence),
        ewma_depth=ewma(current.ewma_depth, 1 - stp.diversity_entropy),
        intent_aggregate=intents,
        last_updated=stp.calculated_at,
        confidence=session_confidence(sessions_seen),
    )


def merge(current: LongTermProfile, stp: ShortTermProfile) -> LongTermProfile:
    """Return the long-term profile after folding in ``stp``.

    Pure: ``current`` and ``stp`` are left untouched.
    """
    if current.sessions_seen == 0:
        return cold_start(stp)
    return warm_update(current, stp)


class LongTermProfileUpdater:
    """Loads, merges and persists the long-term profile."""

    def __init__(self, store: LtpStore):
        """Initialize the updater.

        Args:
            store: Record store holding the long-term profile.
        """
        self._store = store

    def update(self, stp: ShortTermProfile) -> LtpUpdateResult:
        """Merge a short-term profile into the stored long-term profile.

        Args:
            stp: Snapshot of the session that just closed.

        Returns:
            LtpUpdateResult; on failure the stored profile is unchanged.
        """
        try:
            current = self._load()
        except ProfileStorageError as e:
            log.error("ltp_load_failed", session_id=stp.session_id, error=str(e))
            return LtpUpdateResult(success=False, ltp=LongTermProfile.empty(), error=str(e))

        updated = merge(current, stp)
        log.info(
            "ltp_merged",
            session_id=stp.session_id,
            cold_start=current.sessions_seen == 0,
            sessions_seen=updated.sessions_seen,
            confidence=updated.confidence,
            topics=len(updated.topic_cumulative),
        )
        return self.persist(updated)

    def _load(self) -> LongTermProfile:
        """Load the stored profile, repairing the store and reading once more on failure.

        Raises:
            ProfileStorageError: If the second read fails too.
        """
        try:
            return self._store.load_ltp()
        except ProfileStorageError as e:
            log.warning("ltp_load_failed_retrying", error=str(e))
        self._store.repair()
        return self._store.load_ltp()

    def persist(self, ltp: LongTermProfile) -> LtpUpdateResult:
        """Validate and write a long-term profile.

        An invalid profile is replaced by the empty template. A failed
        write triggers one store repair and retry.
        """
        reset = False
        problems = validate_ltp(ltp)
        if problems:
            log.warning("ltp_invalid_reset", fields=problems)
            ltp = LongTermProfile.empty()
            reset = True

        try:
            self._store.save_ltp(ltp)
            return LtpUpdateResult(success=True, ltp=ltp, reset=reset)
        except ProfileStorageError as e:
            log.warning("ltp_save_failed_retrying", error=str(e))

        try:
            self._store.repair()
            self._store.save_ltp(ltp)
        except ProfileStorageError as e:
            log.error("ltp_save_failed", error=str(e))
            return LtpUpdateResult(success=False, ltp=ltp, error=str(e), reset=reset)

        return LtpUpdateResult(success=True, ltp=ltp, reset=reset)
