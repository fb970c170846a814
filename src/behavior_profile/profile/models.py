"""Profile records: short-term (per session) and long-term (per user).

A :class:`ShortTermProfile` is built once per closed session and never
changes afterwards. The :class:`LongTermProfile` is replaced by every
merge; :class:`LongTermProfileRecord` is the validated shape that gets
persisted.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from behavior_profile.events.models import parse_timestamp

# Sessions needed before the long-term profile reaches full confidence.
MAX_SESSIONS = 8

DEFAULT_TOPIC = "General"
UNKNOWN_INTENT = "unknown"


@dataclass(frozen=True)
class TopicScore:
    """A topic's raw momentum and its share of the session."""

    raw_score: float
    normalized_weight: float

    def to_dict(self) -> dict[str, float]:
        """Convert to dictionary for serialisation."""
        return {"raw_score": self.raw_score, "normalized_weight": self.normalized_weight}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TopicScore:
        """Create a TopicScore from a dictionary."""
        return cls(
            raw_score=float(data.get("raw_score", data.get("rawScore", 0.0))),
            normalized_weight=float(
                data.get("normalized_weight", data.get("normalizedWeight", 0.0))
            ),
        )


def _frozen(mapping: dict[str, Any] | None) -> MappingProxyType[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class ShortTermProfile:
    """Immutable summary of one closed session.

    Attributes:
        session_id: Session this snapshot describes.
        session_length_min: Session length in minutes (>= 1, 0 for the empty sentinel).
        engagement_confidence: How reliably the session reflects interest (0-1).
        diversity_entropy: Normalized topic entropy (0 focused, 1 exploratory).
        dominant_topic: Topic with the largest share.
        intent_focus: Intent with the largest share.
        intent_scores: Intent shares summing to 1 (or empty).
        topic_cumulative: Raw score and normalized weight per topic.
        raw_evidence: Short trail of queries and domains seen.
        calculated_at: When the snapshot was built.
    """

    session_id: str
    session_length_min: float = 0.0
    engagement_confidence: float = 0.0
    diversity_entropy: float = 0.0
    dominant_topic: str = DEFAULT_TOPIC
    intent_focus: str = UNKNOWN_INTENT
    intent_scores: MappingProxyType[str, float] = field(default_factory=lambda: _frozen({}))
    topic_cumulative: MappingProxyType[str, TopicScore] = field(
        default_factory=lambda: _frozen({})
    )
    raw_evidence: tuple[str, ...] = ()
    calculated_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self) -> None:
        """Freeze mapping fields so the snapshot cannot be mutated."""
        if not isinstance(self.intent_scores, MappingProxyType):
            object.__setattr__(self, "intent_scores", _frozen(self.intent_scores))
        if not isinstance(self.topic_cumulative, MappingProxyType):
            object.__setattr__(self, "topic_cumulative", _frozen(self.topic_cumulative))
        if not isinstance(self.raw_evidence, tuple):
            object.__setattr__(self, "raw_evidence", tuple(self.raw_evidence))

    @classmethod
    def empty(cls, session_id: str, calculated_at: datetime | None = None) -> ShortTermProfile:
        """Neutral snapshot for a session without usable events."""
        return cls(session_id=session_id, calculated_at=calculated_at or datetime.now())

    @property
    def is_empty(self) -> bool:
        """Whether this is the no-data sentinel."""
        return (
            not self.topic_cumulative
            and self.engagement_confidence == 0
            and self.intent_focus == UNKNOWN_INTENT
            and self.dominant_topic == DEFAULT_TOPIC
        )

    @property
    def raw_scores(self) -> dict[str, float]:
        """Raw per-topic scores."""
        return {topic: score.raw_score for topic, score in self.topic_cumulative.items()}

    @property
    def normalized_weights(self) -> dict[str, float]:
        """Per-topic shares."""
        return {
            topic: score.normalized_weight for topic, score in self.topic_cumulative.items()
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "session_id": self.session_id,
            "session_length_min": self.session_length_min,
            "engagement_confidence": self.engagement_confidence,
            "diversity_entropy": self.diversity_entropy,
            "dominant_topic": self.dominant_topic,
            "intent_focus": self.intent_focus,
            "intent_scores": dict(self.intent_scores),
            "topic_cumulative": {
                topic: score.to_dict() for topic, score in self.topic_cumulative.items()
            },
            "raw_evidence": list(self.raw_evidence),
            "calculated_at": self.calculated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ShortTermProfile:
        """Create a ShortTermProfile from a dictionary."""
        topics = data.get("topic_cumulative") or {}
        return cls(
            session_id=str(data.get("session_id", "")),
            session_length_min=float(data.get("session_length_min", 0.0)),
            engagement_confidence=float(data.get("engagement_confidence", 0.0)),
            diversity_entropy=float(data.get("diversity_entropy", 0.0)),
            dominant_topic=str(data.get("dominant_topic", DEFAULT_TOPIC)),
            intent_focus=str(data.get("intent_focus", UNKNOWN_INTENT)),
            intent_scores={k: float(v) for k, v in (data.get("intent_scores") or {}).items()},
            topic_cumulative={
                topic: TopicScore.from_dict(value)
                for topic, value in topics.items()
                if isinstance(value, dict)
            },
            raw_evidence=tuple(data.get("raw_evidence") or ()),
            calculated_at=parse_timestamp(data.get("calculated_at")) or datetime.now(),
        )


@dataclass
class LongTermProfile:
    """Durable cross-session profile of the user.

    ``topic_cumulative`` holds raw, unnormalized momentum that compounds
    across sessions and only shrinks through time decay.
    """

    topic_cumulative: dict[str, float] = field(default_factory=dict)
    sessions_seen: int = 0
    ewma_focus: float = 0.5
    ewma_depth: float = 0.5
    intent_aggregate: dict[str, float] = field(default_factory=dict)
    last_updated: datetime | None = None
    confidence: float = 0.0

    @classmethod
    def empty(cls) -> LongTermProfile:
        """The template a new user starts from."""
        return cls()

    @property
    def is_empty(self) -> bool:
        """Whether no session has been accepted yet."""
        return self.sessions_seen == 0 and not self.topic_cumulative

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "topic_cumulative": dict(self.topic_cumulative),
            "sessions_seen": self.sessions_seen,
            "ewma_focus": self.ewma_focus,
            "ewma_depth": self.ewma_depth,
            "intent_aggregate": dict(self.intent_aggregate),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LongTermProfile:
        """Create a LongTermProfile from a validated dictionary.

        Raises:
            pydantic.ValidationError: If the record is malformed.
        """
        record = LongTermProfileRecord.model_validate(data)
        return record.to_profile()


def _check_finite_non_negative(values: dict[str, float]) -> dict[str, float]:
    for key, value in values.items():
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"score for {key!r} must be finite and non-negative, got {value}")
    return values


class LongTermProfileRecord(BaseModel):
    """Persisted shape of the long-term profile.

    Every field is required so that a partially written record is
    rejected rather than silently completed.
    """

    topic_cumulative: dict[str, float]
    sessions_seen: int = Field(ge=0)
    ewma_focus: float = Field(ge=0.0, le=1.0)
    ewma_depth: float = Field(ge=0.0, le=1.0)
    intent_aggregate: dict[str, float]
    last_updated: datetime | None
    confidence: float = Field(ge=0.0, le=1.0)

    @field_validator("topic_cumulative", "intent_aggregate")
    @classmethod
    def validate_scores(cls, v: dict[str, float]) -> dict[str, float]:
        """Validate every score is finite and non-negative."""
        return _check_finite_non_negative(v)

    @classmethod
    def from_profile(cls, profile: LongTermProfile) -> LongTermProfileRecord:
        """Validate an in-memory profile.

        Raises:
            pydantic.ValidationError: If any field is out of bounds.
        """
        return cls.model_validate(profile.to_dict())

    def to_profile(self) -> LongTermProfile:
        """Convert back to the working dataclass."""
        return LongTermProfile(
            topic_cumulative=dict(self.topic_cumulative),
            sessions_seen=self.sessions_seen,
            ewma_focus=self.ewma_focus,
            ewma_depth=self.ewma_depth,
            intent_aggregate=dict(self.intent_aggregate),
            last_updated=parse_timestamp(self.last_updated),
            confidence=self.confidence,
        )


def validate_ltp(profile: LongTermProfile) -> list[str]:
    """Return the validation problems of a profile (empty when valid)."""
    try:
        LongTermProfileRecord.from_profile(profile)
    except ValidationError as e:
        return [".".join(str(part) for part in err["loc"]) for err in e.errors()]
    return []
