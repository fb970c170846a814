"""Activity event records consumed by the profile pipeline.

Producers outside the engine create :class:`SearchEvent` and
:class:`PageEvent` records tagged with a session id. Inference tasks
enrich them (intent, topic domains) and the session aggregator reads
them once the session has closed.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4


class IntentType(StrEnum):
    """Search intent categories produced by enrichment."""

    INFORMATIONAL = "informational"
    TRANSACTIONAL = "transactional"
    INSTRUCTIONAL = "instructional"
    NAVIGATIONAL = "navigational"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO timestamp (or pass through a datetime) as a naive local time."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class TopicDomain:
    """A topic label with its relevance weight inside one event."""

    topic: str
    weight: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {"topic": self.topic, "weight": self.weight}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TopicDomain:
        """Create a TopicDomain from a dictionary."""
        return cls(topic=str(data.get("topic", "")), weight=float(data.get("weight", 0.0)))


def topic_domains_from_list(items: Any) -> tuple[TopicDomain, ...]:
    """Build topic domains from a list of dicts, skipping malformed entries."""
    if not isinstance(items, list | tuple):
        return ()
    domains: list[TopicDomain] = []
    for item in items:
        if isinstance(item, TopicDomain):
            domains.append(item)
        elif isinstance(item, dict):
            try:
                domains.append(TopicDomain.from_dict(item))
            except (TypeError, ValueError):
                continue
    return tuple(domains)


# ---------------------------------------------------------------------------
# Engagement scoring
# ---------------------------------------------------------------------------


def _time_score(active_seconds: float) -> int:
    """0-40 points for time spent on the page."""
    if active_seconds <= 30:
        return round((active_seconds / 30) * 10)
    if active_seconds <= 300:
        return 10 + round(((active_seconds - 30) / 270) * 20)
    return 30 + round(min(10, (active_seconds - 300) / 60))


def _content_score(scroll_depth: float, highlights: int) -> int:
    """0-30 points for reading depth."""
    scroll_points = (scroll_depth / 100) * 20
    highlight_points = min(10, highlights * 2)
    return round(scroll_points + highlight_points)


def _interaction_score(clicks: int, copies: int, pastes: int) -> int:
    """0-20 points for interactions."""
    total = clicks + copies + pastes
    if total == 0:
        return 0
    if total <= 5:
        return total * 2
    if total <= 10:
        return 10 + (total - 5)
    return 15 + min(5, (total - 10) // 2)


def _focus_score(tab_switches: int) -> int:
    """0-10 points, fewer tab switches means more focus."""
    if tab_switches == 0:
        return 10
    if tab_switches <= 2:
        return 7
    return 3


def compute_engagement_score(
    active_time_seconds: float,
    scroll_depth: float,
    clicks: int,
    copies: int,
    pastes: int,
    highlights: int,
    tab_switches: int,
) -> int:
    """Combine engagement signals into a 0-100 score."""
    total = (
        _time_score(active_time_seconds)
        + _content_score(scroll_depth, highlights)
        + _interaction_score(clicks, copies, pastes)
        + _focus_score(tab_switches)
    )
    return int(_clamp(round(total), 0, 100))


@dataclass(frozen=True)
class EngagementMetrics:
    """Engagement signals recorded for a page visit.

    Attributes:
        active_time_seconds: Seconds the page was focused and active.
        scroll_depth: Maximum scroll depth, percent (0-100).
        clicks: Click count.
        copies: Copy count.
        pastes: Paste count.
        highlights: Text selections / highlights.
        tab_switches: Times the user left the tab.
        engagement_score: Combined score, 0-100.
    """

    active_time_seconds: float = 0.0
    scroll_depth: float = 0.0
    clicks: int = 0
    copies: int = 0
    pastes: int = 0
    highlights: int = 0
    tab_switches: int = 0
    engagement_score: float | None = None

    @classmethod
    def from_raw(cls, raw: dict[str, Any]) -> EngagementMetrics:
        """Clamp raw tracker counters and compute the engagement score."""

        def _number(key: str, *aliases: str) -> float:
            for name in (key, *aliases):
                value = raw.get(name)
                if value is None:
                    continue
                try:
                    number = float(value)
                except (TypeError, ValueError):
                    continue
                if math.isfinite(number):
                    return max(0.0, number)
            return 0.0

        active = _number("active_time_seconds", "activeTime", "activeTimeSeconds")
        scroll = _clamp(_number("scroll_depth", "scrollDepth"), 0.0, 100.0)
        clicks = int(_number("clicks"))
        copies = int(_number("copies"))
        pastes = int(_number("pastes"))
        highlights = int(_number("highlights"))
        tab_switches = int(_number("tab_switches", "tabSwitches"))

        return cls(
            active_time_seconds=active,
            scroll_depth=scroll,
            clicks=clicks,
            copies=copies,
            pastes=pastes,
            highlights=highlights,
            tab_switches=tab_switches,
            engagement_score=compute_engagement_score(
                active, scroll, clicks, copies, pastes, highlights, tab_switches
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "active_time_seconds": self.active_time_seconds,
            "scroll_depth": self.scroll_depth,
            "clicks": self.clicks,
            "copies": self.copies,
            "pastes": self.pastes,
            "highlights": self.highlights,
            "tab_switches": self.tab_switches,
            "engagement_score": self.engagement_score,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngagementMetrics:
        """Create metrics from a stored dictionary (no rescoring)."""
        score = data.get("engagement_score")
        return cls(
            active_time_seconds=float(data.get("active_time_seconds", 0.0)),
            scroll_depth=float(data.get("scroll_depth", 0.0)),
            clicks=int(data.get("clicks", 0)),
            copies=int(data.get("copies", 0)),
            pastes=int(data.get("pastes", 0)),
            highlights=int(data.get("highlights", 0)),
            tab_switches=int(data.get("tab_switches", 0)),
            engagement_score=float(score) if score is not None else None,
        )


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SearchEnrichment:
    """Inference output attached to a search query."""

    intent_type: str
    topic_domains: tuple[TopicDomain, ...]
    confidence: float
    specificity: float
    model_used: str = "ollama"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "intent_type": self.intent_type,
            "topic_domains": [td.to_dict() for td in self.topic_domains],
            "confidence": self.confidence,
            "specificity": self.specificity,
            "model_used": self.model_used,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SearchEnrichment:
        """Create an enrichment from a dictionary (accepts camelCase keys)."""
        return cls(
            intent_type=str(data.get("intent_type", data.get("intentType", ""))).lower(),
            topic_domains=topic_domains_from_list(
                data.get("topic_domains", data.get("topicDomains", []))
            ),
            confidence=float(data.get("confidence", 0.0)),
            specificity=float(data.get("specificity", 0.0)),
            model_used=str(data.get("model_used", data.get("modelUsed", "ollama"))),
        )


@dataclass(frozen=True)
class SearchEvent:
    """A search query issued by the user."""

    query: str
    session_id: str
    tab_id: int | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=lambda: str(uuid4()))
    enrichment: SearchEnrichment | None = None

    @property
    def processed(self) -> bool:
        """Whether enrichment has been applied."""
        return self.enrichment is not None

    def with_enrichment(self, enrichment: SearchEnrichment) -> SearchEvent:
        """Return a copy carrying the given enrichment."""
        return replace(self, enrichment=enrichment)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "id": self.id,
            "query": self.query,
            "session_id": self.session_id,
            "tab_id": self.tab_id,
            "timestamp": self.timestamp.isoformat(),
            "enrichment": self.enrichment.to_dict() if self.enrichment else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SearchEvent:
        """Create a SearchEvent from a dictionary."""
        enrichment = data.get("enrichment")
        return cls(
            id=str(data.get("id") or uuid4()),
            query=str(data.get("query", "")),
            session_id=str(data.get("session_id", "")),
            tab_id=data.get("tab_id"),
            timestamp=parse_timestamp(data.get("timestamp")) or datetime.now(),
            enrichment=SearchEnrichment.from_dict(enrichment) if enrichment else None,
        )


@dataclass(frozen=True)
class PageEvent:
    """A page visit with its engagement signals."""

    url: str
    domain: str
    session_id: str
    tab_id: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    engagement: EngagementMetrics = field(default_factory=EngagementMetrics)
    content_sample: str | None = None
    topic_domains: tuple[TopicDomain, ...] | None = None
    id: str = field(default_factory=lambda: str(uuid4()))

    def with_topics(self, topic_domains: tuple[TopicDomain, ...]) -> PageEvent:
        """Return a copy carrying inferred topic domains."""
        return replace(self, topic_domains=tuple(topic_domains))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialisation."""
        return {
            "id": self.id,
            "url": self.url,
            "domain": self.domain,
            "session_id": self.session_id,
            "tab_id": self.tab_id,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "engagement": self.engagement.to_dict(),
            "content_sample": self.content_sample,
            "topic_domains": [td.to_dict() for td in self.topic_domains]
            if self.topic_domains is not None
            else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PageEvent:
        """Create a PageEvent from a dictionary."""
        topics = data.get("topic_domains")
        return cls(
            id=str(data.get("id") or uuid4()),
            url=str(data.get("url", "")),
            domain=str(data.get("domain", "")),
            session_id=str(data.get("session_id", "")),
            tab_id=data.get("tab_id"),
            start_time=parse_timestamp(data.get("start_time")),
            end_time=parse_timestamp(data.get("end_time")),
            engagement=EngagementMetrics.from_dict(data.get("engagement") or {}),
            content_sample=data.get("content_sample"),
            topic_domains=topic_domains_from_list(topics) if topics is not None else None,
        )
