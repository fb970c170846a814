"""Session topic aggregator: builds the short-term profile of a closed session.

The aggregation pipeline:
1. Fetch the session's search and page events
2. Score topics per source (search quality, page engagement)
3. Merge the two maps with fixed contribution weights
4. Pair each topic's raw score with its normalized share
5. Derive entropy, dominant topic, engagement confidence and intent focus
"""

import math
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Protocol

from behavior_profile.events.models import PageEvent, SearchEvent, TopicDomain
from behavior_profile.logging import get_logger
from behavior_profile.profile.models import (
    DEFAULT_TOPIC,
    UNKNOWN_INTENT,
    ShortTermProfile,
    TopicScore,
)
from behavior_profile.profile.normalizer import normalize

log = get_logger("behavior_profile.profile.session")

SEARCH_CONTRIBUTION = 0.4
PAGE_CONTRIBUTION = 0.6

INTENT_MULTIPLIERS = {
    "informational": 1.2,
    "instructional": 1.2,
    "transactional": 1.0,
    "navigational": 1.0,
}

# Nominal reading time credited to one search, in minutes.
SEARCH_NOMINAL_MINUTES = 0.5

MAX_EVIDENCE_ITEMS = 50
_PRECISION = 6


class SessionEventSource(Protocol):
    """Read access to the events of a session."""

    def get_searches_by_session(self, session_id: str) -> list[SearchEvent]: ...

    def get_pages_by_session(self, session_id: str) -> list[PageEvent]: ...


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def intent_multiplier(intent_type: str | None) -> float:
    """Weight applied to a search's quality according to its intent."""
    if not intent_type:
        return 1.0
    return INTENT_MULTIPLIERS.get(intent_type.lower(), 1.0)


def search_quality(event: SearchEvent) -> float:
    """Quality of an enriched search: specificity x confidence x intent multiplier."""
    if event.enrichment is None:
        return 0.0
    e = event.enrichment
    return e.specificity * e.confidence * intent_multiplier(e.intent_type)


def page_quality(event: PageEvent) -> float:
    """Quality of a page visit: its engagement score scaled to 0-1."""
    score = event.engagement.engagement_score
    if score is None:
        return 0.0
    return _clamp01(score / 100)


def _distribute(
    topic_map: dict[str, float], quality: float, domains: Iterable[TopicDomain]
) -> int:
    """Spread ``quality`` over topics proportional to their weight.

    Returns:
        Number of topics that received a share.
    """
    credited = 0
    for domain in domains:
        topic = (domain.topic or "").strip()
        if not topic or domain.weight is None or domain.weight <= 0:
            continue
        topic_map[topic] = topic_map.get(topic, 0.0) + quality * _clamp01(domain.weight)
        credited += 1
    return credited


def build_search_topic_map(searches: Iterable[SearchEvent]) -> dict[str, float]:
    """Raw topic scores contributed by enriched searches."""
    topic_map: dict[str, float] = {}
    for search in searches:
        if search.enrichment is None or not search.enrichment.topic_domains:
            continue
        quality = search_quality(search)
        if quality <= 0:
            continue
        _distribute(topic_map, quality, search.enrichment.topic_domains)
    return topic_map


def build_page_topic_map(pages: Iterable[PageEvent]) -> dict[str, float]:
    """Raw topic scores contributed by engaged page visits."""
    topic_map: dict[str, float] = {}
    for page in pages:
        if not page.topic_domains:
            continue
        quality = page_quality(page)
        if quality <= 0:
            continue
        _distribute(topic_map, quality, page.topic_domains)
    return topic_map


def merge_topic_maps(
    search_map: Mapping[str, float],
    page_map: Mapping[str, float],
    search_weight: float = SEARCH_CONTRIBUTION,
    page_weight: float = PAGE_CONTRIBUTION,
) -> dict[str, float]:
    """Weighted sum of the search and page maps (not normalized)."""
    topics = set(search_map) | set(page_map)
    return {
        topic: search_map.get(topic, 0.0) * search_weight + page_map.get(topic, 0.0) * page_weight
        for topic in sorted(topics)
    }


def diversity_entropy(weights: Mapping[str, float]) -> float:
    """Shannon entropy of the weights divided by its maximum, in [0, 1]."""
    n = len(weights)
    if n <= 1:
        return 0.0
    entropy = -sum(p * math.log2(p) for p in weights.values() if 0 < p <= 1)
    if entropy <= 0 or not math.isfinite(entropy):
        return 0.0
    return _clamp01(entropy / math.log2(n))


def dominant_topic(weights: Mapping[str, float]) -> str:
    """Topic with the largest weight, ``"General"`` when none."""
    best, best_weight = DEFAULT_TOPIC, 0.0
    for topic, weight in weights.items():
        if weight > best_weight:
            best, best_weight = topic, weight
    return best


def engagement_confidence(searches: Iterable[SearchEvent], pages: Iterable[PageEvent]) -> float:
    """Time-weighted mean of per-event confidence.

    Pages weigh their active minutes; each search weighs a nominal half
    minute. Events without a usable confidence are left out entirely.
    """
    weighted, total_weight = 0.0, 0.0

    for page in pages:
        if page.engagement.engagement_score is None:
            continue
        confidence = page_quality(page)
        minutes = max(0.0, page.engagement.active_time_seconds / 60)
        if minutes > 0 and confidence > 0:
            weighted += confidence * minutes
            total_weight += minutes

    for search in searches:
        if search.enrichment is None:
            continue
        confidence = _clamp01(search.enrichment.specificity * search.enrichment.confidence)
        if confidence > 0:
            weighted += confidence * SEARCH_NOMINAL_MINUTES
            total_weight += SEARCH_NOMINAL_MINUTES

    if total_weight <= 0:
        return 0.0
    return _clamp01(weighted / total_weight)


def intent_focus(searches: Iterable[SearchEvent]) -> tuple[str, dict[str, float]]:
    """Dominant intent and intent shares of the session's searches."""
    tallies: dict[str, float] = {}
    for search in searches:
        e = search.enrichment
        if e is None or not e.intent_type:
            continue
        intent = e.intent_type.lower()
        tallies[intent] = tallies.get(intent, 0.0) + e.confidence * e.specificity

    total = sum(tallies.values())
    if total <= 0:
        return UNKNOWN_INTENT, {}

    scores = {intent: round(score / total, _PRECISION) for intent, score in tallies.items()}
    focus = max(tallies, key=lambda intent: tallies[intent])
    return focus, scores


def session_length_minutes(pages: Iterable[PageEvent]) -> float:
    """Larger of summed active time and wall-clock span, at least one minute."""
    pages = list(pages)
    active_minutes = sum(max(0.0, p.engagement.active_time_seconds) for p in pages) / 60

    span_minutes = 0.0
    bounded = [p for p in pages if p.start_time and p.end_time]
    if bounded:
        start = min(p.start_time for p in bounded if p.start_time)
        end = max(p.end_time for p in bounded if p.end_time)
        span_minutes = (end - start).total_seconds() / 60

    return max(active_minutes, span_minutes, 1.0)


def raw_evidence(searches: Iterable[SearchEvent], pages: Iterable[PageEvent]) -> tuple[str, ...]:
    """Short trail of the queries and domains behind the profile."""
    evidence = [f"query: {s.query}" for s in searches if s.query]
    evidence.extend(f"url: {p.domain}" for p in pages if p.domain)
    return tuple(evidence[:MAX_EVIDENCE_ITEMS])


class SessionTopicAggregator:
    """Builds one :class:`ShortTermProfile` per closed session."""

    def __init__(self, events: SessionEventSource):
        """Initialize the aggregator.

        Args:
            events: Store the session's events are read from.
        """
        self._events = events

    def build(self, session_id: str, calculated_at: datetime | None = None) -> ShortTermProfile:
        """Aggregate a closed session into a short-term profile.

        Args:
            session_id: The session to aggregate.
            calculated_at: Snapshot time (defaults to now).

        Returns:
            The snapshot, or the empty sentinel when the session has no events.
        """
        calculated_at = calculated_at or datetime.now()
        searches = self._events.get_searches_by_session(session_id)
        pages = self._events.get_pages_by_session(session_id)

        if not searches and not pages:
            log.warning("stp_no_events", session_id=session_id)
            return ShortTermProfile.empty(session_id, calculated_at)

        return self.build_from_events(session_id, searches, pages, calculated_at)

    def build_from_events(
        self,
        session_id: str,
        searches: list[SearchEvent],
        pages: list[PageEvent],
        calculated_at: datetime | None = None,
    ) -> ShortTermProfile:
        """Aggregate already-fetched events."""
        raw = merge_topic_maps(build_search_topic_map(searches), build_page_topic_map(pages))
        weights = normalize(raw)

        topic_cumulative = {
            topic: TopicScore(
                raw_score=round(score, _PRECISION),
                normalized_weight=round(weights.get(topic, 0.0), _PRECISION),
            )
            for topic, score in raw.items()
        }
        focus, intent_scores = intent_focus(searches)

        stp = ShortTermProfile(
            session_id=session_id,
            session_length_min=session_length_minutes(pages),
            engagement_confidence=engagement_confidence(searches, pages),
            diversity_entropy=diversity_entropy(weights),
            dominant_topic=dominant_topic(weights),
            intent_focus=focus,
            intent_scores=intent_scores,
            topic_cumulative=topic_cumulative,
            raw_evidence=raw_evidence(searches, pages),
            calculated_at=calculated_at or datetime.now(),
        )

        log.info(
            "stp_built",
            session_id=session_id,
            searches=len(searches),
            pages=len(pages),
            topics=len(topic_cumulative),
            dominant_topic=stp.dominant_topic,
            intent_focus=stp.intent_focus,
            engagement_confidence=round(stp.engagement_confidence, 4),
        )
        return stp
