"""Unit tests for the session topic aggregator."""

from datetime import datetime
from unittest.mock import MagicMock

import pytest

from behavior_profile.profile.models import DEFAULT_TOPIC, UNKNOWN_INTENT
from behavior_profile.profile.session import (
    SessionTopicAggregator,
    build_page_topic_map,
    build_search_topic_map,
    diversity_entropy,
    dominant_topic,
    engagement_confidence,
    intent_focus,
    intent_multiplier,
    merge_topic_maps,
    session_length_minutes,
)

CALCULATED_AT = datetime(2026, 3, 1, 12, 0)


def _source(searches=(), pages=()):
    source = MagicMock()
    source.get_searches_by_session.return_value = list(searches)
    source.get_pages_by_session.return_value = list(pages)
    return source


class TestTopicMaps:
    """Tests for the per-source topic maps."""

    @pytest.mark.parametrize(
        ("intent", "expected"),
        [
            ("informational", 1.2),
            ("instructional", 1.2),
            ("transactional", 1.0),
            ("navigational", 1.0),
            ("Informational", 1.2),
            ("something-else", 1.0),
            (None, 1.0),
        ],
    )
    def test_intent_multiplier(self, intent, expected):
        """Test intent multipliers."""
        assert intent_multiplier(intent) == expected

    def test_search_map_spreads_quality(self, make_search):
        """Test search quality is spread by topic weight."""
        search = make_search(
            topics=(("Technology", 0.75), ("Science", 0.25)),
            confidence=1.0,
            specificity=1.0,
            intent="transactional",
        )

        result = build_search_topic_map([search])

        assert result == pytest.approx({"Technology": 0.75, "Science": 0.25})

    def test_search_map_skips_unenriched_and_zero_quality(self, make_search):
        """Test unprocessed or zero-quality searches contribute nothing."""
        searches = [
            make_search(enriched=False),
            make_search(confidence=0.0),
        ]
        assert build_search_topic_map(searches) == {}

    def test_search_map_skips_blank_and_non_positive_topics(self, make_search):
        """Test blank topics and non-positive weights are ignored."""
        search = make_search(
            topics=(("", 0.5), ("Science", 0.0), ("Technology", 1.0)),
            confidence=1.0,
            specificity=1.0,
            intent="navigational",
        )
        assert build_search_topic_map([search]) == {"Technology": 1.0}

    def test_search_map_clamps_weights(self, make_search):
        """Test topic weights above 1 are clamped."""
        search = make_search(
            topics=(("Technology", 3.0),),
            confidence=1.0,
            specificity=0.5,
            intent="navigational",
        )
        assert build_search_topic_map([search]) == {"Technology": 0.5}

    def test_page_map_uses_engagement(self, make_page):
        """Test page quality is the engagement score scaled to 0-1."""
        page = make_page(topics=(("Health", 1.0),), engagement_score=60.0)
        assert build_page_topic_map([page]) == pytest.approx({"Health": 0.6})

    def test_page_map_skips_unclassified_and_unengaged(self, make_page):
        """Test pages without topics or engagement are skipped."""
        pages = [make_page(topics=None), make_page(engagement_score=0.0)]
        assert build_page_topic_map(pages) == {}

    def test_merge_weights(self):
        """Test search and page maps are merged 0.4 / 0.6."""
        merged = merge_topic_maps({"Technology": 1.0}, {"Technology": 1.0, "Science": 0.5})

        assert merged == pytest.approx({"Technology": 1.0, "Science": 0.3})


class TestSessionMetrics:
    """Tests for entropy, dominance, engagement and intent helpers."""

    def test_entropy_single_topic(self):
        """Test one topic has zero diversity."""
        assert diversity_entropy({"Technology": 1.0}) == 0.0

    def test_entropy_uniform(self):
        """Test a uniform distribution has full diversity."""
        assert diversity_entropy({"a": 0.25, "b": 0.25, "c": 0.25, "d": 0.25}) == pytest.approx(1.0)

    def test_entropy_skewed_is_between(self):
        """Test a skewed distribution sits strictly between 0 and 1."""
        value = diversity_entropy({"a": 0.9, "b": 0.1})
        assert 0.0 < value < 1.0

    def test_dominant_topic(self):
        """Test the heaviest topic wins."""
        assert dominant_topic({"Science": 0.3, "Technology": 0.7}) == "Technology"

    def test_dominant_topic_default(self):
        """Test the default topic when there are no weights."""
        assert dominant_topic({}) == DEFAULT_TOPIC

    def test_engagement_confidence_weighting(self, make_search, make_page):
        """Test pages weigh active minutes and searches half a minute."""
        page = make_page(engagement_score=80.0, active_seconds=120.0)
        search = make_search(confidence=0.8, specificity=0.5)

        result = engagement_confidence([search], [page])

        # (0.8 * 2 + 0.4 * 0.5) / 2.5
        assert result == pytest.approx(0.72)

    def test_engagement_confidence_excludes_missing(self, make_search, make_page):
        """Test events without confidence are excluded, not counted as zero."""
        page = make_page(engagement_score=None, active_seconds=600.0)
        search = make_search(confidence=0.5, specificity=1.0)
        unenriched = make_search(enriched=False)

        assert engagement_confidence([search, unenriched], [page]) == pytest.approx(0.5)

    def test_engagement_confidence_no_data(self):
        """Test zero confidence when nothing qualifies."""
        assert engagement_confidence([], []) == 0.0

    def test_intent_focus(self, make_search):
        """Test intent shares use confidence x specificity."""
        searches = [
            make_search(intent="transactional", confidence=1.0, specificity=1.0),
            make_search(intent="informational", confidence=0.5, specificity=0.5),
        ]

        focus, scores = intent_focus(searches)

        assert focus == "transactional"
        assert scores == pytest.approx({"transactional": 0.8, "informational": 0.2})

    def test_intent_focus_unknown(self, make_search):
        """Test unknown intent without enriched searches."""
        assert intent_focus([make_search(enriched=False)]) == (UNKNOWN_INTENT, {})

    def test_session_length_uses_span(self, make_page):
        """Test the wall-clock span wins over short active time."""
        start = datetime(2026, 3, 1, 10, 0)
        pages = [
            make_page(start=start, duration_minutes=5, active_seconds=60.0),
            make_page(start=start.replace(minute=20), duration_minutes=10, active_seconds=60.0),
        ]
        assert session_length_minutes(pages) == pytest.approx(30.0)

    def test_session_length_at_least_one_minute(self, make_page):
        """Test very short sessions count as one minute."""
        assert session_length_minutes([make_page(active_seconds=10.0)]) == 1.0


class TestSessionTopicAggregator:
    """Tests for SessionTopicAggregator.build()."""

    def test_build(self, make_search, make_page):
        """Test a full aggregation of one search and one page."""
        aggregator = SessionTopicAggregator(
            _source(
                [make_search(confidence=0.8, specificity=0.5)],
                [make_page(engagement_score=80.0, active_seconds=120.0)],
            )
        )

        stp = aggregator.build("s1", calculated_at=CALCULATED_AT)

        # 0.4 * (0.8 * 0.5 * 1.2) + 0.6 * 0.8
        assert stp.topic_cumulative["Technology"].raw_score == pytest.approx(0.672)
        assert stp.topic_cumulative["Technology"].normalized_weight == 1.0
        assert stp.dominant_topic == "Technology"
        assert stp.diversity_entropy == 0.0
        assert stp.engagement_confidence == pytest.approx(0.72)
        assert stp.intent_focus == "informational"
        assert dict(stp.intent_scores) == {"informational": 1.0}
        assert stp.session_length_min == pytest.approx(2.0)
        assert stp.calculated_at == CALCULATED_AT
        assert stp.raw_evidence == (
            "query: python asyncio tutorial",
            "url: docs.python.org",
        )
        assert not stp.is_empty

    def test_build_weights_sum_to_one(self, make_search, make_page):
        """Test normalized weights form a distribution."""
        aggregator = SessionTopicAggregator(
            _source(
                [make_search(topics=(("Science", 0.6), ("Health", 0.4)))],
                [
                    make_page(topics=(("Technology", 0.7), ("Science", 0.3))),
                    make_page(topics=(("Finance", 1.0),), engagement_score=35.0),
                ],
            )
        )

        stp = aggregator.build("s1", calculated_at=CALCULATED_AT)

        assert 0.99 <= sum(stp.normalized_weights.values()) <= 1.01
        assert 0.0 < stp.diversity_entropy <= 1.0

    def test_immaterial_topic_keeps_raw_score(self, make_page):
        """Test a topic below the threshold keeps its raw score with zero weight."""
        page = make_page(
            topics=(("Technology", 0.995), ("Science", 0.005)),
            engagement_score=100.0,
        )
        aggregator = SessionTopicAggregator(_source(pages=[page]))

        stp = aggregator.build("s1", calculated_at=CALCULATED_AT)

        assert stp.topic_cumulative["Science"].raw_score == pytest.approx(0.003)
        assert stp.topic_cumulative["Science"].normalized_weight == 0.0
        assert stp.topic_cumulative["Technology"].normalized_weight == 1.0

    def test_build_empty_session(self):
        """Test a session without events yields the empty sentinel."""
        stp = SessionTopicAggregator(_source()).build("s-empty", calculated_at=CALCULATED_AT)

        assert stp.is_empty
        assert stp.session_id == "s-empty"
        assert stp.session_length_min == 0
        assert stp.dominant_topic == DEFAULT_TOPIC
        assert stp.intent_focus == UNKNOWN_INTENT
        assert stp.engagement_confidence == 0.0

    def test_stp_is_immutable(self, make_page):
        """Test the snapshot cannot be modified."""
        stp = SessionTopicAggregator(_source(pages=[make_page()])).build("s1")

        with pytest.raises(TypeError):
            stp.topic_cumulative["Science"] = None  # type: ignore[index]
        with pytest.raises(AttributeError):
            stp.dominant_topic = "Science"  # type: ignore[misc]
