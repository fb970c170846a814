"""Unit tests for enrichment with the fallback ladder."""

from unittest.mock import AsyncMock

import pytest

from behavior_profile.events.models import TopicDomain
from behavior_profile.inference.client import InferenceError
from behavior_profile.inference.enrichment import (
    STATIC_SEARCH_ENRICHMENT,
    EnrichmentService,
)
from behavior_profile.inference.heuristics import HEURISTIC_MODEL
from behavior_profile.inference.parsing import ResponseParseError
from behavior_profile.inference.topics import UNKNOWN_TOPICS

VALID_SEARCH = {
    "intent_type": "instructional",
    "topic_domains": [{"topic": "Food", "weight": 0.8}, {"topic": "Health", "weight": 0.2}],
    "confidence": 0.9,
    "specificity": 0.7,
}


class TestAnalyzeSearchQuery:
    """Tests for EnrichmentService.analyze_search_query()."""

    @pytest.mark.asyncio
    async def test_structured_call(self, mock_client):
        """Test the structured rung answers first."""
        mock_client.infer = AsyncMock(return_value=VALID_SEARCH)

        result = await EnrichmentService(mock_client).analyze_search_query("how to bake bread")

        assert result.intent_type == "instructional"
        assert result.topic_domains == (TopicDomain("Food", 0.8), TopicDomain("Health", 0.2))
        assert result.model_used == "llama3.2:3b"
        mock_client.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_free_text_rung(self, mock_client):
        """Test a failed structured call falls back to free text with JSON extraction."""
        mock_client.infer = AsyncMock(side_effect=InferenceError("format unsupported"))
        mock_client.generate = AsyncMock(
            return_value='Sure:\n```json\n{"intent_type": "navigational", '
            '"topic_domains": [{"topic": "Technology", "weight": 1.0}], '
            '"confidence": 0.8, "specificity": 0.3}\n```'
        )

        result = await EnrichmentService(mock_client).analyze_search_query("github login")

        assert result.intent_type == "navigational"
        assert result.topic_domains == (TopicDomain("Technology", 1.0),)
        prompt = mock_client.generate.call_args.args[0]
        assert "Respond with only a JSON object" in prompt

    @pytest.mark.asyncio
    async def test_heuristic_rung(self, mock_client):
        """Test heuristics answer when both model rungs fail."""
        mock_client.infer = AsyncMock(side_effect=ResponseParseError("garbage"))
        mock_client.generate = AsyncMock(side_effect=InferenceError("connection refused"))

        result = await EnrichmentService(mock_client).analyze_search_query("buy stock")

        assert result.model_used == HEURISTIC_MODEL
        assert result.intent_type == "transactional"
        assert result.topic_domains[0].topic == "Finance"

    @pytest.mark.asyncio
    async def test_invalid_structured_output_moves_on(self, mock_client):
        """Test a schema violation is treated like a failure."""
        mock_client.infer = AsyncMock(return_value={**VALID_SEARCH, "confidence": 7})
        mock_client.generate = AsyncMock(return_value="I cannot answer that.")

        result = await EnrichmentService(mock_client).analyze_search_query("history of rome")

        assert result.model_used == HEURISTIC_MODEL

    @pytest.mark.asyncio
    async def test_static_default(self, mock_client, monkeypatch):
        """Test the static default when even the heuristic fails."""
        mock_client.infer = AsyncMock(side_effect=InferenceError("down"))
        mock_client.generate = AsyncMock(side_effect=InferenceError("down"))

        def _broken(query):
            raise RuntimeError("boom")

        monkeypatch.setattr(
            "behavior_profile.inference.enrichment.fallback_search_analysis", _broken
        )
        result = await EnrichmentService(mock_client).analyze_search_query("anything")

        assert result == STATIC_SEARCH_ENRICHMENT

    @pytest.mark.asyncio
    async def test_blank_query(self, mock_client):
        """Test blank queries skip the model."""
        result = await EnrichmentService(mock_client).analyze_search_query("   ")

        assert result == STATIC_SEARCH_ENRICHMENT
        mock_client.infer.assert_not_called()


class TestInferPageTopics:
    """Tests for EnrichmentService.infer_page_topics()."""

    @pytest.mark.asyncio
    async def test_structured_call(self, mock_client):
        """Test topics are validated and renormalized."""
        mock_client.infer = AsyncMock(
            return_value={
                "topic_domains": [
                    {"topic": "Science", "weight": 0.6},
                    {"topic": "Made Up", "weight": 0.2},
                    {"topic": "Environment", "weight": 0.2},
                ]
            }
        )

        result = await EnrichmentService(mock_client).infer_page_topics(
            "Climate research shows...", url="https://example.org"
        )

        assert result == (TopicDomain("Science", 0.75), TopicDomain("Environment", 0.25))

    @pytest.mark.asyncio
    async def test_extra_topics_dropped_before_renormalizing(self, mock_client):
        """Test the three heaviest topics are kept and still sum to one."""
        mock_client.infer = AsyncMock(
            return_value={
                "topic_domains": [
                    {"topic": "Travel", "weight": 0.1},
                    {"topic": "Science", "weight": 0.4},
                    {"topic": "Technology", "weight": 0.3},
                    {"topic": "Health", "weight": 0.2},
                ]
            }
        )

        result = await EnrichmentService(mock_client).infer_page_topics("Lab equipment review")

        assert [td.topic for td in result] == ["Science", "Technology", "Health"]
        assert sum(td.weight for td in result) == pytest.approx(1.0, abs=0.01)
        assert result[0].weight == pytest.approx(0.444)

    @pytest.mark.asyncio
    async def test_no_content(self, mock_client):
        """Test pages without content are Unknown without a model call."""
        result = await EnrichmentService(mock_client).infer_page_topics(None)

        assert result == UNKNOWN_TOPICS
        mock_client.infer.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_topics_falls_through(self, mock_client):
        """Test a response without topics moves to the next rung."""
        mock_client.infer = AsyncMock(return_value={"summary": "a page"})
        mock_client.generate = AsyncMock(side_effect=InferenceError("down"))

        result = await EnrichmentService(mock_client).infer_page_topics("travel hotel flight deals")

        assert result == (TopicDomain("Travel", 1.0),)


class TestAnalyzePage:
    """Tests for EnrichmentService.analyze_page()."""

    @pytest.mark.asyncio
    async def test_structured_call(self, mock_client):
        """Test a valid analysis is returned with the model name."""
        mock_client.infer = AsyncMock(
            return_value={
                "relevance_score": 0.8,
                "key_topics": ["Technology"],
                "content_type": "technical",
                "confidence": 0.9,
            }
        )

        result = await EnrichmentService(mock_client).analyze_page("asyncio internals", ["python"])

        assert result["relevance_score"] == 0.8
        assert result["model_used"] == "llama3.2:3b"

    @pytest.mark.asyncio
    async def test_heuristic(self, mock_client):
        """Test failures degrade to the heuristic analysis."""
        mock_client.infer = AsyncMock(side_effect=InferenceError("down"))
        mock_client.generate = AsyncMock(side_effect=InferenceError("down"))

        result = await EnrichmentService(mock_client).analyze_page("software code review")

        assert result["model_used"] == HEURISTIC_MODEL
        assert result["key_topics"] == ["Technology"]
