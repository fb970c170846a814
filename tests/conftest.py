"""Pytest fixtures for behavior profile tests."""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from behavior_profile.events.models import (
    EngagementMetrics,
    PageEvent,
    SearchEnrichment,
    SearchEvent,
    TopicDomain,
)


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Clear the settings cache around every test."""
    from behavior_profile.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def mock_client():
    """Mock inference client that is healthy and answers nothing useful."""
    client = MagicMock()
    client.model_name = "llama3.2:3b"
    client.is_available = True
    client.health_check = AsyncMock(return_value=True)
    client.recreate = AsyncMock(return_value=True)
    client.generate = AsyncMock(return_value="")
    client.infer = AsyncMock(return_value={})
    client.close = AsyncMock()
    return client


@pytest.fixture
def make_search():
    """Factory for enriched search events."""

    def _make(
        session_id="s1",
        query="python asyncio tutorial",
        intent="informational",
        topics=(("Technology", 1.0),),
        confidence=0.8,
        specificity=0.5,
        enriched=True,
        timestamp=None,
    ):
        enrichment = None
        if enriched:
            enrichment = SearchEnrichment(
                intent_type=intent,
                topic_domains=tuple(TopicDomain(t, w) for t, w in topics),
                confidence=confidence,
                specificity=specificity,
            )
        return SearchEvent(
            query=query,
            session_id=session_id,
            timestamp=timestamp or datetime(2026, 3, 1, 10, 0),
            enrichment=enrichment,
        )

    return _make


@pytest.fixture
def make_page():
    """Factory for page events with a fixed engagement score."""

    def _make(
        session_id="s1",
        url="https://docs.python.org/3/library/asyncio.html",
        domain="docs.python.org",
        topics=(("Technology", 1.0),),
        engagement_score=80.0,
        active_seconds=120.0,
        start=None,
        duration_minutes=None,
        content_sample=None,
    ):
        start = start or datetime(2026, 3, 1, 10, 0)
        end = start + timedelta(minutes=duration_minutes) if duration_minutes else None
        return PageEvent(
            url=url,
            domain=domain,
            session_id=session_id,
            start_time=start,
            end_time=end,
            engagement=EngagementMetrics(
                active_time_seconds=active_seconds,
                engagement_score=engagement_score,
            ),
            content_sample=content_sample,
            topic_domains=tuple(TopicDomain(t, w) for t, w in topics) if topics else None,
        )

    return _make
