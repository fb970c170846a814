"""Activity events: search queries and page visits with engagement."""

from behavior_profile.events.models import (
    EngagementMetrics,
    IntentType,
    PageEvent,
    SearchEnrichment,
    SearchEvent,
    TopicDomain,
    compute_engagement_score,
)
from behavior_profile.events.storage import EventStorage

__all__ = [
    "EngagementMetrics",
    "EventStorage",
    "IntentType",
    "PageEvent",
    "SearchEnrichment",
    "SearchEvent",
    "TopicDomain",
    "compute_engagement_score",
]
