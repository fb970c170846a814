"""Topic vocabulary and the structured outputs requested from the model."""

from __future__ import annotations

import math
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from behavior_profile.events.models import IntentType, SearchEnrichment, TopicDomain


class TopicBucket(StrEnum):
    """Fixed topic vocabulary the model must choose from."""

    TECHNOLOGY = "Technology"
    FINANCE = "Finance"
    ECOMMERCE = "E-commerce"
    HEALTH = "Health"
    SCIENCE = "Science"
    EDUCATION = "Education"
    TRAVEL = "Travel"
    ARTS = "Arts"
    ENTERTAINMENT = "Entertainment"
    SPORTS = "Sports"
    NEWS = "News"
    BUSINESS = "Business"
    LIFESTYLE = "Lifestyle"
    FOOD = "Food"
    AUTOMOTIVE = "Automotive"
    REAL_ESTATE = "Real Estate"
    ENVIRONMENT = "Environment"
    POLITICS = "Politics"
    CAREER = "Career"
    PARENTING = "Parenting"
    GAMING = "Gaming"
    FASHION = "Fashion"
    UNKNOWN = "Unknown"


TOPIC_NAMES: tuple[str, ...] = tuple(bucket.value for bucket in TopicBucket)
INTENT_NAMES: tuple[str, ...] = tuple(intent.value for intent in IntentType)

UNKNOWN_TOPICS: tuple[TopicDomain, ...] = (TopicDomain(TopicBucket.UNKNOWN.value, 1.0),)

# Allowed drift of a topic weight sum from 1.0.
WEIGHT_SUM_TOLERANCE = 0.01


# ---------------------------------------------------------------------------
# Output schemas
# ---------------------------------------------------------------------------


class TopicWeight(BaseModel):
    """One topic with its relative importance."""

    topic: str = Field(json_schema_extra={"enum": list(TOPIC_NAMES)})
    weight: float = Field(ge=0.0, le=1.0)


class SearchAnalysisOutput(BaseModel):
    """Structured analysis of a search query."""

    intent_type: Literal["informational", "transactional", "instructional", "navigational"]
    topic_domains: list[TopicWeight] = Field(min_length=1, max_length=2)
    confidence: float = Field(ge=0.0, le=1.0)
    specificity: float = Field(ge=0.0, le=1.0)


class TopicInferenceOutput(BaseModel):
    """Topic domains of a page's content sample."""

    topic_domains: list[TopicWeight] = Field(min_length=1, max_length=3)


class PageAnalysisOutput(BaseModel):
    """Relevance analysis of a page for the current profile."""

    relevance_score: float = Field(ge=0.0, le=1.0)
    key_topics: list[str] = Field(min_length=1, max_length=3)
    content_type: Literal["educational", "news", "technical", "commercial", "general"]
    confidence: float = Field(ge=0.0, le=1.0)


SEARCH_ANALYSIS_SCHEMA: dict[str, Any] = SearchAnalysisOutput.model_json_schema()
TOPIC_INFERENCE_SCHEMA: dict[str, Any] = TopicInferenceOutput.model_json_schema()
PAGE_ANALYSIS_SCHEMA: dict[str, Any] = PageAnalysisOutput.model_json_schema()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _get(item: Any, key: str) -> Any:
    if isinstance(item, dict):
        return item.get(key)
    return getattr(item, key, None)


def validate_topic_weights(items: Any, limit: int | None = None) -> tuple[TopicDomain, ...]:
    """Keep vocabulary topics with numeric weights and renormalize them.

    With ``limit`` only the heaviest topics are kept, and the weights are
    renormalized over the kept ones.

    Falls back to ``Unknown: 1.0`` when nothing usable remains.
    """
    if not isinstance(items, list | tuple) or not items:
        return UNKNOWN_TOPICS

    valid: list[tuple[str, float]] = []
    for item in items:
        topic = _get(item, "topic")
        weight = _get(item, "weight")
        if not isinstance(topic, str) or topic not in TOPIC_NAMES:
            continue
        if isinstance(weight, bool) or not isinstance(weight, int | float):
            continue
        if not math.isfinite(weight):
            continue
        valid.append((topic, max(0.0, float(weight))))

    if not valid:
        return UNKNOWN_TOPICS

    if limit is not None:
        valid = sorted(valid, key=lambda pair: pair[1], reverse=True)[:limit]

    total = sum(weight for _, weight in valid)
    if total > 0:
        return tuple(TopicDomain(topic, round(weight / total, 3)) for topic, weight in valid)
    equal = round(1.0 / len(valid), 3)
    return tuple(TopicDomain(topic, equal) for topic, _ in valid)


def parse_search_analysis(data: dict[str, Any], model_used: str) -> SearchEnrichment:
    """Validate a model response as a search enrichment.

    Accepts camelCase keys as produced by looser prompts.

    Raises:
        ValueError: If the response violates the output constraints.
    """
    normalized = {
        "intent_type": str(data.get("intent_type", data.get("intentType", ""))).lower(),
        "topic_domains": data.get("topic_domains", data.get("topicDomains")),
        "confidence": data.get("confidence"),
        "specificity": data.get("specificity"),
    }
    normalized["topic_domains"] = [
        td.to_dict() for td in validate_topic_weights(normalized["topic_domains"])
    ]
    try:
        output = SearchAnalysisOutput.model_validate(normalized)
    except ValidationError as e:
        raise ValueError(f"Search analysis violates schema: {e.error_count()} errors") from e

    total = sum(td.weight for td in output.topic_domains)
    if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
        raise ValueError(f"Topic weights sum to {total:.3f}, expected 1.0")

    return SearchEnrichment(
        intent_type=output.intent_type,
        topic_domains=tuple(TopicDomain(td.topic, td.weight) for td in output.topic_domains),
        confidence=output.confidence,
        specificity=output.specificity,
        model_used=model_used,
    )
