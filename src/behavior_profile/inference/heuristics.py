"""Local keyword heuristics used when the model cannot answer.

Zero-cost scoring in the spirit of regex/keyword tiers: no model, no
I/O, deterministic output.
"""

import re

from behavior_profile.events.models import IntentType, SearchEnrichment, TopicDomain
from behavior_profile.inference.topics import UNKNOWN_TOPICS, TopicBucket

HEURISTIC_MODEL = "fallback"
HEURISTIC_CONFIDENCE = 0.6

TOPIC_KEYWORDS: dict[str, tuple[str, ...]] = {
    TopicBucket.TECHNOLOGY: (
        "tech",
        "computer",
        "software",
        "ai",
        "programming",
        "code",
        "app",
        "digital",
    ),
    TopicBucket.FINANCE: ("finance", "money", "invest", "stock", "bank", "loan", "credit"),
    TopicBucket.HEALTH: ("health", "medical", "doctor", "fitness", "diet", "exercise", "medicine"),
    TopicBucket.SCIENCE: ("science", "research", "study", "scientific", "physics", "chemistry"),
    TopicBucket.EDUCATION: ("education", "school", "learn", "course", "university", "student"),
    TopicBucket.NEWS: ("news", "update", "breaking", "headline", "current"),
    TopicBucket.SPORTS: ("sports", "game", "team", "player", "score", "match"),
    TopicBucket.ENTERTAINMENT: ("movie", "music", "celebrity", "film", "show", "entertainment"),
    TopicBucket.BUSINESS: ("business", "company", "corporate", "enterprise", "startup"),
    TopicBucket.TRAVEL: ("travel", "trip", "vacation", "hotel", "flight", "destination"),
}

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def score_topics(text: str, max_topics: int = 2) -> tuple[TopicDomain, ...]:
    """Keyword hit counts per topic, turned into weights.

    Returns ``Unknown: 1.0`` when no keyword matches.
    """
    lowered = (text or "").lower()
    hits: dict[str, int] = {}
    for topic, keywords in TOPIC_KEYWORDS.items():
        count = sum(1 for keyword in keywords if keyword in lowered)
        if count:
            hits[str(topic)] = count

    if not hits:
        return UNKNOWN_TOPICS

    total = sum(hits.values())
    ranked = sorted(hits.items(), key=lambda item: item[1], reverse=True)[:max_topics]
    return tuple(TopicDomain(topic, round(count / total, 3)) for topic, count in ranked)


def classify_intent(query: str) -> str:
    """Guess the intent of a query from a few trigger phrases."""
    lowered = (query or "").lower()
    if "buy" in lowered or "price" in lowered:
        return IntentType.TRANSACTIONAL.value
    if "how to" in lowered:
        return IntentType.INSTRUCTIONAL.value
    if "login" in lowered:
        return IntentType.NAVIGATIONAL.value
    return IntentType.INFORMATIONAL.value


def fallback_search_analysis(query: str) -> SearchEnrichment:
    """Analyze a query without the model.

    Specificity grows with query length (ten words or more is fully
    specific).
    """
    query = query or ""
    words = [word for word in query.split(" ") if word]
    return SearchEnrichment(
        intent_type=classify_intent(query),
        topic_domains=score_topics(query, max_topics=2),
        confidence=HEURISTIC_CONFIDENCE,
        specificity=min(len(words) / 10, 1.0),
        model_used=HEURISTIC_MODEL,
    )


def fallback_page_topics(content_sample: str | None) -> tuple[TopicDomain, ...]:
    """Topic domains for a page from keyword hits in its content."""
    return score_topics(content_sample or "", max_topics=3)


def fallback_page_analysis(content_sample: str | None, keywords: list[str] | None = None) -> dict:
    """Relevance analysis without the model."""
    text = " ".join([content_sample or "", *(keywords or [])])
    topics = [td.topic for td in fallback_page_topics(text)]
    return {
        "relevance_score": 0.4,
        "key_topics": topics,
        "content_type": "general",
        "confidence": 0.4,
        "model_used": HEURISTIC_MODEL,
    }


def concise_extract(text: str, max_sentences: int = 3, max_sentence_length: int = 100) -> str:
    """First sentences of a text, shortened, as a crude summary."""
    if not text or not isinstance(text, str):
        return "Summary not available."
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]
    if not sentences:
        return "Summary not available."
    picked = [
        s if len(s) <= max_sentence_length else s[:max_sentence_length] + "..."
        for s in sentences[:max_sentences]
    ]
    return ". ".join(picked) + "."
