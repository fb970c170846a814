"""Event enrichment through the inference client with a fallback ladder.

Every operation walks the same rungs until one yields a usable value:

1. Structured call constrained to the output schema
2. Free-text prompt with JSON extraction from the reply
3. Local keyword heuristics
4. A static default

Failures are logged per rung and never raised to the caller.
"""

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import ValidationError

from behavior_profile.events.models import IntentType, SearchEnrichment, TopicDomain
from behavior_profile.inference.client import InferenceClient, InferenceError
from behavior_profile.inference.heuristics import (
    fallback_page_analysis,
    fallback_page_topics,
    fallback_search_analysis,
)
from behavior_profile.inference.parsing import ResponseParseError, extract_json
from behavior_profile.inference.topics import (
    PAGE_ANALYSIS_SCHEMA,
    SEARCH_ANALYSIS_SCHEMA,
    TOPIC_INFERENCE_SCHEMA,
    TOPIC_NAMES,
    UNKNOWN_TOPICS,
    PageAnalysisOutput,
    parse_search_analysis,
    validate_topic_weights,
)
from behavior_profile.logging import get_logger

log = get_logger("behavior_profile.inference.enrichment")

T = TypeVar("T")

MAX_CONTENT_CHARS = 2000
STATIC_MODEL = "default"

STATIC_SEARCH_ENRICHMENT = SearchEnrichment(
    intent_type=IntentType.INFORMATIONAL.value,
    topic_domains=UNKNOWN_TOPICS,
    confidence=0.5,
    specificity=0.5,
    model_used=STATIC_MODEL,
)

STATIC_PAGE_ANALYSIS: dict[str, Any] = {
    "relevance_score": 0.3,
    "key_topics": ["Unknown"],
    "content_type": "general",
    "confidence": 0.3,
    "model_used": STATIC_MODEL,
}

_TOPIC_LIST = ", ".join(TOPIC_NAMES)

SEARCH_PROMPT = """Analyze this search query: "{query}"

Classify the intent as one of: informational, transactional, instructional, navigational.
Pick 1-2 topics from this list only: {topics}.
Topic weights must add up to 1.0.
Rate confidence (how sure you are) and specificity (how specific the query is) from 0 to 1."""

TOPIC_PROMPT = """Identify what this web page is about.

URL: {url}
Content:
{content}

Pick 1-3 topics from this list only: {topics}.
Topic weights must add up to 1.0."""

PAGE_ANALYSIS_PROMPT = """Rate how relevant this page is to the user's interests.

User profile: {profile}
Page content:
{content}
Keywords: {keywords}

Give a relevance score from 0 to 1, up to 3 key topics, a content type
(educational, news, technical, commercial or general) and your confidence."""

JSON_INSTRUCTION = """

Respond with only a JSON object matching this shape, no other text:
{shape}"""

_SEARCH_SHAPE = (
    '{"intent_type": "informational", "topic_domains": [{"topic": "Technology", '
    '"weight": 1.0}], "confidence": 0.8, "specificity": 0.6}'
)
_TOPIC_SHAPE = (
    '{"topic_domains": [{"topic": "Technology", "weight": 0.7}, '
    '{"topic": "Science", "weight": 0.3}]}'
)
_PAGE_SHAPE = (
    '{"relevance_score": 0.7, "key_topics": ["Technology"], '
    '"content_type": "technical", "confidence": 0.8}'
)

# Errors that move the ladder to the next rung.
_RUNG_ERRORS = (
    InferenceError,
    ResponseParseError,
    ValidationError,
    ValueError,
    KeyError,
    TypeError,
)


class EnrichmentService:
    """Classifies searches and pages, degrading gracefully without a model."""

    def __init__(self, client: InferenceClient):
        self._client = client

    async def _ladder(
        self,
        operation: str,
        prompt: str,
        schema: dict[str, Any],
        shape: str,
        convert: Callable[[dict[str, Any], str], T],
        heuristic: Callable[[], T],
        default: T,
    ) -> T:
        rungs: list[tuple[str, Callable[[], Awaitable[dict[str, Any]]]]] = [
            ("structured", lambda: self._client.infer(prompt, schema)),
            ("free_text", lambda: self._free_text(prompt, shape)),
        ]
        for rung, call in rungs:
            try:
                data = await call()
                return convert(data, self._client.model_name)
            except _RUNG_ERRORS as e:
                log.warning(
                    "enrichment_rung_failed",
                    operation=operation,
                    rung=rung,
                    error=str(e),
                )

        try:
            return heuristic()
        except Exception as e:
            log.warning(
                "enrichment_rung_failed",
                operation=operation,
                rung="heuristic",
                error=str(e),
            )

        log.warning("enrichment_static_default", operation=operation)
        return default

    async def _free_text(self, prompt: str, shape: str) -> dict[str, Any]:
        text = await self._client.generate(prompt + JSON_INSTRUCTION.format(shape=shape))
        return extract_json(text)

    async def analyze_search_query(self, query: str) -> SearchEnrichment:
        """Classify the intent and topics of a search query."""
        if not query or not query.strip():
            return STATIC_SEARCH_ENRICHMENT

        return await self._ladder(
            "search_enrichment",
            SEARCH_PROMPT.format(query=query.strip(), topics=_TOPIC_LIST),
            SEARCH_ANALYSIS_SCHEMA,
            _SEARCH_SHAPE,
            parse_search_analysis,
            lambda: fallback_search_analysis(query),
            STATIC_SEARCH_ENRICHMENT,
        )

    async def infer_page_topics(
        self, content_sample: str | None, url: str | None = None
    ) -> tuple[TopicDomain, ...]:
        """Infer up to three weighted topic domains for a page.

        Pages without content are ``Unknown: 1.0``.
        """
        if not content_sample or not content_sample.strip():
            return UNKNOWN_TOPICS

        def convert(data: dict[str, Any], _model: str) -> tuple[TopicDomain, ...]:
            items = data.get("topic_domains", data.get("topicDomains"))
            if not items:
                raise ValueError("Response has no topic_domains")
            return validate_topic_weights(items, limit=3)

        return await self._ladder(
            "topic_inference",
            TOPIC_PROMPT.format(
                url=url or "unknown",
                content=content_sample[:MAX_CONTENT_CHARS],
                topics=_TOPIC_LIST,
            ),
            TOPIC_INFERENCE_SCHEMA,
            _TOPIC_SHAPE,
            convert,
            lambda: fallback_page_topics(content_sample),
            UNKNOWN_TOPICS,
        )

    async def analyze_page(
        self,
        content_sample: str | None,
        keywords: list[str] | None = None,
        profile_context: str | None = None,
    ) -> dict[str, Any]:
        """Rate a page's relevance against the user's profile."""

        def convert(data: dict[str, Any], model: str) -> dict[str, Any]:
            output = PageAnalysisOutput.model_validate(data)
            return {**output.model_dump(), "model_used": model}

        return await self._ladder(
            "page_analysis",
            PAGE_ANALYSIS_PROMPT.format(
                profile=profile_context or "no profile yet",
                content=(content_sample or "")[:MAX_CONTENT_CHARS],
                keywords=", ".join(keywords or []) or "none",
            ),
            PAGE_ANALYSIS_SCHEMA,
            _PAGE_SHAPE,
            convert,
            lambda: fallback_page_analysis(content_sample, keywords),
            dict(STATIC_PAGE_ANALYSIS),
        )

