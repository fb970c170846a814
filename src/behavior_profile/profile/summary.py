"""Natural-language profile summaries and top-topic views.

Summaries are generated in three steps (long-term, current session,
combined), each with its own template fallback, and stored alongside the
profiles. :func:`describe_ltp` gives a model-free description.
"""

from datetime import datetime
from typing import Any

from behavior_profile.inference.client import InferenceClient, InferenceError
from behavior_profile.inference.parsing import clean_text
from behavior_profile.logging import get_logger
from behavior_profile.profile.models import LongTermProfile, ShortTermProfile
from behavior_profile.profile.storage import ProfileStorage, ProfileSummaries

log = get_logger("behavior_profile.profile.summary")

LTP_SUMMARY_MAX_CHARS = 500
STP_SUMMARY_MAX_CHARS = 300
COMBINED_SUMMARY_MAX_CHARS = 600

FALLBACK_COMBINED = (
    "User profile analysis is being optimized. Personalization will improve as more "
    "behavioral data is collected across sessions."
)
FALLBACK_LTP = "Long-term pattern analysis in progress. Establishing baseline behavior patterns."
FALLBACK_STP = "Current session analysis underway. Tracking immediate interests and engagement."
NO_SESSION_STP = "Currently establishing session patterns. Recent activity being analyzed."

LTP_PROMPT = """Summarize this user's long-term browsing profile in 2-3 sentences \
(under 500 characters), covering only established patterns.

PRIMARY INTERESTS: {interests}
ENGAGEMENT STYLE: {focus}
DEPTH PREFERENCE: {depth}
SESSIONS ANALYZED: {sessions}
CONFIDENCE: {confidence:.0%}

Return only the summary text."""

STP_PROMPT = """Summarize what the user is doing in the current session in 1-2 sentences \
(under 300 characters).

CURRENT FOCUS: {topic}
ENGAGEMENT LEVEL: {engagement:.0%}
INTENT FOCUS: {intent}
DIVERSITY: {diversity:.0%} varied

Return only the summary text."""

COMBINED_PROMPT = """Combine these two summaries into one 3-4 sentence user profile \
(under 600 characters). Start with the long-term patterns, then relate the current \
activity to them. The result is used to personalize page summaries.

LONG-TERM PATTERNS: "{ltp_summary}"
CURRENT ACTIVITY: "{stp_summary}"

Return only the combined summary text."""


def _level(value: float, high: str, low: str, middle: str = "balanced") -> str:
    if value > 0.7:
        return high
    if value < 0.3:
        return low
    return middle


def _ranked_topics(scores: dict[str, float], limit: int) -> list[str]:
    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    return [topic for topic, score in ranked[:limit] if score > 0]


def top_topics(
    ltp: LongTermProfile | None, stp: ShortTermProfile | None, limit: int = 5
) -> dict[str, list[str]]:
    """Highest-scoring topics of each profile plus their ordered union.

    Returns:
        Dict with ``ltp_top``, ``stp_top`` and ``combined`` lists.
    """
    ltp_top = _ranked_topics(ltp.topic_cumulative, limit) if ltp else []
    stp_top = _ranked_topics(stp.normalized_weights, limit) if stp else []
    combined = list(dict.fromkeys([*ltp_top, *stp_top]))[:limit]
    return {"ltp_top": ltp_top, "stp_top": stp_top, "combined": combined}


def dominant_intent(ltp: LongTermProfile) -> str:
    """Intent with the highest smoothed score, ``"general"`` when none."""
    best, best_score = "general", 0.0
    for intent, score in ltp.intent_aggregate.items():
        if score > best_score:
            best, best_score = intent, score
    return best


def describe_ltp(ltp: LongTermProfile | None) -> dict[str, Any]:
    """Describe a long-term profile without the model."""
    if ltp is None or ltp.is_empty:
        return {
            "summary": "No long-term profile yet. Keep browsing to build one.",
            "confidence": 0.0,
            "sessions_analyzed": 0,
        }

    focus = _level(ltp.ewma_focus, "highly focused", "exploratory")
    depth = _level(ltp.ewma_depth, "deep, analytical", "broad, overview-focused")
    interests = ", ".join(_ranked_topics(ltp.topic_cumulative, 3)) or "various topics"
    return {
        "summary": (
            f"User has {focus} engagement style with {depth} content preference. "
            f"Primary interests: {interests}. "
            f"Typically seeks {dominant_intent(ltp)} content."
        ),
        "confidence": ltp.confidence,
        "sessions_analyzed": ltp.sessions_seen,
    }


def fallback_summaries() -> ProfileSummaries:
    """Placeholder summaries used until a long-term profile exists."""
    return ProfileSummaries(
        combined_summary=FALLBACK_COMBINED,
        ltp_summary=FALLBACK_LTP,
        stp_summary=FALLBACK_STP,
        generated_at=datetime.now(),
    )


class ProfileSummaryGenerator:
    """Generates and stores the three profile summaries."""

    def __init__(self, client: InferenceClient, profiles: ProfileStorage):
        self._client = client
        self._profiles = profiles

    async def _prompt(self, step: str, prompt: str, max_chars: int) -> str | None:
        try:
            text = await self._client.generate(prompt, max_tokens=max_chars // 2)
        except InferenceError as e:
            log.warning("summary_step_failed", step=step, error=str(e))
            return None
        cleaned = clean_text(text, max_chars)
        if not cleaned:
            log.warning("summary_step_empty", step=step)
            return None
        return cleaned

    async def summarize_ltp(self, ltp: LongTermProfile) -> str:
        """Summary of established long-term patterns."""
        interests = _ranked_topics(ltp.topic_cumulative, 5)
        prompt = LTP_PROMPT.format(
            interests=", ".join(interests) or "none yet",
            focus=_level(ltp.ewma_focus, "Highly focused", "Exploratory", "Balanced"),
            depth=_level(ltp.ewma_depth, "Deep analytical", "Broad overview", "Balanced"),
            sessions=ltp.sessions_seen,
            confidence=ltp.confidence,
        )
        summary = await self._prompt("ltp", prompt, LTP_SUMMARY_MAX_CHARS)
        if summary:
            return summary
        style = "focused" if ltp.ewma_focus > 0.7 else "exploratory"
        return (
            f"User shows long-term interest in {', '.join(interests[:3]) or 'various topics'} "
            f"with {ltp.sessions_seen} sessions analyzed. Engagement style is {style}."
        )

    async def summarize_stp(self, stp: ShortTermProfile | None) -> str:
        """Summary of the most recent session."""
        if stp is None or stp.is_empty:
            return NO_SESSION_STP

        prompt = STP_PROMPT.format(
            topic=stp.dominant_topic,
            engagement=stp.engagement_confidence,
            intent=stp.intent_focus,
            diversity=stp.diversity_entropy,
        )
        summary = await self._prompt("stp", prompt, STP_SUMMARY_MAX_CHARS)
        if summary:
            return summary
        return (
            f"Currently focused on {stp.dominant_topic} with "
            f"{stp.engagement_confidence:.0%} engagement."
        )

    async def combine(self, ltp_summary: str, stp_summary: str) -> str:
        """Merge the long-term and session summaries into one profile."""
        prompt = COMBINED_PROMPT.format(ltp_summary=ltp_summary, stp_summary=stp_summary)
        summary = await self._prompt("combined", prompt, COMBINED_SUMMARY_MAX_CHARS)
        if summary:
            return summary
        return (
            f"{ltp_summary} {stp_summary} "
            "Combined profile provides insights for personalized content delivery."
        )

    async def generate(self) -> ProfileSummaries:
        """Generate all three summaries and store them.

        Raises:
            ProfileStorageError: If the summaries cannot be stored.
        """
        ltp = self._profiles.load_ltp()
        if ltp.is_empty:
            log.info("summary_no_ltp_using_fallback")
            summaries = fallback_summaries()
            self._profiles.save_summaries(summaries)
            return summaries

        stp = self._profiles.get_last_stp()
        ltp_summary = await self.summarize_ltp(ltp)
        stp_summary = await self.summarize_stp(stp)
        combined = await self.combine(ltp_summary, stp_summary)

        summaries = ProfileSummaries(
            combined_summary=combined,
            ltp_summary=ltp_summary,
            stp_summary=stp_summary,
            generated_at=datetime.now(),
        )
        self._profiles.save_summaries(summaries)
        log.info(
            "profile_summaries_generated",
            sessions_seen=ltp.sessions_seen,
            has_stp=stp is not None,
        )
        return summaries
