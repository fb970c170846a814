"""Topic weight normalization shared by the profile builders."""

import math
from collections.abc import Mapping

# Topics whose share falls below this are dropped before renormalizing.
MATERIALITY_THRESHOLD = 0.01


def normalize(raw_scores: Mapping[str, float]) -> dict[str, float]:
    """Turn raw per-topic scores into a distribution summing to 1.0.

    Shares below :data:`MATERIALITY_THRESHOLD` are dropped and the
    remainder renormalized. Returns an empty dict when the total is not
    positive.
    """
    total = sum(raw_scores.values())
    if not math.isfinite(total) or total <= 0:
        return {}

    shares = {
        topic: score / total
        for topic, score in raw_scores.items()
        if score / total >= MATERIALITY_THRESHOLD
    }

    kept = sum(shares.values())
    if kept <= 0:
        return {}
    return {topic: share / kept for topic, share in shares.items()}
