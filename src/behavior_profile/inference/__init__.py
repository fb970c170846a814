"""On-device inference: Ollama client, response parsing and enrichment."""

from behavior_profile.inference.client import (
    InferenceClient,
    InferenceError,
    OllamaInferenceClient,
)
from behavior_profile.inference.enrichment import EnrichmentService
from behavior_profile.inference.parsing import ResponseParseError, extract_json

__all__ = [
    "EnrichmentService",
    "InferenceClient",
    "InferenceError",
    "OllamaInferenceClient",
    "ResponseParseError",
    "extract_json",
]
