"""On-device inference client backed by a local Ollama server.

The engine only needs three things from the model runtime: a prompt call
(optionally constrained to a JSON schema), a cheap health probe, and a
way to rebuild the session when the probe fails.
"""

import time
from typing import Any, Protocol

import httpx

from behavior_profile.config import get_settings
from behavior_profile.inference.parsing import extract_json
from behavior_profile.logging import get_logger

log = get_logger("behavior_profile.inference.client")


class InferenceError(Exception):
    """Raised when the inference runtime cannot produce a response."""


class InferenceClient(Protocol):
    """Minimal inference interface used by the scheduler and enrichment."""

    @property
    def model_name(self) -> str: ...

    @property
    def is_available(self) -> bool: ...

    async def generate(
        self,
        prompt: str,
        output_schema: dict[str, Any] | None = None,
        max_tokens: int | None = None,
    ) -> str: ...

    async def infer(self, prompt: str, output_schema: dict[str, Any]) -> dict[str, Any]: ...

    async def health_check(self) -> bool: ...

    async def recreate(self) -> bool: ...


class OllamaInferenceClient:
    """Inference client talking to a local Ollama container."""

    def __init__(
        self,
        url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the Ollama client.

        Args:
            url: Base URL of the Ollama server (defaults to settings).
            model: Model name (defaults to settings).
            timeout: Request timeout in seconds (defaults to settings).
        """
        settings = get_settings()
        self._url = url or settings.ollama_url
        self._model = model or settings.ollama_model
        self._timeout = timeout or settings.ollama_timeout
        self._keep_alive = settings.ollama_keep_alive
        self._temperature = settings.ollama_temperature
        # Model loading can take a while on first use
        self._warmup_timeout = 120.0
        self._client = httpx.AsyncClient(timeout=self._timeout)
        self._is_available = False
        log.info(
            "ollama_client_initialized",
            url=self._url,
            model=self._model,
            timeout=self._timeout,
        )

    @property
    def model_name(self) -> str:
        """Name of the model serving requests."""
        return self._model

    @property
    def is_available(self) -> bool:
        """Whether the last probe or call succeeded."""
        return self._is_available

    async def generate(
        self,
        prompt: str,
        output_schema: dict[str, Any] | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Run a prompt and return the raw response text.

        Args:
            prompt: The prompt text.
            output_schema: JSON schema constraining the output, if any.
            max_tokens: Maximum tokens to generate.

        Returns:
            The stripped response text.

        Raises:
            InferenceError: On transport errors or an empty response.
        """
        options: dict[str, Any] = {"temperature": self._temperature}
        if max_tokens is not None:
            options["num_predict"] = max_tokens

        body: dict[str, Any] = {
            "model": self._model,
            "prompt": prompt,
            "stream": False,
            "keep_alive": self._keep_alive,
            "options": options,
        }
        if output_schema is not None:
            body["format"] = output_schema

        start_time = time.perf_counter()
        try:
            response = await self._client.post(f"{self._url}/api/generate", json=body)
            response.raise_for_status()
            text = str(response.json().get("response", "")).strip()
        except (httpx.HTTPError, ValueError) as e:
            self._is_available = False
            raise InferenceError(f"Ollama request failed: {e}") from e

        self._is_available = True
        log.debug(
            "ollama_generate_complete",
            model=self._model,
            structured=output_schema is not None,
            duration_seconds=round(time.perf_counter() - start_time, 2),
            response_length=len(text),
        )
        if not text:
            raise InferenceError("Empty response from model")
        return text

    async def infer(self, prompt: str, output_schema: dict[str, Any]) -> dict[str, Any]:
        """Run a schema-constrained prompt and parse the JSON result.

        Raises:
            InferenceError: On transport errors.
            ResponseParseError: When no JSON object can be recovered.
        """
        text = await self.generate(prompt, output_schema=output_schema)
        return extract_json(text)

    async def health_check(self) -> bool:
        """Ping the model with an empty prompt so it stays loaded.

        Returns:
            True if the model answered, False otherwise.
        """
        try:
            response = await self._client.post(
                f"{self._url}/api/generate",
                json={
                    "model": self._model,
                    "prompt": "",
                    "stream": False,
                    "keep_alive": self._keep_alive,
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            log.warning("ollama_health_check_failed", model=self._model, error=str(e))
            self._is_available = False
            return False

        self._is_available = True
        return True

    async def recreate(self) -> bool:
        """Drop the HTTP session and reload the model.

        Returns:
            True if the model is usable again.
        """
        log.info("ollama_session_recreating", model=self._model)
        await self._client.aclose()
        self._client = httpx.AsyncClient(timeout=self._timeout)

        start_time = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self._warmup_timeout) as client:
                response = await client.post(
                    f"{self._url}/api/generate",
                    json={
                        "model": self._model,
                        "prompt": "Hello",
                        "stream": False,
                        "keep_alive": self._keep_alive,
                        "options": {"num_predict": 5},
                    },
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            log.error(
                "ollama_session_recreate_failed",
                model=self._model,
                error=str(e),
                duration_seconds=round(time.perf_counter() - start_time, 2),
            )
            self._is_available = False
            return False

        self._is_available = True
        log.info(
            "ollama_session_recreated",
            model=self._model,
            duration_seconds=round(time.perf_counter() - start_time, 2),
        )
        return True

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
