"""Ollama-based AI provider for self-hosted LLM inference.

Uses a local Ollama server for structured extraction, embeddings and
narratives. Supports data sovereignty requirements by running entirely
on-premises.

Requires Ollama server running on localhost:11434.
See: https://ollama.ai/
"""

import json
import logging
from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.ai.base import (
    NARRATIVE_SYSTEM_PROMPT,
    AIProvider,
    build_narrative_prompt,
    parse_json_response,
)
from services.shared.config import Settings
from services.shared.errors import ExtractionServiceFailure

logger = logging.getLogger(__name__)


class OllamaProvider(AIProvider):
    """Ollama-based provider for self-hosted LLM inference.

    Supports models like Qwen2.5, Llama3, Mistral.
    """

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        """Initialize Ollama provider.

        Args:
            settings: Application settings
            client: HTTP client (one with the configured timeout is created otherwise)
        """
        super().__init__(settings)
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._model = settings.ollama_model
        self._embedding_model = settings.ollama_embedding_model
        # LLMs can be slow
        self._client = client or httpx.AsyncClient(timeout=settings.external_call_timeout_seconds)

    @property
    def provider_name(self) -> str:
        return "ollama"

    @property
    def model_name(self) -> str:
        return self._model

    def is_available(self) -> bool:
        """Check if Ollama server is running and model is available."""
        try:
            response = httpx.get(f"{self._base_url}/api/tags", timeout=5.0)
            if response.status_code != 200:
                return False
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return self._model.split(":")[0] in model_names
        except Exception:
            return False

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST to the Ollama API, retrying transport errors.

        Raises:
            ExtractionServiceFailure: After all attempts fail
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(httpx.TransportError),
                wait=wait_exponential_jitter(initial=1, max=30),
                stop=stop_after_attempt(self.settings.ai_max_retries),
                reraise=True,
            ):
                with attempt:
                    response = await self._client.post(f"{self._base_url}{path}", json=payload)
                    response.raise_for_status()
                    result: dict[str, Any] = response.json()
                    return result
        except httpx.HTTPError as e:
            logger.error(f"Ollama request to {path} failed: {e}")
            raise ExtractionServiceFailure(f"Ollama request to {path} failed: {e}") from e
        except json.JSONDecodeError as e:
            raise ExtractionServiceFailure(f"Ollama returned a non-JSON body: {e}") from e

    async def complete_json(
        self, system_prompt: str, user_text: str, schema: dict[str, Any]
    ) -> dict[str, Any]:
        system = (
            f"{system_prompt}\n\n"
            "Return ONLY valid JSON matching this JSON schema (use null for missing fields):\n"
            f"{json.dumps(schema)}"
        )
        result = await self._post(
            "/api/generate",
            {
                "model": self._model,
                "system": system,
                "prompt": user_text,
                "format": "json",
                "stream": False,
                "options": {"temperature": 0},  # Deterministic output
            },
        )
        return parse_json_response(result.get("response", ""))

    async def embed(self, text: str) -> list[float]:
        result = await self._post(
            "/api/embeddings",
            {"model": self._embedding_model, "prompt": text},
        )
        embedding = result.get("embedding")
        if not embedding:
            raise ExtractionServiceFailure("Ollama returned no embedding")
        return [float(v) for v in embedding]

    async def explain(self, data: Any, context: str) -> str:
        result = await self._post(
            "/api/generate",
            {
                "model": self._model,
                "system": NARRATIVE_SYSTEM_PROMPT,
                "prompt": build_narrative_prompt(data, context),
                "stream": False,
                "options": {"temperature": 0.3, "num_predict": 500},
            },
        )
        response: str = result.get("response", "")
        return response.strip()

    async def aclose(self) -> None:
        await self._client.aclose()
