"""OpenAI-based AI provider.

Uses the OpenAI API for JSON-mode structured extraction, embeddings and
narrative generation. Includes retry logic with exponential backoff for
transient API errors.

This provider uses cloud-based OpenAI API. For self-hosted inference,
use OllamaProvider instead.
"""

import json
import logging
import os
from typing import Any

from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    InternalServerError,
    OpenAIError,
    RateLimitError,
)
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
)
from services.shared.config import Settings
from services.shared.errors import ExtractionServiceFailure, SchemaValidationFailure

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (APIConnectionError, APITimeoutError, RateLimitError, InternalServerError)


class OpenAIProvider(AIProvider):
    """OpenAI-based provider.

    Requires OPENAI_API_KEY environment variable.
    """

    def __init__(self, settings: Settings, client: AsyncOpenAI | None = None) -> None:
        """Initialize OpenAI provider.

        Args:
            settings: Application settings
            client: Preconfigured client (created lazily from OPENAI_API_KEY otherwise)
        """
        super().__init__(settings)
        self._client = client

    @property
    def provider_name(self) -> str:
        return "openai"

    @property
    def model_name(self) -> str:
        return self.settings.openai_model

    def is_available(self) -> bool:
        """Check if OpenAI API key is configured."""
        return self._client is not None or os.getenv("OPENAI_API_KEY") is not None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.is_available():
                raise ExtractionServiceFailure("OPENAI_API_KEY environment variable not set")
            self._client = AsyncOpenAI(
                api_key=os.getenv("OPENAI_API_KEY"),
                timeout=self.settings.external_call_timeout_seconds,
            )
        return self._client

    async def _call_with_retry(self, operation: str, func: Any, **kwargs: Any) -> Any:
        """Call the OpenAI API, retrying transient errors with jittered backoff.

        Raises:
            ExtractionServiceFailure: After all attempts fail or on a non-transient API error
        """
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(TRANSIENT_ERRORS),
                wait=wait_exponential_jitter(initial=1, max=30),
                stop=stop_after_attempt(self.settings.ai_max_retries),
                reraise=True,
            ):
                with attempt:
                    return await func(**kwargs)
        except OpenAIError as e:
            logger.error(f"OpenAI {operation} failed: {e}")
            raise ExtractionServiceFailure(f"OpenAI {operation} failed: {e}") from e

    async def complete_json(
        self, system_prompt: str, user_text: str, schema: dict[str, Any]
    ) -> dict[str, Any]:
        client = self._get_client()
        system = (
            f"{system_prompt}\n\n"
            "Respond with a single JSON object matching this JSON schema:\n"
            f"{json.dumps(schema)}"
        )
        response = await self._call_with_retry(
            "completion",
            client.chat.completions.create,
            model=self.settings.openai_model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user_text},
            ],
            response_format={"type": "json_object"},
            temperature=0,  # Deterministic output
        )

        content = response.choices[0].message.content
        if not content:
            raise SchemaValidationFailure("OpenAI returned an empty completion")
        try:
            result = json.loads(content)
        except json.JSONDecodeError as e:
            raise SchemaValidationFailure(f"OpenAI returned invalid JSON: {e}") from e
        if not isinstance(result, dict):
            raise SchemaValidationFailure("OpenAI response is not a JSON object")
        return result

    async def embed(self, text: str) -> list[float]:
        client = self._get_client()
        response = await self._call_with_retry(
            "embedding",
            client.embeddings.create,
            model=self.settings.openai_embedding_model,
            input=text,
        )
        return list(response.data[0].embedding)

    async def explain(self, data: Any, context: str) -> str:
        client = self._get_client()
        response = await self._call_with_retry(
            "narrative",
            client.chat.completions.create,
            model=self.settings.openai_model,
            messages=[
                {"role": "system", "content": NARRATIVE_SYSTEM_PROMPT},
                {"role": "user", "content": build_narrative_prompt(data, context)},
            ],
            temperature=0.3,
            max_tokens=500,
        )
        return response.choices[0].message.content or ""
