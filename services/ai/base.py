"""Abstract base class for AI providers.

One provider serves the three AI collaborators the pipeline consumes:
schema-constrained JSON completion, text embeddings and plain-English
narratives. Switching between providers (OpenAI, Ollama, disabled) keeps
a consistent interface.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from services.shared.config import Settings
from services.shared.errors import ExtractionServiceFailure, SchemaValidationFailure

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

NARRATIVE_SYSTEM_PROMPT = (
    "You are a professional business analyst. "
    "Explain the following data in clear, concise business terms."
)


def build_narrative_prompt(data: Any, context: str) -> str:
    """User prompt shared by providers for narrative generation."""
    return (
        f"Context: {context}\n\n"
        f"Data: {json.dumps(data, indent=2, default=str)}\n\n"
        "Provide a brief, professional explanation."
    )


def parse_json_response(response_text: str) -> dict[str, Any]:
    """Extract and parse a JSON object from an LLM response.

    Handles common LLM quirks like markdown code blocks.

    Raises:
        SchemaValidationFailure: If no JSON object can be parsed
    """
    candidates = []
    fenced = re.search(r"```(?:json)?\s*([\s\S]*?)```", response_text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    braced = re.search(r"\{[\s\S]*\}", response_text)
    if braced:
        candidates.append(braced.group(0))
    candidates.append(response_text.strip())

    for candidate in candidates:
        try:
            result = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(result, dict):
            return result
    raise SchemaValidationFailure("AI response is not a JSON object")


class AIProvider(ABC):
    """Abstract base class for AI providers.

    Example implementations:
    - OpenAIProvider: Uses OpenAI API (cloud-based)
    - OllamaProvider: Uses a self-hosted Ollama server
    - DisabledAIProvider: Fails every call (AI not configured)
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model recorded on documents as ``aiModel``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is available/configured."""

    @abstractmethod
    async def complete_json(
        self, system_prompt: str, user_text: str, schema: dict[str, Any]
    ) -> dict[str, Any]:
        """Ask the model for a JSON object shaped by ``schema``.

        Raises:
            ExtractionServiceFailure: On transport/availability errors
            SchemaValidationFailure: If the response is not a JSON object
        """

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Compute a fixed-size embedding vector for ``text``.

        Raises:
            ExtractionServiceFailure: On transport/availability errors
        """

    @abstractmethod
    async def explain(self, data: Any, context: str) -> str:
        """Explain structured data in plain English.

        Raises:
            ExtractionServiceFailure: On transport/availability errors
        """

    async def extract_structured(
        self, system_prompt: str, text: str, model_cls: type[ModelT]
    ) -> ModelT:
        """Run a schema-constrained completion and validate it against ``model_cls``.

        Args:
            system_prompt: Extraction instructions
            text: Redacted document text (or one chunk of it)
            model_cls: Pydantic model the response must conform to

        Returns:
            Validated model instance

        Raises:
            SchemaValidationFailure: If the response does not conform
            ExtractionServiceFailure: On transport/availability errors
        """
        schema = model_cls.model_json_schema(by_alias=True)
        payload = await self.complete_json(system_prompt, text, schema)
        try:
            return model_cls.model_validate(payload)
        except ValidationError as e:
            logger.error(f"Schema validation failed for {model_cls.__name__}: {e}")
            raise SchemaValidationFailure(
                f"AI response does not match {model_cls.__name__} schema: "
                f"{e.error_count()} errors"
            ) from e


class DisabledAIProvider(AIProvider):
    """Provider selected when no AI backend is configured.

    Every call raises ExtractionServiceFailure so documents land in review
    instead of being filled with fabricated data.
    """

    @property
    def provider_name(self) -> str:
        return "disabled"

    @property
    def model_name(self) -> str:
        return "none"

    def is_available(self) -> bool:
        return False

    def _fail(self) -> ExtractionServiceFailure:
        return ExtractionServiceFailure("AI provider is disabled (APP_AI_PROVIDER=disabled)")

    async def complete_json(
        self, system_prompt: str, user_text: str, schema: dict[str, Any]
    ) -> dict[str, Any]:
        raise self._fail()

    async def embed(self, text: str) -> list[float]:
        raise self._fail()

    async def explain(self, data: Any, context: str) -> str:
        raise self._fail()
