"""Shared pytest fixtures.

``FakeAIProvider`` stands in for OpenAI/Ollama: completions come from a
handler keyed on the prompt text, embeddings from a lookup table and
narratives from a fixed string (or an exception to raise).
"""

from collections.abc import Callable
from typing import Any

import pytest

from services.ai.base import AIProvider
from services.shared.config import Settings
from services.shared.errors import ExtractionServiceFailure

JsonHandler = Callable[[str, str], dict[str, Any]]


class FakeAIProvider(AIProvider):
    """Scripted AI provider for tests."""

    def __init__(self, settings: Settings) -> None:
        super().__init__(settings)
        self.json_handler: JsonHandler | None = None
        self.embeddings: dict[str, list[float]] = {}
        self.narrative: str | Exception = "Narrative explanation."
        self.completion_calls: list[str] = []
        self.embed_calls: list[str] = []
        self.explain_calls: list[tuple[Any, str]] = []

    @property
    def provider_name(self) -> str:
        return "fake"

    @property
    def model_name(self) -> str:
        return "fake-model"

    def is_available(self) -> bool:
        return True

    async def complete_json(
        self, system_prompt: str, user_text: str, schema: dict[str, Any]
    ) -> dict[str, Any]:
        self.completion_calls.append(user_text)
        if self.json_handler is None:
            raise ExtractionServiceFailure("No completion scripted")
        return self.json_handler(system_prompt, user_text)

    async def embed(self, text: str) -> list[float]:
        self.embed_calls.append(text)
        if text not in self.embeddings:
            raise ExtractionServiceFailure(f"No embedding scripted for {text!r}")
        return self.embeddings[text]

    async def explain(self, data: Any, context: str) -> str:
        self.explain_calls.append((data, context))
        if isinstance(self.narrative, Exception):
            raise self.narrative
        return self.narrative


@pytest.fixture
def fake_provider() -> FakeAIProvider:
    return FakeAIProvider(Settings(ai_provider="disabled"))
