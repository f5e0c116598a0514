"""Shared types for language-model providers used by the semantic judge."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from pact.errors import JudgeError


class LLMError(JudgeError):
    """A provider request failed or returned an unusable response."""

    error_type = "llm"


@dataclass(frozen=True)
class ProviderHealth:
    reachable: bool
    model_count: int = 0
    current_model: str | None = None
    error: str | None = None


class LLMProvider(Protocol):
    """Anything that can answer a system/user prompt pair with JSON text."""

    @property
    def provider_type(self) -> str: ...

    def chat_json(
        self,
        *,
        system: str,
        user: str,
        timeout_seconds: float = 60.0,
        temperature: float | None = None,
    ) -> str: ...
