"""LLM providers for the optional semantic judge.

Usage:
    from pact.providers import OllamaProvider
    from pact.judge import LLMJudge

    judge = LLMJudge(OllamaProvider())
"""

from __future__ import annotations

from pact.providers.base import LLMError, LLMProvider, ProviderHealth
from pact.providers.ollama import OllamaProvider

__all__ = [
    "LLMError",
    "LLMProvider",
    "OllamaProvider",
    "ProviderHealth",
]
