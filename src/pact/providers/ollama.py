"""Ollama Provider - local inference for the semantic judge."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from pact.settings import settings

from .base import LLMError, ProviderHealth

logger = logging.getLogger(__name__)


class OllamaProvider:
    """LLM provider backed by a local Ollama server.

    Example:
        provider = OllamaProvider(url="http://localhost:11434", model="llama3.2:3b")
        raw = provider.chat_json(system="Respond in JSON.", user="...")
    """

    def __init__(
        self,
        *,
        url: str | None = None,
        model: str | None = None,
    ) -> None:
        """Initialize Ollama provider.

        Args:
            url: Ollama server URL. Defaults to settings.ollama_url.
            model: Model to use. Defaults to settings.ollama_model, then the
                first model the server reports.
        """
        self._url = (url or settings.ollama_url).rstrip("/")
        self._model = model

    @property
    def provider_type(self) -> str:
        return "ollama"

    @property
    def current_model(self) -> str | None:
        return self._model or settings.ollama_model

    def chat_json(
        self,
        *,
        system: str,
        user: str,
        timeout_seconds: float = 60.0,
        temperature: float | None = None,
    ) -> str:
        """Generate JSON-formatted response."""
        payload = self._build_payload(system=system, user=user, temperature=temperature)
        payload["format"] = "json"
        return self._post_chat(payload, timeout_seconds)

    def list_models(self) -> list[str]:
        """List model names installed on the server."""
        try:
            with httpx.Client(timeout=5.0) as client:
                res = client.get(f"{self._url}/api/tags")
                res.raise_for_status()
                data = res.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Failed to list Ollama models: %s", e)
            return []

        return [
            m["name"]
            for m in data.get("models", [])
            if isinstance(m, dict) and isinstance(m.get("name"), str)
        ]

    def check_health(self) -> ProviderHealth:
        try:
            with httpx.Client(timeout=2.0) as client:
                res = client.get(f"{self._url}/api/tags")
                res.raise_for_status()
                models = res.json().get("models", [])
        except (httpx.HTTPError, ValueError) as e:
            return ProviderHealth(reachable=False, error=str(e))

        return ProviderHealth(
            reachable=True,
            model_count=len(models),
            current_model=self.current_model,
        )

    # -------------------------------------------------------------------------
    # Private Methods
    # -------------------------------------------------------------------------

    def _build_payload(
        self,
        *,
        system: str,
        user: str,
        temperature: float | None,
    ) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if temperature is not None:
            options["temperature"] = float(temperature)

        return {
            "model": self._resolve_model(),
            "stream": False,
            "options": options,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        }

    def _post_chat(self, payload: dict[str, Any], timeout_seconds: float) -> str:
        url = f"{self._url}/api/chat"
        try:
            with httpx.Client(timeout=timeout_seconds) as client:
                res = client.post(url, json=payload)
                res.raise_for_status()
                data = res.json()
        except (httpx.HTTPError, ValueError) as e:
            raise LLMError(
                f"Ollama request failed: {e}", provider="ollama", model=payload.get("model")
            ) from e

        message = data.get("message")
        if not isinstance(message, dict):
            raise LLMError("Unexpected Ollama response: missing message", provider="ollama")

        content = message.get("content")
        if not isinstance(content, str):
            raise LLMError("Unexpected Ollama response: missing content", provider="ollama")

        return content.strip()

    def _resolve_model(self) -> str:
        if self.current_model:
            return self.current_model

        models = self.list_models()
        if models:
            return models[0]

        raise LLMError(
            "No Ollama model configured. Set PACT_OLLAMA_MODEL or pull a model.",
            provider="ollama",
        )
