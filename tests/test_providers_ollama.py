"""Tests for OllamaProvider with httpx mocked out."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import httpx
import pytest

from pact.providers import LLMError, OllamaProvider


def _client(mock_cls: MagicMock) -> MagicMock:
    client = MagicMock()
    mock_cls.return_value.__enter__.return_value = client
    return client


def _response(data: object) -> MagicMock:
    res = MagicMock()
    res.json.return_value = data
    return res


class TestChatJson:
    def test_posts_chat_payload_and_returns_content(self) -> None:
        with patch("pact.providers.ollama.httpx.Client") as mock_cls:
            client = _client(mock_cls)
            client.post.return_value = _response({"message": {"content": '  {"a": 1}\n'}})

            provider = OllamaProvider(url="http://ollama:11434/", model="llama3.2:3b")
            raw = provider.chat_json(system="sys", user="hi", temperature=0.2)

        assert raw == '{"a": 1}'
        url = client.post.call_args.args[0]
        payload = client.post.call_args.kwargs["json"]
        assert url == "http://ollama:11434/api/chat"
        assert payload["model"] == "llama3.2:3b"
        assert payload["format"] == "json"
        assert payload["stream"] is False
        assert payload["options"] == {"temperature": 0.2}
        assert payload["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hi"},
        ]

    def test_transport_error_becomes_llm_error(self) -> None:
        with patch("pact.providers.ollama.httpx.Client") as mock_cls:
            _client(mock_cls).post.side_effect = httpx.ConnectError("refused")

            with pytest.raises(LLMError, match="Ollama request failed") as exc_info:
                OllamaProvider(url="http://x", model="m").chat_json(system="s", user="u")

        assert exc_info.value.context["provider"] == "ollama"
        assert exc_info.value.recoverable

    def test_missing_content_is_rejected(self) -> None:
        with patch("pact.providers.ollama.httpx.Client") as mock_cls:
            _client(mock_cls).post.return_value = _response({"message": {}})

            with pytest.raises(LLMError, match="missing content"):
                OllamaProvider(url="http://x", model="m").chat_json(system="s", user="u")

    def test_falls_back_to_first_installed_model(self, monkeypatch: pytest.MonkeyPatch) -> None:
        provider = OllamaProvider(url="http://x")
        monkeypatch.setattr(provider, "_model", None)
        monkeypatch.setattr("pact.providers.ollama.settings", MagicMock(ollama_model=None))

        with patch("pact.providers.ollama.httpx.Client") as mock_cls:
            client = _client(mock_cls)
            client.get.return_value = _response({"models": [{"name": "qwen:1b"}, {"name": "x"}]})
            client.post.return_value = _response({"message": {"content": "{}"}})

            provider.chat_json(system="s", user="u")

        assert client.post.call_args.kwargs["json"]["model"] == "qwen:1b"


class TestHealth:
    def test_reachable(self) -> None:
        with patch("pact.providers.ollama.httpx.Client") as mock_cls:
            _client(mock_cls).get.return_value = _response({"models": [{"name": "a"}]})
            health = OllamaProvider(url="http://x", model="a").check_health()

        assert health.reachable
        assert health.model_count == 1
        assert health.current_model == "a"

    def test_unreachable(self) -> None:
        with patch("pact.providers.ollama.httpx.Client") as mock_cls:
            _client(mock_cls).get.side_effect = httpx.ConnectError("down")
            health = OllamaProvider(url="http://x", model="a").check_health()

        assert not health.reachable
        assert health.error == "down"

    def test_list_models_tolerates_errors(self) -> None:
        with patch("pact.providers.ollama.httpx.Client") as mock_cls:
            _client(mock_cls).get.side_effect = httpx.ConnectError("down")
            assert OllamaProvider(url="http://x").list_models() == []
