"""Tests for provider key lookup, model strings and the LiteLLM call."""

from unittest.mock import MagicMock, patch

import litellm
import pytest

from qaterm.config import Settings
from qaterm.errors import ProviderError, ProviderUnavailable
from qaterm.providers import (
    PROVIDERS,
    ProviderClient,
    complete,
    model_string,
    resolve_api_key,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for _, env_vars in PROVIDERS.values():
        for var in env_vars:
            monkeypatch.delenv(var, raising=False)


def _mock_response(content="ok"):
    choice = MagicMock()
    choice.message = MagicMock(content=content)
    resp = MagicMock()
    resp.choices = [choice]
    return resp


class TestResolveApiKey:
    def test_openai(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        assert resolve_api_key("openai") == "sk-test"

    def test_google_falls_back_to_gemini_key(self, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "g-test")
        assert resolve_api_key("google") == "g-test"

    def test_google_prefers_google_key(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "first")
        monkeypatch.setenv("GEMINI_API_KEY", "second")
        assert resolve_api_key("google") == "first"

    def test_missing_key(self):
        with pytest.raises(ProviderUnavailable, match="ANTHROPIC_API_KEY"):
            resolve_api_key("anthropic")

    def test_empty_key_counts_as_missing(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "")
        with pytest.raises(ProviderUnavailable):
            resolve_api_key("openrouter")

    def test_unknown_provider(self):
        with pytest.raises(ProviderUnavailable, match="unknown provider"):
            resolve_api_key("acme")


class TestModelString:
    def test_prefix_added(self):
        assert model_string("openai", "gpt-4o") == "openai/gpt-4o"
        assert model_string("google", "gemini-1.5-pro") == "gemini/gemini-1.5-pro"

    def test_already_prefixed(self):
        assert model_string("anthropic", "anthropic/claude-3") == "anthropic/claude-3"

    def test_openrouter_org_model(self):
        assert (
            model_string("openrouter", "deepseek/deepseek-r1:free")
            == "openrouter/deepseek/deepseek-r1:free"
        )

    def test_openrouter_already_prefixed(self):
        assert (
            model_string("openrouter", "openrouter/meta/llama-3")
            == "openrouter/meta/llama-3"
        )

    def test_openrouter_own_model(self):
        assert model_string("openrouter", "openrouter/auto") == "openrouter/openrouter/auto"


class TestComplete:
    def test_call_arguments(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        messages = [{"role": "user", "content": "hi"}]
        with patch("litellm.completion") as mock_comp:
            mock_comp.return_value = _mock_response("hello")
            reply = complete("openai", "gpt-4o", messages, temperature=0.1, max_tokens=100)

        assert reply == "hello"
        kwargs = mock_comp.call_args[1]
        assert kwargs["model"] == "openai/gpt-4o"
        assert kwargs["api_key"] == "sk-test"
        assert kwargs["messages"] == messages
        assert kwargs["temperature"] == 0.1
        assert kwargs["max_tokens"] == 100

    def test_optional_arguments_omitted(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        with patch("litellm.completion") as mock_comp:
            mock_comp.return_value = _mock_response()
            complete("openai", "gpt-4o", [])
        kwargs = mock_comp.call_args[1]
        assert "temperature" not in kwargs
        assert "max_tokens" not in kwargs

    def test_none_content_is_empty_string(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        with patch("litellm.completion") as mock_comp:
            mock_comp.return_value = _mock_response(None)
            assert complete("openai", "gpt-4o", []) == ""

    def test_missing_key_never_calls_provider(self):
        with patch("litellm.completion") as mock_comp:
            with pytest.raises(ProviderUnavailable):
                complete("anthropic", "claude", [])
        mock_comp.assert_not_called()

    def test_failure_becomes_provider_error(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        with patch("litellm.completion", side_effect=RuntimeError("socket closed")):
            with pytest.raises(ProviderError, match="socket closed"):
                complete("openai", "gpt-4o", [])

    def test_empty_choices_become_provider_error(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        with patch("litellm.completion", return_value=MagicMock(choices=[])):
            with pytest.raises(ProviderError, match="no choices"):
                complete("openai", "gpt-4o", [])

    def test_authentication_error(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-bad")
        err = litellm.AuthenticationError(
            message="bad key", llm_provider="openai", model="gpt-4o"
        )
        with patch("litellm.completion", side_effect=err):
            with pytest.raises(ProviderError, match="rejected the API key"):
                complete("openai", "gpt-4o", [])


class TestProviderClient:
    def test_follows_current_provider(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-o")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-a")
        settings = Settings(provider="openai")
        client = ProviderClient(settings)
        with patch("litellm.completion") as mock_comp:
            mock_comp.return_value = _mock_response()
            client("gpt-4o", [], temperature=0.7)
            settings.provider = "anthropic"
            client("claude-3", [])
        first, second = mock_comp.call_args_list
        assert first[1]["model"] == "openai/gpt-4o"
        assert first[1]["temperature"] == 0.7
        assert second[1]["model"] == "anthropic/claude-3"
        assert second[1]["api_key"] == "sk-a"
