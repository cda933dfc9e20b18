"""Tests for the Anthropic provider: request shape, usage and error classification."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import anthropic
import httpx
import pytest
from pydantic import SecretStr

from autowriter.config import ProviderCredentials
from autowriter.errors import (
    ProviderAuthError,
    ProviderEmptyResult,
    ProviderError,
    ProviderNotConfigured,
    ProviderQuotaError,
    ProviderTransportError,
)
from autowriter.providers.anthropic_api import AnthropicProvider
from autowriter.providers.base import GenerateOptions, ProviderSettings

_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def _provider(**settings) -> AnthropicProvider:
    creds = ProviderCredentials(api_key=SecretStr("sk-ant-test"))
    return AnthropicProvider(ProviderSettings(credentials=creds, **settings))


def _response(text: str, input_tokens: int = 12, output_tokens: int = 30) -> SimpleNamespace:
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
        stop_reason="end_turn",
        model="claude-sonnet-4-6",
    )


def _status_error(cls, status: int):
    return cls("failure", response=httpx.Response(status, request=_REQUEST), body=None)


@pytest.fixture
def client():
    with patch.object(AnthropicProvider, "_client") as factory:
        mock = MagicMock()
        factory.return_value = mock
        yield mock


# ── Configuration ────────────────────────────────────────────────────


class TestConfiguration:
    def test_not_configured_without_key(self):
        provider = AnthropicProvider()
        assert provider.is_configured is False
        with pytest.raises(ProviderNotConfigured):
            provider.generate("hi")

    def test_short_model_names_resolve(self):
        assert _provider(model="haiku").resolve_model() == "claude-haiku-4-5-20251001"
        assert _provider().resolve_model("opus") == "claude-opus-4-6"
        assert _provider().resolve_model() == "claude-sonnet-4-6"

    def test_catalogue_prices(self):
        provider = _provider()
        assert provider.cost_per_1k("claude-3-haiku-20240307") == 0.00025
        assert provider.cost_per_1k("claude-3-opus-20240229") == 0.015
        assert provider.cost_per_1k("not-a-model") is None
        assert provider.rate_limits().requests_per_minute == 1000


# ── generate() ───────────────────────────────────────────────────────


class TestGenerate:
    def test_returns_text_and_tokens(self, client):
        client.messages.create.return_value = _response("  Hello there  ")
        result = _provider().generate("Say hi", GenerateOptions(max_tokens=50, temperature=0.2))
        assert result.text == "Hello there"
        assert result.tokens_used == 42
        assert result.finish_reason == "end_turn"
        assert result.provider == "anthropic"

    def test_request_shape(self, client):
        client.messages.create.return_value = _response("ok")
        _provider(max_tokens=900, temperature=0.4).generate(
            "Prompt", GenerateOptions(model="haiku", system_prompt="Be brief")
        )
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-haiku-4-5-20251001"
        assert kwargs["max_tokens"] == 900
        assert kwargs["temperature"] == 0.4
        assert kwargs["system"] == "Be brief"
        assert kwargs["messages"] == [{"role": "user", "content": "Prompt"}]

    def test_blank_system_prompt_is_omitted(self, client):
        client.messages.create.return_value = _response("ok")
        _provider().generate("Prompt", GenerateOptions(system_prompt="   "))
        assert "system" not in client.messages.create.call_args.kwargs

    def test_empty_text_is_empty_result(self, client):
        client.messages.create.return_value = _response("   ")
        with pytest.raises(ProviderEmptyResult, match="stop sequence"):
            _provider().generate("Prompt")


class TestErrorClassification:
    @pytest.mark.parametrize(
        ("error", "expected", "retryable"),
        [
            (lambda: _status_error(anthropic.AuthenticationError, 401), ProviderAuthError, False),
            (lambda: _status_error(anthropic.PermissionDeniedError, 403), ProviderAuthError, False),
            (lambda: _status_error(anthropic.RateLimitError, 429), ProviderQuotaError, True),
            (lambda: anthropic.APIConnectionError(request=_REQUEST), ProviderTransportError, True),
            (lambda: _status_error(anthropic.InternalServerError, 500), ProviderTransportError, True),
        ],
    )
    def test_sdk_errors_are_classified(self, client, error, expected, retryable):
        client.messages.create.side_effect = error()
        with pytest.raises(expected) as info:
            _provider().generate("Prompt")
        assert info.value.retryable is retryable
        assert info.value.provider == "anthropic"

    def test_other_status_is_plain_provider_error(self, client):
        client.messages.create.side_effect = _status_error(anthropic.BadRequestError, 400)
        with pytest.raises(ProviderError) as info:
            _provider().generate("Prompt", GenerateOptions(label="intro:abc"))
        assert type(info.value) is ProviderError
        assert "intro:abc" in str(info.value)

    def test_connection_test_reports_failure(self, client):
        client.messages.create.side_effect = _status_error(anthropic.AuthenticationError, 401)
        result = _provider().test_connection()
        assert result.ok is False
        assert "credentials" in result.message
