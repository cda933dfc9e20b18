"""Tests for the provider registry and generation gateway."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import patch

import pytest

from autowriter.config import AutowriterConfig, GenerationConfig, StorageConfig
from autowriter.errors import (
    PersistenceError,
    ProviderError,
    ProviderNotConfigured,
    ProviderQuotaError,
    ValidationError,
)
from autowriter.providers.anthropic_api import AnthropicProvider
from autowriter.providers.base import GenerateOptions
from autowriter.providers.manager import ProviderManager
from autowriter.providers.openai_api import OpenAIProvider


@pytest.fixture
def manager_config(tmp_path) -> AutowriterConfig:
    return AutowriterConfig(storage=StorageConfig(directory=str(tmp_path)))


class TestRegistry:
    def test_builtin_names(self, manager_config, tmp_path):
        manager = ProviderManager(manager_config, tmp_path)
        assert manager.names == ["anthropic", "local", "openai"]
        assert isinstance(manager.active, AnthropicProvider)

    def test_unknown_provider(self, manager_config, tmp_path):
        with pytest.raises(ValidationError):
            ProviderManager(manager_config, tmp_path).get("gemini")

    def test_switch_persists(self, manager_config, tmp_path):
        manager = ProviderManager(manager_config, tmp_path)
        manager.switch_provider("openai")
        assert isinstance(ProviderManager(manager_config, tmp_path).active, OpenAIProvider)

    def test_switch_rejects_unknown(self, manager_config, tmp_path):
        with pytest.raises(ValidationError):
            ProviderManager(manager_config, tmp_path).switch_provider("nope")

    def test_active_model_from_settings(self, tmp_path):
        config = AutowriterConfig(
            storage=StorageConfig(directory=str(tmp_path)),
            generation=GenerationConfig(model="gpt-4"),
        )
        manager = ProviderManager(config, tmp_path, active=None)
        manager.switch_provider("openai")
        assert manager.active.resolve_model() == "gpt-4"


class TestGateway:
    def test_generate_records_usage_and_cost(self, manager_config, tmp_path, stub_cls):
        stub = stub_cls(lambda p, o: "text", tokens=500)
        manager = ProviderManager(manager_config, tmp_path, providers={"stub": stub}, active="stub")
        result = manager.generate("Prompt", GenerateOptions(label="intro:x"))
        assert result.cost == pytest.approx(0.001)
        assert result.provider == "stub"
        usage = manager.usage.provider_usage("stub")
        assert usage.tokens_used == 500
        assert usage.estimated_cost == pytest.approx(0.001)

    def test_failed_call_records_nothing(self, manager_config, tmp_path, stub_cls):
        stub = stub_cls(lambda p, o: ProviderQuotaError("limited"))
        manager = ProviderManager(manager_config, tmp_path, providers={"stub": stub}, active="stub")
        with pytest.raises(ProviderQuotaError):
            manager.generate("Prompt")
        assert manager.usage.provider_usage("stub").tokens_used == 0

    def test_unexpected_exceptions_are_wrapped(self, manager_config, tmp_path, stub_cls):
        stub = stub_cls(lambda p, o: RuntimeError("socket closed"))
        manager = ProviderManager(manager_config, tmp_path, providers={"stub": stub}, active="stub")
        with pytest.raises(ProviderError, match="socket closed") as info:
            manager.generate("Prompt")
        assert isinstance(info.value.__cause__, RuntimeError)

    def test_unknown_provider_is_a_provider_error(self, manager_config, tmp_path, stub_cls):
        manager = ProviderManager(manager_config, tmp_path, providers={"stub": stub_cls()}, active="gemini")
        with pytest.raises(ProviderNotConfigured, match="gemini") as info:
            manager.generate("Prompt")
        assert info.value.provider == "gemini"
        assert isinstance(info.value.__cause__, ValidationError)

    def test_usage_write_failure_still_returns_text(self, manager_config, tmp_path, stub_cls):
        stub = stub_cls(lambda p, o: "text")
        manager = ProviderManager(manager_config, tmp_path, providers={"stub": stub}, active="stub")
        with patch.object(manager.usage, "record", side_effect=PersistenceError("read-only")):
            result = manager.generate("Prompt")
        assert result.text == "text"

    def test_cost_falls_back_for_unknown_model(self, manager_config, tmp_path, stub_cls):
        manager = ProviderManager(
            manager_config, tmp_path, providers={"stub": stub_cls()}, active="stub"
        )
        assert manager.cost_per_1k("custom-finetune") == 0.0015
        assert manager.estimate_cost(2000, "custom-finetune") == pytest.approx(0.003)
        assert manager.estimate_cost(2000) == pytest.approx(0.004)

    def test_content_suggestions(self, manager_config, tmp_path, stub_cls):
        reply = '1. "Ten Tips for Tea"\n2. **Brewing Basics**\n3. Tea Myths\n4. Extra'
        stub = stub_cls(lambda p, o: reply)
        manager = ProviderManager(manager_config, tmp_path, providers={"stub": stub}, active="stub")
        titles = manager.content_suggestions("tea", count=3)
        assert titles == ["Ten Tips for Tea", "Brewing Basics", "Tea Myths"]
        prompt, options = stub.calls[0]
        assert "'tea'" in prompt
        assert options.label == "topic-suggestions"


class TestStatus:
    def test_unconfigured_provider_test(self, manager_config, tmp_path):
        result = ProviderManager(manager_config, tmp_path).test_provider("openai")
        assert result.ok is False
        assert "not configured" in result.message

    def test_usage_statistics(self, manager_config, tmp_path, stub_cls):
        manager = ProviderManager(
            manager_config, tmp_path, providers={"stub": stub_cls()}, active="stub"
        )
        now = datetime(2024, 5, 1, tzinfo=UTC)
        manager.usage.record("stub", 40, 0.01, now=now)
        stats = {s.name: s for s in manager.usage_statistics(now)}
        assert stats["stub"].active is True
        assert stats["stub"].requests_today == 1
        assert stats["stub"].tokens_used == 40
        assert stats["openai"].configured is False
        assert stats["local"].configured is True

    def test_connection_test_uses_backend(self, manager_config, tmp_path):
        manager = ProviderManager(manager_config, tmp_path)
        with patch.object(AnthropicProvider, "test_connection") as tc:
            with patch.object(AnthropicProvider, "is_configured", True):
                manager.test_provider("anthropic")
        tc.assert_called_once()
