"""Provider registry and the gateway every generation call goes through."""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel

from autowriter.config import AutowriterConfig, RuntimeSettings, SettingsStore
from autowriter.errors import PersistenceError, ProviderError, ProviderNotConfigured, ValidationError
from autowriter.providers.anthropic_api import AnthropicProvider
from autowriter.providers.base import (
    AIProvider,
    ConnectionResult,
    GenerateOptions,
    GenerationResult,
    ProviderSettings,
)
from autowriter.providers.local import LocalProvider
from autowriter.providers.openai_api import OpenAIProvider
from autowriter.providers.usage import UsageTracker

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "local": LocalProvider,
}


class ProviderStatus(BaseModel):
    """Usage snapshot for one provider."""

    name: str
    description: str
    configured: bool
    active: bool
    requests_today: int = 0
    requests_this_month: int = 0
    tokens_used: int = 0
    estimated_cost: float = 0.0
    last_used: datetime | None = None


class ProviderManager:
    """Resolves the active provider and records usage for each call.

    Args:
        config: Loaded configuration (credentials, timeouts, cost fallback).
        state_dir: Where usage counters and runtime settings live.
        providers: Pre-built providers keyed by name; overrides the
            registry, mainly so tests can plug in a scripted backend.
        active: Force a provider name instead of reading settings.
    """

    def __init__(
        self,
        config: AutowriterConfig,
        state_dir: Path | None = None,
        *,
        providers: dict[str, AIProvider] | None = None,
        active: str | None = None,
    ) -> None:
        self.config = config
        self.state_dir = state_dir or config.storage.path
        self.settings_store = SettingsStore(self.state_dir, config)
        self.usage = UsageTracker(self.state_dir)
        self._injected: dict[str, AIProvider] = dict(providers or {})
        self._cache: dict[str, AIProvider] = {}
        self._active_override = active

    # ── Registry ─────────────────────────────────────────────────

    @property
    def names(self) -> list[str]:
        return sorted(set(PROVIDER_CLASSES) | set(self._injected))

    @property
    def settings(self) -> RuntimeSettings:
        return self.settings_store.get_settings()

    @property
    def active_name(self) -> str:
        return self._active_override or self.settings.active_provider

    def _provider_settings(self, name: str, settings: RuntimeSettings) -> ProviderSettings:
        creds = self.config.providers.get(name)
        model = settings.model if name == settings.active_provider else ""
        return ProviderSettings(
            credentials=creds,
            model=model or creds.model,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            timeout=self.config.provider.timeout,
        )

    def get(self, name: str | None = None) -> AIProvider:
        """Return a configured provider instance by name (default: active)."""
        name = name or self.active_name
        if name in self._injected:
            return self._injected[name]
        if name in self._cache:
            return self._cache[name]
        if name not in PROVIDER_CLASSES:
            raise ValidationError(f"Unknown provider: {name!r}")
        provider = PROVIDER_CLASSES[name](self._provider_settings(name, self.settings))
        self._cache[name] = provider
        return provider

    @property
    def active(self) -> AIProvider:
        return self.get()

    def switch_provider(self, name: str) -> RuntimeSettings:
        if name not in self.names:
            raise ValidationError(f"Unknown provider: {name!r}")
        self._active_override = None
        self._cache.clear()
        logger.info("Switching active provider to %s", name)
        return self.settings_store.save_settings(active_provider=name)

    # ── Gateway ──────────────────────────────────────────────────

    def cost_per_1k(self, model: str | None = None, provider: str | None = None) -> float:
        """Catalogue price for *model*, falling back to the configured default."""
        price = self.get(provider).cost_per_1k(model)
        return self.config.generation.default_cost_per_1k if price is None else price

    def estimate_cost(self, tokens: int, model: str | None = None, provider: str | None = None) -> float:
        return round(tokens / 1000 * self.cost_per_1k(model, provider), 6)

    def generate(
        self,
        prompt: str,
        options: GenerateOptions | None = None,
        *,
        provider: str | None = None,
    ) -> GenerationResult:
        """Generate through the active (or named) provider and count usage.

        Raises:
            ProviderNotConfigured: The provider name is not registered.
            ProviderError: Classified failure from the backend.
        """
        options = options or GenerateOptions()
        try:
            backend = self.get(provider)
        except ValidationError as exc:
            raise ProviderNotConfigured(str(exc), provider=provider or self.active_name) from exc
        started = time.monotonic()
        try:
            result = backend.generate(prompt, options)
        except ProviderError:
            raise
        except Exception as exc:
            raise ProviderError(
                f"{backend.name} failed (label={options.label}): {exc}", provider=backend.name
            ) from exc
        elapsed = time.monotonic() - started

        cost = self.estimate_cost(result.tokens_used, result.model or options.model, backend.name)
        result = result.model_copy(update={"cost": cost, "provider": backend.name})
        try:
            self.usage.record(backend.name, result.tokens_used, cost)
        except PersistenceError as exc:
            logger.error("Usage for %s (%s) was not recorded: %s", backend.name, options.label, exc)
        logger.info(
            "%s generated %d tokens in %.1fs (model=%s, %s)",
            backend.name,
            result.tokens_used,
            elapsed,
            result.model,
            options.label,
        )
        return result

    def test_provider(self, name: str | None = None) -> ConnectionResult:
        backend = self.get(name)
        if not backend.is_configured:
            return ConnectionResult(ok=False, message=f"{backend.name} provider is not configured")
        return backend.test_connection()

    def content_suggestions(self, subject: str, count: int = 5) -> list[str]:
        """Ask the active provider for blog title ideas about *subject*."""
        from autowriter.generation.prompts import topics_prompt
        from autowriter.generation.text import parse_list

        result = self.generate(
            topics_prompt(subject, count),
            GenerateOptions(max_tokens=200, temperature=0.7, label="topic-suggestions"),
        )
        return parse_list(result.text)[:count]

    def usage_statistics(self, now: datetime | None = None) -> list[ProviderStatus]:
        now = now or datetime.now(UTC)
        day = now.strftime("%Y-%m-%d")
        month = now.strftime("%Y-%m")
        data = self.usage.load()
        active = self.active_name
        stats: list[ProviderStatus] = []
        for name in self.names:
            backend = self.get(name)
            usage = data.providers.get(name)
            stats.append(
                ProviderStatus(
                    name=name,
                    description=backend.description,
                    configured=backend.is_configured,
                    active=name == active,
                    requests_today=usage.requests_on(day) if usage else 0,
                    requests_this_month=usage.requests_by_month.get(month, 0) if usage else 0,
                    tokens_used=usage.tokens_used if usage else 0,
                    estimated_cost=usage.estimated_cost if usage else 0.0,
                    last_used=usage.last_used if usage else None,
                )
            )
        return stats
