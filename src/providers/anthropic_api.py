"""Anthropic Messages API provider."""

from __future__ import annotations

import logging

import anthropic

from autowriter.errors import (
    ProviderAuthError,
    ProviderEmptyResult,
    ProviderError,
    ProviderQuotaError,
    ProviderTransportError,
)
from autowriter.providers.base import (
    EMPTY_RESULT_MESSAGE,
    AIProvider,
    GenerateOptions,
    GenerationResult,
    ModelInfo,
    RateLimits,
)

logger = logging.getLogger(__name__)

# Short names accepted in config, as with the CLI's --model flag.
_MODEL_MAP: dict[str, str] = {
    "sonnet": "claude-sonnet-4-6",
    "haiku": "claude-haiku-4-5-20251001",
    "opus": "claude-opus-4-6",
}


class AnthropicProvider(AIProvider):
    """Claude models via the official ``anthropic`` SDK."""

    name = "anthropic"
    description = "Anthropic Claude models for high-quality long-form writing"
    default_model = "claude-sonnet-4-6"
    models = (
        ModelInfo(id="claude-opus-4-6", name="Claude Opus", max_tokens=32000, cost_per_1k_tokens=0.015),
        ModelInfo(id="claude-sonnet-4-6", name="Claude Sonnet", max_tokens=64000, cost_per_1k_tokens=0.003),
        ModelInfo(
            id="claude-haiku-4-5-20251001",
            name="Claude Haiku",
            max_tokens=64000,
            cost_per_1k_tokens=0.001,
        ),
        ModelInfo(
            id="claude-3-opus-20240229",
            name="Claude 3 Opus",
            description="Most capable Claude 3 model",
            max_tokens=4096,
            cost_per_1k_tokens=0.015,
        ),
        ModelInfo(
            id="claude-3-sonnet-20240229",
            name="Claude 3 Sonnet",
            description="Balanced Claude 3 model",
            max_tokens=4096,
            cost_per_1k_tokens=0.003,
        ),
        ModelInfo(
            id="claude-3-haiku-20240307",
            name="Claude 3 Haiku",
            description="Fastest Claude 3 model",
            max_tokens=4096,
            cost_per_1k_tokens=0.00025,
        ),
    )
    limits = RateLimits(requests_per_minute=1000, tokens_per_minute=100000)
    supported_features = ("text_generation", "system_prompt", "long_context")

    def resolve_model(self, model: str | None = None) -> str:
        resolved = super().resolve_model(model)
        return _MODEL_MAP.get(resolved, resolved)

    def _client(self) -> anthropic.Anthropic:
        return anthropic.Anthropic(api_key=self.api_key, timeout=self.settings.timeout)

    def generate(self, prompt: str, options: GenerateOptions | None = None) -> GenerationResult:
        self.require_configured()
        options = options or GenerateOptions()
        model = self.resolve_model(options.model)

        kwargs: dict[str, object] = {
            "model": model,
            "max_tokens": options.max_tokens or self.settings.max_tokens,
            "temperature": (
                options.temperature if options.temperature is not None else self.settings.temperature
            ),
            "messages": [{"role": "user", "content": prompt}],
        }
        if options.system_prompt and options.system_prompt.strip():
            kwargs["system"] = options.system_prompt

        logger.debug("Calling Anthropic API model=%s (%s)", model, options.label)
        try:
            response = self._client().messages.create(**kwargs)  # type: ignore[arg-type]
        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as exc:
            raise ProviderAuthError(f"Anthropic rejected credentials: {exc}", provider=self.name) from exc
        except anthropic.RateLimitError as exc:
            raise ProviderQuotaError(f"Anthropic rate limit: {exc}", provider=self.name) from exc
        except anthropic.APIConnectionError as exc:
            raise ProviderTransportError(f"Anthropic unreachable: {exc}", provider=self.name) from exc
        except anthropic.APIStatusError as exc:
            if exc.status_code >= 500:
                raise ProviderTransportError(
                    f"Anthropic server error {exc.status_code}: {exc}", provider=self.name
                ) from exc
            raise ProviderError(
                f"Anthropic API failed ({exc.status_code}, label={options.label}): {exc}",
                provider=self.name,
            ) from exc

        text_parts: list[str] = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)

        text = "".join(text_parts).strip()
        if not text:
            raise ProviderEmptyResult(EMPTY_RESULT_MESSAGE, provider=self.name)

        usage = response.usage
        return GenerationResult(
            text=text,
            tokens_used=usage.input_tokens + usage.output_tokens,
            finish_reason=response.stop_reason or "unknown",
            model=response.model or model,
            provider=self.name,
        )
