"""OpenAI Chat Completions provider."""

from __future__ import annotations

import logging

import openai
from openai import OpenAI

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


class OpenAIProvider(AIProvider):
    """GPT models via the official ``openai`` SDK."""

    name = "openai"
    description = "OpenAI GPT models for versatile content generation"
    default_model = "gpt-4o"
    models = (
        ModelInfo(
            id="gpt-4o",
            name="GPT-4o",
            description="Multimodal flagship model",
            max_tokens=4096,
            cost_per_1k_tokens=0.005,
        ),
        ModelInfo(
            id="gpt-4-turbo",
            name="GPT-4 Turbo",
            description="Large-context GPT-4",
            max_tokens=4096,
            cost_per_1k_tokens=0.01,
        ),
        ModelInfo(id="gpt-4", name="GPT-4", max_tokens=8192, cost_per_1k_tokens=0.03),
        ModelInfo(
            id="gpt-3.5-turbo",
            name="GPT-3.5 Turbo",
            description="Fast and inexpensive",
            max_tokens=4096,
            cost_per_1k_tokens=0.0015,
        ),
    )
    limits = RateLimits(requests_per_minute=3500, tokens_per_minute=90000)
    supported_features = ("text_generation", "system_prompt", "json_mode")

    def _client(self) -> OpenAI:
        return OpenAI(api_key=self.api_key, timeout=self.settings.timeout)

    def generate(self, prompt: str, options: GenerateOptions | None = None) -> GenerationResult:
        self.require_configured()
        options = options or GenerateOptions()
        model = self.resolve_model(options.model)

        messages: list[dict[str, str]] = []
        if options.system_prompt and options.system_prompt.strip():
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs: dict[str, object] = {
            "model": model,
            "messages": messages,
            "max_tokens": options.max_tokens or self.settings.max_tokens,
            "temperature": (
                options.temperature if options.temperature is not None else self.settings.temperature
            ),
        }
        if options.response_format:
            kwargs["response_format"] = {"type": options.response_format}

        logger.debug("Calling OpenAI API model=%s (%s)", model, options.label)
        try:
            response = self._client().chat.completions.create(**kwargs)  # type: ignore[arg-type]
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            raise ProviderAuthError(f"OpenAI rejected credentials: {exc}", provider=self.name) from exc
        except openai.RateLimitError as exc:
            raise ProviderQuotaError(f"OpenAI rate limit: {exc}", provider=self.name) from exc
        except openai.APIConnectionError as exc:
            raise ProviderTransportError(f"OpenAI unreachable: {exc}", provider=self.name) from exc
        except openai.APIStatusError as exc:
            if exc.status_code >= 500:
                raise ProviderTransportError(
                    f"OpenAI server error {exc.status_code}: {exc}", provider=self.name
                ) from exc
            raise ProviderError(
                f"OpenAI API failed ({exc.status_code}, label={options.label}): {exc}",
                provider=self.name,
            ) from exc

        if not response.choices:
            raise ProviderEmptyResult(EMPTY_RESULT_MESSAGE, provider=self.name)
        choice = response.choices[0]
        text = (choice.message.content or "").strip()
        if not text:
            raise ProviderEmptyResult(EMPTY_RESULT_MESSAGE, provider=self.name)

        return GenerationResult(
            text=text,
            tokens_used=response.usage.total_tokens if response.usage else 0,
            finish_reason=choice.finish_reason or "unknown",
            model=response.model or model,
            provider=self.name,
        )
