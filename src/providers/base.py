"""Provider contract shared by every generative-AI backend."""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from autowriter.config import ProviderCredentials
from autowriter.errors import ProviderError, ProviderNotConfigured

DEFAULT_MAX_TOKENS = 1000
DEFAULT_TEMPERATURE = 0.7
DEFAULT_TIMEOUT = 120


class ModelInfo(BaseModel):
    """One model a provider can serve."""

    id: str
    name: str
    description: str = ""
    max_tokens: int = 4096
    cost_per_1k_tokens: float = 0.0


class RateLimits(BaseModel):
    requests_per_minute: int = 0
    tokens_per_minute: int = 0


class ConnectionResult(BaseModel):
    ok: bool
    message: str = ""
    model: str = ""


class GenerateOptions(BaseModel):
    """Per-call options; unset fields fall back to the provider defaults."""

    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    system_prompt: str | None = None
    response_format: str | None = None
    label: str = "generation"


class GenerationResult(BaseModel):
    text: str
    tokens_used: int = 0
    cost: float = 0.0
    finish_reason: str = "unknown"
    model: str = ""
    provider: str = ""


class ProviderSettings(BaseModel):
    """Resolved configuration handed to a provider."""

    credentials: ProviderCredentials = Field(default_factory=ProviderCredentials)
    model: str = ""
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: float = DEFAULT_TEMPERATURE
    timeout: int = DEFAULT_TIMEOUT


class AIProvider(ABC):
    """Base class for generative-AI backends.

    Subclasses classify their SDK's failures into the
    :class:`~autowriter.errors.ProviderError` family instead of letting
    SDK exceptions escape.
    """

    name: str = ""
    description: str = ""
    default_model: str = ""
    models: tuple[ModelInfo, ...] = ()
    limits: RateLimits = RateLimits()
    supported_features: tuple[str, ...] = ("text_generation",)

    def __init__(self, settings: ProviderSettings | None = None) -> None:
        self.settings = settings or ProviderSettings()

    def configure(self, settings: ProviderSettings) -> None:
        self.settings = settings

    @property
    def api_key(self) -> str:
        return self.settings.credentials.api_key.get_secret_value().strip()

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def available_models(self) -> list[ModelInfo]:
        return list(self.models)

    def rate_limits(self) -> RateLimits:
        return self.limits

    def resolve_model(self, model: str | None = None) -> str:
        return model or self.settings.model or self.default_model

    def model_info(self, model: str | None = None) -> ModelInfo | None:
        resolved = self.resolve_model(model)
        for info in self.models:
            if info.id == resolved:
                return info
        return None

    def cost_per_1k(self, model: str | None = None) -> float | None:
        """Price per 1K tokens, or None when the model is not in the catalogue."""
        info = self.model_info(model)
        return info.cost_per_1k_tokens if info else None

    def require_configured(self) -> None:
        if not self.is_configured:
            raise ProviderNotConfigured(f"{self.name} provider is not configured", provider=self.name)

    def test_connection(self) -> ConnectionResult:
        """Send a tiny prompt and report whether the backend answered."""
        try:
            result = self.generate(
                "Reply with the single word: ok",
                GenerateOptions(max_tokens=5, temperature=0, label="connection-test"),
            )
        except ProviderError as exc:
            return ConnectionResult(ok=False, message=str(exc))
        return ConnectionResult(ok=True, message="Connection successful", model=result.model)

    @abstractmethod
    def generate(self, prompt: str, options: GenerateOptions | None = None) -> GenerationResult:
        """Generate text for *prompt*.

        Raises:
            ProviderError: A classified failure; see ``retryable``.
        """


EMPTY_RESULT_MESSAGE = (
    "The model predicted a completion that begins with a stop sequence, "
    "resulting in no output."
)
