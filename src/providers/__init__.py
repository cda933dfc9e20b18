"""Generative-AI provider gateway."""

from autowriter.providers.base import (
    AIProvider,
    ConnectionResult,
    GenerateOptions,
    GenerationResult,
    ModelInfo,
    ProviderSettings,
    RateLimits,
)
from autowriter.providers.manager import PROVIDER_CLASSES, ProviderManager

__all__ = [
    "AIProvider",
    "ConnectionResult",
    "GenerateOptions",
    "GenerationResult",
    "ModelInfo",
    "PROVIDER_CLASSES",
    "ProviderManager",
    "ProviderSettings",
    "RateLimits",
]
