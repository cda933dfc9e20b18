"""Exception hierarchy shared by every autowriter component."""

from __future__ import annotations


class AutowriterError(Exception):
    """Base error for autowriter."""


class ValidationError(AutowriterError):
    """A job or schedule definition was rejected before being stored."""


class PersistenceError(AutowriterError):
    """Writing state to disk failed."""


class PublishError(AutowriterError):
    """The content publisher rejected an item."""


class ProviderError(AutowriterError):
    """Base error for generative-AI provider calls.

    ``retryable`` tells the job engine whether the same stage may be
    attempted again on a later invocation.
    """

    retryable: bool = False

    def __init__(self, message: str, *, provider: str = "", retryable: bool | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        if retryable is not None:
            self.retryable = retryable


class ProviderAuthError(ProviderError):
    """Credentials were missing or rejected."""


class ProviderNotConfigured(ProviderAuthError):
    """The provider has no credentials or endpoint configured."""


class ProviderQuotaError(ProviderError):
    """Rate limit or quota exceeded."""

    retryable = True


class ProviderEmptyResult(ProviderError):
    """The model returned blank or stop-sequence-only output."""

    retryable = True


class ProviderTransportError(ProviderError):
    """Timeout, connection failure or server-side error."""

    retryable = True
