"""Self-hosted OpenAI-compatible completion server."""

from __future__ import annotations

import json
import logging
import socket
import urllib.error
import urllib.request

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
    ConnectionResult,
    GenerateOptions,
    GenerationResult,
    ModelInfo,
    RateLimits,
)

logger = logging.getLogger(__name__)


class LocalProvider(AIProvider):
    """Llama/Mistral style models behind a local ``/v1/completions`` endpoint.

    Requests go over urllib; the API key is optional.
    """

    name = "local"
    description = "Self-hosted models for privacy-focused content generation"
    default_model = "mistral-7b"
    models = (
        ModelInfo(id="llama-2-7b", name="Llama 2 7B", max_tokens=4096),
        ModelInfo(id="llama-2-13b", name="Llama 2 13B", max_tokens=4096),
        ModelInfo(id="mistral-7b", name="Mistral 7B", description="Instruct model", max_tokens=8192),
        ModelInfo(id="codellama-7b", name="Code Llama 7B", max_tokens=4096),
    )
    limits = RateLimits(requests_per_minute=60, tokens_per_minute=0)

    @property
    def endpoint(self) -> str:
        return self.settings.credentials.endpoint_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint)

    def _request(self, method: str, path: str, data: dict | None = None) -> dict:
        body = json.dumps(data).encode("utf-8") if data is not None else None
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        req = urllib.request.Request(f"{self.endpoint}{path}", data=body, method=method, headers=headers)

        try:
            with urllib.request.urlopen(req, timeout=self.settings.timeout) as resp:
                raw = resp.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            if exc.code in (401, 403):
                raise ProviderAuthError(f"Local server refused credentials ({exc.code})", provider=self.name) from exc
            if exc.code == 429:
                raise ProviderQuotaError("Local server is rate limiting", provider=self.name) from exc
            if exc.code >= 500:
                raise ProviderTransportError(f"Local server error {exc.code}", provider=self.name) from exc
            raise ProviderError(f"Local server returned {exc.code}", provider=self.name) from exc
        except (urllib.error.URLError, socket.timeout, ConnectionError) as exc:
            raise ProviderTransportError(f"Local server unreachable: {exc}", provider=self.name) from exc

        try:
            return json.loads(raw) if raw else {}
        except json.JSONDecodeError as exc:
            raise ProviderError("Invalid response from local AI server", provider=self.name) from exc

    def test_connection(self) -> ConnectionResult:
        if not self.is_configured:
            return ConnectionResult(ok=False, message="No endpoint configured")
        try:
            self._request("GET", "/health")
        except ProviderError as exc:
            return ConnectionResult(ok=False, message=str(exc))
        return ConnectionResult(ok=True, message="Connection successful", model=self.resolve_model())

    def generate(self, prompt: str, options: GenerateOptions | None = None) -> GenerationResult:
        self.require_configured()
        options = options or GenerateOptions()
        model = self.resolve_model(options.model)
        if options.system_prompt:
            prompt = f"{options.system_prompt}\n\n{prompt}"

        logger.debug("Calling local completion server model=%s (%s)", model, options.label)
        data = self._request(
            "POST",
            "/v1/completions",
            {
                "model": model,
                "prompt": prompt,
                "max_tokens": options.max_tokens or self.settings.max_tokens,
                "temperature": (
                    options.temperature if options.temperature is not None else self.settings.temperature
                ),
                "stream": False,
            },
        )

        if "error" in data:
            message = data["error"].get("message", "") if isinstance(data["error"], dict) else data["error"]
            raise ProviderError(f"Local AI generation failed: {message}", provider=self.name)

        choices = data.get("choices") or []
        text = (choices[0].get("text") or "").strip() if choices else ""
        if not text:
            raise ProviderEmptyResult(EMPTY_RESULT_MESSAGE, provider=self.name)

        return GenerationResult(
            text=text,
            tokens_used=int(data.get("usage", {}).get("total_tokens", 0)),
            finish_reason=choices[0].get("finish_reason") or "unknown",
            model=model,
            provider=self.name,
        )
