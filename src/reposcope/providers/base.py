"""Streaming model backend abstraction.

Every backend turns a prompt into the same normalized chunk stream
(TextChunk / UsageChunk). Backends raise RateLimited or TransportFailure
and never retry on their own; rotation is the caller's decision.
"""

from __future__ import annotations

import os
from typing import AsyncIterator, Optional, Protocol, runtime_checkable

import httpx

from ..core.errors import RateLimited, TransportFailure
from ..models.stream import StreamChunk
from ..utils.sanitize import sanitize_error

PROVIDER_NAMES = ("gemini", "ollama")


@runtime_checkable
class StreamingProvider(Protocol):
    """Protocol that all model backends must implement."""

    name: str
    requires_credential: bool

    def stream(
        self,
        system_prompt: str,
        user_prompt: str,
        api_key: Optional[str] = None,
    ) -> AsyncIterator[StreamChunk]: ...

    def default_api_key(self) -> Optional[str]: ...


class BaseProvider:
    """Base class with shared config handling and error classification."""

    name: str = "base"
    requires_credential: bool = False
    API_KEY_ENV: Optional[str] = None

    def __init__(
        self,
        provider_config: dict,
        common_config: dict,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = provider_config
        self.common = common_config
        self.transport = transport

    def stream(
        self,
        system_prompt: str,
        user_prompt: str,
        api_key: Optional[str] = None,
    ) -> AsyncIterator[StreamChunk]:
        raise NotImplementedError

    def default_api_key(self) -> Optional[str]:
        env_var = self.config.get("api_key_env", self.API_KEY_ENV)
        if not env_var:
            return None
        return os.environ.get(env_var) or None

    def _client(self) -> httpx.AsyncClient:
        timeout = self.common.get("timeout_seconds", 300)
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=30.0) if timeout else None,
            transport=self.transport,
        )

    async def _raise_for_status(self, response: httpx.Response) -> None:
        """Turn an error response into RateLimited or TransportFailure."""
        if response.status_code < 400:
            return

        error_body = ""
        try:
            await response.aread()
            error_body = response.text
        except httpx.HTTPError:
            pass

        if response.status_code == 429:
            raise RateLimited(
                f"{self.name}: 429 | {sanitize_error(error_body[:300])}",
                retry_after_seconds=parse_retry_after(response.headers.get("retry-after")),
            )
        raise TransportFailure(
            f"{self.name}: {response.status_code} | {sanitize_error(error_body[:300])}",
            status_code=response.status_code,
        )

    def _transport_failure(self, e: Exception) -> TransportFailure:
        return TransportFailure(f"{self.name}: {sanitize_error(str(e) or type(e).__name__)}")


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds. HTTP dates are ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def get_ai_provider(
    config: dict,
    provider_override: Optional[str] = None,
    model_override: Optional[str] = None,
    endpoint_override: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BaseProvider:
    """Factory function to create the configured model backend."""
    ai_config = config.get("ai", {})
    provider_name = provider_override or ai_config.get("provider", "gemini")

    # Get provider-specific config
    provider_config = dict(ai_config.get(provider_name, {}))

    # Apply CLI overrides
    if model_override:
        provider_config["model"] = model_override
    if endpoint_override:
        provider_config["endpoint"] = endpoint_override

    # Build common config (ai section minus provider sub-configs)
    common_config = {
        k: v
        for k, v in ai_config.items()
        if k not in PROVIDER_NAMES
    }

    # Import and instantiate provider
    if provider_name == "gemini":
        from .gemini import GeminiProvider
        return GeminiProvider(provider_config, common_config, transport=transport)
    elif provider_name == "ollama":
        from .ollama import OllamaProvider
        return OllamaProvider(provider_config, common_config, transport=transport)
    else:
        raise ValueError(f"Unknown AI provider: {provider_name}")
