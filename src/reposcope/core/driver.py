"""Streaming analysis driver.

Resolves a credential, asks the chosen backend for a review of the
snapshot, and hands chunks to a single consumer in emission order.
A rate limit marks the credential and ends the run; retrying with the next
credential is up to the caller (see ReviewSession.analyze).
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from typing import AsyncIterator, Optional, Union

from rich.console import Console

from ..models.credential import Credential, CredentialPurpose
from ..models.snapshot import RepositorySnapshot
from ..models.stream import StreamChunk
from ..providers.base import StreamingProvider, get_ai_provider
from .credentials import CredentialPool
from .errors import RateLimited, StorageFailure, ValidationError
from .prompts import build_system_prompt, build_user_prompt

console = Console(stderr=True)

DEFAULT_COOLDOWN_SECONDS = 60


class AnalysisRun:
    """Async iterator over one run's chunks, with cooperative cancellation.

    After cancel() no further chunks are delivered and the backend request
    is aborted, including a read that is already in flight.
    """

    def __init__(self, chunks: AsyncIterator[StreamChunk], backend: str = ""):
        self._chunks = chunks
        self.backend = backend
        self._cancelled = False
        self._finished = False
        self._pending: Optional[asyncio.Future] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def finished(self) -> bool:
        return self._finished

    def __aiter__(self) -> "AnalysisRun":
        return self

    async def __anext__(self) -> StreamChunk:
        if self._cancelled or self._finished:
            await self.aclose()
            raise StopAsyncIteration

        # Read in a child task so cancel() can abort a read already in flight
        self._pending = asyncio.ensure_future(self._next_chunk())
        try:
            chunk = await self._pending
        except StopAsyncIteration:
            self._finished = True
            raise
        except asyncio.CancelledError:
            if self._cancelled:
                await self.aclose()
                raise StopAsyncIteration
            raise
        except BaseException:
            self._finished = True
            raise
        finally:
            self._pending = None

        if self._cancelled:
            await self.aclose()
            raise StopAsyncIteration
        return chunk

    async def _next_chunk(self) -> StreamChunk:
        return await self._chunks.__anext__()

    def cancel(self) -> None:
        """Request cancellation. Safe to call from any coroutine, any number of times."""
        self._cancelled = True
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()

    async def aclose(self) -> None:
        self._finished = True
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            await aclose()


class StreamingAnalysisDriver:
    def __init__(
        self,
        pool: CredentialPool,
        config: dict,
        providers: Optional[dict[str, StreamingProvider]] = None,
    ):
        self.pool = pool
        self.config = config
        self._providers: dict[str, StreamingProvider] = dict(providers or {})

    def resolve_provider(
        self, backend: Union[str, StreamingProvider, None]
    ) -> StreamingProvider:
        if backend is None:
            backend = self.config.get("ai", {}).get("provider", "gemini")
        if not isinstance(backend, str):
            return backend
        if backend not in self._providers:
            self._providers[backend] = get_ai_provider(self.config, provider_override=backend)
        return self._providers[backend]

    def run(
        self,
        snapshot: RepositorySnapshot,
        backend: Union[str, StreamingProvider, None] = None,
    ) -> AnalysisRun:
        """Start a lazy, cancellable stream of review chunks for ``snapshot``."""
        provider = self.resolve_provider(backend)
        return AnalysisRun(self._stream(snapshot, provider), backend=provider.name)

    async def _stream(
        self, snapshot: RepositorySnapshot, provider: StreamingProvider
    ) -> AsyncIterator[StreamChunk]:
        credential, api_key = self._resolve_credential(provider)

        system_prompt = build_system_prompt()
        user_prompt = build_user_prompt(snapshot, self.config.get("review", {}))

        try:
            async with aclosing(
                provider.stream(system_prompt, user_prompt, api_key=api_key)
            ) as chunks:
                async for chunk in chunks:
                    yield chunk
        except RateLimited as e:
            if credential is None:
                raise
            until = self._cooldown_until(e.retry_after_seconds)
            try:
                self.pool.mark_rate_limited(credential.id, until)
            except StorageFailure as storage_error:
                console.print(
                    f"  [yellow]WARN[/yellow] Could not persist rate limit for "
                    f"'{credential.name}': {storage_error}"
                )
            raise RateLimited(
                str(e),
                credential_id=credential.id,
                until=until,
                retry_after_seconds=e.retry_after_seconds,
            ) from e

    def _resolve_credential(
        self, provider: StreamingProvider
    ) -> tuple[Optional[Credential], Optional[str]]:
        if not provider.requires_credential:
            return None, None

        credential = self.pool.select_active(CredentialPurpose.MODEL_ACCESS)
        if credential is not None:
            return credential, credential.secret

        fallback = provider.default_api_key()
        if fallback:
            return None, fallback

        earliest = self.pool.earliest_available(CredentialPurpose.MODEL_ACCESS)
        if earliest is not None:
            raise RateLimited(
                "All model-access credentials are rate limited",
                until=earliest,
            )
        raise ValidationError(
            f"No model-access credential available for {provider.name}"
        )

    def _cooldown_until(self, retry_after_seconds: Optional[float]) -> int:
        seconds = retry_after_seconds
        if seconds is None:
            seconds = self.config.get("ai", {}).get(
                "rate_limit_cooldown_seconds", DEFAULT_COOLDOWN_SECONDS
            )
        return self.pool.clock() + int(seconds * 1000)
