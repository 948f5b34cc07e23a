"""Review session state machine.

Ties the driver, aggregator and history store together for one dashboard
session, and owns the exactly-once save guard:

    IDLE -> LOADING -> LOADED -> ANALYZING -> LOADED

A save happens only on the ANALYZING -> LOADED edge of an armed session
with non-empty markdown, a repository and a result. Loading a saved review
disarms the guard so a reload never saves itself again.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from pydantic import BaseModel
from rich.console import Console

from ..models.analysis import AnalysisResult
from ..models.credential import CredentialPurpose
from ..models.history import SavedReview
from ..models.snapshot import RepositorySnapshot
from ..models.stream import StreamChunk, TokenUsage
from ..providers.base import StreamingProvider
from ..utils.sanitize import sanitize_error
from .aggregator import ResultAccumulator
from .driver import AnalysisRun, StreamingAnalysisDriver
from .errors import RateLimited, ReviewEngineError, StorageFailure, ValidationError
from .history import HistoryStore

console = Console(stderr=True)

SnapshotFetcher = Callable[[], Awaitable[RepositorySnapshot]]
ChunkCallback = Callable[[StreamChunk], None]


class SessionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ANALYZING = "analyzing"


class OutcomeStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    RATE_LIMITED = "rate_limited"


class SessionOutcome(BaseModel):
    status: OutcomeStatus
    markdown: str = ""
    result: Optional[AnalysisResult] = None
    saved_review: Optional[SavedReview] = None
    error: Optional[str] = None
    attempts: int = 0


class ReviewSession:
    def __init__(
        self,
        driver: StreamingAnalysisDriver,
        history: HistoryStore,
    ):
        self.driver = driver
        self.history = history

        self.state = SessionState.IDLE
        self.snapshot: Optional[RepositorySnapshot] = None
        self.markdown = ""
        self.result: Optional[AnalysisResult] = None
        self.token_usage: Optional[TokenUsage] = None
        self.error: Optional[str] = None
        self.loaded_review_id: Optional[str] = None

        self._streaming = False
        self._run: Optional[AnalysisRun] = None
        self._finished: Optional[asyncio.Event] = None

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    @property
    def history_sourced(self) -> bool:
        return self.loaded_review_id is not None

    # ------------------------------------------------------------------ #
    # Repository loading
    # ------------------------------------------------------------------ #

    async def load_repository(self, fetch: SnapshotFetcher) -> RepositorySnapshot:
        """IDLE/LOADED -> LOADING -> LOADED, or back to IDLE on failure."""
        await self.cancel()
        self.state = SessionState.LOADING
        self.error = None
        self.snapshot = None
        self.markdown = ""
        self.result = None
        self.token_usage = None
        self.loaded_review_id = None
        return await self._fetch(fetch)

    async def load_saved_review(
        self,
        review: SavedReview,
        fetch: Optional[SnapshotFetcher] = None,
    ) -> None:
        """Restore a saved review without re-running the model.

        The session is marked history-sourced, which disarms the save guard.
        """
        await self.cancel()
        self.loaded_review_id = review.id
        self.markdown = review.review_markdown
        self.result = review.ai_analysis
        self.token_usage = review.ai_analysis.token_usage if review.ai_analysis else None
        self.error = None

        if fetch is not None:
            self.state = SessionState.LOADING
            await self._fetch(fetch)
        elif self.snapshot is not None:
            self.state = SessionState.LOADED

    async def _fetch(self, fetch: SnapshotFetcher) -> RepositorySnapshot:
        try:
            snapshot = await fetch()
        except Exception as e:
            self.error = sanitize_error(str(e)) or "Failed to fetch repository data"
            self.state = SessionState.IDLE
            raise
        self.snapshot = snapshot
        self.state = SessionState.LOADED
        return snapshot

    def reset(self) -> None:
        if self._run is not None:
            self._run.cancel()
        self.state = SessionState.IDLE
        self.snapshot = None
        self.markdown = ""
        self.result = None
        self.token_usage = None
        self.error = None
        self.loaded_review_id = None

    # ------------------------------------------------------------------ #
    # Analysis
    # ------------------------------------------------------------------ #

    async def analyze(
        self,
        backend: Union[str, StreamingProvider, None] = None,
        on_chunk: Optional[ChunkCallback] = None,
        rotate_on_rate_limit: bool = True,
    ) -> SessionOutcome:
        """LOADED -> ANALYZING -> LOADED; saves to history on success.

        With ``rotate_on_rate_limit`` the run is restarted with the next
        active credential when a rate limit arrives before any text,
        bounded by the number of model-access credentials.
        """
        if self.snapshot is None or self.state == SessionState.LOADING:
            raise ValidationError("No repository loaded")

        await self.cancel()

        # A new analysis arms the save guard
        self.loaded_review_id = None
        self.markdown = ""
        self.result = None
        self.token_usage = None
        self.error = None
        self.state = SessionState.ANALYZING
        self._streaming = True
        self._finished = asyncio.Event()

        max_attempts = self.driver.pool.count(CredentialPurpose.MODEL_ACCESS) + 1
        attempts = 0
        status = OutcomeStatus.FAILED
        accumulator = ResultAccumulator()

        try:
            while True:
                attempts += 1
                accumulator = ResultAccumulator()
                self._run = self.driver.run(self.snapshot, backend)
                try:
                    async for chunk in self._run:
                        accumulator.add(chunk)
                        self.markdown = accumulator.markdown
                        self.token_usage = accumulator.token_usage
                        if on_chunk is not None:
                            on_chunk(chunk)
                except RateLimited as e:
                    can_rotate = (
                        rotate_on_rate_limit
                        and not accumulator.has_text
                        and e.credential_id is not None
                        and attempts < max_attempts
                        and self.driver.pool.select_active(CredentialPurpose.MODEL_ACCESS)
                        is not None
                    )
                    if can_rotate:
                        console.print(
                            "  [yellow]WARN[/yellow] Credential rate limited; "
                            "retrying with the next available credential"
                        )
                        continue
                    self.error = sanitize_error(str(e))
                    status = OutcomeStatus.RATE_LIMITED
                    break
                except ReviewEngineError as e:
                    self.error = sanitize_error(str(e))
                    status = OutcomeStatus.FAILED
                    break

                if self._run.cancelled:
                    status = OutcomeStatus.CANCELLED
                else:
                    self.result = accumulator.finalize()
                    status = OutcomeStatus.COMPLETED
                break
        except asyncio.CancelledError:
            if self._run is not None:
                self._run.cancel()
            self._end_streaming(commit=False)
            raise
        except Exception:
            self._end_streaming(commit=False)
            raise

        saved = self._end_streaming(commit=status == OutcomeStatus.COMPLETED)
        return SessionOutcome(
            status=status,
            markdown=self.markdown,
            result=self.result,
            saved_review=saved,
            error=self.error,
            attempts=attempts,
        )

    async def cancel(self) -> None:
        """Cancel the in-flight run, if any, and wait for it to wind down."""
        if not self._streaming or self._run is None:
            return
        self._run.cancel()
        if self._finished is not None:
            await self._finished.wait()

    def _end_streaming(self, commit: bool) -> Optional[SavedReview]:
        """Falling edge of the streaming flag: the only place a save happens."""
        was_streaming = self._streaming
        self._streaming = False
        self._run = None
        self.state = SessionState.LOADED if self.snapshot is not None else SessionState.IDLE
        if self._finished is not None:
            self._finished.set()

        if not (was_streaming and commit):
            return None
        if self.history_sourced:
            return None
        if not self.markdown or self.snapshot is None or self.result is None:
            return None

        try:
            return self.history.save(
                self.snapshot.identity,
                self.markdown,
                self.result,
                len(self.snapshot.commits),
                len(self.snapshot.pull_requests),
            )
        except StorageFailure as e:
            console.print(f"  [yellow]WARN[/yellow] {e}")
            return e.review
