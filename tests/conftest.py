"""Shared fixtures for RepoScope tests."""

from __future__ import annotations

import asyncio
import copy
from pathlib import Path
from typing import AsyncIterator, Optional

import pytest

from reposcope.core.config import DEFAULT_CONFIG
from reposcope.core.credentials import CredentialPool
from reposcope.core.driver import StreamingAnalysisDriver
from reposcope.core.history import HistoryStore
from reposcope.core.session import ReviewSession
from reposcope.core.storage import LocalStorage
from reposcope.models.snapshot import RepositorySnapshot
from reposcope.models.stream import StreamChunk, TextChunk, UsageChunk

START_MS = 1_700_000_000_000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class ScriptedProvider:
    """Backend that replays a fixed list of chunks.

    ``error`` is raised after the chunks are exhausted. With ``hold`` set,
    the stream blocks after the chunks until the test releases it or
    cancels the read.
    """

    def __init__(
        self,
        chunks: list[StreamChunk],
        error: Optional[BaseException] = None,
        requires_credential: bool = True,
        name: str = "scripted",
        hold: bool = False,
    ):
        self.chunks = chunks
        self.error = error
        self.requires_credential = requires_credential
        self.name = name
        self.hold = hold
        self.release = asyncio.Event()
        self.api_keys: list[Optional[str]] = []
        self.closed = False
        self.delivered = 0

    def default_api_key(self) -> Optional[str]:
        return None

    async def stream(
        self, system_prompt: str, user_prompt: str, api_key: Optional[str] = None
    ) -> AsyncIterator[StreamChunk]:
        self.api_keys.append(api_key)
        try:
            for chunk in self.chunks:
                await asyncio.sleep(0)
                self.delivered += 1
                yield chunk
            if self.hold:
                await self.release.wait()
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage(tmp_path: Path) -> LocalStorage:
    return LocalStorage(tmp_path / "store", namespace="test")


@pytest.fixture
def pool(storage: LocalStorage, clock: FakeClock) -> CredentialPool:
    return CredentialPool(storage, clock=clock)


@pytest.fixture
def history(storage: LocalStorage, clock: FakeClock) -> HistoryStore:
    # History timestamps in seconds; derive from the same fake clock
    return HistoryStore(storage, clock=lambda: clock() / 1000)


@pytest.fixture
def config() -> dict:
    return copy.deepcopy(DEFAULT_CONFIG)


@pytest.fixture
def driver(pool: CredentialPool, config: dict) -> StreamingAnalysisDriver:
    return StreamingAnalysisDriver(pool, config)


@pytest.fixture
def session(driver: StreamingAnalysisDriver, history: HistoryStore) -> ReviewSession:
    return ReviewSession(driver, history)


@pytest.fixture
def snapshot_data() -> dict:
    return {
        "repo": {
            "full_name": "octo/widgets",
            "name": "widgets",
            "owner": {"login": "octo"},
            "html_url": "https://github.com/octo/widgets",
            "description": "Widget toolkit",
            "stargazers_count": 12,
        },
        "commits": [
            {
                "sha": "abc1234",
                "message": "Add widget factory\n\nLonger body",
                "author": "alice",
                "date": "2024-05-01T10:00:00Z",
                "stats": {"additions": 10, "deletions": 2},
            }
        ],
        "pull_requests": [
            {"number": 7, "title": "Factory cleanup", "state": "open", "author": "bob"}
        ],
        "files": ["README.md", "src/widgets/factory.py"],
        "contributors": [{"login": "alice", "avatar_url": "", "contributions": 40}],
        "languages": {"Python": 9000, "Shell": 1000},
        "readme": "# Widgets\n",
    }


@pytest.fixture
def snapshot(snapshot_data: dict) -> RepositorySnapshot:
    return RepositorySnapshot.model_validate(snapshot_data)


@pytest.fixture
def summary_chunks() -> list[StreamChunk]:
    return [
        TextChunk(content="## Summary\n"),
        TextChunk(content="Looks good."),
        UsageChunk(input_tokens=120, output_tokens=40, total_tokens=160),
    ]
