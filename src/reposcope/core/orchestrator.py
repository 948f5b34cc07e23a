"""Terminal review runner: one session, one snapshot, streamed to the console."""

from __future__ import annotations

import asyncio
import json
import time
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as SchemaError
from rich.console import Console

from .. import __version__
from ..models.snapshot import RepositorySnapshot
from ..models.stream import StreamChunk, TextChunk
from ..providers.base import get_ai_provider
from .config import get_quota_bytes, get_storage_root
from .credentials import CredentialPool
from .driver import StreamingAnalysisDriver
from .history import HistoryStore
from .session import OutcomeStatus, ReviewSession
from .storage import LocalStorage

console = Console()

EXIT_CODES = {
    OutcomeStatus.COMPLETED: 0,
    OutcomeStatus.FAILED: 1,
    OutcomeStatus.RATE_LIMITED: 2,
    OutcomeStatus.CANCELLED: 3,
}


def load_snapshot(snapshot_path: Path) -> RepositorySnapshot:
    """Read a repository snapshot JSON file."""
    content = snapshot_path.read_text(encoding="utf-8-sig")
    return RepositorySnapshot.model_validate(json.loads(content))


def build_session(config: dict, storage: Optional[LocalStorage] = None) -> ReviewSession:
    """Wire pool, driver and history store from config."""
    if storage is None:
        storage = LocalStorage(
            get_storage_root(config),
            namespace=config.get("storage", {}).get("namespace", "reposcope"),
            quota_bytes=get_quota_bytes(config),
        )
    history_config = config.get("history", {})
    pool = CredentialPool(storage)
    history = HistoryStore(
        storage,
        capacity=history_config.get("capacity", 50),
        fallback_capacity=history_config.get("fallback_capacity", 20),
    )
    return ReviewSession(StreamingAnalysisDriver(pool, config), history)


def _print_chunk(chunk: StreamChunk) -> None:
    if isinstance(chunk, TextChunk):
        console.print(chunk.content, end="", markup=False, highlight=False, soft_wrap=True)


async def run_review(
    config: dict,
    snapshot_path: Path,
    backend: Optional[str] = None,
    model: Optional[str] = None,
    endpoint: Optional[str] = None,
    timeout: Optional[float] = None,
    rotate: bool = True,
    session: Optional[ReviewSession] = None,
) -> int:
    """Run one review and return the exit code."""
    start_time = time.time()

    if session is None:
        session = build_session(config)

    async def fetch() -> RepositorySnapshot:
        return load_snapshot(snapshot_path)

    try:
        snapshot = await session.load_repository(fetch)
    except (OSError, ValueError, SchemaError) as e:
        console.print(f"  [red]ERROR[/red] Invalid snapshot {snapshot_path}: {session.error or e}")
        return EXIT_CODES[OutcomeStatus.FAILED]

    try:
        provider = get_ai_provider(
            config,
            provider_override=backend,
            model_override=model,
            endpoint_override=endpoint,
        )
    except ValueError as e:
        console.print(f"  [red]ERROR[/red] Failed to initialize AI provider: {e}")
        return EXIT_CODES[OutcomeStatus.FAILED]

    console.print()
    console.print(f"  [bold cyan]REPOSCOPE[/bold cyan] v{__version__}")
    console.print(f"  Repository: [white]{snapshot.repo.full_name}[/white]")
    console.print(
        f"  Snapshot:   [white]{len(snapshot.commits)} commits, "
        f"{len(snapshot.pull_requests)} PRs, {len(snapshot.files)} files[/white]"
    )
    console.print(f"  Backend:    [white]{provider.name}[/white]")
    console.print()

    analysis = session.analyze(provider, on_chunk=_print_chunk, rotate_on_rate_limit=rotate)
    try:
        if timeout:
            outcome = await asyncio.wait_for(analysis, timeout)
        else:
            outcome = await analysis
    except asyncio.TimeoutError:
        console.print()
        console.print(f"  [yellow]CANCELLED[/yellow] Review timed out after {timeout}s (not saved)")
        return EXIT_CODES[OutcomeStatus.CANCELLED]

    console.print()
    console.print()
    duration = round(time.time() - start_time, 1)

    if outcome.status == OutcomeStatus.COMPLETED:
        usage = outcome.result.token_usage if outcome.result else None
        if usage:
            console.print(
                f"  [dim]Tokens: {usage.input} in / {usage.output} out / {usage.total} total[/dim]"
            )
        if outcome.saved_review:
            console.print(f"  [green]OK[/green] Saved as {outcome.saved_review.id} in {duration}s")
        else:
            console.print(f"  [yellow]WARN[/yellow] Review completed in {duration}s but was not saved")
    elif outcome.status == OutcomeStatus.RATE_LIMITED:
        console.print(f"  [yellow]RATE LIMITED[/yellow] {outcome.error}")
        console.print("  [dim]Add another model-access key (rsc keys add) or retry later[/dim]")
    elif outcome.status == OutcomeStatus.CANCELLED:
        console.print("  [yellow]CANCELLED[/yellow] Review cancelled (not saved)")
    else:
        console.print(f"  [red]FAILED[/red] {outcome.error}")
        if outcome.markdown:
            console.print("  [dim]Partial output shown above was not saved[/dim]")

    return EXIT_CODES[outcome.status]
