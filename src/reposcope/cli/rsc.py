"""RepoScope (rsc) - AI repository review from the terminal.

Manages the credential pool and review history, and streams a review of a
repository snapshot (JSON, as produced by the dashboard's GitHub fetcher).
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from ..core.config import get_effective_config, get_quota_bytes, get_storage_root
from ..core.storage import LocalStorage

console = Console()

EXIT_FAILED = 1


def _storage(config: dict) -> LocalStorage:
    return LocalStorage(
        get_storage_root(config),
        namespace=config.get("storage", {}).get("namespace", "reposcope"),
        quota_bytes=get_quota_bytes(config),
    )


def _pool(config: dict):
    from ..core.credentials import CredentialPool

    return CredentialPool(_storage(config))


def _history(config: dict):
    from ..core.history import HistoryStore

    history_config = config.get("history", {})
    return HistoryStore(
        _storage(config),
        capacity=history_config.get("capacity", 50),
        fallback_capacity=history_config.get("fallback_capacity", 20),
    )


@click.group()
@click.option("--project", "-p", type=click.Path(exists=True, file_okay=False), default=".",
              help="Directory holding .reposcope/config.yaml")
@click.pass_context
def rsc_cli(ctx: click.Context, project: str) -> None:
    """RepoScope - AI review of GitHub repositories."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = get_effective_config(Path(project))


# ---------------------------------------------------------------------- #
# keys
# ---------------------------------------------------------------------- #


@rsc_cli.group()
def keys() -> None:
    """Manage API credentials."""


@keys.command("list")
@click.pass_context
def keys_list(ctx: click.Context) -> None:
    """List stored credentials (secrets masked)."""
    from ..core.credentials import now_ms

    pool = _pool(ctx.obj["config"])
    creds = pool.list()
    if not creds:
        console.print("  [dim]No credentials stored[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Purpose")
    table.add_column("Secret")
    table.add_column("Status")
    now = now_ms()
    for cred in creds:
        status = "[yellow]Rate Limited[/yellow]" if cred.is_rate_limited(now) else "[green]Active[/green]"
        table.add_row(cred.id, cred.name, cred.purpose.value, pool.masked(cred), status)
    console.print(table)


@keys.command("add")
@click.argument("name")
@click.option("--purpose", type=click.Choice(["repository-access", "model-access"]),
              default="model-access", show_default=True)
@click.option("--secret", prompt=True, hide_input=True, help="Token or API key")
@click.pass_context
def keys_add(ctx: click.Context, name: str, purpose: str, secret: str) -> None:
    """Add a credential."""
    from ..core.errors import StorageFailure, ValidationError

    pool = _pool(ctx.obj["config"])
    try:
        cred = pool.add(name, purpose, secret)
    except ValidationError as e:
        console.print(f"  [red]ERROR[/red] {e}")
        ctx.exit(EXIT_FAILED)
        return
    except StorageFailure as e:
        console.print(f"  [red]ERROR[/red] Credential not persisted: {e}")
        ctx.exit(EXIT_FAILED)
        return
    console.print(f"  [green]OK[/green] Added {cred.name} ({cred.purpose.value}) {pool.masked(cred)}")


@keys.command("remove")
@click.argument("credential_id")
@click.pass_context
def keys_remove(ctx: click.Context, credential_id: str) -> None:
    """Remove a credential by ID."""
    from ..core.errors import StorageFailure

    try:
        _pool(ctx.obj["config"]).remove(credential_id)
    except StorageFailure as e:
        console.print(f"  [red]ERROR[/red] Credential removal not persisted: {e}")
        ctx.exit(EXIT_FAILED)
        return
    console.print(f"  [green]OK[/green] Removed {credential_id}")


@keys.command("reset")
@click.argument("credential_id")
@click.pass_context
def keys_reset(ctx: click.Context, credential_id: str) -> None:
    """Clear a credential's rate-limit stamp."""
    from ..core.errors import StorageFailure

    try:
        _pool(ctx.obj["config"]).clear_rate_limit(credential_id)
    except StorageFailure as e:
        console.print(f"  [red]ERROR[/red] Rate-limit reset not persisted: {e}")
        ctx.exit(EXIT_FAILED)
        return
    console.print(f"  [green]OK[/green] Cleared rate limit for {credential_id}")


# ---------------------------------------------------------------------- #
# history
# ---------------------------------------------------------------------- #


@rsc_cli.group()
def history() -> None:
    """Browse saved reviews."""


@history.command("list")
@click.pass_context
def history_list(ctx: click.Context) -> None:
    """List saved reviews, most recent first."""
    reviews = _history(ctx.obj["config"]).get_all()
    if not reviews:
        console.print("  [dim]No saved reviews[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("ID")
    table.add_column("Repository")
    table.add_column("Saved")
    table.add_column("Commits", justify="right")
    table.add_column("PRs", justify="right")
    table.add_column("Quality", justify="right")
    for r in reviews:
        quality = ""
        if r.ai_analysis and "quality" in r.ai_analysis.scores:
            quality = str(r.ai_analysis.scores["quality"])
        table.add_row(r.id, r.repo_full_name, r.saved_at, str(r.commit_count), str(r.pr_count), quality)
    console.print(table)


@history.command("show")
@click.argument("review_id")
@click.option("--json", "as_json", is_flag=True, help="Print the raw record")
@click.pass_context
def history_show(ctx: click.Context, review_id: str, as_json: bool) -> None:
    """Print a saved review."""
    review = _history(ctx.obj["config"]).get(review_id)
    if review is None:
        console.print(f"  [red]ERROR[/red] No saved review with id {review_id}")
        ctx.exit(EXIT_FAILED)
        return

    if as_json:
        click.echo(json.dumps(review.model_dump(mode="json", by_alias=True), indent=2))
        return

    console.print(f"  [bold cyan]{review.repo_full_name}[/bold cyan]  saved {review.saved_at}")
    if review.ai_analysis:
        for metric, score in review.ai_analysis.scores.items():
            console.print(f"  {metric:<22} {score:>3}")
        usage = review.ai_analysis.token_usage
        if usage:
            console.print(f"  [dim]Tokens: {usage.input} in / {usage.output} out / {usage.total} total[/dim]")
    console.print()
    click.echo(review.review_markdown)


@history.command("delete")
@click.argument("review_id")
@click.pass_context
def history_delete(ctx: click.Context, review_id: str) -> None:
    """Delete one saved review."""
    from ..core.errors import StorageFailure

    try:
        _history(ctx.obj["config"]).delete(review_id)
    except StorageFailure as e:
        console.print(f"  [red]ERROR[/red] Failed to delete {review_id}: {e}")
        ctx.exit(EXIT_FAILED)
        return
    console.print(f"  [green]OK[/green] Deleted {review_id}")


@history.command("clear")
@click.confirmation_option(prompt="Delete all saved reviews?")
@click.pass_context
def history_clear(ctx: click.Context) -> None:
    """Delete all saved reviews."""
    from ..core.errors import StorageFailure

    try:
        _history(ctx.obj["config"]).clear_all()
    except StorageFailure as e:
        console.print(f"  [red]ERROR[/red] Failed to clear review history: {e}")
        ctx.exit(EXIT_FAILED)
        return
    console.print("  [green]OK[/green] Review history cleared")


# ---------------------------------------------------------------------- #
# review
# ---------------------------------------------------------------------- #


@rsc_cli.command()
@click.argument("snapshot_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--backend", "-b", type=click.Choice(["gemini", "ollama"]), help="Model backend")
@click.option("--model", type=str, help="Model override")
@click.option("--endpoint", type=str, help="Endpoint override")
@click.option("--timeout", type=float, help="Cancel the review after N seconds")
@click.option("--no-rotate", is_flag=True, help="Do not retry with the next credential on rate limit")
@click.pass_context
def review(
    ctx: click.Context,
    snapshot_path: str,
    backend: Optional[str],
    model: Optional[str],
    endpoint: Optional[str],
    timeout: Optional[float],
    no_rotate: bool,
) -> None:
    """Stream an AI review of a repository snapshot and save it to history."""
    from ..core.orchestrator import run_review

    exit_code = asyncio.run(
        run_review(
            config=ctx.obj["config"],
            snapshot_path=Path(snapshot_path),
            backend=backend,
            model=model,
            endpoint=endpoint,
            timeout=timeout,
            rotate=not no_rotate,
        )
    )
    sys.exit(exit_code)


def main() -> None:
    rsc_cli()


if __name__ == "__main__":
    main()
