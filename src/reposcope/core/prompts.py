"""Prompt construction for repository reviews.

The snapshot is flattened into markdown sections, truncated to the limits
in the ``review`` config section. The model is asked to finish with one
fenced JSON block of scores and summaries, which the aggregator reads back.
"""

from __future__ import annotations

from ..models.analysis import SCORE_METRICS
from ..models.snapshot import RepositorySnapshot

SYSTEM_PROMPT = """You are a senior engineering reviewer auditing a GitHub repository.
Write a concise, well-structured markdown report covering code quality, security,
reliability, team balance, tech stack suitability, commit hygiene, pull request
practice and project structure. Be specific and cite commits, PRs and files."""

FINDINGS_INSTRUCTIONS = """## Structured findings

End your report with exactly one fenced ```json block of this shape:

```json
{{
  "scores": {{{metrics}}},
  "commitSummaries": {{"<sha>": "<one-line summary>"}},
  "prSummaries": {{"<pr number>": "<one-line summary>"}}
}}
```

Scores are integers from 0 to 100. Omit a metric you cannot assess rather
than guessing. Summaries are optional and may cover only notable entries."""


def build_system_prompt() -> str:
    return SYSTEM_PROMPT


def build_user_prompt(snapshot: RepositorySnapshot, limits: dict) -> str:
    """Render the snapshot as review context."""
    max_commits = limits.get("max_commits", 30)
    max_prs = limits.get("max_pull_requests", 20)
    max_files = limits.get("max_files", 200)
    max_readme = limits.get("max_readme_chars", 4000)

    repo = snapshot.repo
    parts = [
        f"# REPOSITORY\n\n"
        f"- Name: {repo.full_name}\n"
        f"- URL: {repo.html_url}\n"
        f"- Description: {repo.description or 'n/a'}\n"
        f"- Default branch: {repo.default_branch}\n"
        f"- Stars: {repo.stargazers_count}, Forks: {repo.forks_count}, "
        f"Open issues: {repo.open_issues_count}",
    ]

    if snapshot.languages:
        total = sum(snapshot.languages.values()) or 1
        lines = [
            f"- {name}: {round(100 * size / total, 1)}%"
            for name, size in sorted(snapshot.languages.items(), key=lambda kv: -kv[1])
        ]
        parts.append("# LANGUAGES\n\n" + "\n".join(lines))

    if snapshot.contributors:
        lines = [f"- {c.login}: {c.contributions} contributions" for c in snapshot.contributors]
        parts.append("# CONTRIBUTORS\n\n" + "\n".join(lines))

    commits = snapshot.commits[:max_commits]
    if commits:
        lines = []
        for c in commits:
            first_line = c.message.splitlines()[0] if c.message else ""
            line = f"- {c.sha[:7]} {c.date} {c.author}: {first_line}"
            if c.stats is not None:
                line += f" (+{c.stats.additions}/-{c.stats.deletions})"
            lines.append(line)
        parts.append(
            f"# RECENT COMMITS ({len(commits)} of {len(snapshot.commits)})\n\n" + "\n".join(lines)
        )

    prs = snapshot.pull_requests[:max_prs]
    if prs:
        lines = [f"- #{pr.number} [{pr.state}] {pr.title} by {pr.author}" for pr in prs]
        parts.append(
            f"# PULL REQUESTS ({len(prs)} of {len(snapshot.pull_requests)})\n\n" + "\n".join(lines)
        )

    files = snapshot.files[:max_files]
    if files:
        parts.append(
            f"# FILE STRUCTURE ({len(files)} of {len(snapshot.files)})\n\n" + "\n".join(files)
        )

    if snapshot.readme:
        readme = snapshot.readme[:max_readme]
        if len(snapshot.readme) > max_readme:
            readme += "\n\n[README truncated]"
        parts.append("# README\n\n" + readme)

    metrics = ", ".join(f'"{m}": <0-100>' for m in SCORE_METRICS)
    parts.append(FINDINGS_INSTRUCTIONS.format(metrics=metrics))

    return "\n\n".join(parts)
