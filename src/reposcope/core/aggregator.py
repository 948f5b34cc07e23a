"""Analysis result aggregation.

Reduces the streamed narrative and the last usage update into one
AnalysisResult once streaming ends.
"""

from __future__ import annotations

import json
import math
import re
from typing import Optional

from ..models.analysis import AnalysisResult
from ..models.stream import StreamChunk, TextChunk, TokenUsage, UsageChunk

_JSON_BLOCK = re.compile(r"```json\s*\r?\n([\s\S]*?)```", re.IGNORECASE)


def extract_findings(markdown: str) -> Optional[dict]:
    """Return the last fenced ```json block of the narrative as a dict."""
    blocks = _JSON_BLOCK.findall(markdown or "")
    for block in reversed(blocks):
        try:
            data = json.loads(block)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


def clamp_score(value) -> Optional[int]:
    """Clamp a score to [0, 100]. Non-numeric values yield None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or math.isnan(value):
        return None
    return int(max(0, min(100, round(value))))


def finalize(
    findings: Optional[dict],
    token_usage: Optional[TokenUsage] = None,
) -> AnalysisResult:
    """Validate and normalize structured findings into an AnalysisResult.

    Metrics the model did not supply stay absent. Tolerates ``findings``
    being None (markdown-only analysis).
    """
    findings = findings if isinstance(findings, dict) else {}

    scores: dict[str, int] = {}
    raw_scores = findings.get("scores")
    if isinstance(raw_scores, dict):
        for metric, value in raw_scores.items():
            score = clamp_score(value)
            if score is not None:
                scores[str(metric)] = score

    commit_summaries: dict[str, str] = {}
    raw_commits = findings.get("commitSummaries")
    if isinstance(raw_commits, dict):
        for sha, summary in raw_commits.items():
            if isinstance(summary, str) and summary.strip():
                commit_summaries[str(sha)] = summary.strip()

    pr_summaries: dict[int, str] = {}
    raw_prs = findings.get("prSummaries")
    if isinstance(raw_prs, dict):
        for number, summary in raw_prs.items():
            try:
                pr_number = int(str(number).lstrip("#"))
            except ValueError:
                continue
            if isinstance(summary, str) and summary.strip():
                pr_summaries[pr_number] = summary.strip()

    return AnalysisResult(
        scores=scores,
        commit_summaries=commit_summaries,
        pr_summaries=pr_summaries,
        token_usage=token_usage,
    )


class ResultAccumulator:
    """Folds a chunk stream into markdown and the latest usage tally."""

    def __init__(self) -> None:
        self._parts: list[str] = []
        self.token_usage: Optional[TokenUsage] = None

    def add(self, chunk: StreamChunk) -> None:
        if isinstance(chunk, TextChunk):
            self._parts.append(chunk.content)
        elif isinstance(chunk, UsageChunk):
            # Usage is cumulative: replace, never sum
            self.token_usage = TokenUsage.from_chunk(chunk)

    @property
    def markdown(self) -> str:
        return "".join(self._parts)

    @property
    def has_text(self) -> bool:
        return any(self._parts)

    def finalize(self) -> AnalysisResult:
        return finalize(extract_findings(self.markdown), self.token_usage)
