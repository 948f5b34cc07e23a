"""Analysis result data models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .stream import TokenUsage

SCORE_METRICS = (
    "quality",
    "security",
    "reliability",
    "teamBalance",
    "techStackSuitability",
    "commitQuality",
    "prQuality",
    "structureQuality",
)


class AnalysisResult(BaseModel):
    """Structured findings for one completed review.

    A metric missing from ``scores`` was not assessed; it is not a zero.
    """

    model_config = ConfigDict(populate_by_name=True)

    scores: dict[str, int] = {}
    commit_summaries: dict[str, str] = Field(default={}, alias="commitSummaries")
    pr_summaries: dict[int, str] = Field(default={}, alias="prSummaries")
    token_usage: Optional[TokenUsage] = Field(default=None, alias="tokenUsage")
