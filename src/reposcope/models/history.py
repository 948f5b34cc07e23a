"""Review history data models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .analysis import AnalysisResult


class RepoIdentity(BaseModel):
    full_name: str
    owner: str
    name: str
    url: str


class SavedReview(BaseModel):
    """One completed analysis in the history log.

    Serialized with camelCase keys so existing history files stay readable.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    repo_full_name: str = Field(alias="repoFullName")
    repo_owner: str = Field(default="", alias="repoOwner")
    repo_name: str = Field(default="", alias="repoName")
    repo_url: str = Field(default="", alias="repoUrl")
    review_markdown: str = Field(default="", alias="reviewMarkdown")
    ai_analysis: Optional[AnalysisResult] = Field(default=None, alias="aiAnalysis")
    saved_at: str = Field(alias="savedAt")
    commit_count: int = Field(default=0, alias="commitCount")
    pr_count: int = Field(default=0, alias="prCount")

    @property
    def repo(self) -> RepoIdentity:
        return RepoIdentity(
            full_name=self.repo_full_name,
            owner=self.repo_owner,
            name=self.repo_name,
            url=self.repo_url,
        )
