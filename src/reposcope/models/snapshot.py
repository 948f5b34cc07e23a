"""Repository snapshot data models.

The snapshot is fetched by an external collaborator; the engine only reads it.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from .history import RepoIdentity


class RepoOwner(BaseModel):
    login: str


class RepoInfo(BaseModel):
    full_name: str
    name: str
    owner: RepoOwner
    html_url: str
    description: Optional[str] = None
    default_branch: str = "main"
    stargazers_count: int = 0
    forks_count: int = 0
    open_issues_count: int = 0


class CommitStats(BaseModel):
    additions: int = 0
    deletions: int = 0


class CommitInfo(BaseModel):
    sha: str
    message: str = ""
    author: str = ""
    date: str = ""
    stats: Optional[CommitStats] = None


class PullRequestInfo(BaseModel):
    number: int
    title: str = ""
    state: str = "open"
    author: str = ""


class Contributor(BaseModel):
    login: str
    avatar_url: str = ""
    contributions: int = 0


class RepositorySnapshot(BaseModel):
    repo: RepoInfo
    commits: list[CommitInfo] = []
    pull_requests: list[PullRequestInfo] = []
    files: list[str] = []
    contributors: list[Contributor] = []
    languages: dict[str, int] = {}
    readme: Optional[str] = None

    @property
    def identity(self) -> RepoIdentity:
        return RepoIdentity(
            full_name=self.repo.full_name,
            owner=self.repo.owner.login,
            name=self.repo.name,
            url=self.repo.html_url,
        )
