"""Review history: a bounded, most-recent-first log of completed analyses.

The whole log is stored as one JSON array under the ``review_history`` key.
Corrupt history never blocks the caller: it is reported and read as empty.
"""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from rich.console import Console

from ..models.analysis import AnalysisResult
from ..models.history import RepoIdentity, SavedReview
from .errors import CorruptPersistedData, StorageFailure, StorageQuotaExceeded
from .storage import LocalStorage

console = Console(stderr=True)

STORAGE_KEY = "review_history"
DEFAULT_CAPACITY = 50
FALLBACK_CAPACITY = 20


class HistoryStore:
    def __init__(
        self,
        storage: LocalStorage,
        capacity: int = DEFAULT_CAPACITY,
        fallback_capacity: int = FALLBACK_CAPACITY,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.capacity = capacity
        self.fallback_capacity = min(fallback_capacity, capacity)
        self.clock = clock

    def get_all(self) -> list[SavedReview]:
        """Load the history log, most recent first. Never raises."""
        try:
            reviews = self._deserialize(self.storage.get_item(STORAGE_KEY))
        except StorageFailure as e:
            console.print(f"  [yellow]WARN[/yellow] Failed to load review history: {e}")
            return []
        return reviews[: self.capacity]

    def get(self, review_id: str) -> Optional[SavedReview]:
        for review in self.get_all():
            if review.id == review_id:
                return review
        return None

    def save(
        self,
        repo: RepoIdentity,
        markdown: str,
        result: Optional[AnalysisResult],
        commit_count: int,
        pr_count: int,
    ) -> SavedReview:
        """Prepend a new review, truncate to capacity and persist.

        On a quota error the write is retried once with the fallback
        capacity. If that also fails, StorageFailure is raised with the
        new review attached as ``.review``.
        """
        reviews = self.get_all()
        now = self.clock()

        review = SavedReview(
            id=self._new_id(repo.full_name, now, reviews),
            repo_full_name=repo.full_name,
            repo_owner=repo.owner,
            repo_name=repo.name,
            repo_url=repo.url,
            review_markdown=markdown,
            ai_analysis=result,
            saved_at=datetime.fromtimestamp(now, tz=timezone.utc).isoformat(),
            commit_count=commit_count,
            pr_count=pr_count,
        )

        reviews.insert(0, review)
        trimmed = reviews[: self.capacity]

        try:
            self._persist(trimmed)
        except StorageQuotaExceeded as e:
            console.print(
                f"  [yellow]WARN[/yellow] History storage full ({e}); "
                f"keeping only the latest {self.fallback_capacity} reviews"
            )
            try:
                self._persist(trimmed[: self.fallback_capacity])
            except StorageFailure as retry_error:
                raise StorageFailure(
                    f"Failed to save review: {retry_error}", review=review
                ) from retry_error
        except StorageFailure as e:
            raise StorageFailure(f"Failed to save review: {e}", review=review) from e

        return review

    def delete(self, review_id: str) -> None:
        reviews = self.get_all()
        filtered = [r for r in reviews if r.id != review_id]
        if len(filtered) == len(reviews):
            return
        self._persist(filtered)

    def clear_all(self) -> None:
        self.storage.remove_item(STORAGE_KEY)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    @staticmethod
    def _new_id(full_name: str, now: float, existing: list[SavedReview]) -> str:
        base = f"{full_name}-{int(now * 1000)}"
        taken = {r.id for r in existing}
        candidate = base
        suffix = 1
        while candidate in taken:
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate

    def _persist(self, reviews: list[SavedReview]) -> None:
        data = [r.model_dump(mode="json", by_alias=True) for r in reviews]
        self.storage.set_item(STORAGE_KEY, json.dumps(data, ensure_ascii=False))

    @staticmethod
    def _deserialize(data: Optional[str]) -> list[SavedReview]:
        if not data:
            return []
        try:
            records = json.loads(data)
            if not isinstance(records, list):
                raise ValueError("expected a list of saved reviews")
            return [SavedReview.model_validate(r) for r in records]
        except ValueError as e:
            raise CorruptPersistedData(f"Corrupt review history: {e}") from e
