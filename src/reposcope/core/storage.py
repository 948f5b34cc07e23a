"""Namespaced key/value storage on the local disk.

Each key is one file, ``<namespace>.<key>.json``, replaced whole on every
write. An optional byte quota across the namespace mimics browser storage
limits so callers can exercise their degraded-write paths.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from .errors import CorruptPersistedData, StorageFailure, StorageQuotaExceeded


class LocalStorage:
    """String values keyed by name under one directory."""

    def __init__(
        self,
        root: Path,
        namespace: str = "reposcope",
        quota_bytes: Optional[int] = None,
    ):
        self.root = Path(root)
        self.namespace = namespace
        self.quota_bytes = quota_bytes

    def _path(self, key: str) -> Path:
        return self.root / f"{self.namespace}.{key}.json"

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise CorruptPersistedData(f"{key} is not valid UTF-8: {e}") from e
        except OSError as e:
            raise StorageFailure(f"Failed to read {key}: {e}") from e

    def set_item(self, key: str, value: str) -> None:
        data = value.encode("utf-8")
        if self.quota_bytes is not None:
            used = self.used_bytes(exclude=key)
            if used + len(data) > self.quota_bytes:
                raise StorageQuotaExceeded(
                    f"Storage quota exceeded writing {key}: "
                    f"{used + len(data)} > {self.quota_bytes} bytes"
                )

        path = self._path(key)
        tmp_path = path.with_suffix(".tmp")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path.exists():
                tmp_path.unlink()
            raise StorageFailure(f"Failed to write {key}: {e}") from e

    def remove_item(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageFailure(f"Failed to remove {key}: {e}") from e

    def used_bytes(self, exclude: Optional[str] = None) -> int:
        if not self.root.exists():
            return 0
        skip = self._path(exclude).name if exclude else None
        total = 0
        for f in self.root.glob(f"{self.namespace}.*.json"):
            if f.name != skip:
                total += f.stat().st_size
        return total
