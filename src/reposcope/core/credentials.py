"""Credential pool with rate-limit-aware rotation.

Credentials are tagged by purpose and persisted as one JSON list under the
``managed_keys`` storage key. Secrets are obfuscated at rest (see
utils/secrets.py for what that does and does not protect against).
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Callable, Optional, Union

from rich.console import Console

from ..models.credential import Credential, CredentialPurpose
from ..utils.secrets import deobfuscate, mask_secret, obfuscate
from .errors import CorruptPersistedData, StorageFailure, ValidationError
from .storage import LocalStorage

console = Console(stderr=True)

STORAGE_KEY = "managed_keys"


def now_ms() -> int:
    return int(time.time() * 1000)


class CredentialPool:
    """Named credentials, rotated past rate-limited entries.

    The in-memory list is the source of truth for the running process;
    storage is rewritten whole after every mutation.
    """

    def __init__(
        self,
        storage: LocalStorage,
        clock: Callable[[], int] = now_ms,
    ):
        self.storage = storage
        self.clock = clock
        self._credentials: list[Credential] = self._load()

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def list(self) -> list[Credential]:
        return list(self._credentials)

    def get(self, credential_id: str) -> Optional[Credential]:
        for cred in self._credentials:
            if cred.id == credential_id:
                return cred
        return None

    def select_active(
        self, purpose: Union[CredentialPurpose, str]
    ) -> Optional[Credential]:
        """First credential of ``purpose`` that is not under a rate limit."""
        purpose = CredentialPurpose(purpose)
        now = self.clock()
        for cred in self._credentials:
            if cred.purpose == purpose and not cred.is_rate_limited(now):
                return cred
        return None

    def count(self, purpose: Union[CredentialPurpose, str]) -> int:
        purpose = CredentialPurpose(purpose)
        return sum(1 for c in self._credentials if c.purpose == purpose)

    def earliest_available(
        self, purpose: Union[CredentialPurpose, str]
    ) -> Optional[int]:
        """Soonest expiry (epoch ms) among rate-limited credentials of ``purpose``."""
        purpose = CredentialPurpose(purpose)
        now = self.clock()
        stamps = [
            c.rate_limited_until
            for c in self._credentials
            if c.purpose == purpose and c.is_rate_limited(now)
        ]
        return min(stamps) if stamps else None

    @staticmethod
    def masked(credential: Credential) -> str:
        return mask_secret(credential.secret)

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    def add(
        self, name: str, purpose: Union[CredentialPurpose, str], secret: str
    ) -> Credential:
        if not name or not name.strip():
            raise ValidationError("Credential name must not be empty")
        if not secret or not secret.strip():
            raise ValidationError("Credential secret must not be empty")
        try:
            purpose = CredentialPurpose(purpose)
        except ValueError:
            valid = ", ".join(p.value for p in CredentialPurpose)
            raise ValidationError(f"Unknown credential purpose: {purpose} (expected {valid})")

        cred = Credential(
            id=uuid.uuid4().hex,
            name=name.strip(),
            purpose=purpose,
            secret=secret.strip(),
        )
        self._credentials.append(cred)
        self._persist()
        return cred

    def remove(self, credential_id: str) -> None:
        remaining = [c for c in self._credentials if c.id != credential_id]
        if len(remaining) == len(self._credentials):
            return
        self._credentials = remaining
        self._persist()

    def mark_rate_limited(self, credential_id: str, until: int) -> None:
        cred = self.get(credential_id)
        if cred is None:
            return
        cred.rate_limited_until = int(until)
        self._persist()

    def clear_rate_limit(self, credential_id: str) -> None:
        cred = self.get(credential_id)
        if cred is None or cred.rate_limited_until is None:
            return
        cred.rate_limited_until = None
        self._persist()

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    def _persist(self) -> None:
        records = [
            {
                "id": c.id,
                "name": c.name,
                "purpose": c.purpose.value,
                "secret": obfuscate(c.secret),
                "rateLimitedUntil": c.rate_limited_until,
            }
            for c in self._credentials
        ]
        self.storage.set_item(STORAGE_KEY, json.dumps(records, indent=2))

    def _load(self) -> list[Credential]:
        try:
            return self._deserialize(self.storage.get_item(STORAGE_KEY))
        except StorageFailure as e:
            console.print(f"  [yellow]WARN[/yellow] Failed to load credentials: {e}")
            return []

    @staticmethod
    def _deserialize(data: Optional[str]) -> list[Credential]:
        if not data:
            return []
        try:
            records = json.loads(data)
            if not isinstance(records, list):
                raise ValueError("expected a list of credential records")
            return [
                Credential(
                    id=r["id"],
                    name=r.get("name", ""),
                    purpose=r["purpose"],
                    secret=deobfuscate(r["secret"]),
                    rate_limited_until=r.get("rateLimitedUntil"),
                )
                for r in records
            ]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise CorruptPersistedData(f"Corrupt credential store: {e}") from e
