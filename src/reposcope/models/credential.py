"""Credential data models."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class CredentialPurpose(str, Enum):
    REPOSITORY_ACCESS = "repository-access"
    MODEL_ACCESS = "model-access"


class Credential(BaseModel):
    id: str
    name: str
    purpose: CredentialPurpose
    secret: str
    rate_limited_until: Optional[int] = None

    def is_rate_limited(self, now_ms: int) -> bool:
        return self.rate_limited_until is not None and self.rate_limited_until > now_ms

    def __repr__(self) -> str:
        # Never render the secret
        return (
            f"Credential(id={self.id!r}, name={self.name!r}, "
            f"purpose={self.purpose.value!r}, rate_limited_until={self.rate_limited_until!r})"
        )

    __str__ = __repr__
