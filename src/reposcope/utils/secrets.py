"""At-rest obfuscation and display masking for credential secrets.

This is masking, not encryption: anyone with the storage directory can
recover the secrets. It only keeps tokens out of casual view (grep, screen
sharing, accidental commits of the storage directory).
"""

from __future__ import annotations

import base64

_PREFIX = "obf1:"
_PAD = b"reposcope-local-key-obfuscation"

MASK_VISIBLE = 4
MASK_FILL = "•" * 20


def _xor(data: bytes) -> bytes:
    return bytes(b ^ _PAD[i % len(_PAD)] for i, b in enumerate(data))


def obfuscate(secret: str) -> str:
    encoded = base64.urlsafe_b64encode(_xor(secret.encode("utf-8"))).decode("ascii")
    return _PREFIX + encoded


def deobfuscate(value: str) -> str:
    """Reverse obfuscate(). Values without the prefix are returned as-is."""
    if not value.startswith(_PREFIX):
        return value
    raw = base64.urlsafe_b64decode(value[len(_PREFIX):].encode("ascii"))
    return _xor(raw).decode("utf-8")


def mask_secret(secret: str) -> str:
    """Render a fixed-length prefix and suffix around a fixed bullet run."""
    if len(secret) <= MASK_VISIBLE * 2:
        return MASK_FILL
    return f"{secret[:MASK_VISIBLE]}{MASK_FILL}{secret[-MASK_VISIBLE:]}"
