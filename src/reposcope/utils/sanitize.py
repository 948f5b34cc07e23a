"""Error message sanitization to prevent credential leakage."""

from __future__ import annotations

import os
import re


def sanitize_error(message: str) -> str:
    """Sanitize error messages to prevent API key and path leakage."""
    if not message:
        return message

    sanitized = message
    # Redact API key patterns
    sanitized = re.sub(r"AIza[0-9A-Za-z_-]{20,}", "[REDACTED_KEY]", sanitized)
    sanitized = re.sub(r"gh[pousr]_[A-Za-z0-9]{20,}", "[REDACTED_KEY]", sanitized)
    sanitized = re.sub(r"github_pat_[A-Za-z0-9_]{20,}", "[REDACTED_KEY]", sanitized)
    sanitized = re.sub(r"Bearer\s+\S+", "Bearer [REDACTED]", sanitized)
    sanitized = re.sub(r"x-goog-api-key:\s*\S+", "x-goog-api-key: [REDACTED]", sanitized)
    sanitized = re.sub(r"([?&]key=)[^&\s]+", r"\1[REDACTED]", sanitized)
    sanitized = re.sub(r"Authorization:\s*\S+", "Authorization: [REDACTED]", sanitized)

    # Redact user home paths
    home = os.environ.get("USERPROFILE") or os.environ.get("HOME") or ""
    if home:
        sanitized = sanitized.replace(home, "[USER_HOME]")

    return sanitized
