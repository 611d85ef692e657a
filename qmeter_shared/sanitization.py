from __future__ import annotations

import re
from typing import Any

REDACTED = "[REDACTED]"

# Colour codes and cursor moves leak into CLI stderr tails.
_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

# Credentials the claude and codex CLIs can echo back in errors or screens.
_CREDENTIAL_PATTERNS = (
    re.compile(r"bearer\s+[\w.\-]{12,}", re.IGNORECASE),
    re.compile(r"\bsk-[\w\-]{16,}"),
    re.compile(r"\b[\w\-]{24,}\.[\w\-]{10,}\.[\w\-]{10,}"),
    re.compile(r"\b(?:access_token|refresh_token|token|api[_-]?key)\s*[:=]\s*[^,\s]+", re.IGNORECASE),
)
_CREDENTIAL_KEY_RE = re.compile(r"token|api[_-]?key|authorization|cookie|secret|password", re.IGNORECASE)


def sanitize_text(value: Any) -> str:
    text = _ANSI_RE.sub("", str(value))
    for pattern in _CREDENTIAL_PATTERNS:
        text = pattern.sub(REDACTED, text)
    return _CONTROL_RE.sub("", text)


def sanitize_jsonable(value: Any) -> Any:
    """Clean a debug payload: credential-named keys are blanked, strings scrubbed."""
    if isinstance(value, dict):
        return {
            str(key): REDACTED if _CREDENTIAL_KEY_RE.search(str(key)) else sanitize_jsonable(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [sanitize_jsonable(item) for item in value]
    if value is None or isinstance(value, (bool, int, float)):
        return value
    return sanitize_text(value)
