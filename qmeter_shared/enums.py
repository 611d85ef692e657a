from __future__ import annotations

from enum import Enum


class SourceId(str, Enum):
    CLAUDE = "claude"
    CODEX = "codex"


class Provenance(str, Enum):
    STRUCTURED = "structured"
    PARSED = "parsed"
    CACHE = "cache"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ErrorKind(str, Enum):
    NOT_INSTALLED = "not-installed"
    AUTH_REQUIRED = "auth-required"
    OFFLINE = "offline"
    TTY_UNAVAILABLE = "tty-unavailable"
    TIMEOUT = "timeout"
    PARSE_FAILED = "parse-failed"
    INVALID_RESPONSE = "invalid-response"
    ACQUIRE_FAILED = "acquire-failed"
    UNEXPECTED = "unexpected"


class AlertLevel(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"
