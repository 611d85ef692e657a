from __future__ import annotations

from qmeter_shared.enums import ErrorKind, SourceId
from qmeter_shared.schemas import NormalizedError, ProviderResult

NOT_INSTALLED_MARKERS = ("enoent", "not found", "no such file")
TIMEOUT_MARKERS = ("timed out", "timeout")
AUTH_MARKERS = ("unauthorized", "forbidden")
OFFLINE_MARKERS = ("network is unreachable", "connection refused", "enotfound", "getaddrinfo", "offline")


def is_missing_binary(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in NOT_INSTALLED_MARKERS)


def classify_failure(message: str) -> ErrorKind:
    lowered = message.lower()
    if is_missing_binary(lowered):
        return ErrorKind.NOT_INSTALLED
    if any(marker in lowered for marker in OFFLINE_MARKERS):
        return ErrorKind.OFFLINE
    if any(marker in lowered for marker in TIMEOUT_MARKERS):
        return ErrorKind.TIMEOUT
    if any(marker in lowered for marker in AUTH_MARKERS):
        return ErrorKind.AUTH_REQUIRED
    return ErrorKind.ACQUIRE_FAILED


def error_message(exc: BaseException) -> str:
    text = str(exc).strip()
    return text or exc.__class__.__name__


def failure_result(
    source_id: SourceId,
    kind: ErrorKind,
    message: str,
    actionable: str | None = None,
) -> ProviderResult:
    return ProviderResult(
        errors=[NormalizedError(source_id=source_id, kind=kind, message=message, actionable=actionable)]
    )
