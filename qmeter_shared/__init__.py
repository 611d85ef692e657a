"""Shared schemas and helpers for qmeter."""

from qmeter_shared.enums import AlertLevel, Confidence, ErrorKind, Provenance, SourceId
from qmeter_shared.schemas import (
    AcquireContext,
    NormalizedError,
    NormalizedRow,
    NormalizedSnapshot,
    ProviderResult,
)

__all__ = [
    "NormalizedRow",
    "NormalizedError",
    "NormalizedSnapshot",
    "ProviderResult",
    "AcquireContext",
    "SourceId",
    "Provenance",
    "Confidence",
    "ErrorKind",
    "AlertLevel",
]
