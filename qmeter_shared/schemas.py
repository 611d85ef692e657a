from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from qmeter_shared.enums import Confidence, ErrorKind, Provenance, SourceId
from qmeter_shared.sanitization import sanitize_jsonable, sanitize_text


class WireModel(BaseModel):
    """Base for models persisted or printed as camelCase JSON."""

    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class NormalizedRow(WireModel):
    source_id: SourceId
    window: str = Field(min_length=1, max_length=128)
    used: int | None = Field(default=None, ge=0)
    limit: int | None = Field(default=None, ge=0)
    used_percent: float | None = Field(default=None, ge=0, le=100)
    reset_at: datetime | None = None
    provenance: Provenance
    confidence: Confidence
    stale: bool = False
    notes: str | None = None

    @field_validator("notes")
    @classmethod
    def sanitize_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return sanitize_text(value)

    @model_validator(mode="after")
    def derive_percent(self) -> "NormalizedRow":
        if self.used_percent is None and self.used is not None and self.limit:
            self.used_percent = min(100.0, round(self.used / self.limit * 100, 2))
        return self


class NormalizedError(WireModel):
    source_id: SourceId
    kind: ErrorKind
    message: str = Field(min_length=1)
    actionable: str | None = None

    @field_validator("message")
    @classmethod
    def sanitize_message(cls, value: str) -> str:
        cleaned = sanitize_text(value).strip()
        if not cleaned:
            raise ValueError("message must not be empty")
        return cleaned


class NormalizedSnapshot(WireModel):
    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    fetched_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    rows: list[NormalizedRow] = Field(default_factory=list)
    errors: list[NormalizedError] = Field(default_factory=list)


class ProviderResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rows: list[NormalizedRow] = Field(default_factory=list)
    errors: list[NormalizedError] = Field(default_factory=list)
    debug: dict[str, Any] | None = None

    @field_validator("debug")
    @classmethod
    def sanitize_debug(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        if value is None:
            return None
        return sanitize_jsonable(value)


@dataclass(frozen=True, slots=True)
class AcquireContext:
    refresh: bool = False
    debug: bool = False
