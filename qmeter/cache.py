from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

from pydantic import AwareDatetime, Field, ValidationError

from qmeter.config import DEFAULT_CACHE_TTL_SECONDS, default_cache_dir
from qmeter_shared.enums import Provenance, SourceId
from qmeter_shared.schemas import NormalizedRow, WireModel
from qmeter_shared.serialization import atomic_write_text, pretty_json_text

logger = logging.getLogger("qmeter.cache")

CACHE_FILE_NAME = "cache.v1.json"


class CacheEntry(WireModel):
    fetched_at: AwareDatetime
    rows: list[NormalizedRow] = Field(default_factory=list)


class CacheProviders(WireModel):
    claude: CacheEntry | None = None
    codex: CacheEntry | None = None


class CacheFile(WireModel):
    version: Literal[1] = 1
    saved_at: AwareDatetime
    providers: CacheProviders


@dataclass(slots=True)
class CacheState:
    path: Path
    ttl_seconds: float
    providers: dict[SourceId, CacheEntry] = field(default_factory=dict)


def default_cache_path() -> Path:
    override = os.getenv("QMETER_CACHE_PATH", "").strip()
    if override:
        return Path(override).expanduser()
    return default_cache_dir() / CACHE_FILE_NAME


def cache_ttl_seconds() -> float:
    raw = os.getenv("QMETER_CACHE_TTL_SECS", "").strip()
    if not raw:
        return DEFAULT_CACHE_TTL_SECONDS
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_CACHE_TTL_SECONDS
    if not math.isfinite(value) or value < 0:
        return DEFAULT_CACHE_TTL_SECONDS
    return value


def load_cache(cache_path: Path | None = None, ttl_seconds: float | None = None) -> CacheState:
    path = cache_path or default_cache_path()
    ttl = cache_ttl_seconds() if ttl_seconds is None else ttl_seconds
    state = CacheState(path=path, ttl_seconds=ttl)
    try:
        parsed = CacheFile.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except FileNotFoundError:
        return state
    except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
        logger.debug("ignoring unusable cache at %s: %s", path, exc.__class__.__name__)
        return state

    for source_id in SourceId:
        entry = getattr(parsed.providers, source_id.value)
        if entry is not None:
            state.providers[source_id] = entry
    return state


def save_cache(cache: CacheState, now: datetime | None = None) -> None:
    document = CacheFile(
        saved_at=now or datetime.now(UTC),
        providers=CacheProviders(
            claude=cache.providers.get(SourceId.CLAUDE),
            codex=cache.providers.get(SourceId.CODEX),
        ),
    )
    atomic_write_text(cache.path, pretty_json_text(document) + "\n")


def is_entry_fresh(entry: CacheEntry, ttl_seconds: float, now: datetime | None = None) -> bool:
    if ttl_seconds <= 0:
        return False
    current = now or datetime.now(UTC)
    return (current - entry.fetched_at).total_seconds() <= ttl_seconds


def as_cache_rows(rows: list[NormalizedRow], stale: bool, note: str | None) -> list[NormalizedRow]:
    output: list[NormalizedRow] = []
    for row in rows:
        if note and row.notes:
            notes: str | None = f"{row.notes}; {note}"
        elif note:
            notes = note
        else:
            notes = row.notes
        output.append(row.model_copy(update={"provenance": Provenance.CACHE, "stale": stale, "notes": notes}))
    return output
