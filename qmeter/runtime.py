from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from qmeter.cache import CacheEntry, CacheState, as_cache_rows, is_entry_fresh, load_cache, save_cache
from qmeter.config import RuntimeEnv, load_runtime_env
from qmeter.providers.common import error_message
from qmeter.providers.factory import ProviderFactory, provider_factory_from_env
from qmeter_shared.enums import ErrorKind, SourceId
from qmeter_shared.schemas import (
    AcquireContext,
    NormalizedError,
    NormalizedRow,
    NormalizedSnapshot,
    ProviderResult,
)

logger = logging.getLogger("qmeter.runtime")

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_USAGE = 2
EXIT_NO_ROWS = 3

Clock = Callable[[], datetime]


@dataclass(slots=True)
class CollectOptions:
    sources: list[SourceId] = field(default_factory=lambda: list(SourceId))
    refresh: bool = False
    debug: bool = False


@dataclass(slots=True)
class CollectResult:
    snapshot: NormalizedSnapshot
    debug_by_source: dict[SourceId, dict[str, Any]] = field(default_factory=dict)


def utc_now() -> datetime:
    return datetime.now(UTC)


def _unexpected_result(source_id: SourceId, error: Exception) -> ProviderResult:
    return ProviderResult(
        errors=[
            NormalizedError(
                source_id=source_id,
                kind=ErrorKind.UNEXPECTED,
                message=error_message(error),
                actionable=None,
            )
        ]
    )


def acquire_source(factory: ProviderFactory, source_id: SourceId, ctx: AcquireContext) -> ProviderResult:
    try:
        provider = factory(source_id)
        return provider.acquire(ctx)
    except Exception as exc:
        logger.exception("provider failed: %s", source_id.value)
        return _unexpected_result(source_id, exc)


def _apply_result(
    cache: CacheState,
    source_id: SourceId,
    result: ProviderResult,
    rows: list[NormalizedRow],
    errors: list[NormalizedError],
    fetched_at: datetime,
) -> bool:
    """Merge one acquisition into the pass; returns True when the cache changed."""
    rows.extend(result.rows)
    errors.extend(result.errors)
    for error in result.errors:
        logger.warning("source %s failed kind=%s", source_id.value, error.kind.value)

    cached = cache.providers.get(source_id)
    if result.rows:
        cache.providers[source_id] = CacheEntry(fetched_at=fetched_at, rows=result.rows)
        return True
    if cached is not None and cached.rows:
        note = f"stale cache from {cached.fetched_at.isoformat()}"
        rows.extend(as_cache_rows(cached.rows, stale=True, note=note))
        logger.info("serving stale cache for %s", source_id.value)
    return False


def collect_snapshot(
    options: CollectOptions,
    provider_factory: ProviderFactory | None = None,
    *,
    cache_path: Path | None = None,
    ttl_seconds: float | None = None,
    clock: Clock | None = None,
    env: RuntimeEnv | None = None,
) -> CollectResult:
    """Run one collection pass over ``options.sources`` in the given order.

    Sources are acquired sequentially. A fresh cache entry short-circuits
    acquisition unless ``options.refresh`` is set; a failed acquisition falls
    back to the last cached rows, tagged stale. The cache file is written once,
    at the end, and only when some source produced new rows.
    """
    now = clock or utc_now
    runtime = env or load_runtime_env()
    factory = provider_factory or provider_factory_from_env(runtime)
    started_at = now()

    if runtime.fixture_mode:
        cache = CacheState(path=Path(), ttl_seconds=0)
    else:
        cache = load_cache(cache_path, ttl_seconds)

    rows: list[NormalizedRow] = []
    errors: list[NormalizedError] = []
    debug_by_source: dict[SourceId, dict[str, Any]] = {}
    cache_dirty = False
    ctx = AcquireContext(refresh=options.refresh, debug=options.debug)

    for source_id in options.sources:
        cached = cache.providers.get(source_id)
        if (
            not runtime.fixture_mode
            and not options.refresh
            and cached is not None
            and is_entry_fresh(cached, cache.ttl_seconds, started_at)
        ):
            note = f"cached at {cached.fetched_at.isoformat()}"
            rows.extend(as_cache_rows(cached.rows, stale=False, note=note))
            logger.debug("using fresh cache for %s", source_id.value)
            continue

        result = acquire_source(factory, source_id, ctx)
        cache_dirty = _apply_result(cache, source_id, result, rows, errors, now()) or cache_dirty
        if options.debug and result.debug:
            debug_by_source[source_id] = result.debug

    if cache_dirty and not runtime.fixture_mode:
        try:
            save_cache(cache, now())
        except OSError:
            logger.exception("failed to write cache %s", cache.path)

    snapshot = NormalizedSnapshot(fetched_at=started_at, rows=rows, errors=errors)
    logger.info(
        "collection complete sources=%s rows=%s errors=%s",
        ",".join(source.value for source in options.sources),
        len(snapshot.rows),
        len(snapshot.errors),
    )
    return CollectResult(snapshot=snapshot, debug_by_source=debug_by_source)


def exit_code_for(snapshot: NormalizedSnapshot) -> int:
    if snapshot.rows and not snapshot.errors:
        return EXIT_OK
    if snapshot.rows:
        return EXIT_PARTIAL
    return EXIT_NO_ROWS
