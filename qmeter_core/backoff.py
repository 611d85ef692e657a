from __future__ import annotations

import random as _random
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict, Field


class BackoffOptions(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    base_seconds: float = Field(default=30, gt=0)
    max_seconds: float = Field(default=300, gt=0)
    multiplier: float = Field(default=2, ge=1)
    jitter_ratio: float = Field(default=0.2, ge=0, le=1)


DEFAULT_BACKOFF = BackoffOptions()


def compute_backoff_delay(
    consecutive_failures: int,
    options: BackoffOptions = DEFAULT_BACKOFF,
    random: Callable[[], float] = _random.random,
) -> float:
    failures = max(0, consecutive_failures)
    try:
        raw = options.base_seconds * options.multiplier**failures
    except OverflowError:
        raw = options.max_seconds
    clamped = min(options.max_seconds, raw)

    jitter = clamped * options.jitter_ratio
    delta = (random() * 2 - 1) * jitter
    return min(options.max_seconds, max(options.base_seconds, round(clamped + delta, 3)))
