"""Exponential backoff with full jitter for delivery poll errors."""

from __future__ import annotations

import math
import random
from typing import Protocol

DEFAULT_BACKOFF_BASE_MS = 5_000
DEFAULT_BACKOFF_MAX_MS = 300_000


class RandomSource(Protocol):
    def random(self) -> float: ...


def backoff_delay_ms(
    attempt: int,
    base_ms: int = DEFAULT_BACKOFF_BASE_MS,
    max_ms: int = DEFAULT_BACKOFF_MAX_MS,
    *,
    rng: RandomSource | None = None,
) -> int:
    """Compute the next retry delay in milliseconds.

    ``attempt <= 0`` returns ``base_ms`` unchanged. Otherwise the delay is
    ``floor(min(max_ms, base_ms * 2**attempt) * r) + 1`` for a uniform draw
    ``r`` in ``[0, 1)``, so it is never zero. The cap is applied before the
    power is materialized, so very large attempts stay cheap.
    """

    if attempt <= 0:
        return base_ms

    cap = _capped_exponential(attempt=attempt, base_ms=max(0, base_ms), max_ms=max(0, max_ms))
    draw = (rng or random).random()
    draw = min(1.0, max(0.0, draw))
    return math.floor(cap * draw) + 1


def backoff_schedule(
    attempts: int,
    base_ms: int = DEFAULT_BACKOFF_BASE_MS,
    max_ms: int = DEFAULT_BACKOFF_MAX_MS,
    *,
    rng: RandomSource | None = None,
) -> list[int]:
    """Delays for attempts 1..attempts, for previewing a retry policy."""

    return [
        backoff_delay_ms(attempt, base_ms, max_ms, rng=rng) for attempt in range(1, attempts + 1)
    ]


def backoff_cap_ms(
    attempt: int,
    base_ms: int = DEFAULT_BACKOFF_BASE_MS,
    max_ms: int = DEFAULT_BACKOFF_MAX_MS,
) -> int:
    """Upper bound of the jitter window for attempt (before the +1)."""

    if attempt <= 0:
        return base_ms
    return _capped_exponential(attempt=attempt, base_ms=max(0, base_ms), max_ms=max(0, max_ms))


def _capped_exponential(*, attempt: int, base_ms: int, max_ms: int) -> int:
    if base_ms == 0:
        return 0
    # base_ms >= 1, so base_ms << attempt exceeds max_ms once attempt >= max_ms.bit_length()
    if attempt >= max_ms.bit_length():
        return max_ms
    return min(max_ms, base_ms << attempt)
