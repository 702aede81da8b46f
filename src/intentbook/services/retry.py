from __future__ import annotations

import math
import random
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")

MAINNET_CHAIN_ID = 1
ARBITRUM_CHAIN_ID = 42161
POLYGON_CHAIN_ID = 137

BASE_SCHEDULE_MAX_RETRY = 300
ESCALATION_MAX_RETRY = 450
ESCALATION_FACTOR = 1.05
MAX_RETRY_WAIT_SECONDS = 18000

_AVERAGE_BLOCK_TIME_SECONDS = {
    MAINNET_CHAIN_ID: 12,
    ARBITRUM_CHAIN_ID: 1,
    # Polygon blocks are ~2s; polling that often would multiply retries.
    POLYGON_CHAIN_ID: 12,
}
DEFAULT_BLOCK_TIME_SECONDS = 12


def average_block_time(chain_id: int) -> int:
    return _AVERAGE_BLOCK_TIME_SECONDS.get(chain_id, DEFAULT_BLOCK_TIME_SECONDS)


def calculate_retry_wait_seconds(chain_id: int, retry_count: int) -> int:
    """Roughly every block for the first ~hour, then escalate towards a 5 hour ceiling."""
    block_time = average_block_time(chain_id)
    if retry_count <= BASE_SCHEDULE_MAX_RETRY:
        return block_time
    if retry_count <= ESCALATION_MAX_RETRY:
        escalated = math.ceil(block_time * ESCALATION_FACTOR ** (retry_count - BASE_SCHEDULE_MAX_RETRY))
        return min(escalated, MAX_RETRY_WAIT_SECONDS)
    return MAX_RETRY_WAIT_SECONDS


@dataclass(frozen=True)
class RetryAttempt:
    attempt: int
    delay_ms: int
    error_type: str


def _compute_delay_ms(
    *,
    attempt: int,
    base_delay_ms: int,
    max_delay_ms: int,
    prng: random.Random,
) -> int:
    raw_delay_ms = min(max_delay_ms, base_delay_ms * (2 ** max(0, attempt - 1)))
    return int(raw_delay_ms * (0.5 + prng.random()))


def retry_with_backoff(  # noqa: UP047
    fn: Callable[[], T],
    *,
    max_attempts: int,
    base_delay_ms: int,
    max_delay_ms: int,
    jitter_seed: int,
    retry_on_exceptions: Sequence[type[Exception]],
    sleep_fn: Callable[[float], None] | None = None,
    on_retry: Callable[[RetryAttempt], None] | None = None,
) -> T:
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    if base_delay_ms < 0 or max_delay_ms < 0:
        raise ValueError("delay values must be >= 0")

    sleep = sleep_fn or time.sleep
    retryable = tuple(retry_on_exceptions)
    prng = random.Random(jitter_seed)

    for attempt in range(1, max_attempts + 1):
        try:
            return fn()
        except Exception as exc:
            if not isinstance(exc, retryable) or attempt >= max_attempts:
                raise
            delay_ms = _compute_delay_ms(
                attempt=attempt,
                base_delay_ms=base_delay_ms,
                max_delay_ms=max_delay_ms,
                prng=prng,
            )
            if on_retry is not None:
                on_retry(RetryAttempt(attempt=attempt, delay_ms=delay_ms, error_type=type(exc).__name__))
            sleep(delay_ms / 1000.0)

    raise RuntimeError("retry loop exhausted unexpectedly")
