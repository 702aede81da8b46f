from __future__ import annotations

import pytest

from intentbook.domain.errors import ConflictError, InternalError
from intentbook.services.retry import (
    ARBITRUM_CHAIN_ID,
    MAINNET_CHAIN_ID,
    MAX_RETRY_WAIT_SECONDS,
    POLYGON_CHAIN_ID,
    RetryAttempt,
    average_block_time,
    calculate_retry_wait_seconds,
    retry_with_backoff,
)


@pytest.mark.parametrize(
    ("retry_count", "expected"),
    [(0, 12), (300, 12), (301, 13), (320, 32), (500, MAX_RETRY_WAIT_SECONDS)],
)
def test_mainnet_schedule(retry_count: int, expected: int) -> None:
    assert calculate_retry_wait_seconds(MAINNET_CHAIN_ID, retry_count) == expected


def test_schedule_is_monotonic_and_capped() -> None:
    waits = [calculate_retry_wait_seconds(MAINNET_CHAIN_ID, r) for r in range(0, 600)]

    assert waits == sorted(waits)
    assert max(waits) == MAX_RETRY_WAIT_SECONDS


def test_block_times_per_chain() -> None:
    assert average_block_time(MAINNET_CHAIN_ID) == 12
    assert average_block_time(ARBITRUM_CHAIN_ID) == 1
    assert average_block_time(POLYGON_CHAIN_ID) == 12
    assert average_block_time(10) == 12
    assert calculate_retry_wait_seconds(ARBITRUM_CHAIN_ID, 0) == 1


def test_retry_with_backoff_retries_only_listed_errors() -> None:
    calls = {"n": 0}
    sleeps: list[float] = []
    attempts: list[RetryAttempt] = []

    def flaky() -> str:
        calls["n"] += 1
        if calls["n"] < 3:
            raise ConflictError("locked")
        return "ok"

    result = retry_with_backoff(
        flaky,
        max_attempts=3,
        base_delay_ms=10,
        max_delay_ms=100,
        jitter_seed=1,
        retry_on_exceptions=(ConflictError,),
        sleep_fn=sleeps.append,
        on_retry=attempts.append,
    )

    assert result == "ok"
    assert calls["n"] == 3
    assert len(sleeps) == 2
    assert [attempt.error_type for attempt in attempts] == ["ConflictError", "ConflictError"]


def test_retry_with_backoff_does_not_retry_internal_errors() -> None:
    calls = {"n": 0}

    def broken() -> None:
        calls["n"] += 1
        raise InternalError("store down")

    with pytest.raises(InternalError):
        retry_with_backoff(
            broken,
            max_attempts=5,
            base_delay_ms=1,
            max_delay_ms=1,
            jitter_seed=1,
            retry_on_exceptions=(ConflictError,),
            sleep_fn=lambda _: None,
        )
    assert calls["n"] == 1


def test_retry_with_backoff_gives_up_after_max_attempts() -> None:
    def always_conflicts() -> None:
        raise ConflictError("locked")

    with pytest.raises(ConflictError):
        retry_with_backoff(
            always_conflicts,
            max_attempts=2,
            base_delay_ms=1,
            max_delay_ms=1,
            jitter_seed=1,
            retry_on_exceptions=(ConflictError,),
            sleep_fn=lambda _: None,
        )
