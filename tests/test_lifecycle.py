from __future__ import annotations

import pytest

from intentbook.domain.lifecycle import (
    TERMINAL_STATUSES,
    OrderValidation,
    is_terminal,
    next_status,
    unfilled_status,
)
from intentbook.domain.order import OrderStatus


@pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES))
@pytest.mark.parametrize("validation", list(OrderValidation))
def test_terminal_status_is_absorbing(terminal: OrderStatus, validation: OrderValidation) -> None:
    assert next_status(terminal, validation) == terminal
    assert next_status(terminal, validation, track_insufficient_funds=True) == terminal


@pytest.mark.parametrize(
    ("validation", "expected"),
    [
        (OrderValidation.OK, OrderStatus.OPEN),
        (OrderValidation.EXPIRED, OrderStatus.EXPIRED),
        (OrderValidation.NONCE_USED, OrderStatus.CANCELLED),
        (OrderValidation.INVALID_SIGNATURE, OrderStatus.ERROR),
        (OrderValidation.INVALID_ORDER_FIELDS, OrderStatus.ERROR),
        (OrderValidation.UNKNOWN_ERROR, OrderStatus.ERROR),
        (OrderValidation.INSUFFICIENT_FUNDS, OrderStatus.OPEN),
    ],
)
def test_next_status_from_open(validation: OrderValidation, expected: OrderStatus) -> None:
    assert next_status(OrderStatus.OPEN, validation) == expected


def test_insufficient_funds_is_tracked_and_recoverable() -> None:
    held = next_status(
        OrderStatus.OPEN, OrderValidation.INSUFFICIENT_FUNDS, track_insufficient_funds=True
    )
    recovered = next_status(held, OrderValidation.OK, track_insufficient_funds=True)

    assert held == OrderStatus.INSUFFICIENT_FUNDS
    assert not is_terminal(held)
    assert recovered == OrderStatus.OPEN


def test_unverified_order_opens_on_ok() -> None:
    assert next_status(OrderStatus.UNVERIFIED, OrderValidation.OK) == OrderStatus.OPEN


@pytest.mark.parametrize("validation", [OrderValidation.EXPIRED, OrderValidation.NONCE_USED])
def test_first_empty_fill_lookup_keeps_order_open(validation: OrderValidation) -> None:
    outcome = unfilled_status(OrderStatus.OPEN, validation, get_fill_log_attempts=0)

    assert outcome.status == OrderStatus.OPEN
    assert outcome.get_fill_log_attempts == 1


def test_second_empty_fill_lookup_finalises_status() -> None:
    expired = unfilled_status(
        OrderStatus.OPEN, OrderValidation.EXPIRED, get_fill_log_attempts=1
    )
    cancelled = unfilled_status(
        OrderStatus.OPEN, OrderValidation.NONCE_USED, get_fill_log_attempts=1
    )

    assert expired.status == OrderStatus.EXPIRED
    assert cancelled.status == OrderStatus.CANCELLED
    assert expired.get_fill_log_attempts == 2


def test_non_fill_candidates_do_not_count_lookups() -> None:
    outcome = unfilled_status(OrderStatus.OPEN, OrderValidation.OK, get_fill_log_attempts=3)

    assert outcome.status == OrderStatus.OPEN
    assert outcome.get_fill_log_attempts == 3
