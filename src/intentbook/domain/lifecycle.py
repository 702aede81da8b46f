from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from intentbook.domain.order import OrderStatus


class OrderValidation(StrEnum):
    OK = "ok"
    EXPIRED = "expired"
    NONCE_USED = "nonce_used"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_SIGNATURE = "invalid_signature"
    INVALID_ORDER_FIELDS = "invalid_order_fields"
    UNKNOWN_ERROR = "unknown_error"


TERMINAL_STATUSES = frozenset(
    {OrderStatus.FILLED, OrderStatus.CANCELLED, OrderStatus.EXPIRED, OrderStatus.ERROR}
)

# Validation results that may mean the order was already filled on-chain.
FILL_CANDIDATE_VALIDATIONS = frozenset({OrderValidation.NONCE_USED, OrderValidation.EXPIRED})

_ERROR_VALIDATIONS = frozenset(
    {
        OrderValidation.INVALID_SIGNATURE,
        OrderValidation.INVALID_ORDER_FIELDS,
        OrderValidation.UNKNOWN_ERROR,
    }
)


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def next_status(
    current: OrderStatus,
    validation: OrderValidation,
    *,
    track_insufficient_funds: bool = False,
) -> OrderStatus:
    if is_terminal(current):
        return current
    if validation == OrderValidation.INSUFFICIENT_FUNDS:
        return OrderStatus.INSUFFICIENT_FUNDS if track_insufficient_funds else OrderStatus.OPEN
    if validation == OrderValidation.EXPIRED:
        return OrderStatus.EXPIRED
    if validation == OrderValidation.NONCE_USED:
        return OrderStatus.CANCELLED
    if validation in _ERROR_VALIDATIONS:
        return OrderStatus.ERROR
    return OrderStatus.OPEN


@dataclass(frozen=True)
class UnfilledOutcome:
    status: OrderStatus
    get_fill_log_attempts: int


def unfilled_status(
    current: OrderStatus,
    validation: OrderValidation,
    *,
    get_fill_log_attempts: int,
    track_insufficient_funds: bool = False,
) -> UnfilledOutcome:
    """Status for an order whose fill lookup came back empty.

    Expired and NonceUsed stay OPEN on the first empty lookup; fill logs can lag
    the validation result by a block or two.
    """
    if is_terminal(current):
        return UnfilledOutcome(current, get_fill_log_attempts)
    if validation in FILL_CANDIDATE_VALIDATIONS:
        if get_fill_log_attempts == 0:
            return UnfilledOutcome(OrderStatus.OPEN, get_fill_log_attempts + 1)
        return UnfilledOutcome(
            next_status(current, validation, track_insufficient_funds=track_insufficient_funds),
            get_fill_log_attempts + 1,
        )
    return UnfilledOutcome(
        next_status(current, validation, track_insufficient_funds=track_insufficient_funds),
        get_fill_log_attempts,
    )
