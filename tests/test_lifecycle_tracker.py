from __future__ import annotations

import pytest

from intentbook.context import OperationContext
from intentbook.domain.errors import NotFoundError, ValidationError
from intentbook.domain.lifecycle import OrderValidation
from intentbook.domain.order import Order, OrderStatus, OrderType, SettledAmount
from intentbook.services.lifecycle_tracker import CheckOrderStatusRequest, CheckOrderStatusService
from intentbook.services.onchain_client import FillInfo


class FakeValidator:
    def __init__(self, validation: OrderValidation) -> None:
        self.validation = validation
        self.calls: list[str] = []

    def validate(self, order: Order) -> OrderValidation:
        self.calls.append(order.order_hash)
        return self.validation


class FakeFillLookup:
    def __init__(self, fill: FillInfo | None = None) -> None:
        self.fill = fill
        self.calls: list[str] = []

    def find_fill(self, order: Order) -> FillInfo | None:
        self.calls.append(order.order_hash)
        return self.fill


def _service(uow_factory, validation, fill=None, **kwargs):
    validator = FakeValidator(validation)
    lookup = FakeFillLookup(fill)
    service = CheckOrderStatusService(uow_factory, validator, lookup, sleep_fn=lambda _: None, **kwargs)
    return service, validator, lookup


def _request(**overrides) -> CheckOrderStatusRequest:
    base = {"orderHash": "0xhash1", "chainId": 1, "orderStatus": "open", "retryCount": 0}
    base.update(overrides)
    return CheckOrderStatusRequest.from_mapping(base)


def _events(uow_factory) -> list[str]:
    with uow_factory() as uow:
        return [event.event_type for event in uow.orders.list_order_events()]


def test_ok_validation_keeps_order_open_without_write(uow_factory, make_order) -> None:
    with uow_factory() as uow:
        uow.orders.put_order_and_update_nonce(make_order())
    service, _, lookup = _service(uow_factory, OrderValidation.OK)

    result = service.handle(OperationContext.create("test"), _request(retryCount=4))

    assert result.order_status == OrderStatus.OPEN
    assert result.retry_count == 5
    assert result.retry_wait_seconds == 12
    assert lookup.calls == []
    assert _events(uow_factory) == ["put"]


def test_fill_found_persists_fill_fields(uow_factory, make_order) -> None:
    with uow_factory() as uow:
        uow.orders.put_order_and_update_nonce(make_order())
    amounts = (SettledAmount(token_out="0xout", amount_out="99"),)
    fill = FillInfo(tx_hash="0xtx", fill_block=555, settled_amounts=amounts)
    service, _, lookup = _service(uow_factory, OrderValidation.NONCE_USED, fill=fill)

    result = service.handle(OperationContext.create("test"), _request())

    assert lookup.calls == ["0xhash1"]
    assert result.order_status == OrderStatus.FILLED
    assert result.to_dict()["txHash"] == "0xtx"
    assert result.to_dict()["fillBlock"] == 555
    with uow_factory() as uow:
        stored = uow.orders.get_by_hash("0xhash1")
    assert stored.order_status == OrderStatus.FILLED
    assert stored.settled_amounts == amounts


def test_expired_without_fill_waits_for_second_lookup(uow_factory, make_order) -> None:
    with uow_factory() as uow:
        uow.orders.put_order_and_update_nonce(make_order())
    service, _, _ = _service(uow_factory, OrderValidation.EXPIRED)

    first = service.handle(OperationContext.create("test"), _request())
    second = service.handle(
        OperationContext.create("test"),
        CheckOrderStatusRequest.from_mapping(first.to_dict()),
    )

    assert first.order_status == OrderStatus.OPEN
    assert first.get_fill_log_attempts == 1
    assert second.order_status == OrderStatus.EXPIRED
    assert _events(uow_factory) == ["put", "status_update"]


def test_terminal_order_is_idempotent(uow_factory, make_order) -> None:
    with uow_factory() as uow:
        uow.orders.put_order_and_update_nonce(make_order())
    service, validator, _ = _service(uow_factory, OrderValidation.INVALID_SIGNATURE)
    ctx = OperationContext.create("test")

    first = service.handle(ctx, _request())
    second = service.handle(ctx, _request(orderStatus="error", retryCount=1))
    third = service.handle(ctx, _request(orderStatus="error", retryCount=2))

    assert first.order_status == second.order_status == third.order_status == OrderStatus.ERROR
    assert validator.calls == ["0xhash1"]
    assert _events(uow_factory) == ["put", "status_update"]


def test_insufficient_funds_tracking(uow_factory, make_order) -> None:
    with uow_factory() as uow:
        uow.orders.put_order_and_update_nonce(make_order())
    tracked, _, _ = _service(uow_factory, OrderValidation.INSUFFICIENT_FUNDS)
    untracked, _, _ = _service(
        uow_factory, OrderValidation.INSUFFICIENT_FUNDS, track_insufficient_funds=False
    )

    assert untracked.handle(OperationContext.create("t"), _request()).order_status == OrderStatus.OPEN
    assert (
        tracked.handle(OperationContext.create("t"), _request()).order_status
        == OrderStatus.INSUFFICIENT_FUNDS
    )


def test_relay_orders_are_tracked_in_offchain_store(uow_factory, make_order) -> None:
    with uow_factory() as uow:
        uow.offchain_orders.put_order_and_update_nonce(
            make_order("0xrelay", type=OrderType.RELAY, pair=None)
        )
    service, _, _ = _service(uow_factory, OrderValidation.INVALID_ORDER_FIELDS)

    result = service.handle(
        OperationContext.create("t"), _request(orderHash="0xrelay", orderType="Relay")
    )

    assert result.order_status == OrderStatus.ERROR
    with uow_factory() as uow:
        assert uow.offchain_orders.get_by_hash("0xrelay").order_status == OrderStatus.ERROR


def test_missing_order_raises_not_found(uow_factory) -> None:
    service, validator, _ = _service(uow_factory, OrderValidation.OK)

    with pytest.raises(NotFoundError):
        service.handle(OperationContext.create("t"), _request(orderHash="0xmissing"))
    assert validator.calls == []


def test_terminal_transition_is_logged(uow_factory, make_order, caplog) -> None:
    with uow_factory() as uow:
        uow.orders.put_order_and_update_nonce(make_order())
    service, _, _ = _service(uow_factory, OrderValidation.UNKNOWN_ERROR)

    with caplog.at_level("INFO"):
        service.handle(OperationContext.create("check_order_status"), _request(quoteId="q-9"))

    terminal = [r for r in caplog.records if r.getMessage() == "order_terminal"]
    assert terminal and terminal[0].extra["order_hash"] == "0xhash1"
    assert terminal[0].extra["quote_id"] == "q-9"


@pytest.mark.parametrize(
    "payload",
    [
        {"chainId": 1, "orderStatus": "open"},
        {"orderHash": "0x1", "chainId": "x", "orderStatus": "open"},
        {"orderHash": "0x1", "chainId": 1, "orderStatus": "pending"},
    ],
)
def test_request_validation(payload) -> None:
    with pytest.raises(ValidationError):
        CheckOrderStatusRequest.from_mapping(payload)
