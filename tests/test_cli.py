from __future__ import annotations

import io
import json
import os

import pytest

from intentbook import cli
from intentbook.domain.lifecycle import OrderValidation
from intentbook.domain.order import OrderStatus, OrderType
from intentbook.persistence.uow import UnitOfWorkFactory


def _factory() -> UnitOfWorkFactory:
    return UnitOfWorkFactory(os.environ["STATE_DB_PATH"])


def _run(capsys, *argv: str) -> tuple[int, dict]:
    code = cli.main(list(argv))
    out = capsys.readouterr().out.strip().splitlines()
    return code, json.loads(out[-1]) if out else {}


class FakeStatusClient:
    def __init__(self, base_url: str, *, timeout: float) -> None:
        self.base_url = base_url

    def __enter__(self) -> FakeStatusClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def validate(self, order) -> OrderValidation:
        return OrderValidation.INVALID_SIGNATURE

    def find_fill(self, order):
        return None


def test_get_orders_empty_store(capsys) -> None:
    code, payload = _run(capsys, "get-orders", "--payload", '{"chainId": 1}')

    assert code == 0
    assert payload == {"orders": []}


def test_get_orders_rejects_unsupported_filters(capsys) -> None:
    code, payload = _run(capsys, "get-orders", "--payload", '{"chainId": 1, "pair": "p"}')

    assert code == 2
    assert payload["errorCode"] == "VALIDATION_ERROR"
    assert "supported" in payload["detail"]


def test_get_orders_reads_payload_from_stdin(capsys, monkeypatch, make_order) -> None:
    with _factory()() as uow:
        uow.orders.put_order_and_update_nonce(make_order("0x1"))
        uow.orders.put_order_and_update_nonce(make_order("0x2", created_at=1_700_000_001))
    monkeypatch.setattr("sys.stdin", io.StringIO('{"offerer": "0xOfferer"}'))

    code, payload = _run(capsys, "get-orders", "--limit", "1")

    assert code == 0
    assert [order["order_hash"] for order in payload["orders"]] == ["0x2"]
    assert payload["cursor"]


def test_get_orders_filtered_by_type(capsys, make_order) -> None:
    with _factory()() as uow:
        uow.orders.put_order_and_update_nonce(make_order("0x1", type=OrderType.DUTCH_V3))
        uow.orders.put_order_and_update_nonce(make_order("0x2"))

    code, payload = _run(
        capsys, "get-orders", "--payload", '{"chainId": 1}', "--order-type", "Dutch_V3"
    )

    assert code == 0
    assert [order["order_hash"] for order in payload["orders"]] == ["0x1"]


def test_check_order_status_round_trip(capsys, monkeypatch, make_order) -> None:
    with _factory()() as uow:
        uow.orders.put_order_and_update_nonce(make_order("0x1"))
    monkeypatch.setattr(cli, "HttpOrderStatusClient", FakeStatusClient)

    code, payload = _run(
        capsys,
        "check-order-status",
        "--payload",
        json.dumps({"orderHash": "0x1", "chainId": 1, "orderStatus": "open", "retryCount": 301}),
    )

    assert code == 0
    assert payload["orderStatus"] == "error"
    assert payload["retryCount"] == 302
    assert payload["retryWaitSeconds"] == 13
    with _factory()() as uow:
        assert uow.orders.get_by_hash("0x1").order_status == OrderStatus.ERROR


def test_check_order_status_missing_order(capsys, monkeypatch) -> None:
    monkeypatch.setattr(cli, "HttpOrderStatusClient", FakeStatusClient)

    code, payload = _run(
        capsys,
        "check-order-status",
        "--payload",
        '{"orderHash": "0xnope", "chainId": 1, "orderStatus": "open"}',
    )

    assert code == 1
    assert payload["errorCode"] == "NOT_FOUND"


def test_unimind_params(capsys) -> None:
    pair = "0xaf88d065e77c8cc2239327c5edb3a432268e5831-0x82af49447d8a07e3bd95bd0d56f35241523fbab1-42161"
    code, payload = _run(
        capsys,
        "unimind-params",
        "--payload",
        json.dumps({"quoteId": "q", "pair": pair, "referencePrice": "1", "priceImpact": 0.01}),
    )

    assert code == 0
    assert payload["pi"] == pytest.approx(0.999764, abs=1e-5)
    assert payload["tau"] == pytest.approx(15.000236, abs=1e-5)


def test_unimind_update_on_empty_store(capsys) -> None:
    code, payload = _run(capsys, "unimind-update")

    assert code == 0
    assert payload["updates"] == []
    assert payload["failedPairs"] == []


def test_order_events(capsys, make_order) -> None:
    with _factory()() as uow:
        uow.orders.put_order_and_update_nonce(make_order("0x1"))

    code, payload = _run(capsys, "order-events", "--after-id", "0")

    assert code == 0
    assert [event["eventType"] for event in payload["events"]] == ["put"]
    assert payload["events"][0]["image"]["order_hash"] == "0x1"


def test_invalid_payload_json(capsys) -> None:
    code, payload = _run(capsys, "get-orders", "--payload", "{not json")

    assert code == 2
    assert payload["errorCode"] == "VALIDATION_ERROR"


def test_invalid_settings_exit_code(monkeypatch, capsys) -> None:
    monkeypatch.setenv("UNIMIND_SAMPLE_PERCENT", "150")

    assert cli.main(["unimind-update"]) == 2
    assert "CONFIGURATION_ERROR" in capsys.readouterr().err


def test_order_events_include_relay_store(capsys, make_order) -> None:
    with _factory()() as uow:
        uow.orders.put_order_and_update_nonce(make_order("0xdutch"))
        uow.orders_for(OrderType.RELAY).put_order_and_update_nonce(
            make_order("0xrelay", type=OrderType.RELAY, pair=None)
        )

    code, payload = _run(capsys, "order-events", "--after-id", "0")
    scoped_code, scoped = _run(capsys, "order-events", "--store", "offchain_orders")

    assert code == 0
    assert [(event["store"], event["orderHash"]) for event in payload["events"]] == [
        ("orders", "0xdutch"),
        ("offchain_orders", "0xrelay"),
    ]
    assert scoped_code == 0
    assert [event["orderHash"] for event in scoped["events"]] == ["0xrelay"]


def test_read_commands_do_not_wait_for_the_write_lock(capsys, make_order) -> None:
    with _factory()() as uow:
        uow.orders.put_order_and_update_nonce(make_order("0x1"))

    with _factory()() as writer:
        writer.orders.update_order_status("0x1", OrderStatus.FILLED)
        orders_code, orders = _run(capsys, "get-orders", "--payload", '{"offerer": "0xOfferer"}')
        events_code, events = _run(capsys, "order-events")

    assert orders_code == 0
    assert [order["order_status"] for order in orders["orders"]] == ["open"]
    assert events_code == 0
    assert [event["eventType"] for event in events["events"]] == ["put"]
