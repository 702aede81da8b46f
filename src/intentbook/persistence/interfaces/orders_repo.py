from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from intentbook.domain.order import Order, OrderStatus, OrderType, SettledAmount


@dataclass(frozen=True)
class OrderPage:
    orders: list[Order]
    cursor: str | None = None


@dataclass(frozen=True)
class OrderEvent:
    event_id: int
    order_hash: str
    event_type: str
    image: dict[str, object] | None
    created_at: str
    store: str = "orders"


class OrdersRepoProtocol(Protocol):
    def put_order_and_update_nonce(self, order: Order) -> None: ...

    def get_by_hash(self, order_hash: str) -> Order | None: ...

    def update_order_status(
        self,
        order_hash: str,
        new_status: OrderStatus,
        *,
        tx_hash: str | None = None,
        fill_block: int | None = None,
        settled_amounts: Sequence[SettledAmount] | None = None,
    ) -> Order: ...

    def get_orders(
        self,
        *,
        limit: int,
        filters: Mapping[str, object],
        cursor: str | None = None,
    ) -> OrderPage: ...

    def get_orders_filtered_by_type(
        self,
        *,
        limit: int,
        filters: Mapping[str, object],
        types: Iterable[OrderType],
        cursor: str | None = None,
    ) -> OrderPage: ...

    def delete_orders(self, order_hashes: Iterable[str]) -> int: ...

    def count_by_offerer_and_status(self, offerer: str, status: OrderStatus) -> int: ...

    def get_nonce(self, offerer: str, chain_id: int) -> str: ...

    def list_order_events(self, *, after_id: int = 0, limit: int = 100) -> list[OrderEvent]: ...


class OrderEventsRepoProtocol(Protocol):
    def list_events(
        self,
        *,
        after_id: int = 0,
        limit: int = 100,
        store: str | None = None,
    ) -> list[OrderEvent]: ...
