from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from enum import StrEnum


class OrderStatus(StrEnum):
    UNVERIFIED = "unverified"
    OPEN = "open"
    INSUFFICIENT_FUNDS = "insufficient-funds"
    FILLED = "filled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    ERROR = "error"


class OrderType(StrEnum):
    DUTCH = "Dutch"
    DUTCH_V2 = "Dutch_V2"
    DUTCH_V3 = "Dutch_V3"
    LIMIT = "Limit"
    RELAY = "Relay"
    PRIORITY = "Priority"


@dataclass(frozen=True)
class SettledAmount:
    token_out: str
    amount_out: str
    token_in: str | None = None
    amount_in: str | None = None


@dataclass(frozen=True)
class Order:
    order_hash: str
    offerer: str
    chain_id: int
    order_status: OrderStatus
    nonce: str
    encoded_order: str
    signature: str
    created_at: int
    deadline: int
    type: OrderType = OrderType.DUTCH_V2
    filler: str | None = None
    pair: str | None = None
    input_token: str | None = None
    output_token: str | None = None
    reactor: str | None = None
    quote_id: str | None = None
    decay_start_block: int | None = None
    price_impact: float | None = None
    used_unimind: bool = False
    tx_hash: str | None = None
    fill_block: int | None = None
    settled_amounts: tuple[SettledAmount, ...] = field(default_factory=tuple)

    def base_fields(self) -> dict[str, object]:
        payload = asdict(self)
        payload["order_status"] = str(self.order_status)
        payload["type"] = str(self.type)
        payload["settled_amounts"] = [asdict(amount) for amount in self.settled_amounts]
        return payload


def settled_amounts_to_json(amounts: tuple[SettledAmount, ...]) -> str | None:
    if not amounts:
        return None
    return json.dumps([asdict(amount) for amount in amounts], sort_keys=True)


def settled_amounts_from_json(raw: str | None) -> tuple[SettledAmount, ...]:
    if not raw:
        return ()
    items = json.loads(raw)
    return tuple(
        SettledAmount(
            token_out=str(item["token_out"]),
            amount_out=str(item["amount_out"]),
            token_in=item.get("token_in"),
            amount_in=item.get("amount_in"),
        )
        for item in items
    )


def order_from_mapping(payload: Mapping[str, object]) -> Order:
    """Build an Order from a plain mapping (CLI/JSON input or a stored image)."""
    raw_amounts = payload.get("settled_amounts") or ()
    amounts = tuple(
        item
        if isinstance(item, SettledAmount)
        else SettledAmount(
            token_out=str(item["token_out"]),
            amount_out=str(item["amount_out"]),
            token_in=item.get("token_in"),
            amount_in=item.get("amount_in"),
        )
        for item in raw_amounts  # type: ignore[union-attr]
    )
    decay_start_block = payload.get("decay_start_block")
    fill_block = payload.get("fill_block")
    price_impact = payload.get("price_impact")
    return Order(
        order_hash=str(payload["order_hash"]),
        offerer=str(payload["offerer"]),
        chain_id=int(payload["chain_id"]),  # type: ignore[arg-type]
        order_status=OrderStatus(str(payload.get("order_status", OrderStatus.UNVERIFIED))),
        nonce=str(payload["nonce"]),
        encoded_order=str(payload.get("encoded_order", "")),
        signature=str(payload.get("signature", "")),
        created_at=int(payload.get("created_at", 0)),  # type: ignore[arg-type]
        deadline=int(payload.get("deadline", 0)),  # type: ignore[arg-type]
        type=OrderType(str(payload.get("type", OrderType.DUTCH_V2))),
        filler=_optional_str(payload.get("filler")),
        pair=_optional_str(payload.get("pair")),
        input_token=_optional_str(payload.get("input_token")),
        output_token=_optional_str(payload.get("output_token")),
        reactor=_optional_str(payload.get("reactor")),
        quote_id=_optional_str(payload.get("quote_id")),
        decay_start_block=int(decay_start_block) if decay_start_block is not None else None,  # type: ignore[arg-type]
        price_impact=float(price_impact) if price_impact is not None else None,  # type: ignore[arg-type]
        used_unimind=bool(payload.get("used_unimind", False)),
        tx_hash=_optional_str(payload.get("tx_hash")),
        fill_block=int(fill_block) if fill_block is not None else None,  # type: ignore[arg-type]
        settled_amounts=amounts,
    )


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    return str(value)
