from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol
from uuid import uuid4

import httpx

from intentbook.domain.errors import InternalError
from intentbook.domain.lifecycle import OrderValidation
from intentbook.domain.order import Order, SettledAmount

logger = logging.getLogger(__name__)

# validator service name -> OrderValidation
_VALIDATION_ALIASES = {
    "ok": OrderValidation.OK,
    "expired": OrderValidation.EXPIRED,
    "nonceused": OrderValidation.NONCE_USED,
    "insufficientfunds": OrderValidation.INSUFFICIENT_FUNDS,
    "invalidsignature": OrderValidation.INVALID_SIGNATURE,
    "invalidorderfields": OrderValidation.INVALID_ORDER_FIELDS,
    "unknownerror": OrderValidation.UNKNOWN_ERROR,
}


@dataclass(frozen=True)
class FillInfo:
    tx_hash: str
    fill_block: int
    settled_amounts: tuple[SettledAmount, ...] = ()


class OrderValidatorPort(Protocol):
    def validate(self, order: Order) -> OrderValidation: ...


class FillLookupPort(Protocol):
    def find_fill(self, order: Order) -> FillInfo | None: ...


def parse_validation(raw: object) -> OrderValidation:
    key = str(raw).replace("_", "").replace("-", "").strip().lower()
    validation = _VALIDATION_ALIASES.get(key)
    if validation is None:
        logger.warning("unknown_order_validation", extra={"extra": {"validation": str(raw)}})
        return OrderValidation.UNKNOWN_ERROR
    return validation


def _parse_settled_amounts(items: object) -> tuple[SettledAmount, ...]:
    if not isinstance(items, list):
        return ()
    amounts: list[SettledAmount] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        amounts.append(
            SettledAmount(
                token_out=str(item.get("tokenOut", "")),
                amount_out=str(item.get("amountOut", "0")),
                token_in=str(item["tokenIn"]) if item.get("tokenIn") is not None else None,
                amount_in=str(item["amountIn"]) if item.get("amountIn") is not None else None,
            )
        )
    return tuple(amounts)


class HttpOrderStatusClient:
    """Client for the on-chain order validation and fill-log service."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float | httpx.Timeout = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        resolved_timeout = (
            timeout
            if isinstance(timeout, httpx.Timeout)
            else httpx.Timeout(timeout=timeout, connect=5.0)
        )
        self.client = httpx.Client(base_url=base_url, timeout=resolved_timeout, transport=transport)

    def __enter__(self) -> HttpOrderStatusClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        del exc_type, exc, tb
        self.close()

    def close(self) -> None:
        self.client.close()

    def _request(self, method: str, path: str, **kwargs: object) -> dict:
        request_id = uuid4().hex
        try:
            response = self.client.request(
                method,
                path,
                headers={"X-Request-ID": request_id},
                **kwargs,  # type: ignore[arg-type]
            )
        except httpx.TimeoutException as exc:
            raise InternalError(
                f"order validator timed out path={path}",
                detail={"path": path, "request_id": request_id},
            ) from exc
        except httpx.TransportError as exc:
            raise InternalError(
                f"order validator unreachable path={path}: {exc}",
                detail={"path": path, "request_id": request_id},
            ) from exc

        if response.status_code >= 400:
            raise InternalError(
                f"order validator error status={response.status_code} path={path}",
                detail={
                    "path": path,
                    "status_code": response.status_code,
                    "request_id": request_id,
                },
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise InternalError(
                f"order validator returned non-JSON body path={path}",
                detail={"path": path, "request_id": request_id},
            ) from exc
        if not isinstance(payload, dict):
            raise InternalError(
                "order validator response payload must be a JSON object",
                detail={"path": path, "request_id": request_id},
            )
        return payload

    def validate(self, order: Order) -> OrderValidation:
        payload = self._request(
            "POST",
            "/validate",
            json={
                "orderHash": order.order_hash,
                "chainId": order.chain_id,
                "orderType": str(order.type),
                "encodedOrder": order.encoded_order,
                "signature": order.signature,
            },
        )
        return parse_validation(payload.get("validation"))

    def find_fill(self, order: Order) -> FillInfo | None:
        payload = self._request(
            "GET",
            "/fills",
            params={"chainId": order.chain_id, "orderHash": order.order_hash},
        )
        fill = payload.get("fill")
        if not isinstance(fill, dict):
            return None
        if fill.get("txHash") is None or fill.get("blockNumber") is None:
            raise InternalError(
                "fill payload missing txHash/blockNumber",
                detail={"order_hash": order.order_hash},
            )
        return FillInfo(
            tx_hash=str(fill["txHash"]),
            fill_block=int(fill["blockNumber"]),
            settled_amounts=_parse_settled_amounts(fill.get("settledAmounts")),
        )
