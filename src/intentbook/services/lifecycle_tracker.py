from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass, field

from intentbook.context import OperationContext
from intentbook.domain.errors import ConflictError, NotFoundError, ValidationError
from intentbook.domain.lifecycle import (
    FILL_CANDIDATE_VALIDATIONS,
    OrderValidation,
    is_terminal,
    unfilled_status,
)
from intentbook.domain.order import Order, OrderStatus, OrderType, SettledAmount
from intentbook.persistence.uow import UnitOfWorkFactory
from intentbook.services.onchain_client import FillInfo, FillLookupPort, OrderValidatorPort
from intentbook.services.retry import RetryAttempt, calculate_retry_wait_seconds, retry_with_backoff


@dataclass(frozen=True)
class CheckOrderStatusRequest:
    order_hash: str
    chain_id: int
    current_status: OrderStatus
    retry_count: int = 0
    get_fill_log_attempts: int = 0
    order_type: OrderType = OrderType.DUTCH_V2
    quote_id: str | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> CheckOrderStatusRequest:
        try:
            return cls(
                order_hash=str(payload["orderHash"]),
                chain_id=int(payload["chainId"]),  # type: ignore[arg-type]
                current_status=OrderStatus(str(payload["orderStatus"])),
                retry_count=int(payload.get("retryCount") or 0),  # type: ignore[arg-type]
                get_fill_log_attempts=int(payload.get("getFillLogAttempts") or 0),  # type: ignore[arg-type]
                order_type=OrderType(str(payload.get("orderType") or OrderType.DUTCH_V2)),
                quote_id=str(payload["quoteId"]) if payload.get("quoteId") else None,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(
                f"invalid check-order-status input: {exc}",
                detail={"keys": sorted(payload)},
            ) from exc


@dataclass(frozen=True)
class CheckOrderStatusResult:
    order_hash: str
    order_status: OrderStatus
    retry_count: int
    retry_wait_seconds: int
    chain_id: int
    get_fill_log_attempts: int = 0
    order_type: OrderType = OrderType.DUTCH_V2
    quote_id: str | None = None
    tx_hash: str | None = None
    fill_block: int | None = None
    settled_amounts: tuple[SettledAmount, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, object]:
        """Scheduler-facing payload; feeds straight back in as the next request."""
        payload: dict[str, object] = {
            "orderHash": self.order_hash,
            "orderStatus": str(self.order_status),
            "retryCount": self.retry_count,
            "retryWaitSeconds": self.retry_wait_seconds,
            "chainId": self.chain_id,
            "orderType": str(self.order_type),
            "getFillLogAttempts": self.get_fill_log_attempts,
        }
        if self.quote_id:
            payload["quoteId"] = self.quote_id
        if self.tx_hash:
            payload["txHash"] = self.tx_hash
        if self.fill_block is not None:
            payload["fillBlock"] = self.fill_block
        if self.settled_amounts:
            payload["settledAmounts"] = [asdict(amount) for amount in self.settled_amounts]
        return payload


@dataclass(frozen=True)
class _Transition:
    status: OrderStatus
    get_fill_log_attempts: int
    fill: FillInfo | None = None


class CheckOrderStatusService:
    """One externally scheduled lifecycle step for a single order.

    Safe under at-least-once delivery: terminal orders are returned untouched and a
    status is only written when it differs from the stored one.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        validator: OrderValidatorPort,
        fill_lookup: FillLookupPort,
        *,
        track_insufficient_funds: bool = True,
        conflict_max_attempts: int = 3,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._validator = validator
        self._fill_lookup = fill_lookup
        self._track_insufficient_funds = track_insufficient_funds
        self._conflict_max_attempts = conflict_max_attempts
        self._sleep_fn = sleep_fn

    def handle(self, ctx: OperationContext, request: CheckOrderStatusRequest) -> CheckOrderStatusResult:
        ctx = ctx.bind(order_hash=request.order_hash, chain_id=request.chain_id)
        order = self._load(request)

        if is_terminal(order.order_status):
            ctx.logger.info(
                "order_already_terminal",
                extra={"extra": {"order_status": str(order.order_status)}},
            )
            return self._result(request, order.order_status, request.get_fill_log_attempts, order=order)

        validation = self._validator.validate(order)
        transition = self._transition(order, validation, request.get_fill_log_attempts)

        if transition.status != order.order_status:
            order = self._persist(ctx, request, transition)
            if is_terminal(order.order_status):
                ctx.logger.info(
                    "order_terminal",
                    extra={
                        "extra": {
                            "order_status": str(order.order_status),
                            "validation": str(validation),
                            "retry_count": request.retry_count,
                            "get_fill_log_attempts": transition.get_fill_log_attempts,
                            "quote_id": request.quote_id,
                        }
                    },
                )
        return self._result(request, order.order_status, transition.get_fill_log_attempts, order=order)

    def _load(self, request: CheckOrderStatusRequest) -> Order:
        with self._uow_factory() as uow:
            order = uow.orders_for(request.order_type).get_by_hash(request.order_hash)
        if order is None:
            raise NotFoundError(
                f"cannot find order by hash when updating order status, hash: {request.order_hash}",
                detail={"order_hash": request.order_hash},
            )
        return order

    def _transition(
        self,
        order: Order,
        validation: OrderValidation,
        get_fill_log_attempts: int,
    ) -> _Transition:
        if validation in FILL_CANDIDATE_VALIDATIONS:
            fill = self._fill_lookup.find_fill(order)
            if fill is not None:
                return _Transition(OrderStatus.FILLED, get_fill_log_attempts, fill=fill)
        outcome = unfilled_status(
            order.order_status,
            validation,
            get_fill_log_attempts=get_fill_log_attempts,
            track_insufficient_funds=self._track_insufficient_funds,
        )
        return _Transition(outcome.status, outcome.get_fill_log_attempts)

    def _persist(
        self,
        ctx: OperationContext,
        request: CheckOrderStatusRequest,
        transition: _Transition,
    ) -> Order:
        def _write() -> Order:
            with self._uow_factory() as uow:
                repo = uow.orders_for(request.order_type)
                current = repo.get_by_hash(request.order_hash)
                if current is None:
                    raise NotFoundError(
                        f"order {request.order_hash} disappeared before status update",
                        detail={"order_hash": request.order_hash},
                    )
                if is_terminal(current.order_status) or current.order_status == transition.status:
                    return current
                fill = transition.fill
                return repo.update_order_status(
                    request.order_hash,
                    transition.status,
                    tx_hash=fill.tx_hash if fill else None,
                    fill_block=fill.fill_block if fill else None,
                    settled_amounts=fill.settled_amounts if fill else None,
                )

        def _on_retry(attempt: RetryAttempt) -> None:
            ctx.logger.warning(
                "order_status_write_conflict",
                extra={"extra": {"attempt": attempt.attempt, "delay_ms": attempt.delay_ms}},
            )

        updated = retry_with_backoff(
            _write,
            max_attempts=self._conflict_max_attempts,
            base_delay_ms=50,
            max_delay_ms=1000,
            jitter_seed=len(request.order_hash),
            retry_on_exceptions=(ConflictError,),
            sleep_fn=self._sleep_fn,
            on_retry=_on_retry,
        )
        ctx.logger.info(
            "order_status_updated",
            extra={"extra": {"order_status": str(updated.order_status)}},
        )
        return updated

    def _result(
        self,
        request: CheckOrderStatusRequest,
        status: OrderStatus,
        get_fill_log_attempts: int,
        *,
        order: Order,
    ) -> CheckOrderStatusResult:
        filled = status == OrderStatus.FILLED
        return CheckOrderStatusResult(
            order_hash=request.order_hash,
            order_status=status,
            retry_count=request.retry_count + 1,
            retry_wait_seconds=calculate_retry_wait_seconds(request.chain_id, request.retry_count),
            chain_id=request.chain_id,
            get_fill_log_attempts=get_fill_log_attempts,
            order_type=request.order_type,
            quote_id=request.quote_id,
            tx_hash=order.tx_hash if filled else None,
            fill_block=order.fill_block if filled else None,
            settled_amounts=order.settled_amounts if filled else (),
        )
