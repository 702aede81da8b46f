from __future__ import annotations

import statistics as stats_lib
import time
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from intentbook.context import OperationContext
from intentbook.domain.order import Order, OrderStatus, OrderType
from intentbook.domain.unimind_models import BatchMetrics, UnimindParameters, UnimindStatistic
from intentbook.persistence.uow import UnitOfWorkFactory
from intentbook.services.index_router import SORT_KEY_CREATED_AT
from intentbook.services.unimind_strategies import Logger, UnimindAlgorithm

UNIMIND_ORDER_TYPES = (OrderType.DUTCH_V3,)
_COMPLETED_STATUSES = frozenset({OrderStatus.FILLED, OrderStatus.EXPIRED})


class PairUpdateType(StrEnum):
    NEW_PAIR = "new_pair"
    ALGORITHM_UPDATE = "algorithm_update"
    COUNT_INCREMENTED = "count_incremented"
    THRESHOLD_REACHED = "threshold_reached"
    FAILED = "failed"


@dataclass(frozen=True)
class PairUpdate:
    pair: str
    update_type: PairUpdateType
    order_count: int
    total_count: int
    batch_number: int
    intrinsic_values: dict[str, float] = field(default_factory=dict)
    metrics: BatchMetrics | None = None


@dataclass(frozen=True)
class UnimindRunReport:
    orders_scanned: int
    unimind_orders: int
    updates: list[PairUpdate]

    @property
    def failed_pairs(self) -> list[str]:
        return [u.pair for u in self.updates if u.update_type == PairUpdateType.FAILED]


def get_statistics(orders: Sequence[Order], logger: Logger) -> list[UnimindStatistic]:
    """Reduce completed orders to controller samples; incomplete orders are skipped, not zeroed."""
    samples: list[UnimindStatistic] = []
    for order in orders:
        if (
            order.order_status == OrderStatus.FILLED
            and order.fill_block is not None
            and order.decay_start_block is not None
            and order.price_impact is not None
        ):
            samples.append(
                UnimindStatistic(
                    order_hash=order.order_hash,
                    wait_time=max(0, order.fill_block - order.decay_start_block),
                    fill_status=1,
                    price_impact=order.price_impact,
                )
            )
        elif order.order_status == OrderStatus.EXPIRED and order.price_impact is not None:
            samples.append(
                UnimindStatistic(
                    order_hash=order.order_hash,
                    wait_time=None,
                    fill_status=0,
                    price_impact=order.price_impact,
                )
            )
        else:
            logger.warning(
                "unimind_order_skipped",
                extra={
                    "extra": {
                        "order_hash": order.order_hash,
                        "order_status": str(order.order_status),
                    }
                },
            )
    return samples


def calculate_batch_metrics(samples: Sequence[UnimindStatistic]) -> BatchMetrics:
    waits = [sample.wait_time for sample in samples if sample.wait_time is not None]
    filled = sum(sample.fill_status for sample in samples)
    return BatchMetrics(
        sample_count=len(samples),
        filled_count=filled,
        fill_rate=filled / len(samples) if samples else 0.0,
        mean_wait=stats_lib.fmean(waits) if waits else None,
        median_wait=float(stats_lib.median(waits)) if waits else None,
    )


def validate_parameters(
    parameters: UnimindParameters,
    algorithm: UnimindAlgorithm,
    expected_version: int,
) -> bool:
    """Stored parameters are usable only for the current algorithm keys and version."""
    if parameters.version != expected_version:
        return False
    return set(parameters.intrinsic_values) == set(algorithm.default_parameters)


def group_counts_by_pair(orders: Sequence[Order]) -> dict[str, int]:
    counts = Counter(order.pair for order in orders if order.pair)
    return dict(sorted(counts.items()))


class UnimindController:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        algorithm: UnimindAlgorithm,
        *,
        algorithm_version: int,
        update_threshold: int,
        chain_id: int,
        lookback_minutes: int,
        lookback_limit: int,
        now_fn: Callable[[], float] | None = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._algorithm = algorithm
        self._version = algorithm_version
        self._threshold = update_threshold
        self._chain_id = chain_id
        self._lookback_minutes = lookback_minutes
        self._lookback_limit = lookback_limit
        self._now = now_fn or time.time

    def fetch_recent_orders(self, ctx: OperationContext) -> tuple[int, list[Order]]:
        cutoff = int(self._now()) - self._lookback_minutes * 60
        with self._uow_factory() as uow:
            page = uow.orders.get_orders_filtered_by_type(
                limit=self._lookback_limit,
                filters={
                    "chainId": self._chain_id,
                    "sortKey": SORT_KEY_CREATED_AT,
                    "sort": f"gt({max(0, cutoff)})",
                    "desc": True,
                },
                types=UNIMIND_ORDER_TYPES,
            )
        completed = [
            order
            for order in page.orders
            if order.used_unimind and order.order_status in _COMPLETED_STATUSES
        ]
        ctx.logger.info(
            "unimind_recent_orders",
            extra={
                "extra": {
                    "orders_scanned": len(page.orders),
                    "unimind_orders": len(completed),
                    "lookback_minutes": self._lookback_minutes,
                }
            },
        )
        return len(page.orders), completed

    def run(self, ctx: OperationContext) -> UnimindRunReport:
        scanned, orders = self.fetch_recent_orders(ctx)
        updates: list[PairUpdate] = []
        for pair, count in group_counts_by_pair(orders).items():
            pair_ctx = ctx.bind(pair=pair)
            try:
                updates.append(self.update_pair(pair_ctx, pair, count))
            except Exception:  # noqa: BLE001
                pair_ctx.logger.exception(
                    "unimind_pair_update_failed",
                    extra={"extra": {"order_count": count}},
                )
                updates.append(
                    PairUpdate(
                        pair=pair,
                        update_type=PairUpdateType.FAILED,
                        order_count=count,
                        total_count=count,
                        batch_number=-1,
                    )
                )
        return UnimindRunReport(orders_scanned=scanned, unimind_orders=len(orders), updates=updates)

    def update_pair(self, ctx: OperationContext, pair: str, count: int) -> PairUpdate:
        """Apply one batch observation to a pair inside a single transaction."""
        with self._uow_factory() as uow:
            existing = uow.unimind.get_by_pair(pair)
            if existing is None or not validate_parameters(existing, self._algorithm, self._version):
                update_type = (
                    PairUpdateType.NEW_PAIR if existing is None else PairUpdateType.ALGORITHM_UPDATE
                )
                seeded = UnimindParameters(
                    pair=pair,
                    intrinsic_values=dict(self._algorithm.default_parameters),
                    count=count,
                    version=self._version,
                    batch_number=0,
                    last_updated_at=int(self._now()),
                )
                uow.unimind.put(seeded)
                ctx.logger.info(
                    "unimind_pair_seeded",
                    extra={"extra": {"update_type": str(update_type), "order_count": count}},
                )
                return PairUpdate(
                    pair=pair,
                    update_type=update_type,
                    order_count=count,
                    total_count=count,
                    batch_number=0,
                    intrinsic_values=dict(seeded.intrinsic_values),
                )

            total = existing.count + count
            if total < self._threshold:
                uow.unimind.put(
                    UnimindParameters(
                        pair=pair,
                        intrinsic_values=dict(existing.intrinsic_values),
                        count=total,
                        version=self._version,
                        batch_number=existing.batch_number,
                        last_updated_at=existing.last_updated_at,
                    )
                )
                ctx.logger.info(
                    "unimind_pair_below_threshold",
                    extra={"extra": {"total_count": total, "threshold": self._threshold}},
                )
                return PairUpdate(
                    pair=pair,
                    update_type=PairUpdateType.COUNT_INCREMENTED,
                    order_count=count,
                    total_count=total,
                    batch_number=existing.batch_number,
                    intrinsic_values=dict(existing.intrinsic_values),
                )

            page = uow.orders.get_orders_filtered_by_type(
                limit=total,
                filters={"pair": pair, "sortKey": SORT_KEY_CREATED_AT, "desc": True},
                types=UNIMIND_ORDER_TYPES,
            )
            samples = get_statistics(page.orders, ctx.logger)
            metrics = calculate_batch_metrics(samples)
            updated_values = self._algorithm.update(samples, existing.intrinsic_values, ctx.logger)
            next_batch = existing.batch_number + 1
            uow.unimind.put(
                UnimindParameters(
                    pair=pair,
                    intrinsic_values=updated_values,
                    count=0,
                    version=self._version,
                    batch_number=next_batch,
                    last_updated_at=int(self._now()),
                )
            )
            ctx.logger.info(
                "unimind_pair_recomputed",
                extra={
                    "extra": {
                        "total_count": total,
                        "orders_used": len(page.orders),
                        "batch_number": next_batch,
                        "previous_values": dict(existing.intrinsic_values),
                        "new_values": updated_values,
                        "fill_rate": metrics.fill_rate,
                        "mean_wait": metrics.mean_wait,
                        "median_wait": metrics.median_wait,
                    }
                },
            )
            return PairUpdate(
                pair=pair,
                update_type=PairUpdateType.THRESHOLD_REACHED,
                order_count=count,
                total_count=total,
                batch_number=next_batch,
                intrinsic_values=updated_values,
                metrics=metrics,
            )
