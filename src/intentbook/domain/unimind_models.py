from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import StrEnum

DEFAULT_PRICE_IMPACT_PARAMETERS: dict[str, float] = {
    "lambda1": 0.0,
    "lambda2": 8.0,
    "Sigma": math.log(0.00005),
}

DEFAULT_BATCHED_PARAMETERS: dict[str, float] = {"pi": 5.0, "tau": 5.0}


class TradeType(StrEnum):
    EXACT_INPUT = "EXACT_INPUT"
    EXACT_OUTPUT = "EXACT_OUTPUT"


@dataclass(frozen=True)
class UnimindParameters:
    pair: str
    intrinsic_values: dict[str, float]
    count: int
    version: int
    batch_number: int = 0
    last_updated_at: int | None = None


@dataclass(frozen=True)
class QuoteMetadata:
    quote_id: str
    pair: str
    reference_price: str
    price_impact: float
    route: dict[str, object] = field(default_factory=dict)
    used_unimind: bool = False


@dataclass(frozen=True)
class UnimindStatistic:
    """One completed order reduced to the controller's inputs.

    wait_time is None for an unfilled order; price_impact is in percent.
    """

    order_hash: str
    wait_time: int | None
    fill_status: int
    price_impact: float


@dataclass(frozen=True)
class BatchMetrics:
    sample_count: int
    filled_count: int
    fill_rate: float
    mean_wait: float | None
    median_wait: float | None


@dataclass(frozen=True)
class ServedParameters:
    pi: float
    tau: float
    used_unimind: bool
    guardrail_reason: str | None = None
