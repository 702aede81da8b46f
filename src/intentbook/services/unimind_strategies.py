from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum

from intentbook.domain.unimind_models import (
    DEFAULT_BATCHED_PARAMETERS,
    DEFAULT_PRICE_IMPACT_PARAMETERS,
    UnimindStatistic,
)

Parameters = Mapping[str, float]
Logger = logging.Logger | logging.LoggerAdapter


class UnimindAlgorithmKind(StrEnum):
    PRICE_IMPACT = "price_impact"
    BATCHED = "batched"


class GuardrailReason(StrEnum):
    NEGATIVE_LAMBDA2 = "negative_lambda2"
    PRICE_IMPACT_SINGULAR = "price_impact_singular"
    PRICE_IMPACT_TOO_LARGE = "price_impact_too_large"
    EXACT_OUTPUT = "exact_output"
    TAU_CAPPED = "tau_capped"


@dataclass(frozen=True)
class UnimindAlgorithm:
    """Capability record for one controller strategy, chosen once by tag."""

    kind: UnimindAlgorithmKind
    default_parameters: Parameters
    update: Callable[[Sequence[UnimindStatistic], Parameters, Logger], dict[str, float]]
    compute_pi: Callable[[Parameters, float], float]
    compute_tau: Callable[[Parameters, float], float]
    guardrail: Callable[[Parameters, float], GuardrailReason | None]


# Price-impact strategy. Price impact arrives in percent; pi and tau are basis points.
TARGET_FILL_RATE = 0.96
TARGET_WAIT_TIME_IN_BLOCKS = 2
AUCTION_LENGTH_IN_BLOCKS = 32
BETA = 1.0
LAMBDA1_LEARNING_RATE = 1e-10
LAMBDA2_LEARNING_RATE = 1e-1
SIGMA_LEARNING_RATE = 1e-5
D_FR_D_SIGMA = math.log(0.00001)
BPS = 1e4


def remap_lambda(value: float) -> float:
    """Squash an unbounded parameter into (-1, 1)."""
    return 2 / (1 + math.exp(-value)) - 1


def price_impact_fraction(price_impact_percent: float) -> float:
    return price_impact_percent / 100


def price_impact_filler(price_impact: float, lambda1: float, lambda2: float) -> float:
    big_lambda2 = remap_lambda(lambda2)
    denominator = 1 + big_lambda2 - 2 * big_lambda2 * price_impact
    if denominator == 0:
        raise ZeroDivisionError("price impact filler denominator is 0")
    return lambda1 + (1 - lambda1) * price_impact * (1 - big_lambda2) / denominator


def price_impact_compute_pi(params: Parameters, price_impact_percent: float) -> float:
    pi_amm = price_impact_fraction(price_impact_percent)
    if pi_amm >= 1:
        return 0.0
    pi_filler = price_impact_filler(pi_amm, params["lambda1"], params["lambda2"])
    return BPS * (pi_amm - pi_filler) / (1 - pi_amm)


def price_impact_compute_tau(params: Parameters, price_impact_percent: float) -> float:
    return BPS * AUCTION_LENGTH_IN_BLOCKS * math.exp(params["Sigma"]) - price_impact_compute_pi(
        params, price_impact_percent
    )


def price_impact_guardrail(params: Parameters, price_impact_percent: float) -> GuardrailReason | None:
    if remap_lambda(params["lambda2"]) < 0:
        return GuardrailReason.NEGATIVE_LAMBDA2
    if price_impact_fraction(price_impact_percent) >= 1:
        return GuardrailReason.PRICE_IMPACT_SINGULAR
    return None


def _fill_rate(statistics: Sequence[UnimindStatistic]) -> float:
    return sum(stat.fill_status for stat in statistics) / len(statistics)


def _point_gradients(
    wait_time: float,
    pi_amm: float,
    lambda1: float,
    lambda2: float,
    sigma: float,
) -> tuple[float, float, float]:
    big_lambda2 = remap_lambda(lambda2)
    cost = (wait_time - TARGET_WAIT_TIME_IN_BLOCKS) ** 2
    d_j_d_wt = 2 * (wait_time - TARGET_WAIT_TIME_IN_BLOCKS)
    d_wt_d_pi = 1 / math.exp(sigma)
    d_pi_d_pif = -(1 / (1 - pi_amm))
    chain = d_j_d_wt * d_wt_d_pi * d_pi_d_pif

    d_pif_d_lambda1 = ((1 + big_lambda2) * (pi_amm - 1)) / (-1 + big_lambda2 * (-1 + 2 * pi_amm))
    d_pif_d_big_lambda2 = (-2 * (lambda1 - 1) * (pi_amm - 1) * pi_amm) / (
        (1 + big_lambda2 - 2 * big_lambda2 * pi_amm) ** 2
    )
    d_big_lambda2_d_lambda2 = 2 * math.exp(-lambda2) / (1 + math.exp(-lambda2)) ** 2
    return cost, chain * d_pif_d_lambda1, chain * d_pif_d_big_lambda2 * d_big_lambda2_d_lambda2


def price_impact_update(
    statistics: Sequence[UnimindStatistic],
    previous: Parameters,
    logger: Logger,
) -> dict[str, float]:
    if not statistics:
        return dict(previous)

    lambda1 = previous["lambda1"]
    lambda2 = previous["lambda2"]
    sigma = previous["Sigma"]

    fill_rate = _fill_rate(statistics)
    d_j_d_fr = 2 * BETA * (fill_rate - TARGET_FILL_RATE)
    sigma_updated = sigma + SIGMA_LEARNING_RATE * d_j_d_fr * D_FR_D_SIGMA

    # Only filled orders carry a wait time; unfilled ones inform Sigma alone.
    points: list[tuple[float, float]] = []
    for stat in statistics:
        if stat.wait_time is None:
            continue
        pi_amm = price_impact_fraction(stat.price_impact)
        if pi_amm >= 1:
            logger.warning(
                "unimind_sample_singular_price_impact",
                extra={"extra": {"order_hash": stat.order_hash, "price_impact": stat.price_impact}},
            )
            continue
        points.append((float(max(0, stat.wait_time)), pi_amm))

    if not points:
        logger.info(
            "unimind_no_filled_samples",
            extra={"extra": {"samples": len(statistics), "sigma_new": sigma_updated}},
        )
        return {"lambda1": lambda1, "lambda2": lambda2, "Sigma": sigma_updated}

    gradients = [_point_gradients(wait, pi_amm, lambda1, lambda2, sigma) for wait, pi_amm in points]
    avg_cost = sum(g[0] for g in gradients) / len(gradients)
    lambda1_gradient = sum(g[1] for g in gradients) / len(gradients)
    lambda2_gradient = sum(g[2] for g in gradients) / len(gradients)

    lambda1_updated = lambda1 - LAMBDA1_LEARNING_RATE * lambda1_gradient
    lambda2_updated = lambda2 - LAMBDA2_LEARNING_RATE * lambda2_gradient

    logger.info(
        "unimind_parameters_computed",
        extra={
            "extra": {
                "avg_cost": avg_cost,
                "lambda1_old": lambda1,
                "lambda1_new": lambda1_updated,
                "lambda1_gradient": lambda1_gradient,
                "lambda2_old": lambda2,
                "lambda2_new": lambda2_updated,
                "lambda2_gradient": lambda2_gradient,
                "sigma_old": sigma,
                "sigma_new": sigma_updated,
                "samples": len(points),
                "ignored": len(statistics) - len(points),
                "fill_rate": fill_rate,
            }
        },
    )
    return {"lambda1": lambda1_updated, "lambda2": lambda2_updated, "Sigma": sigma_updated}


# Batched strategy: proportional controller on average wait and fill rate.
BATCHED_LEARNING_RATE = 2.0


def batched_update(
    statistics: Sequence[UnimindStatistic],
    previous: Parameters,
    logger: Logger,
) -> dict[str, float]:
    if not statistics:
        return dict(previous)
    waits = [
        AUCTION_LENGTH_IN_BLOCKS if stat.wait_time is None else max(0, stat.wait_time)
        for stat in statistics
    ]
    average_wait = sum(waits) / len(waits)
    average_fill_rate = _fill_rate(statistics)
    logger.info(
        "unimind_batched_averages",
        extra={"extra": {"average_wait": average_wait, "average_fill_rate": average_fill_rate}},
    )
    wait_proportion = (TARGET_WAIT_TIME_IN_BLOCKS - average_wait) / TARGET_WAIT_TIME_IN_BLOCKS
    fill_proportion = (TARGET_FILL_RATE - average_fill_rate) / TARGET_FILL_RATE
    return {
        "pi": previous["pi"] + BATCHED_LEARNING_RATE * wait_proportion,
        "tau": previous["tau"] + BATCHED_LEARNING_RATE * fill_proportion,
    }


def batched_compute_pi(params: Parameters, price_impact_percent: float) -> float:
    return params["pi"] * price_impact_percent


def batched_compute_tau(params: Parameters, price_impact_percent: float) -> float:
    return params["tau"] * price_impact_percent


def batched_guardrail(params: Parameters, price_impact_percent: float) -> GuardrailReason | None:
    del params, price_impact_percent
    return None


PRICE_IMPACT_ALGORITHM = UnimindAlgorithm(
    kind=UnimindAlgorithmKind.PRICE_IMPACT,
    default_parameters=DEFAULT_PRICE_IMPACT_PARAMETERS,
    update=price_impact_update,
    compute_pi=price_impact_compute_pi,
    compute_tau=price_impact_compute_tau,
    guardrail=price_impact_guardrail,
)

BATCHED_ALGORITHM = UnimindAlgorithm(
    kind=UnimindAlgorithmKind.BATCHED,
    default_parameters=DEFAULT_BATCHED_PARAMETERS,
    update=batched_update,
    compute_pi=batched_compute_pi,
    compute_tau=batched_compute_tau,
    guardrail=batched_guardrail,
)

_ALGORITHMS = {
    UnimindAlgorithmKind.PRICE_IMPACT: PRICE_IMPACT_ALGORITHM,
    UnimindAlgorithmKind.BATCHED: BATCHED_ALGORITHM,
}


def build_algorithm(kind: str | UnimindAlgorithmKind) -> UnimindAlgorithm:
    try:
        return _ALGORITHMS[UnimindAlgorithmKind(str(kind).strip().lower())]
    except ValueError as exc:
        raise ValueError(
            f"unknown unimind algorithm {kind!r}; expected one of {[k.value for k in UnimindAlgorithmKind]}"
        ) from exc
