from __future__ import annotations

import logging
import math

import pytest

from intentbook.domain.unimind_models import (
    DEFAULT_BATCHED_PARAMETERS,
    DEFAULT_PRICE_IMPACT_PARAMETERS,
    UnimindStatistic,
)
from intentbook.services.unimind_strategies import (
    BATCHED_ALGORITHM,
    PRICE_IMPACT_ALGORITHM,
    SIGMA_LEARNING_RATE,
    GuardrailReason,
    UnimindAlgorithmKind,
    build_algorithm,
    price_impact_compute_pi,
    price_impact_compute_tau,
    price_impact_guardrail,
    price_impact_update,
    remap_lambda,
)

logger = logging.getLogger("intentbook.test")


def _stat(idx: int, wait: int | None, price_impact: float) -> UnimindStatistic:
    return UnimindStatistic(
        order_hash=f"0x{idx}",
        wait_time=wait,
        fill_status=0 if wait is None else 1,
        price_impact=price_impact,
    )


def test_reference_pi_and_tau_for_default_parameters() -> None:
    params = {"lambda1": 0.0, "lambda2": 8.0, "Sigma": math.log(0.00005)}

    pi = price_impact_compute_pi(params, 0.01)
    tau = price_impact_compute_tau(params, 0.01)

    assert pi == pytest.approx(0.999764, abs=1e-5)
    assert tau == pytest.approx(15.000236, abs=1e-5)


def test_defaults_match_reference_parameters() -> None:
    assert DEFAULT_PRICE_IMPACT_PARAMETERS["lambda2"] == 8.0
    assert DEFAULT_PRICE_IMPACT_PARAMETERS["Sigma"] == pytest.approx(math.log(0.00005))


def test_remap_lambda_is_bounded_and_odd() -> None:
    assert remap_lambda(0.0) == 0.0
    assert -1 < remap_lambda(-50.0) < 0 < remap_lambda(50.0) < 1
    assert remap_lambda(3.0) == pytest.approx(-remap_lambda(-3.0))


def test_negative_lambda2_trips_guardrail() -> None:
    params = {"lambda1": 0.0, "lambda2": -1.0, "Sigma": math.log(0.00005)}

    assert price_impact_guardrail(params, 0.01) == GuardrailReason.NEGATIVE_LAMBDA2


def test_singular_price_impact_trips_guardrail() -> None:
    assert (
        price_impact_guardrail(DEFAULT_PRICE_IMPACT_PARAMETERS, 100.0)
        == GuardrailReason.PRICE_IMPACT_SINGULAR
    )
    assert price_impact_compute_pi(DEFAULT_PRICE_IMPACT_PARAMETERS, 100.0) == 0.0


def test_empty_statistics_return_previous_parameters() -> None:
    previous = dict(DEFAULT_PRICE_IMPACT_PARAMETERS)

    assert price_impact_update([], previous, logger) == previous


def test_all_filled_on_target_moves_only_sigma() -> None:
    previous = dict(DEFAULT_PRICE_IMPACT_PARAMETERS)
    stats = [_stat(i, 2, 0.5) for i in range(5)]

    updated = price_impact_update(stats, previous, logger)

    expected_sigma_step = SIGMA_LEARNING_RATE * 2 * (1.0 - 0.96) * math.log(0.00001)
    assert updated["Sigma"] - previous["Sigma"] == pytest.approx(expected_sigma_step)
    assert updated["lambda1"] == pytest.approx(previous["lambda1"])
    assert updated["lambda2"] == pytest.approx(previous["lambda2"])


def test_fast_fills_push_lambdas_apart(caplog) -> None:
    previous = dict(DEFAULT_PRICE_IMPACT_PARAMETERS)
    stats = [_stat(i, 0, pi) for i, pi in enumerate([0.3, 0.4, 0.5, 0.6, 0.7])]

    with caplog.at_level(logging.INFO, logger="intentbook.test"):
        updated = price_impact_update(stats, previous, logger)

    assert updated["lambda1"] < previous["lambda1"]
    assert updated["lambda2"] > previous["lambda2"]
    assert any(r.getMessage() == "unimind_parameters_computed" for r in caplog.records)


def test_unfilled_only_batch_updates_sigma_and_keeps_lambdas(caplog) -> None:
    previous = dict(DEFAULT_PRICE_IMPACT_PARAMETERS)
    stats = [_stat(i, None, 0.5) for i in range(4)]

    with caplog.at_level(logging.INFO, logger="intentbook.test"):
        updated = price_impact_update(stats, previous, logger)

    assert updated["lambda1"] == previous["lambda1"]
    assert updated["lambda2"] == previous["lambda2"]
    assert updated["Sigma"] > previous["Sigma"]
    assert any(r.getMessage() == "unimind_no_filled_samples" for r in caplog.records)


def test_singular_samples_are_skipped(caplog) -> None:
    previous = dict(DEFAULT_PRICE_IMPACT_PARAMETERS)

    updated = price_impact_update([_stat(1, 5, 100.0)], previous, logger)

    assert updated["lambda1"] == previous["lambda1"]
    assert any(r.getMessage() == "unimind_sample_singular_price_impact" for r in caplog.records)


def test_batched_strategy_update() -> None:
    stats = [_stat(1, 2, 0.1), _stat(2, 2, 0.1), _stat(3, None, 0.1)]

    updated = BATCHED_ALGORITHM.update(stats, DEFAULT_BATCHED_PARAMETERS, logger)

    assert updated["pi"] == pytest.approx(-5.0)
    assert updated["tau"] == pytest.approx(5.0 + 2 * (0.96 - 2 / 3) / 0.96)


def test_batched_strategy_serving_scales_with_price_impact() -> None:
    params = {"pi": 3.0, "tau": 4.0}

    assert BATCHED_ALGORITHM.compute_pi(params, 0.5) == 1.5
    assert BATCHED_ALGORITHM.compute_tau(params, 0.5) == 2.0
    assert BATCHED_ALGORITHM.guardrail(params, 0.5) is None


def test_build_algorithm_dispatches_by_tag() -> None:
    assert build_algorithm("price_impact") is PRICE_IMPACT_ALGORITHM
    assert build_algorithm(" BATCHED ") is BATCHED_ALGORITHM
    assert build_algorithm(UnimindAlgorithmKind.BATCHED) is BATCHED_ALGORITHM
    with pytest.raises(ValueError, match="unknown unimind algorithm"):
        build_algorithm("gradient")
