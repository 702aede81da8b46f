from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from intentbook.context import OperationContext
from intentbook.domain.errors import ValidationError
from intentbook.domain.unimind_models import (
    QuoteMetadata,
    ServedParameters,
    TradeType,
    UnimindParameters,
)
from intentbook.persistence.uow import UnitOfWorkFactory
from intentbook.services.unimind_controller import validate_parameters
from intentbook.services.unimind_strategies import GuardrailReason, UnimindAlgorithm

PAIR_DELIMITER = "-"


def pair_tokens(pair: str) -> tuple[str, str]:
    """Pairs are ``<tokenIn>-<tokenOut>-<chainId>``; only the token legs matter here."""
    parts = [part.strip().lower() for part in pair.split(PAIR_DELIMITER)]
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise ValidationError(f"invalid pair: {pair!r}", detail={"pair": pair})
    return parts[0], parts[1]


def sample_bucket(request_id: str) -> int:
    digest = hashlib.sha256(request_id.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") % 100


@dataclass(frozen=True)
class UnimindParametersRequest:
    quote_id: str
    pair: str
    reference_price: str
    price_impact: float
    trade_type: TradeType = TradeType.EXACT_INPUT
    route: dict[str, object] = field(default_factory=dict)
    log_only: bool = False

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> UnimindParametersRequest:
        try:
            route = payload.get("route") or {}
            if isinstance(route, str):
                route = json.loads(route)
            if not isinstance(route, dict):
                raise ValueError("route must be a JSON object")
            return cls(
                quote_id=str(payload["quoteId"]),
                pair=str(payload["pair"]),
                reference_price=str(payload["referencePrice"]),
                price_impact=float(payload["priceImpact"]),  # type: ignore[arg-type]
                trade_type=TradeType(str(payload.get("tradeType") or TradeType.EXACT_INPUT)),
                route=route,
                log_only=bool(payload.get("logOnly", False)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(
                f"invalid unimind parameters input: {exc}",
                detail={"keys": sorted(payload)},
            ) from exc


class UnimindParameterService:
    """Serving-time pi/tau for one quote."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        algorithm: UnimindAlgorithm,
        *,
        algorithm_version: int,
        supported_tokens: Iterable[str],
        sample_percent: int,
        large_price_impact_threshold: float,
        max_tau_bps: float,
    ) -> None:
        self._uow_factory = uow_factory
        self._algorithm = algorithm
        self._version = algorithm_version
        self._supported_tokens = frozenset(token.lower() for token in supported_tokens)
        self._sample_percent = sample_percent
        self._large_price_impact_threshold = large_price_impact_threshold
        self._max_tau_bps = max_tau_bps

    def is_sampled(self, ctx: OperationContext, pair: str) -> bool:
        token_in, token_out = pair_tokens(pair)
        if token_in in self._supported_tokens and token_out in self._supported_tokens:
            return True
        return sample_bucket(ctx.request_id) < self._sample_percent

    def get_parameters(
        self,
        ctx: OperationContext,
        request: UnimindParametersRequest,
    ) -> ServedParameters:
        ctx = ctx.bind(pair=request.pair, quote_id=request.quote_id)
        if request.log_only:
            with self._uow_factory() as uow:
                uow.quotes.put(self._quote(request, used_unimind=False))
            return ServedParameters(pi=0.0, tau=0.0, used_unimind=False)

        if not self.is_sampled(ctx, request.pair):
            # Static defaults; the quote stays out of the feedback loop.
            params = self._algorithm.default_parameters
            with self._uow_factory() as uow:
                uow.quotes.put(self._quote(request, used_unimind=False))
            ctx.logger.info("unimind_cold_pair_not_sampled")
            return self._serve(ctx, request, params, used_unimind=False)

        with self._uow_factory() as uow:
            uow.quotes.put(self._quote(request, used_unimind=True))
            stored = uow.unimind.get_by_pair(request.pair)
            if stored is None or not validate_parameters(stored, self._algorithm, self._version):
                stored = UnimindParameters(
                    pair=request.pair,
                    intrinsic_values=dict(self._algorithm.default_parameters),
                    count=0,
                    version=self._version,
                )
                uow.unimind.put(stored)
                ctx.logger.info("unimind_pair_seeded", extra={"extra": {"update_type": "serving"}})
        return self._serve(ctx, request, stored.intrinsic_values, used_unimind=True)

    def _serve(
        self,
        ctx: OperationContext,
        request: UnimindParametersRequest,
        params: Mapping[str, float],
        *,
        used_unimind: bool,
    ) -> ServedParameters:
        reason = self._guardrail(request, params)
        if reason is not None:
            ctx.logger.warning(
                "unimind_guardrail_tripped",
                extra={"extra": {"reason": str(reason), "price_impact": request.price_impact}},
            )
            return ServedParameters(pi=0.0, tau=0.0, used_unimind=used_unimind, guardrail_reason=reason)

        pi = self._algorithm.compute_pi(params, request.price_impact)
        tau = self._algorithm.compute_tau(params, request.price_impact)
        if tau > self._max_tau_bps:
            ctx.logger.warning(
                "unimind_guardrail_tripped",
                extra={
                    "extra": {
                        "reason": str(GuardrailReason.TAU_CAPPED),
                        "tau": tau,
                        "max_tau_bps": self._max_tau_bps,
                    }
                },
            )
            return ServedParameters(
                pi=pi,
                tau=self._max_tau_bps,
                used_unimind=used_unimind,
                guardrail_reason=GuardrailReason.TAU_CAPPED,
            )
        return ServedParameters(pi=pi, tau=tau, used_unimind=used_unimind)

    def _guardrail(
        self,
        request: UnimindParametersRequest,
        params: Mapping[str, float],
    ) -> GuardrailReason | None:
        if request.trade_type == TradeType.EXACT_OUTPUT:
            return GuardrailReason.EXACT_OUTPUT
        if request.price_impact > self._large_price_impact_threshold:
            return GuardrailReason.PRICE_IMPACT_TOO_LARGE
        return self._algorithm.guardrail(params, request.price_impact)

    @staticmethod
    def _quote(request: UnimindParametersRequest, *, used_unimind: bool) -> QuoteMetadata:
        return QuoteMetadata(
            quote_id=request.quote_id,
            pair=request.pair,
            reference_price=request.reference_price,
            price_impact=request.price_impact,
            route=dict(request.route),
            used_unimind=used_unimind,
        )
