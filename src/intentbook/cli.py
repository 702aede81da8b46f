from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Mapping
from dataclasses import replace

import pydantic

from intentbook.config import Settings
from intentbook.context import OperationContext
from intentbook.domain.errors import OrderBookError, ValidationError
from intentbook.domain.index_model import INDEX_TABLES
from intentbook.domain.order import OrderType
from intentbook.logging_utils import setup_logging
from intentbook.persistence.uow import UnitOfWorkFactory
from intentbook.services.lifecycle_tracker import CheckOrderStatusRequest, CheckOrderStatusService
from intentbook.services.onchain_client import HttpOrderStatusClient
from intentbook.services.unimind_controller import UnimindController
from intentbook.services.unimind_service import UnimindParameterService, UnimindParametersRequest
from intentbook.services.unimind_strategies import build_algorithm

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="intentbook",
        epilog="JSON payloads are read from --payload or, when omitted, from stdin.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser(
        "check-order-status", help="Run one lifecycle step for a single order"
    )
    status_parser.add_argument("--payload", default=None, help="JSON scheduler payload")

    subparsers.add_parser("unimind-update", help="Run one Unimind controller batch")

    params_parser = subparsers.add_parser(
        "unimind-params", help="Serve pi/tau for one quote"
    )
    params_parser.add_argument("--payload", default=None, help="JSON quote payload")
    params_parser.add_argument("--request-id", default=None)

    orders_parser = subparsers.add_parser("get-orders", help="Query orders by an indexed filter")
    orders_parser.add_argument("--payload", default=None, help="JSON filters")
    orders_parser.add_argument("--limit", type=int, default=None)
    orders_parser.add_argument("--cursor", default=None)
    orders_parser.add_argument(
        "--order-type",
        default=None,
        choices=[order_type.value for order_type in OrderType],
        help="Restrict to one order type",
    )

    events_parser = subparsers.add_parser("order-events", help="Read the order change feed")
    events_parser.add_argument("--after-id", type=int, default=0)
    events_parser.add_argument("--limit", type=int, default=100)
    events_parser.add_argument(
        "--store",
        default=None,
        choices=[table.store_name for table in INDEX_TABLES],
        help="Restrict to one order store; all stores when omitted",
    )

    args = parser.parse_args(argv)

    try:
        settings = Settings()
    except pydantic.ValidationError as exc:
        print(json.dumps({"errorCode": "CONFIGURATION_ERROR", "message": str(exc)}), file=sys.stderr)
        return 2
    setup_logging(settings.log_level)

    uow_factory = UnitOfWorkFactory(
        db_path=settings.state_db_path, page_size=settings.max_query_page_size
    )
    reader_factory = replace(uow_factory, read_only=True)
    try:
        if args.command == "check-order-status":
            return run_check_order_status(settings, uow_factory, _read_payload(args.payload))
        if args.command == "unimind-update":
            return run_unimind_update(settings, uow_factory)
        if args.command == "unimind-params":
            return run_unimind_params(
                settings, uow_factory, _read_payload(args.payload), request_id=args.request_id
            )
        if args.command == "get-orders":
            return run_get_orders(
                reader_factory,
                _read_payload(args.payload),
                limit=args.limit or settings.max_query_page_size,
                cursor=args.cursor,
                order_type=args.order_type,
            )
        if args.command == "order-events":
            return run_order_events(
                reader_factory, after_id=args.after_id, limit=args.limit, store=args.store
            )
    except OrderBookError as exc:
        logger.error(
            "command_failed",
            extra={"extra": {"command": args.command, "error_code": exc.code, "detail": exc.detail}},
        )
        print(json.dumps(exc.to_dict(), sort_keys=True, default=str))
        return 2 if isinstance(exc, ValidationError) else 1
    return 1


def _read_payload(raw: str | None) -> dict[str, object]:
    text = raw if raw is not None else sys.stdin.read()
    if not text.strip():
        return {}
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"payload is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValidationError("payload must be a JSON object")
    return payload


def _emit(payload: Mapping[str, object]) -> None:
    print(json.dumps(payload, sort_keys=True, default=str))


def run_check_order_status(
    settings: Settings,
    uow_factory: UnitOfWorkFactory,
    payload: Mapping[str, object],
) -> int:
    request = CheckOrderStatusRequest.from_mapping(payload)
    ctx = OperationContext.create("check_order_status")
    with HttpOrderStatusClient(
        settings.order_validator_url, timeout=settings.order_validator_timeout_seconds
    ) as client:
        service = CheckOrderStatusService(
            uow_factory,
            client,
            client,
            track_insufficient_funds=settings.track_insufficient_funds,
            conflict_max_attempts=settings.status_conflict_max_attempts,
        )
        result = service.handle(ctx, request)
    _emit(result.to_dict())
    return 0


def run_unimind_update(settings: Settings, uow_factory: UnitOfWorkFactory) -> int:
    ctx = OperationContext.create("unimind_update", chain_id=settings.unimind_chain_id)
    controller = UnimindController(
        uow_factory,
        build_algorithm(settings.unimind_algorithm),
        algorithm_version=settings.unimind_algorithm_version,
        update_threshold=settings.unimind_update_threshold,
        chain_id=settings.unimind_chain_id,
        lookback_minutes=settings.unimind_lookback_minutes,
        lookback_limit=settings.unimind_lookback_limit,
    )
    report = controller.run(ctx)
    _emit(
        {
            "ordersScanned": report.orders_scanned,
            "unimindOrders": report.unimind_orders,
            "updates": [
                {
                    "pair": update.pair,
                    "updateType": str(update.update_type),
                    "orderCount": update.order_count,
                    "totalCount": update.total_count,
                    "batchNumber": update.batch_number,
                    "intrinsicValues": update.intrinsic_values,
                }
                for update in report.updates
            ],
            "failedPairs": report.failed_pairs,
        }
    )
    return 1 if report.failed_pairs else 0


def run_unimind_params(
    settings: Settings,
    uow_factory: UnitOfWorkFactory,
    payload: Mapping[str, object],
    *,
    request_id: str | None = None,
) -> int:
    request = UnimindParametersRequest.from_mapping(payload)
    ctx = OperationContext.create("unimind_params", request_id=request_id)
    service = UnimindParameterService(
        uow_factory,
        build_algorithm(settings.unimind_algorithm),
        algorithm_version=settings.unimind_algorithm_version,
        supported_tokens=settings.unimind_supported_tokens,
        sample_percent=settings.unimind_sample_percent,
        large_price_impact_threshold=settings.unimind_large_price_impact_threshold,
        max_tau_bps=settings.unimind_max_tau_bps,
    )
    served = service.get_parameters(ctx, request)
    _emit({"pi": served.pi, "tau": served.tau})
    return 0


def run_get_orders(
    uow_factory: UnitOfWorkFactory,
    filters: Mapping[str, object],
    *,
    limit: int,
    cursor: str | None,
    order_type: str | None,
) -> int:
    with uow_factory() as uow:
        if order_type is None:
            page = uow.orders.get_orders(limit=limit, filters=filters, cursor=cursor)
        else:
            resolved = OrderType(order_type)
            page = uow.orders_for(resolved).get_orders_filtered_by_type(
                limit=limit, filters=filters, types=[resolved], cursor=cursor
            )
    payload: dict[str, object] = {"orders": [order.base_fields() for order in page.orders]}
    if page.cursor:
        payload["cursor"] = page.cursor
    _emit(payload)
    return 0


def run_order_events(
    uow_factory: UnitOfWorkFactory,
    *,
    after_id: int,
    limit: int,
    store: str | None = None,
) -> int:
    with uow_factory() as uow:
        events = uow.events.list_events(after_id=after_id, limit=limit, store=store)
    _emit(
        {
            "events": [
                {
                    "eventId": event.event_id,
                    "store": event.store,
                    "orderHash": event.order_hash,
                    "eventType": event.event_type,
                    "image": event.image,
                    "createdAt": event.created_at,
                }
                for event in events
            ]
        }
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
