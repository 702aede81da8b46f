from __future__ import annotations

import base64
import binascii
import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum

from intentbook.domain.errors import ValidationError
from intentbook.domain.index_model import (
    NON_PREDICATE_FIELDS,
    IndexSpec,
    IndexTable,
)

SORT_KEY_CREATED_AT = "createdAt"
ORDER_HASH_LOOKUP = "orderHash"
ORDER_HASHES_LOOKUP = "orderHashes"

_COMPARISON_PATTERN = re.compile(r"^(\w+)\(([0-9]+)(?:,([0-9]+))?\)$")


class ComparisonOperator(StrEnum):
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    BETWEEN = "between"


@dataclass(frozen=True)
class ComparisonFilter:
    operator: ComparisonOperator
    values: tuple[int, ...]

    def sql_clause(self, column: str) -> tuple[str, list[int]]:
        if self.operator == ComparisonOperator.BETWEEN:
            return f"{column} BETWEEN ? AND ?", [self.values[0], self.values[1]]
        symbol = {
            ComparisonOperator.GT: ">",
            ComparisonOperator.GTE: ">=",
            ComparisonOperator.LT: "<",
            ComparisonOperator.LTE: "<=",
        }[self.operator]
        return f"{column} {symbol} ?", [self.values[0]]


@dataclass(frozen=True)
class IndexSelection:
    index_name: str
    partition_key: str


@dataclass(frozen=True)
class CursorKey:
    index_name: str
    created_at: int
    order_hash: str


@dataclass(frozen=True)
class RangeQuery:
    """A bounded query against exactly one index, or a primary-key lookup."""

    limit: int
    index: IndexSpec | None = None
    partition_key: str | None = None
    lookup_name: str | None = None
    order_hashes: tuple[str, ...] = ()
    created_at_filter: ComparisonFilter | None = None
    descending: bool = True
    after: CursorKey | None = None

    @property
    def is_primary_lookup(self) -> bool:
        return self.index is None


def parse_comparison_filter(raw: str) -> ComparisonFilter:
    match = _COMPARISON_PATTERN.match(raw.strip().replace(" ", ""))
    if match is None:
        raise ValidationError(f"Unable to parse sort filter: {raw!r}", detail={"sort": raw})
    operator_raw, first, second = match.groups()
    try:
        operator = ComparisonOperator(operator_raw)
    except ValueError as exc:
        raise ValidationError(
            f"Unsupported sort operator: {operator_raw!r}",
            detail={"supported": [op.value for op in ComparisonOperator]},
        ) from exc
    if operator == ComparisonOperator.BETWEEN:
        if second is None:
            raise ValidationError("between() requires two values", detail={"sort": raw})
        return ComparisonFilter(operator, (int(first), int(second)))
    if second is not None:
        raise ValidationError(f"{operator.value}() takes one value", detail={"sort": raw})
    return ComparisonFilter(operator, (int(first),))


def encode_cursor(key: CursorKey) -> str:
    payload = {
        "index": key.index_name,
        "createdAt": key.created_at,
        "orderHash": key.order_hash,
    }
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_cursor(cursor: str, *, expected_index: str) -> CursorKey:
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii"))
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise ValidationError("Invalid cursor.", detail={"reason": "malformed"}) from exc
    if not isinstance(payload, dict) or set(payload) != {"index", "createdAt", "orderHash"}:
        raise ValidationError("Invalid cursor.", detail={"reason": "unexpected_keys"})
    if payload["index"] != expected_index:
        raise ValidationError(
            "Invalid cursor.",
            detail={
                "reason": "index_mismatch",
                "cursor_index": payload["index"],
                "expected_index": expected_index,
            },
        )
    created_at = payload["createdAt"]
    order_hash = payload["orderHash"]
    if not isinstance(created_at, int) or isinstance(created_at, bool) or not isinstance(order_hash, str):
        raise ValidationError("Invalid cursor.", detail={"reason": "bad_key_types"})
    return CursorKey(index_name=expected_index, created_at=created_at, order_hash=order_hash)


class IndexRouter:
    """Resolves an equality predicate set to exactly one enumerated index.

    Matching is by set equality against the table; anything else is rejected.
    """

    def __init__(self, table: IndexTable) -> None:
        self.table = table

    def predicate_set(self, filters: Mapping[str, object]) -> frozenset[str]:
        excluded = NON_PREDICATE_FIELDS | self.table.ignored_predicates
        return frozenset(
            name for name, value in filters.items() if name not in excluded and value is not None
        )

    def supported_sets(self) -> list[list[str]]:
        return [[ORDER_HASH_LOOKUP], [ORDER_HASHES_LOOKUP], *self.table.supported_sets()]

    def resolve(self, filters: Mapping[str, object]) -> IndexSpec:
        predicates = self.predicate_set(filters)
        spec = self.table.lookup(predicates)
        if spec is None:
            raise ValidationError(
                f"Unsupported filter combination: {sorted(predicates)}",
                detail={"requested": sorted(predicates), "supported": self.supported_sets()},
            )
        return spec

    def select_index(self, filters: Mapping[str, object]) -> IndexSelection:
        spec = self.resolve(filters)
        return IndexSelection(index_name=spec.name, partition_key=spec.build_key(filters))

    def build_query(
        self,
        *,
        limit: int,
        filters: Mapping[str, object],
        cursor: str | None = None,
    ) -> RangeQuery:
        if limit <= 0:
            raise ValidationError("limit must be > 0", detail={"limit": limit})
        predicates = self.predicate_set(filters)
        if predicates == {ORDER_HASH_LOOKUP}:
            hashes: tuple[str, ...] = (str(filters[ORDER_HASH_LOOKUP]),)
            return self._lookup_query(ORDER_HASH_LOOKUP, hashes, limit=limit, cursor=cursor)
        if predicates == {ORDER_HASHES_LOOKUP}:
            hashes = _as_hashes(filters[ORDER_HASHES_LOOKUP])
            return self._lookup_query(ORDER_HASHES_LOOKUP, hashes, limit=limit, cursor=cursor)

        spec = self.resolve(filters)
        return RangeQuery(
            limit=limit,
            index=spec,
            partition_key=spec.build_key(filters),
            created_at_filter=_sort_filter(filters),
            descending=_descending(filters.get("desc")),
            after=decode_cursor(cursor, expected_index=spec.name) if cursor else None,
        )

    @staticmethod
    def _lookup_query(
        lookup_name: str,
        hashes: tuple[str, ...],
        *,
        limit: int,
        cursor: str | None,
    ) -> RangeQuery:
        """Primary-key lookup; its cursor is a position in the requested hash list."""
        after = decode_cursor(cursor, expected_index=lookup_name) if cursor else None
        if after is not None and after.order_hash not in hashes:
            raise ValidationError(
                "Invalid cursor.",
                detail={"reason": "position_not_in_lookup", "order_hash": after.order_hash},
            )
        return RangeQuery(limit=limit, lookup_name=lookup_name, order_hashes=hashes, after=after)


def _as_hashes(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        items: Sequence[object] = [part for part in value.split(",") if part.strip()]
    elif isinstance(value, Sequence):
        items = value
    else:
        raise ValidationError("orderHashes must be a list", detail={"orderHashes": repr(value)})
    return tuple(dict.fromkeys(str(item).strip() for item in items))


def _sort_filter(filters: Mapping[str, object]) -> ComparisonFilter | None:
    sort_key = filters.get("sortKey")
    sort = filters.get("sort")
    if sort_key is None:
        if sort is not None:
            raise ValidationError("sort requires sortKey", detail={"sort": sort})
        return None
    if sort_key != SORT_KEY_CREATED_AT:
        raise ValidationError(
            f"Unsupported sortKey: {sort_key!r}",
            detail={"supported": [SORT_KEY_CREATED_AT]},
        )
    if sort is None:
        return None
    return parse_comparison_filter(str(sort))


def _descending(raw: object) -> bool:
    if raw is None:
        return True
    if isinstance(raw, bool):
        return raw
    normalized = str(raw).strip().lower()
    if normalized in {"true", "1", "yes"}:
        return True
    if normalized in {"false", "0", "no"}:
        return False
    raise ValidationError(f"desc must be a boolean, got {raw!r}", detail={"desc": raw})
