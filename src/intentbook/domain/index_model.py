from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace

from intentbook.domain.order import Order, OrderStatus, OrderType

KEY_DELIMITER = "_"

# Query-surface predicate name -> Order attribute.
PREDICATE_ATTRIBUTES: dict[str, str] = {
    "offerer": "offerer",
    "orderStatus": "order_status",
    "filler": "filler",
    "chainId": "chain_id",
    "pair": "pair",
}

# Never part of the equality predicate set.
NON_PREDICATE_FIELDS = frozenset({"sortKey", "sort", "desc", "limit", "cursor"})


@dataclass(frozen=True)
class IndexSpec:
    name: str
    fields: tuple[str, ...]

    @property
    def predicate_set(self) -> frozenset[str]:
        return frozenset(self.fields)

    @property
    def column(self) -> str:
        return f"ix_{self.name.lower()}"

    @property
    def includes_status(self) -> bool:
        return "orderStatus" in self.fields

    def build_key(self, values: Mapping[str, object]) -> str:
        return KEY_DELIMITER.join(_render(values.get(field)) for field in self.fields)


@dataclass(frozen=True)
class IndexTable:
    name: str
    store_name: str
    indexes: tuple[IndexSpec, ...]
    ignored_predicates: frozenset[str] = frozenset()

    def lookup(self, predicate_set: frozenset[str]) -> IndexSpec | None:
        for spec in self.indexes:
            if spec.predicate_set == predicate_set:
                return spec
        return None

    def by_name(self, index_name: str) -> IndexSpec | None:
        for spec in self.indexes:
            if spec.name == index_name:
                return spec
        return None

    def supported_sets(self) -> list[list[str]]:
        return [sorted(spec.fields) for spec in self.indexes]


def _render(value: object) -> str:
    if value is None:
        return ""
    # Escape so that joined keys stay unambiguous.
    return str(value).replace("\\", "\\\\").replace(KEY_DELIMITER, "\\" + KEY_DELIMITER)


def _spec(*fields: str) -> IndexSpec:
    return IndexSpec(name=KEY_DELIMITER.join(fields), fields=fields)


_SHARED_INDEXES = (
    _spec("offerer"),
    _spec("orderStatus"),
    _spec("filler"),
    _spec("chainId"),
    _spec("filler", "orderStatus"),
    _spec("filler", "offerer"),
    _spec("filler", "offerer", "orderStatus"),
    _spec("offerer", "orderStatus"),
    _spec("chainId", "filler"),
    _spec("chainId", "orderStatus"),
    _spec("chainId", "orderStatus", "filler"),
)

DUTCH_INDEX_TABLE = IndexTable(
    name="dutch",
    store_name="orders",
    indexes=_SHARED_INDEXES + (_spec("pair"),),
)
OFFCHAIN_INDEX_TABLE = IndexTable(
    name="offchain",
    store_name="offchain_orders",
    indexes=_SHARED_INDEXES,
    ignored_predicates=frozenset({"orderType"}),
)

INDEX_TABLES: tuple[IndexTable, ...] = (DUTCH_INDEX_TABLE, OFFCHAIN_INDEX_TABLE)


def table_for_type(order_type: OrderType) -> IndexTable:
    if order_type == OrderType.RELAY:
        return OFFCHAIN_INDEX_TABLE
    return DUTCH_INDEX_TABLE


def predicate_values(order: Order) -> dict[str, object]:
    return {name: getattr(order, attr) for name, attr in PREDICATE_ATTRIBUTES.items()}


def derive_index_fields(order: Order, table: IndexTable = DUTCH_INDEX_TABLE) -> dict[str, str]:
    """Composite key per enumerated index, a pure function of the order's base fields."""
    values = predicate_values(order)
    return {spec.name: spec.build_key(values) for spec in table.indexes}


def derive_status_update_fields(
    order: Order,
    new_status: OrderStatus,
    table: IndexTable = DUTCH_INDEX_TABLE,
) -> dict[str, str]:
    values = predicate_values(replace(order, order_status=new_status))
    fields = {"orderStatus": str(new_status)}
    for spec in table.indexes:
        if spec.includes_status:
            fields[spec.name] = spec.build_key(values)
    return fields
