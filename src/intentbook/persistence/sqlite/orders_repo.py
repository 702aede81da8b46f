from __future__ import annotations

import json
import logging
import secrets
import sqlite3
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import replace
from datetime import UTC, datetime

from intentbook.domain.errors import NotFoundError, ValidationError
from intentbook.domain.index_model import (
    DUTCH_INDEX_TABLE,
    IndexSpec,
    IndexTable,
    derive_index_fields,
    derive_status_update_fields,
)
from intentbook.domain.order import (
    Order,
    OrderStatus,
    OrderType,
    SettledAmount,
    settled_amounts_from_json,
    settled_amounts_to_json,
)
from intentbook.persistence.interfaces.orders_repo import OrderEvent, OrderPage
from intentbook.persistence.sqlite.errors import translate_sqlite_errors
from intentbook.persistence.sqlite.sqlite_connection import ensure_orders_schema
from intentbook.services.index_router import (
    CursorKey,
    IndexRouter,
    RangeQuery,
    encode_cursor,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50

# permit2 unordered-nonce word prefix
_NONCE_PREFIX = bytes.fromhex("046832")


def generate_random_nonce() -> str:
    word = int.from_bytes(_NONCE_PREFIX + secrets.token_bytes(28), "big")
    return str(word << 8)


class SqliteOrdersRepo:
    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        table: IndexTable = DUTCH_INDEX_TABLE,
        page_size: int = DEFAULT_PAGE_SIZE,
        read_only: bool = False,
    ) -> None:
        self._conn = conn
        self._table = table
        self._store = table.store_name
        self._router = IndexRouter(table)
        self._page_size = page_size
        self._read_only = read_only
        ensure_orders_schema(conn)

    @property
    def router(self) -> IndexRouter:
        return self._router

    def _ensure_writable(self) -> None:
        if self._read_only:
            logger.warning(
                "read_only_write_blocked",
                extra={"extra": {"repo": "orders", "store": self._store}},
            )
            raise PermissionError("UnitOfWork is read-only; order writes are blocked")

    def _row_to_order(self, row: sqlite3.Row) -> Order:
        return Order(
            order_hash=str(row["order_hash"]),
            offerer=str(row["offerer"]),
            chain_id=int(row["chain_id"]),
            order_status=OrderStatus(str(row["order_status"])),
            nonce=str(row["nonce"]),
            encoded_order=str(row["encoded_order"]),
            signature=str(row["signature"]),
            created_at=int(row["created_at"]),
            deadline=int(row["deadline"]),
            type=OrderType(str(row["type"])),
            filler=row["filler"],
            pair=row["pair"],
            input_token=row["input_token"],
            output_token=row["output_token"],
            reactor=row["reactor"],
            quote_id=row["quote_id"],
            decay_start_block=(
                int(row["decay_start_block"]) if row["decay_start_block"] is not None else None
            ),
            price_impact=float(row["price_impact"]) if row["price_impact"] is not None else None,
            used_unimind=bool(row["used_unimind"]),
            tx_hash=row["tx_hash"],
            fill_block=int(row["fill_block"]) if row["fill_block"] is not None else None,
            settled_amounts=settled_amounts_from_json(row["settled_amounts_json"]),
        )

    def _row_values(self, order: Order) -> dict[str, object]:
        values: dict[str, object] = {
            "order_hash": order.order_hash,
            "offerer": order.offerer,
            "chain_id": order.chain_id,
            "order_status": str(order.order_status),
            "nonce": order.nonce,
            "encoded_order": order.encoded_order,
            "signature": order.signature,
            "created_at": order.created_at,
            "deadline": order.deadline,
            "type": str(order.type),
            "filler": order.filler,
            "pair": order.pair,
            "input_token": order.input_token,
            "output_token": order.output_token,
            "reactor": order.reactor,
            "quote_id": order.quote_id,
            "decay_start_block": order.decay_start_block,
            "price_impact": order.price_impact,
            "used_unimind": int(order.used_unimind),
            "tx_hash": order.tx_hash,
            "fill_block": order.fill_block,
            "settled_amounts_json": settled_amounts_to_json(order.settled_amounts),
        }
        derived = derive_index_fields(order, self._table)
        for spec in self._table.indexes:
            values[spec.column] = derived[spec.name]
        return values

    def _append_event(self, order_hash: str, event_type: str, image: Order | None) -> None:
        self._conn.execute(
            """
            INSERT INTO order_events(store, order_hash, event_type, image_json, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                self._store,
                order_hash,
                event_type,
                json.dumps(image.base_fields(), sort_keys=True) if image is not None else None,
                datetime.now(UTC).isoformat(),
            ),
        )

    def put_order_and_update_nonce(self, order: Order) -> None:
        self._ensure_writable()
        values = self._row_values(order)
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        with translate_sqlite_errors("put_order_and_update_nonce"):
            self._conn.execute(
                f"INSERT OR REPLACE INTO {self._store}({columns}) VALUES ({placeholders})",
                tuple(values.values()),
            )
            self._conn.execute(
                """
                INSERT INTO nonces(offerer, chain_id, nonce)
                VALUES (?, ?, ?)
                ON CONFLICT(offerer, chain_id) DO UPDATE SET nonce = excluded.nonce
                """,
                (order.offerer.lower(), order.chain_id, order.nonce),
            )
            self._append_event(order.order_hash, "put", order)

    def get_by_hash(self, order_hash: str) -> Order | None:
        with translate_sqlite_errors("get_by_hash"):
            row = self._conn.execute(
                f"SELECT * FROM {self._store} WHERE order_hash = ?",
                (order_hash,),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_order(row)

    def update_order_status(
        self,
        order_hash: str,
        new_status: OrderStatus,
        *,
        tx_hash: str | None = None,
        fill_block: int | None = None,
        settled_amounts: Sequence[SettledAmount] | None = None,
    ) -> Order:
        self._ensure_writable()
        current = self.get_by_hash(order_hash)
        if current is None:
            raise NotFoundError(
                f"Order {order_hash} not found",
                detail={"order_hash": order_hash, "store": self._store},
            )
        updated = replace(
            current,
            order_status=new_status,
            tx_hash=tx_hash if tx_hash is not None else current.tx_hash,
            fill_block=fill_block if fill_block is not None else current.fill_block,
            settled_amounts=(
                tuple(settled_amounts) if settled_amounts is not None else current.settled_amounts
            ),
        )
        status_fields = derive_status_update_fields(current, new_status, self._table)
        assignments = {
            "order_status": str(new_status),
            "tx_hash": updated.tx_hash,
            "fill_block": updated.fill_block,
            "settled_amounts_json": settled_amounts_to_json(updated.settled_amounts),
        }
        for spec in self._table.indexes:
            if spec.includes_status:
                assignments[spec.column] = status_fields[spec.name]
        set_clause = ", ".join(f"{column} = ?" for column in assignments)
        with translate_sqlite_errors("update_order_status"):
            self._conn.execute(
                f"UPDATE {self._store} SET {set_clause} WHERE order_hash = ?",
                (*assignments.values(), order_hash),
            )
            self._append_event(order_hash, "status_update", updated)
        return updated

    def _select_by_hashes(
        self, hashes: Sequence[str], types: Sequence[str]
    ) -> list[sqlite3.Row]:
        if not hashes:
            return []
        placeholders = ", ".join("?" for _ in hashes)
        sql = f"SELECT * FROM {self._store} WHERE order_hash IN ({placeholders})"
        params: list[object] = list(hashes)
        if types:
            sql += f" AND type IN ({', '.join('?' for _ in types)})"
            params.extend(types)
        rows = self._conn.execute(sql, params).fetchall()
        by_hash = {str(row["order_hash"]): row for row in rows}
        return [by_hash[h] for h in hashes if h in by_hash]

    def _run_lookup(self, query: RangeQuery, types: Sequence[str]) -> OrderPage:
        hashes = query.order_hashes
        if query.after is not None:
            hashes = hashes[hashes.index(query.after.order_hash) + 1 :]
        with translate_sqlite_errors("get_orders"):
            rows = self._select_by_hashes(hashes, types)
        page = rows[: query.limit]
        cursor = None
        if len(rows) > query.limit:
            last = page[-1]
            cursor = encode_cursor(
                CursorKey(
                    str(query.lookup_name), int(last["created_at"]), str(last["order_hash"])
                )
            )
        return OrderPage(orders=[self._row_to_order(row) for row in page], cursor=cursor)

    def _select_index_page(
        self,
        query: RangeQuery,
        index: IndexSpec,
        *,
        after: CursorKey | None,
        limit: int,
        types: Sequence[str],
    ) -> list[sqlite3.Row]:
        clauses = [f"{index.column} = ?"]
        params: list[object] = [query.partition_key]
        if query.created_at_filter is not None:
            clause, values = query.created_at_filter.sql_clause("created_at")
            clauses.append(clause)
            params.extend(values)
        if types:
            clauses.append(f"type IN ({', '.join('?' for _ in types)})")
            params.extend(types)
        if after is not None:
            op = "<" if query.descending else ">"
            clauses.append(f"(created_at {op} ? OR (created_at = ? AND order_hash {op} ?))")
            params.extend([after.created_at, after.created_at, after.order_hash])
        direction = "DESC" if query.descending else "ASC"
        sql = (
            f"SELECT * FROM {self._store} WHERE {' AND '.join(clauses)} "
            f"ORDER BY created_at {direction}, order_hash {direction} LIMIT ?"
        )
        params.append(limit)
        return self._conn.execute(sql, params).fetchall()

    def _run_query(self, query: RangeQuery, types: Sequence[str]) -> OrderPage:
        index = query.index
        if index is None:
            return self._run_lookup(query, types)

        collected: list[sqlite3.Row] = []
        after = query.after
        exhausted = False
        with translate_sqlite_errors("get_orders"):
            # Bounded index queries until the limit is met or the partition runs out.
            while len(collected) < query.limit:
                requested = min(self._page_size, query.limit - len(collected))
                rows = self._select_index_page(
                    query, index, after=after, limit=requested, types=types
                )
                collected.extend(rows)
                if len(rows) < requested:
                    exhausted = True
                    break
                last = rows[-1]
                after = CursorKey(index.name, int(last["created_at"]), str(last["order_hash"]))
            if not exhausted:
                exhausted = not self._select_index_page(
                    query, index, after=after, limit=1, types=types
                )

        cursor = None
        if not exhausted and collected:
            last = collected[-1]
            cursor = encode_cursor(
                CursorKey(index.name, int(last["created_at"]), str(last["order_hash"]))
            )
        return OrderPage(orders=[self._row_to_order(row) for row in collected], cursor=cursor)

    def get_orders(
        self,
        *,
        limit: int,
        filters: Mapping[str, object],
        cursor: str | None = None,
    ) -> OrderPage:
        query = self._router.build_query(limit=limit, filters=filters, cursor=cursor)
        return self._run_query(query, types=())

    def get_orders_filtered_by_type(
        self,
        *,
        limit: int,
        filters: Mapping[str, object],
        types: Iterable[OrderType],
        cursor: str | None = None,
    ) -> OrderPage:
        type_values = sorted({str(order_type) for order_type in types})
        if not type_values:
            raise ValidationError("at least one order type is required", detail={"types": []})
        query = self._router.build_query(limit=limit, filters=filters, cursor=cursor)
        return self._run_query(query, types=type_values)

    def delete_orders(self, order_hashes: Iterable[str]) -> int:
        self._ensure_writable()
        deleted = 0
        for order_hash in order_hashes:
            with translate_sqlite_errors("delete_orders"):
                cursor = self._conn.execute(
                    f"DELETE FROM {self._store} WHERE order_hash = ?",
                    (order_hash,),
                )
                if cursor.rowcount:
                    deleted += cursor.rowcount
                    self._append_event(order_hash, "delete", None)
        return deleted

    def count_by_offerer_and_status(self, offerer: str, status: OrderStatus) -> int:
        spec = self._router.resolve({"offerer": offerer, "orderStatus": str(status)})
        key = spec.build_key({"offerer": offerer, "orderStatus": str(status)})
        with translate_sqlite_errors("count_by_offerer_and_status"):
            row = self._conn.execute(
                f"SELECT COUNT(*) AS n FROM {self._store} WHERE {spec.column} = ?",
                (key,),
            ).fetchone()
        return int(row["n"])

    def get_nonce(self, offerer: str, chain_id: int) -> str:
        with translate_sqlite_errors("get_nonce"):
            row = self._conn.execute(
                "SELECT nonce FROM nonces WHERE offerer = ? AND chain_id = ?",
                (offerer.lower(), chain_id),
            ).fetchone()
        if row is None:
            return generate_random_nonce()
        return str(row["nonce"])

    def list_order_events(self, *, after_id: int = 0, limit: int = 100) -> list[OrderEvent]:
        return SqliteOrderEventsRepo(self._conn).list_events(
            after_id=after_id, limit=limit, store=self._store
        )


class SqliteOrderEventsRepo:
    """Reads the append-only change feed shared by every order store."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        ensure_orders_schema(conn)

    def list_events(
        self,
        *,
        after_id: int = 0,
        limit: int = 100,
        store: str | None = None,
    ) -> list[OrderEvent]:
        if limit <= 0:
            raise ValidationError("limit must be > 0", detail={"limit": limit})
        sql = (
            "SELECT event_id, store, order_hash, event_type, image_json, created_at "
            "FROM order_events WHERE event_id > ?"
        )
        params: list[object] = [after_id]
        if store is not None:
            sql += " AND store = ?"
            params.append(store)
        sql += " ORDER BY event_id LIMIT ?"
        params.append(limit)
        with translate_sqlite_errors("list_order_events"):
            rows = self._conn.execute(sql, params).fetchall()
        return [
            OrderEvent(
                event_id=int(row["event_id"]),
                order_hash=str(row["order_hash"]),
                event_type=str(row["event_type"]),
                image=json.loads(row["image_json"]) if row["image_json"] else None,
                created_at=str(row["created_at"]),
                store=str(row["store"]),
            )
            for row in rows
        ]
