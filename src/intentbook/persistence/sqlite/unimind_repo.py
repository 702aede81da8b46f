from __future__ import annotations

import json
import logging
import sqlite3

from intentbook.domain.unimind_models import QuoteMetadata, UnimindParameters
from intentbook.persistence.sqlite.errors import translate_sqlite_errors
from intentbook.persistence.sqlite.sqlite_connection import ensure_unimind_schema

logger = logging.getLogger(__name__)


class SqliteUnimindParametersRepo:
    def __init__(self, conn: sqlite3.Connection, *, read_only: bool = False) -> None:
        self._conn = conn
        self._read_only = read_only
        ensure_unimind_schema(conn)

    def _ensure_writable(self) -> None:
        if self._read_only:
            logger.warning("read_only_write_blocked", extra={"extra": {"repo": "unimind"}})
            raise PermissionError("UnitOfWork is read-only; unimind writes are blocked")

    def get_by_pair(self, pair: str) -> UnimindParameters | None:
        with translate_sqlite_errors("unimind_get_by_pair"):
            row = self._conn.execute(
                "SELECT * FROM unimind_parameters WHERE pair = ?",
                (pair,),
            ).fetchone()
        if row is None:
            return None
        return UnimindParameters(
            pair=str(row["pair"]),
            intrinsic_values={
                str(key): float(value)
                for key, value in json.loads(row["intrinsic_values_json"]).items()
            },
            count=int(row["count"]),
            version=int(row["version"]),
            batch_number=int(row["batch_number"]),
            last_updated_at=(
                int(row["last_updated_at"]) if row["last_updated_at"] is not None else None
            ),
        )

    def put(self, parameters: UnimindParameters) -> None:
        self._ensure_writable()
        with translate_sqlite_errors("unimind_put"):
            self._conn.execute(
                """
                INSERT INTO unimind_parameters(
                    pair, intrinsic_values_json, count, version, batch_number, last_updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(pair) DO UPDATE SET
                    intrinsic_values_json = excluded.intrinsic_values_json,
                    count = excluded.count,
                    version = excluded.version,
                    batch_number = excluded.batch_number,
                    last_updated_at = excluded.last_updated_at
                """,
                (
                    parameters.pair,
                    json.dumps(parameters.intrinsic_values, sort_keys=True),
                    parameters.count,
                    parameters.version,
                    parameters.batch_number,
                    parameters.last_updated_at,
                ),
            )


class SqliteQuoteMetadataRepo:
    def __init__(self, conn: sqlite3.Connection, *, read_only: bool = False) -> None:
        self._conn = conn
        self._read_only = read_only
        ensure_unimind_schema(conn)

    def _ensure_writable(self) -> None:
        if self._read_only:
            logger.warning("read_only_write_blocked", extra={"extra": {"repo": "quote_metadata"}})
            raise PermissionError("UnitOfWork is read-only; quote metadata writes are blocked")

    def get_by_quote_id(self, quote_id: str) -> QuoteMetadata | None:
        with translate_sqlite_errors("quote_metadata_get"):
            row = self._conn.execute(
                "SELECT * FROM quote_metadata WHERE quote_id = ?",
                (quote_id,),
            ).fetchone()
        if row is None:
            return None
        return QuoteMetadata(
            quote_id=str(row["quote_id"]),
            pair=str(row["pair"]),
            reference_price=str(row["reference_price"]),
            price_impact=float(row["price_impact"]),
            route=json.loads(row["route_json"]) if row["route_json"] else {},
            used_unimind=bool(row["used_unimind"]),
        )

    def put(self, metadata: QuoteMetadata) -> None:
        """Write-once per quote; a repeated quote id keeps the first record."""
        self._ensure_writable()
        with translate_sqlite_errors("quote_metadata_put"):
            self._conn.execute(
                """
                INSERT OR IGNORE INTO quote_metadata(
                    quote_id, pair, reference_price, price_impact, route_json, used_unimind
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    metadata.quote_id,
                    metadata.pair,
                    metadata.reference_price,
                    metadata.price_impact,
                    json.dumps(metadata.route, sort_keys=True) if metadata.route else None,
                    int(metadata.used_unimind),
                ),
            )
