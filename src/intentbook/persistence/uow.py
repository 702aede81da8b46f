from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from intentbook.domain.index_model import DUTCH_INDEX_TABLE, OFFCHAIN_INDEX_TABLE, table_for_type
from intentbook.domain.order import OrderType
from intentbook.persistence.sqlite.errors import classify_sqlite_error
from intentbook.persistence.sqlite.orders_repo import (
    DEFAULT_PAGE_SIZE,
    SqliteOrderEventsRepo,
    SqliteOrdersRepo,
)
from intentbook.persistence.sqlite.sqlite_connection import create_sqlite_connection, ensure_min_schema
from intentbook.persistence.sqlite.unimind_repo import (
    SqliteQuoteMetadataRepo,
    SqliteUnimindParametersRepo,
)

logger = logging.getLogger(__name__)


class UnitOfWork:
    """One atomic transaction over every store; commits on success, rolls back on error."""

    def __init__(
        self,
        db_path: str,
        *,
        read_only: bool = False,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self._db_path = db_path
        self.read_only = read_only
        self._page_size = page_size
        self._conn: sqlite3.Connection | None = None
        self.orders: SqliteOrdersRepo
        self.offchain_orders: SqliteOrdersRepo
        self.unimind: SqliteUnimindParametersRepo
        self.quotes: SqliteQuoteMetadataRepo
        self.events: SqliteOrderEventsRepo

    def __enter__(self) -> UnitOfWork:
        try:
            conn = create_sqlite_connection(self._db_path)
        except sqlite3.Error as exc:
            raise classify_sqlite_error(exc, operation="connect") from exc
        try:
            ensure_min_schema(conn)
            if self.read_only:
                conn.execute("BEGIN")
            else:
                conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as exc:
            conn.close()
            raise classify_sqlite_error(exc, operation="begin_transaction") from exc
        self._conn = conn
        self.orders = SqliteOrdersRepo(
            conn, table=DUTCH_INDEX_TABLE, page_size=self._page_size, read_only=self.read_only
        )
        self.offchain_orders = SqliteOrdersRepo(
            conn, table=OFFCHAIN_INDEX_TABLE, page_size=self._page_size, read_only=self.read_only
        )
        self.unimind = SqliteUnimindParametersRepo(conn, read_only=self.read_only)
        self.quotes = SqliteQuoteMetadataRepo(conn, read_only=self.read_only)
        self.events = SqliteOrderEventsRepo(conn)
        return self

    def orders_for(self, order_type: OrderType) -> SqliteOrdersRepo:
        if table_for_type(order_type) is OFFCHAIN_INDEX_TABLE:
            return self.offchain_orders
        return self.orders

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._conn is None:
            return
        try:
            if exc_type is None:
                try:
                    self._conn.commit()
                except sqlite3.Error as commit_exc:
                    self._conn.rollback()
                    raise classify_sqlite_error(commit_exc, operation="commit") from commit_exc
            else:
                self._conn.rollback()
                logger.debug(
                    "uow_rolled_back",
                    extra={"extra": {"error_type": exc_type.__name__}},
                )
        finally:
            self._conn.close()
            self._conn = None


@dataclass(frozen=True)
class UnitOfWorkFactory:
    db_path: str
    read_only: bool = False
    page_size: int = DEFAULT_PAGE_SIZE

    def __call__(self) -> UnitOfWork:
        return UnitOfWork(self.db_path, read_only=self.read_only, page_size=self.page_size)
