from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager

from intentbook.domain.errors import ConflictError, InternalError, OrderBookError

_CONTENTION_MARKERS = ("database is locked", "database table is locked", "busy")


def classify_sqlite_error(exc: sqlite3.Error, *, operation: str) -> OrderBookError:
    detail = {"operation": operation, "sqlite_error": type(exc).__name__}
    if isinstance(exc, sqlite3.IntegrityError):
        return ConflictError(f"{operation} rejected by store constraint: {exc}", detail=detail)
    if isinstance(exc, sqlite3.OperationalError):
        message = str(exc).lower()
        if any(marker in message for marker in _CONTENTION_MARKERS):
            return ConflictError(f"{operation} hit write contention: {exc}", detail=detail)
    return InternalError(f"{operation} failed: {exc}", detail=detail)


@contextmanager
def translate_sqlite_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise classify_sqlite_error(exc, operation=operation) from exc
