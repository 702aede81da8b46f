from intentbook.persistence.sqlite.orders_repo import SqliteOrderEventsRepo, SqliteOrdersRepo
from intentbook.persistence.sqlite.unimind_repo import (
    SqliteQuoteMetadataRepo,
    SqliteUnimindParametersRepo,
)

__all__ = [
    "SqliteOrderEventsRepo",
    "SqliteOrdersRepo",
    "SqliteQuoteMetadataRepo",
    "SqliteUnimindParametersRepo",
]
