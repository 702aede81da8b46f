from __future__ import annotations

import sqlite3

from intentbook.domain.index_model import INDEX_TABLES, IndexTable


def create_sqlite_connection(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def ensure_order_store_schema(conn: sqlite3.Connection, table: IndexTable) -> None:
    store = table.store_name
    conn.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {store} (
            order_hash TEXT PRIMARY KEY,
            offerer TEXT NOT NULL,
            chain_id INTEGER NOT NULL,
            order_status TEXT NOT NULL,
            nonce TEXT NOT NULL,
            encoded_order TEXT NOT NULL,
            signature TEXT NOT NULL,
            created_at INTEGER NOT NULL,
            deadline INTEGER NOT NULL,
            type TEXT NOT NULL,
            filler TEXT,
            pair TEXT,
            input_token TEXT,
            output_token TEXT,
            reactor TEXT,
            quote_id TEXT,
            decay_start_block INTEGER,
            price_impact REAL,
            used_unimind INTEGER NOT NULL DEFAULT 0,
            tx_hash TEXT,
            fill_block INTEGER,
            settled_amounts_json TEXT
        )
        """
    )
    columns = {str(row["name"]) for row in conn.execute(f"PRAGMA table_info({store})")}
    for spec in table.indexes:
        if spec.column not in columns:
            conn.execute(f"ALTER TABLE {store} ADD COLUMN {spec.column} TEXT")
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{store}_{spec.column}_created_at "
            f"ON {store}({spec.column}, created_at, order_hash)"
        )


def ensure_orders_schema(conn: sqlite3.Connection) -> None:
    for table in INDEX_TABLES:
        ensure_order_store_schema(conn, table)
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS nonces (
            offerer TEXT NOT NULL,
            chain_id INTEGER NOT NULL,
            nonce TEXT NOT NULL,
            PRIMARY KEY (offerer, chain_id)
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS order_events (
            event_id INTEGER PRIMARY KEY AUTOINCREMENT,
            store TEXT NOT NULL,
            order_hash TEXT NOT NULL,
            event_type TEXT NOT NULL,
            image_json TEXT,
            created_at TEXT NOT NULL
        )
        """
    )


def ensure_unimind_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS unimind_parameters (
            pair TEXT PRIMARY KEY,
            intrinsic_values_json TEXT NOT NULL,
            count INTEGER NOT NULL,
            version INTEGER NOT NULL,
            batch_number INTEGER NOT NULL DEFAULT 0,
            last_updated_at INTEGER
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS quote_metadata (
            quote_id TEXT PRIMARY KEY,
            pair TEXT NOT NULL,
            reference_price TEXT NOT NULL,
            price_impact REAL NOT NULL,
            route_json TEXT,
            used_unimind INTEGER NOT NULL DEFAULT 0
        )
        """
    )


def ensure_min_schema(conn: sqlite3.Connection) -> None:
    ensure_orders_schema(conn)
    ensure_unimind_schema(conn)
