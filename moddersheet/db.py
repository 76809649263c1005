from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

from moddersheet import config as _config

# Columns stored as INTEGER 0/1 and decoded back to bool
BOOL_COLS = {
    "is_available",
    "is_featured",
    "is_popular",
    "has_delivery",
    "is_payed",
    "is_agree",
    "is_claimed",
    "is_borrowed",
}

# Columns stored as JSON text
JSON_COLS = {"images"}


def db(path: Optional[str] = None) -> sqlite3.Connection:
    """Create a new SQLite connection with concurrency-friendly pragmas."""
    path = str(path or _config.DB_PATH)
    conn = sqlite3.connect(path, timeout=30.0, isolation_level="DEFERRED")
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA busy_timeout=10000")
        conn.execute("PRAGMA foreign_keys = ON")
    except sqlite3.DatabaseError:
        pass
    conn.row_factory = sqlite3.Row
    return conn


def init_db(path: Optional[str] = None) -> None:
    target = Path(path or _config.DB_PATH)
    target.parent.mkdir(parents=True, exist_ok=True)
    conn = db(str(target))
    try:
        with conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS categories(
                id TEXT PRIMARY KEY,
                name_uz TEXT NOT NULL DEFAULT '',
                name_ru TEXT,
                parent_id TEXT,
                level INTEGER NOT NULL DEFAULT 1,
                products_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%S', 'now')),
                updated_at TEXT
            );
            """)
            conn.execute("""
            CREATE TABLE IF NOT EXISTS products(
                id TEXT PRIMARY KEY,
                name_uz TEXT NOT NULL DEFAULT '',
                name_ru TEXT,
                price REAL NOT NULL DEFAULT 0,
                unit TEXT NOT NULL DEFAULT 'dona',
                stock_quantity REAL NOT NULL DEFAULT 0,
                category_id TEXT,
                product_type TEXT NOT NULL DEFAULT 'sale',
                is_available INTEGER NOT NULL DEFAULT 1,
                is_featured INTEGER NOT NULL DEFAULT 0,
                is_popular INTEGER NOT NULL DEFAULT 0,
                has_delivery INTEGER NOT NULL DEFAULT 0,
                delivery_price REAL NOT NULL DEFAULT 0,
                minimum_order REAL NOT NULL DEFAULT 1,
                view_count INTEGER NOT NULL DEFAULT 0,
                average_rating REAL NOT NULL DEFAULT 0,
                images TEXT NOT NULL DEFAULT '[]',
                created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%S', 'now')),
                updated_at TEXT
            );
            """)
            conn.execute("""
            CREATE TABLE IF NOT EXISTS orders(
                id TEXT PRIMARY KEY,
                order_number TEXT,
                customer_name TEXT,
                customer_phone TEXT,
                status TEXT NOT NULL DEFAULT 'pending',
                total_amount REAL NOT NULL DEFAULT 0,
                is_payed INTEGER NOT NULL DEFAULT 0,
                is_agree INTEGER NOT NULL DEFAULT 0,
                is_claimed INTEGER NOT NULL DEFAULT 0,
                is_borrowed INTEGER NOT NULL DEFAULT 0,
                borrowed_period INTEGER NOT NULL DEFAULT 0,
                borrowed_additional_period INTEGER NOT NULL DEFAULT 0,
                borrowed_updated_at TEXT,
                delivery_address TEXT,
                created_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%S', 'now')),
                updated_at TEXT
            );
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_products_category ON products(category_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_orders_borrowed ON orders(is_borrowed, is_payed)"
            )
    finally:
        conn.close()
