"""Database utilities for the dog park reservation engine."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


SCHEMA_VERSION = 1


def dict_factory(cursor: sqlite3.Cursor, row: sqlite3.Row) -> dict:
    """Return rows as dictionaries rather than tuples."""

    return {description[0]: row[idx] for idx, description in enumerate(cursor.description)}


def get_connection(path: str | Path) -> sqlite3.Connection:
    """Return a SQLite connection with sensible defaults.

    The connection runs in autocommit mode; multi-statement writes go through
    :func:`transaction`. It may be shared with the collaborator worker threads.
    """

    conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
    conn.row_factory = dict_factory
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection, *, immediate: bool = True) -> Iterator[sqlite3.Connection]:
    """Run a block inside one transaction.

    ``BEGIN IMMEDIATE`` takes the database write lock up front, so concurrent
    writers on any connection to the same file are serialized and a
    check-then-insert inside the block cannot interleave with another one.
    """

    conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def initialize_database(conn: sqlite3.Connection) -> None:
    """Create the database schema if it does not yet exist."""

    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS metadata (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS facilities (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            open_time TEXT NOT NULL,
            close_time TEXT NOT NULL,
            capacity INTEGER NOT NULL DEFAULT 0,
            booth_pool INTEGER NOT NULL DEFAULT 0,
            max_head_count INTEGER NOT NULL DEFAULT 3,
            auto_confirm INTEGER NOT NULL DEFAULT 1,
            subscription_discount_eligible INTEGER NOT NULL DEFAULT 1,
            rates TEXT NOT NULL,
            channel_rules TEXT NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS dogs (
            id TEXT PRIMARY KEY,
            account_id TEXT NOT NULL,
            name TEXT NOT NULL,
            breed TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS vaccine_certifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            dog_id TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            expiry_date TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(dog_id) REFERENCES dogs(id)
        );

        CREATE TABLE IF NOT EXISTS subscriptions (
            account_id TEXT PRIMARY KEY,
            active INTEGER NOT NULL DEFAULT 0,
            expires_at TEXT,
            updated_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS reservations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            facility_id INTEGER NOT NULL,
            account_id TEXT NOT NULL,
            date TEXT NOT NULL,
            start_time TEXT NOT NULL,
            duration INTEGER NOT NULL,
            channel TEXT NOT NULL,
            scheme TEXT,
            head_count INTEGER NOT NULL,
            entity_ids TEXT NOT NULL DEFAULT '[]',
            status TEXT NOT NULL,
            total_amount INTEGER NOT NULL,
            hold_token TEXT UNIQUE,
            pass_expires_at TEXT,
            refund_percent INTEGER,
            cancelled_at TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY(facility_id) REFERENCES facilities(id)
        );

        CREATE INDEX IF NOT EXISTS idx_reservations_facility_date
            ON reservations(facility_id, date, status);

        CREATE TABLE IF NOT EXISTS holds (
            token TEXT PRIMARY KEY,
            facility_id INTEGER NOT NULL,
            account_id TEXT NOT NULL,
            date TEXT NOT NULL,
            start_time TEXT NOT NULL,
            duration INTEGER NOT NULL,
            channel TEXT NOT NULL,
            scheme TEXT NOT NULL,
            entity_ids TEXT NOT NULL DEFAULT '[]',
            guest_count INTEGER,
            quote TEXT NOT NULL,
            state TEXT NOT NULL DEFAULT 'active',
            expires_at TEXT NOT NULL,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(facility_id) REFERENCES facilities(id)
        );

        CREATE INDEX IF NOT EXISTS idx_holds_facility_date
            ON holds(facility_id, date, state);

        CREATE TABLE IF NOT EXISTS payments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            hold_token TEXT,
            amount INTEGER NOT NULL,
            method TEXT NOT NULL,
            status TEXT NOT NULL,
            metadata TEXT,
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            account_id TEXT NOT NULL,
            content TEXT NOT NULL,
            status TEXT DEFAULT 'queued',
            created_at TEXT DEFAULT CURRENT_TIMESTAMP
        );
        """
    )

    set_metadata(conn, "schema_version", SCHEMA_VERSION)


def set_metadata(conn: sqlite3.Connection, key: str, value: int | str | dict | list) -> None:
    if isinstance(value, (dict, list)):
        value = json.dumps(value)
    conn.execute(
        "INSERT INTO metadata(key, value) VALUES (?, ?)\n         ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, str(value)),
    )


def get_metadata(conn: sqlite3.Connection, key: str, default: str | None = None) -> str | None:
    row = conn.execute("SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else default
