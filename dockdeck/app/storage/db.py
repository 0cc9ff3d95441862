from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone

from app.core.config import DB_PATH, LOCAL_SERVER_ID, LOCAL_SERVER_NAME

logger = logging.getLogger(__name__)


def get_connection() -> sqlite3.Connection:
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(DB_PATH), timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    expected_server_columns: dict[str, str] = {
        "password": "TEXT NOT NULL DEFAULT ''",
        "enabled": "INTEGER NOT NULL DEFAULT 1",
        "is_local": "INTEGER NOT NULL DEFAULT 0",
        "created_ts_utc": "TEXT NULL",
    }

    with get_connection() as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS servers (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                host TEXT NOT NULL,
                username TEXT NOT NULL DEFAULT '',
                password TEXT NOT NULL DEFAULT '',
                enabled INTEGER NOT NULL DEFAULT 1,
                is_local INTEGER NOT NULL DEFAULT 0,
                created_ts_utc TEXT NULL
            )
            """
        )

        existing_cols = {
            row["name"] for row in conn.execute("PRAGMA table_info(servers)").fetchall()
        }
        for name, col_type in expected_server_columns.items():
            if name not in existing_cols:
                conn.execute(f"ALTER TABLE servers ADD COLUMN {name} {col_type}")

        conn.execute(
            """
            INSERT OR IGNORE INTO servers (id, name, host, username, password, enabled, is_local, created_ts_utc)
            VALUES (?, ?, 'localhost', '', '', 1, 1, ?)
            """,
            (LOCAL_SERVER_ID, LOCAL_SERVER_NAME, datetime.now(timezone.utc).isoformat()),
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS app_state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ts_utc TEXT NOT NULL,
                kind TEXT NOT NULL,
                message TEXT NOT NULL,
                severity TEXT NOT NULL,
                server_id TEXT NULL,
                meta_json TEXT NULL
            )
            """
        )
        existing_event_cols = {
            row["name"] for row in conn.execute("PRAGMA table_info(events)").fetchall()
        }
        if "server_id" not in existing_event_cols:
            conn.execute("ALTER TABLE events ADD COLUMN server_id TEXT NULL")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_events_ts_utc ON events(ts_utc)")
        conn.commit()

    logger.info("SQLite initialized at %s", DB_PATH)
