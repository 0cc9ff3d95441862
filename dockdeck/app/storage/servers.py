from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from app.core.config import LOCAL_SERVER_ID

APP_STATE_KEY_DEFAULT_SERVER: str = "default_server_id"


class ServerNotFoundError(LookupError):
    pass


class ServerConfigError(ValueError):
    pass


def _normalize_row(row: sqlite3.Row) -> dict[str, Any]:
    d = dict(row)
    d["enabled"] = bool(d.get("enabled"))
    d["is_local"] = bool(d.get("is_local"))
    return d


def public_view(server: dict[str, Any]) -> dict[str, Any]:
    """Server fields that are safe to return to clients."""
    return {
        "id": server["id"],
        "name": server["name"],
        "host": server["host"],
        "username": server["username"],
        "enabled": bool(server["enabled"]),
        "is_local": bool(server["is_local"]),
        "has_password": bool(server.get("password")),
    }


def list_servers(conn: sqlite3.Connection) -> list[dict[str, Any]]:
    rows = conn.execute(
        "SELECT * FROM servers ORDER BY is_local DESC, name COLLATE NOCASE, id"
    ).fetchall()
    return [_normalize_row(r) for r in rows]


def get_server(conn: sqlite3.Connection, server_id: str) -> dict[str, Any] | None:
    row = conn.execute("SELECT * FROM servers WHERE id = ?", (server_id,)).fetchone()
    return _normalize_row(row) if row is not None else None


def get_default_server_id(conn: sqlite3.Connection) -> str:
    row = conn.execute(
        "SELECT value FROM app_state WHERE key = ?", (APP_STATE_KEY_DEFAULT_SERVER,)
    ).fetchone()
    value = str(row["value"] or "").strip() if row is not None else ""
    if not value:
        return LOCAL_SERVER_ID
    server = get_server(conn, value)
    if server is None or not server["enabled"]:
        return LOCAL_SERVER_ID
    return value


def set_default_server(conn: sqlite3.Connection, server_id: str) -> None:
    server = get_server(conn, server_id)
    if server is None:
        raise ServerNotFoundError("Server not found")
    if not server["enabled"]:
        raise ServerConfigError("Cannot set a disabled server as default")
    conn.execute(
        "INSERT OR REPLACE INTO app_state(key, value) VALUES(?, ?)",
        (APP_STATE_KEY_DEFAULT_SERVER, server_id),
    )
    conn.commit()


def resolve_server_by_id_or_default(
    conn: sqlite3.Connection, server_id: str | None
) -> dict[str, Any]:
    """Return the requested enabled server, else the default, else local."""
    enabled = {s["id"]: s for s in list_servers(conn) if s["enabled"]}
    if server_id and server_id.strip() in enabled:
        return enabled[server_id.strip()]
    default_id = get_default_server_id(conn)
    if default_id in enabled:
        return enabled[default_id]
    local = get_server(conn, LOCAL_SERVER_ID)
    if local is None:
        raise ServerNotFoundError("Local server is missing; was init_db() called?")
    return local


def _require_fields(name: str, host: str, username: str) -> tuple[str, str, str]:
    name, host, username = name.strip(), host.strip(), username.strip()
    if not name:
        raise ServerConfigError("Server name is required")
    if not host:
        raise ServerConfigError("Server host is required")
    if not username:
        raise ServerConfigError("Server username is required")
    return name, host, username


def create_server(
    conn: sqlite3.Connection,
    *,
    name: str,
    host: str,
    username: str,
    password: str = "",
    enabled: bool = True,
) -> dict[str, Any]:
    name, host, username = _require_fields(name, host, username)
    server_id = str(uuid.uuid4())
    conn.execute(
        """
        INSERT INTO servers (id, name, host, username, password, enabled, is_local, created_ts_utc)
        VALUES (?, ?, ?, ?, ?, ?, 0, ?)
        """,
        (
            server_id,
            name,
            host,
            username,
            password,
            int(bool(enabled)),
            datetime.now(timezone.utc).isoformat(),
        ),
    )
    conn.commit()
    created = get_server(conn, server_id)
    assert created is not None
    return created


def update_server(
    conn: sqlite3.Connection,
    server_id: str,
    *,
    name: str,
    host: str,
    username: str,
    password: str | None = None,
    enabled: bool = True,
) -> dict[str, Any]:
    server = get_server(conn, server_id)
    if server is None:
        raise ServerNotFoundError("Server not found")
    if server["is_local"]:
        raise ServerConfigError("Local server cannot be edited")
    name, host, username = _require_fields(name, host, username)

    conn.execute(
        "UPDATE servers SET name = ?, host = ?, username = ?, enabled = ? WHERE id = ?",
        (name, host, username, int(bool(enabled)), server_id),
    )
    # an empty password keeps the stored one
    if password:
        conn.execute("UPDATE servers SET password = ? WHERE id = ?", (password, server_id))
    conn.commit()
    updated = get_server(conn, server_id)
    assert updated is not None
    return updated


def delete_server(conn: sqlite3.Connection, server_id: str) -> dict[str, Any]:
    server = get_server(conn, server_id)
    if server is None:
        raise ServerNotFoundError("Server not found")
    if server["is_local"]:
        raise ServerConfigError("Local server cannot be deleted")
    conn.execute("DELETE FROM servers WHERE id = ?", (server_id,))
    conn.commit()
    return server
