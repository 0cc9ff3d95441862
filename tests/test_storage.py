from datetime import datetime, timedelta, timezone

import pytest

import app.storage.db as storage_db
from app.storage.events import get_events, get_latest_events, insert_event
from app.storage.servers import (
    ServerConfigError,
    ServerNotFoundError,
    create_server,
    delete_server,
    get_default_server_id,
    list_servers,
    public_view,
    resolve_server_by_id_or_default,
    set_default_server,
    update_server,
)


def _add_remote(conn, name: str = "nas", enabled: bool = True) -> dict:
    return create_server(
        conn, name=name, host="10.0.0.5", username="ops", password="s3cret", enabled=enabled
    )


def test_init_db_seeds_local_server_once(db_conn) -> None:
    storage_db.init_db()
    servers = list_servers(db_conn)
    assert [s["id"] for s in servers] == ["local"]
    assert servers[0]["is_local"] is True
    assert servers[0]["enabled"] is True


def test_local_server_listed_first(db_conn) -> None:
    _add_remote(db_conn, "alpha")
    assert [s["name"] for s in list_servers(db_conn)] == ["Local Server", "alpha"]


def test_public_view_hides_password(db_conn) -> None:
    remote = _add_remote(db_conn)
    view = public_view(remote)
    assert "password" not in view
    assert view["has_password"] is True


def test_create_server_requires_fields(db_conn) -> None:
    with pytest.raises(ServerConfigError, match="host"):
        create_server(db_conn, name="x", host="  ", username="root")


def test_update_keeps_password_when_blank(db_conn) -> None:
    remote = _add_remote(db_conn)
    updated = update_server(
        db_conn, remote["id"], name="nas-2", host="10.0.0.6", username="ops", password=""
    )
    assert updated["name"] == "nas-2"
    assert updated["password"] == "s3cret"

    changed = update_server(
        db_conn, remote["id"], name="nas-2", host="10.0.0.6", username="ops", password="new"
    )
    assert changed["password"] == "new"


def test_local_server_is_read_only(db_conn) -> None:
    with pytest.raises(ServerConfigError):
        update_server(db_conn, "local", name="x", host="y", username="z")
    with pytest.raises(ServerConfigError):
        delete_server(db_conn, "local")
    with pytest.raises(ServerNotFoundError):
        delete_server(db_conn, "missing")


def test_default_server_falls_back_to_local(db_conn) -> None:
    remote = _add_remote(db_conn)
    assert get_default_server_id(db_conn) == "local"

    set_default_server(db_conn, remote["id"])
    assert get_default_server_id(db_conn) == remote["id"]

    update_server(
        db_conn, remote["id"], name="nas", host="10.0.0.5", username="ops", enabled=False
    )
    assert get_default_server_id(db_conn) == "local"

    with pytest.raises(ServerConfigError):
        set_default_server(db_conn, remote["id"])
    with pytest.raises(ServerNotFoundError):
        set_default_server(db_conn, "missing")


def test_resolve_server_prefers_request_then_default(db_conn) -> None:
    first = _add_remote(db_conn, "first")
    second = _add_remote(db_conn, "second")
    disabled = _add_remote(db_conn, "off", enabled=False)
    set_default_server(db_conn, second["id"])

    assert resolve_server_by_id_or_default(db_conn, first["id"])["id"] == first["id"]
    assert resolve_server_by_id_or_default(db_conn, None)["id"] == second["id"]
    assert resolve_server_by_id_or_default(db_conn, "unknown")["id"] == second["id"]
    assert resolve_server_by_id_or_default(db_conn, disabled["id"])["id"] == second["id"]

    delete_server(db_conn, second["id"])
    assert resolve_server_by_id_or_default(db_conn, None)["id"] == "local"


def test_events_filtered_by_time_and_server(db_conn) -> None:
    now = datetime.now(timezone.utc)
    old = (now - timedelta(hours=48)).isoformat()
    recent = now.isoformat()

    insert_event(db_conn, {"ts_utc": old, "kind": "container_action", "message": "old", "severity": "info"})
    insert_event(
        db_conn,
        {
            "ts_utc": recent,
            "kind": "container_action",
            "message": "Started web",
            "severity": "info",
            "server_id": "local",
            "meta": {"action": "start", "container": "web"},
        },
    )
    insert_event(
        db_conn,
        {"ts_utc": recent, "kind": "container_action", "message": "remote", "severity": "warning", "server_id": "nas"},
    )

    since = (now - timedelta(hours=24)).isoformat()
    assert [e["message"] for e in get_events(db_conn, since, 10)] == ["remote", "Started web"]

    (local_event,) = get_events(db_conn, since, 10, server_id="local")
    assert local_event["meta"] == {"action": "start", "container": "web"}
    assert "meta_json" not in local_event

    assert len(get_latest_events(db_conn, 2)) == 2
