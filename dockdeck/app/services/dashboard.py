from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from datetime import datetime, timezone
from typing import Any

from app.collectors import docker_containers, remote_docker
from app.collectors.host import fill_local_host_info
from app.core.config import DEMO_MODE, LOCAL_SERVER_ID
from app.services.derivation import (
    build_container_stats_lookup,
    build_launchpad_tiles,
    build_server_metrics,
    container_matches_identifier,
    get_service_host,
    group_containers_by_compose_file,
    is_container_running,
    is_local_docker_unavailable_error,
)
from app.services.inventory_cache import CachedSnapshot, InventoryCache, Snapshot, server_cache_key
from app.services.pending_actions import PendingActionTracker
from app.storage.events import insert_event
from app.storage.servers import get_default_server_id, get_server, list_servers, public_view
from app.storage.servers import resolve_server_by_id_or_default

logger = logging.getLogger(__name__)

LOCAL_DOCKER_UNAVAILABLE_MESSAGE = (
    "Docker engine is unavailable on this machine. Start Docker and refresh the dashboard."
)

PENDING_BY_ACTION: dict[str, str] = {
    "start": "starting",
    "stop": "stopping",
    "restart": "restarting",
    "remove": "removing",
}
PAST_TENSE: dict[str, str] = {
    "start": "started",
    "stop": "stopped",
    "restart": "restarted",
    "remove": "removed",
}


class ContainerActionError(RuntimeError):
    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


class DockerGateway:
    """Routes Docker queries and commands to the local engine or over SSH."""

    async def list_containers(self, server: dict[str, Any]) -> list[dict[str, Any]]:
        if server.get("is_local"):
            return await docker_containers.list_running_containers()
        return await remote_docker.list_running_containers(server)

    async def list_container_stats(self, server: dict[str, Any]) -> list[dict[str, Any]]:
        if server.get("is_local"):
            return await docker_containers.list_container_stats()
        return await remote_docker.list_container_stats(server)

    async def get_host_info(self, server: dict[str, Any]) -> dict[str, Any]:
        if server.get("is_local"):
            info = await docker_containers.get_host_info()
            return fill_local_host_info(info)
        return await remote_docker.get_host_info(server)

    async def run_action(self, server: dict[str, Any], action: str, identifier: str) -> None:
        if DEMO_MODE:
            logger.info(
                "[DEMO MODE] Simulated action: container_%s target=%s server=%s",
                action,
                identifier,
                server.get("id"),
            )
            return
        if server.get("is_local"):
            await docker_containers.run_lifecycle(action, identifier)
        else:
            await remote_docker.run_lifecycle(server, action, identifier)

    async def fetch_snapshot(self, server: dict[str, Any]) -> Snapshot:
        containers, stats, host_info = await asyncio.gather(
            self.list_containers(server),
            self.list_container_stats(server),
            self.get_host_info(server),
        )
        return Snapshot(containers=containers, stats=stats, host_info=host_info)


async def _cached_snapshot(
    cache: InventoryCache, gateway: DockerGateway, server: dict[str, Any]
) -> CachedSnapshot:
    return await cache.get_data(server_cache_key(server), lambda: gateway.fetch_snapshot(server))


async def load_dashboard(
    conn: sqlite3.Connection,
    *,
    cache: InventoryCache,
    tracker: PendingActionTracker,
    gateway: DockerGateway,
    server_id: str | None = None,
) -> dict[str, Any]:
    servers = list_servers(conn)
    default_server_id = get_default_server_id(conn)
    active = resolve_server_by_id_or_default(conn, server_id)
    local = get_server(conn, LOCAL_SERVER_ID)

    unavailable_server_ids: list[str] = []
    fallback_error = ""
    snapshot = CachedSnapshot()

    try:
        snapshot = await _cached_snapshot(cache, gateway, active)
    except Exception as primary_error:
        if active["is_local"] or local is None:
            if not active["is_local"] or not is_local_docker_unavailable_error(primary_error):
                raise
            fallback_error = LOCAL_DOCKER_UNAVAILABLE_MESSAGE
        else:
            failed_name = active.get("name") or active.get("host") or active["id"]
            logger.warning("Docker query failed for server %s: %s", failed_name, primary_error)
            unavailable_server_ids = [active["id"]]
            active = local
            fallback_error = (
                f"Failed to connect to {failed_name}. "
                "Marked as unavailable and switched to local server."
            )
            try:
                snapshot = await _cached_snapshot(cache, gateway, active)
            except Exception as local_error:
                if not is_local_docker_unavailable_error(local_error):
                    raise
                fallback_error = f"{fallback_error} {LOCAL_DOCKER_UNAVAILABLE_MESSAGE}"

    service_host = get_service_host(active)
    stats_lookup = build_container_stats_lookup(snapshot.stats)
    groups = group_containers_by_compose_file(snapshot.containers, service_host, stats_lookup)
    metrics = build_server_metrics(snapshot.host_info, snapshot.stats, "")

    now = tracker.now()
    pending = {
        container_id: p.to_dict(now=now)
        for container_id, p in tracker.for_server(active["id"]).items()
    }

    return {
        "containers": snapshot.containers,
        "grouped_containers": [g.to_dict() for g in groups],
        "launcher_tiles": build_launchpad_tiles(snapshot.containers, service_host),
        "server_metrics": metrics.to_dict(),
        "servers": [public_view(s) for s in servers],
        "active_server_id": active["id"],
        "default_server_id": default_server_id,
        "unavailable_server_ids": unavailable_server_ids,
        "fallback_error": fallback_error,
        "cache_age_seconds": round(snapshot.age, 3),
        "pending_actions": pending,
        "timestamp": time.time(),
    }


def _audit(
    conn: sqlite3.Connection,
    *,
    kind: str,
    message: str,
    severity: str,
    server_id: str,
    meta: dict[str, Any],
) -> dict[str, Any]:
    ts_utc = datetime.now(timezone.utc).isoformat()
    log = logger.info if severity == "info" else logger.warning
    log("AUDIT %s server=%s %s", kind, server_id, meta)
    event = {
        "ts_utc": ts_utc,
        "kind": kind,
        "message": message,
        "severity": severity,
        "server_id": server_id,
        "meta": meta,
    }
    try:
        event["id"] = insert_event(conn, event)
    except sqlite3.Error:
        logger.exception("Failed to insert audit event kind=%s", kind)
        event["id"] = None
    return event


def _check_action(action: str) -> None:
    if action not in PENDING_BY_ACTION:
        raise ContainerActionError(f"Unsupported container action: {action}", status_code=400)


async def run_container_action(
    conn: sqlite3.Connection,
    *,
    tracker: PendingActionTracker,
    gateway: DockerGateway,
    server_id: str | None,
    action: str,
    container_id: str,
    actor: str | None = None,
) -> dict[str, Any]:
    """Run one lifecycle action and record it as pending and audited."""
    _check_action(action)
    server = resolve_server_by_id_or_default(conn, server_id)
    kind = f"container_{action}"
    meta: dict[str, Any] = {"actor": actor, "target": container_id}

    try:
        containers = await gateway.list_containers(server)
        target = next((c for c in containers if container_matches_identifier(c, container_id)), None)

        if action == "remove":
            if target is None:
                raise ContainerActionError("Container not found", status_code=404)
            if is_container_running(target):
                raise ContainerActionError(
                    "Container must be stopped before removing", status_code=409
                )

        pending = None
        if target is not None:
            pending = tracker.set(server["id"], str(target["ID"]), PENDING_BY_ACTION[action])

        await gateway.run_action(server, action, container_id)
    except Exception as e:
        _audit(
            conn,
            kind=kind,
            message=f"Failed to {action} container {container_id}: {e}",
            severity="warning",
            server_id=server["id"],
            meta={**meta, "result": "error", "message": str(e)},
        )
        raise

    event = _audit(
        conn,
        kind=kind,
        message=f"Container {container_id} {PAST_TENSE[action]}",
        severity="info",
        server_id=server["id"],
        meta={**meta, "result": "success"},
    )
    return {
        "server_id": server["id"],
        "container_id": container_id,
        "action": action,
        "pending": pending.to_dict(now=tracker.now()) if pending is not None else None,
        "event": event,
    }


async def run_bulk_action(
    conn: sqlite3.Connection,
    *,
    tracker: PendingActionTracker,
    gateway: DockerGateway,
    server_id: str | None,
    action: str,
    container_ids: list[str],
    actor: str | None = None,
) -> dict[str, Any]:
    """Run one lifecycle action over several containers.

    Running containers are skipped for ``remove``; other failures are
    collected per container instead of aborting the batch.
    """
    _check_action(action)
    selected = list(dict.fromkeys(c.strip() for c in container_ids if c and c.strip()))
    if not selected:
        raise ContainerActionError("No containers selected", status_code=400)

    server = resolve_server_by_id_or_default(conn, server_id)
    containers = await gateway.list_containers(server)

    succeeded: list[str] = []
    failed: list[str] = []
    skipped_running: list[str] = []

    for container_id in selected:
        target = next((c for c in containers if container_matches_identifier(c, container_id)), None)
        if action == "remove":
            if target is None:
                failed.append(container_id)
                continue
            if is_container_running(target):
                skipped_running.append(container_id)
                continue
        try:
            if target is not None:
                tracker.set(server["id"], str(target["ID"]), PENDING_BY_ACTION[action])
            await gateway.run_action(server, action, container_id)
            succeeded.append(container_id)
        except Exception as e:
            logger.warning("Bulk %s failed for %s: %s", action, container_id, e)
            failed.append(container_id)

    if failed or skipped_running:
        result = "partial" if succeeded else "error"
    else:
        result = "success"

    event = _audit(
        conn,
        kind=f"container_{action}_bulk",
        message=(
            f"{len(succeeded)} container(s) {PAST_TENSE[action]}"
            + (f", {len(failed)} failed" if failed else "")
            + (f", {len(skipped_running)} skipped (running)" if skipped_running else "")
        ),
        severity="info" if result == "success" else "warning",
        server_id=server["id"],
        meta={
            "actor": actor,
            "targets": selected,
            "succeeded": succeeded,
            "failed": failed,
            "skipped_running": skipped_running,
            "result": result,
        },
    )
    return {
        "server_id": server["id"],
        "action": action,
        "result": result,
        "succeeded": succeeded,
        "failed": failed,
        "skipped_running": skipped_running,
        "event": event,
    }
