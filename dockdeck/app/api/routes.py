from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, Response

from app.api.schemas import (
    BulkActionRequest,
    BulkActionResponse,
    CacheStatsResponse,
    ContainerActionResponse,
    DashboardResponse,
    HealthResponse,
    MessageResponse,
    PendingStatsResponse,
    ServerCreateRequest,
    ServerResponse,
    ServersResponse,
    ServerUpdateRequest,
    TimelineResponse,
)
from app.collectors.docker_containers import DockerCommandError
from app.collectors.host import restart_host
from app.core.config import DEMO_MODE, TIMELINE_DEFAULT_HOURS
from app.services.dashboard import (
    ContainerActionError,
    DockerGateway,
    load_dashboard,
    run_bulk_action,
    run_container_action,
)
from app.services.inventory_cache import InventoryCache, server_cache_key
from app.services.pending_actions import PendingActionTracker
from app.storage.db import get_connection
from app.storage.events import get_events, get_latest_events, insert_event
from app.storage.servers import (
    ServerConfigError,
    ServerNotFoundError,
    create_server,
    delete_server,
    get_default_server_id,
    get_server,
    list_servers,
    public_view,
    set_default_server,
    update_server,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def _cache(request: Request) -> InventoryCache:
    return request.app.state.inventory_cache


def _tracker(request: Request) -> PendingActionTracker:
    return request.app.state.pending_actions


def _gateway(request: Request) -> DockerGateway:
    return request.app.state.docker_gateway


async def _broadcast(request: Request, message_type: str, data: dict[str, Any]) -> None:
    manager = getattr(request.app.state, "ws_manager", None)
    if manager is None or not await manager.has_connections():
        return
    try:
        await manager.broadcast_event(message_type, data)
    except Exception:
        logger.exception("WebSocket broadcast failed type=%s", message_type)


async def _broadcast_timeline(request: Request, event: dict[str, Any]) -> None:
    if event.get("id") is None:
        return
    await _broadcast(
        request,
        "timeline_event",
        {
            "id": event["id"],
            "kind": event["kind"],
            "severity": event["severity"],
            "message": event["message"],
            "server_id": event.get("server_id"),
        },
    )


@router.get("/health")
def health() -> HealthResponse:
    return HealthResponse(ok=True, data={"status": "ok", "demo_mode": DEMO_MODE}, meta={})


@router.get("/dashboard")
async def dashboard(
    request: Request,
    response: Response,
    server_id: str | None = Query(default=None),
) -> DashboardResponse:
    with get_connection() as conn:
        try:
            data = await load_dashboard(
                conn,
                cache=_cache(request),
                tracker=_tracker(request),
                gateway=_gateway(request),
                server_id=server_id,
            )
        except Exception as e:
            logger.warning("Dashboard load failed server_id=%s: %s", server_id, e)
            response.status_code = 503
            return DashboardResponse(ok=False, data=None, meta={"message": str(e)})

    return DashboardResponse(
        ok=True,
        data=data,
        meta={"cache_ttl_seconds": _cache(request).ttl_seconds},
    )


@router.get("/servers")
def servers() -> ServersResponse:
    with get_connection() as conn:
        rows = list_servers(conn)
        default_id = get_default_server_id(conn)
    return ServersResponse(
        ok=True,
        data=[public_view(s) for s in rows],
        meta={"default_server_id": default_id, "count": len(rows)},
    )


@router.post("/servers", status_code=201)
def add_server(body: ServerCreateRequest) -> ServerResponse:
    with get_connection() as conn:
        try:
            server = create_server(
                conn,
                name=body.name,
                host=body.host,
                username=body.username,
                password=body.password,
                enabled=body.enabled,
            )
        except ServerConfigError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
    logger.info("Server added id=%s host=%s", server["id"], server["host"])
    return ServerResponse(ok=True, data=public_view(server), meta={})


def _invalidate_server(request: Request, server: dict[str, Any]) -> None:
    _cache(request).invalidate(server_cache_key(server))


@router.put("/servers/{server_id}")
async def edit_server(server_id: str, body: ServerUpdateRequest, request: Request) -> ServerResponse:
    with get_connection() as conn:
        previous = get_server(conn, server_id)
        try:
            server = update_server(
                conn,
                server_id,
                name=body.name,
                host=body.host,
                username=body.username,
                password=body.password,
                enabled=body.enabled,
            )
        except ServerNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except ServerConfigError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
    if previous is not None:
        _invalidate_server(request, previous)
    return ServerResponse(ok=True, data=public_view(server), meta={})


@router.delete("/servers/{server_id}")
async def remove_server(server_id: str, request: Request) -> ServerResponse:
    with get_connection() as conn:
        try:
            server = delete_server(conn, server_id)
        except ServerNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except ServerConfigError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
    _invalidate_server(request, server)
    logger.info("Server removed id=%s", server_id)
    return ServerResponse(ok=True, data=public_view(server), meta={})


@router.post("/servers/{server_id}/default")
def make_default_server(server_id: str) -> ServerResponse:
    with get_connection() as conn:
        try:
            set_default_server(conn, server_id)
        except ServerNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except ServerConfigError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        server = get_server(conn, server_id)
    return ServerResponse(ok=True, data=public_view(server), meta={"default_server_id": server_id})


@router.post("/containers/{action}")
async def bulk_container_action(
    action: str,
    body: BulkActionRequest,
    request: Request,
    server_id: str | None = Query(default=None),
    actor: str | None = Query(default=None),
) -> BulkActionResponse:
    with get_connection() as conn:
        try:
            result = await run_bulk_action(
                conn,
                tracker=_tracker(request),
                gateway=_gateway(request),
                server_id=server_id,
                action=action,
                container_ids=body.containers,
                actor=actor,
            )
        except ContainerActionError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e)) from e
        except DockerCommandError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e

    await _broadcast(
        request,
        "container_action",
        {
            "server_id": result["server_id"],
            "action": action,
            "containers": result["succeeded"],
            "result": result["result"],
        },
    )
    await _broadcast_timeline(request, result["event"])
    return BulkActionResponse(
        ok=result["result"] != "error",
        data=result,
        meta={"requested": len(body.containers)},
    )


@router.post("/containers/{container_id}/{action}")
async def container_action(
    container_id: str,
    action: str,
    request: Request,
    server_id: str | None = Query(default=None),
    actor: str | None = Query(default=None),
) -> ContainerActionResponse:
    with get_connection() as conn:
        try:
            result = await run_container_action(
                conn,
                tracker=_tracker(request),
                gateway=_gateway(request),
                server_id=server_id,
                action=action,
                container_id=container_id,
                actor=actor,
            )
        except ContainerActionError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e)) from e
        except DockerCommandError as e:
            raise HTTPException(status_code=502, detail=str(e)) from e

    await _broadcast(
        request,
        "container_action",
        {
            "server_id": result["server_id"],
            "action": action,
            "containers": [container_id],
            "result": "success",
        },
    )
    await _broadcast_timeline(request, result["event"])
    return ContainerActionResponse(ok=True, data=result, meta={})


@router.get("/cache")
async def cache_stats(request: Request) -> CacheStatsResponse:
    cache = _cache(request)
    return CacheStatsResponse(ok=True, data=cache.stats(), meta={"ttl_seconds": cache.ttl_seconds})


@router.post("/cache/invalidate")
async def invalidate_cache(
    request: Request,
    server_id: str | None = Query(default=None),
) -> MessageResponse:
    cache = _cache(request)
    if server_id is None:
        cache.invalidate()
        return MessageResponse(ok=True, data={"invalidated": "all"}, meta={})

    with get_connection() as conn:
        server = get_server(conn, server_id)
    if server is None:
        raise HTTPException(status_code=404, detail="Server not found")
    key = server_cache_key(server)
    cache.invalidate(key)
    return MessageResponse(ok=True, data={"invalidated": key}, meta={"server_id": server_id})


@router.get("/pending")
async def pending_stats(request: Request) -> PendingStatsResponse:
    tracker = _tracker(request)
    return PendingStatsResponse(ok=True, data=tracker.stats(), meta={"ttl_seconds": tracker.ttl_seconds})


@router.get("/timeline")
def timeline(
    hours: int = Query(default=TIMELINE_DEFAULT_HOURS, ge=1, le=168),
    limit: int = Query(default=200, ge=1, le=500),
    server_id: str | None = Query(default=None),
) -> TimelineResponse:
    now = datetime.now(timezone.utc)
    since_ts_utc = (now - timedelta(hours=hours)).isoformat()

    with get_connection() as conn:
        items = get_events(conn, since_ts_utc=since_ts_utc, limit=limit, server_id=server_id)

    return TimelineResponse(
        ok=True,
        data={"items": items},
        meta={"hours": hours, "limit": limit, "ts_utc": now.isoformat()},
    )


@router.get("/timeline/latest")
def timeline_latest(limit: int = Query(default=20, ge=1, le=200)) -> TimelineResponse:
    with get_connection() as conn:
        items = get_latest_events(conn, limit=limit)
    return TimelineResponse(ok=True, data={"items": items}, meta={"limit": limit})


@router.post("/host/restart")
async def host_restart(request: Request, actor: str | None = Query(default=None)) -> MessageResponse:
    ts_utc = datetime.now(timezone.utc).isoformat()
    try:
        await restart_host()
    except Exception as e:
        logger.warning("AUDIT host_restart actor=%s result=error message=%s", actor, e)
        raise HTTPException(status_code=500, detail="Failed to restart host") from e

    logger.info("AUDIT host_restart actor=%s result=success", actor)
    with get_connection() as conn:
        event = {
            "ts_utc": ts_utc,
            "kind": "host_restart",
            "message": "Host restart command issued",
            "severity": "warning",
            "meta": {"actor": actor, "demo_mode": DEMO_MODE},
        }
        event["id"] = insert_event(conn, event)
    await _broadcast_timeline(request, event)
    return MessageResponse(ok=True, data={"restarting": not DEMO_MODE}, meta={"demo_mode": DEMO_MODE})
