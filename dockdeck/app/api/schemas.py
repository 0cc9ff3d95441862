from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class HealthData(BaseModel):
    status: str
    demo_mode: bool = False


class HealthResponse(BaseModel):
    ok: bool
    data: HealthData | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class ServerData(BaseModel):
    id: str
    name: str
    host: str
    username: str
    enabled: bool
    is_local: bool
    has_password: bool = False


class ServerCreateRequest(BaseModel):
    name: str
    host: str
    username: str
    password: str = ""
    enabled: bool = True


class ServerUpdateRequest(BaseModel):
    name: str
    host: str
    username: str
    password: str | None = None
    enabled: bool = True


class ServerResponse(BaseModel):
    ok: bool
    data: ServerData | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class ServersResponse(BaseModel):
    ok: bool
    data: list[ServerData] = Field(default_factory=list)
    meta: dict[str, Any] = Field(default_factory=dict)


class ServiceLinkData(BaseModel):
    port: int
    container_port: int
    protocol: str
    url: str
    label: str


class ContainerGroupData(BaseModel):
    key: str
    title: str
    detail: str
    containers: list[dict[str, Any]] = Field(default_factory=list)
    service_links: list[ServiceLinkData] = Field(default_factory=list)


class ServerMetricsData(BaseModel):
    cpu_cores: str
    total_memory: str
    used_memory: str
    memory_utilization: str
    monitored_containers: int
    available: bool
    warning: str = ""


class PendingActionData(BaseModel):
    action: str
    timestamp: float
    age: float


class DashboardData(BaseModel):
    containers: list[dict[str, Any]] = Field(default_factory=list)
    grouped_containers: list[ContainerGroupData] = Field(default_factory=list)
    launcher_tiles: list[dict[str, Any]] = Field(default_factory=list)
    server_metrics: ServerMetricsData
    servers: list[ServerData] = Field(default_factory=list)
    active_server_id: str
    default_server_id: str
    unavailable_server_ids: list[str] = Field(default_factory=list)
    fallback_error: str = ""
    cache_age_seconds: float = 0.0
    pending_actions: dict[str, PendingActionData] = Field(default_factory=dict)
    timestamp: float


class DashboardResponse(BaseModel):
    ok: bool
    data: DashboardData | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class BulkActionRequest(BaseModel):
    containers: list[str] = Field(default_factory=list)


class ContainerActionData(BaseModel):
    server_id: str
    container_id: str
    action: str
    pending: PendingActionData | None = None


class ContainerActionResponse(BaseModel):
    ok: bool
    data: ContainerActionData | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class BulkActionData(BaseModel):
    server_id: str
    action: str
    result: str
    succeeded: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    skipped_running: list[str] = Field(default_factory=list)


class BulkActionResponse(BaseModel):
    ok: bool
    data: BulkActionData | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class CacheEntryData(BaseModel):
    server: str
    age: float
    refreshing: bool


class CacheStatsData(BaseModel):
    total_entries: int
    entries: list[CacheEntryData] = Field(default_factory=list)


class CacheStatsResponse(BaseModel):
    ok: bool
    data: CacheStatsData | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class PendingStatsData(BaseModel):
    total_pending: int
    by_action: dict[str, int] = Field(default_factory=dict)


class PendingStatsResponse(BaseModel):
    ok: bool
    data: PendingStatsData | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class TimelineEventData(BaseModel):
    id: int
    ts_utc: str
    kind: str
    message: str
    severity: str
    server_id: str | None = None
    meta: dict[str, Any] | None = None


class TimelineData(BaseModel):
    items: list[TimelineEventData] = Field(default_factory=list)


class TimelineResponse(BaseModel):
    ok: bool
    data: TimelineData | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    ok: bool
    data: dict[str, Any] | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
