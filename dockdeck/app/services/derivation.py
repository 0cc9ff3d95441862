from __future__ import annotations

import math
import re
from dataclasses import asdict, dataclass, field
from typing import Any

UNGROUPED_TITLE: str = "Ungrouped"

_COMPOSE_PROJECT = "com.docker.compose.project"
_COMPOSE_WORKING_DIR = "com.docker.compose.project.working_dir"
_COMPOSE_CONFIG_FILES = "com.docker.compose.project.config_files"

_PORT_ENTRY_RE = re.compile(
    r"(?:[^\s,]+:)?(?P<host_port>\d+)->(?P<container_port>\d+)/(?P<transport>[a-z]+)",
    re.IGNORECASE,
)
_HUMAN_SIZE_RE = re.compile(r"^(?P<amount>\d+(?:\.\d+)?)\s*(?P<unit>[kmgtp]?i?b)$", re.IGNORECASE)
_URL_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)

_SIZE_MULTIPLIERS: dict[str, int] = {
    "B": 1,
    "KB": 1000,
    "MB": 1000**2,
    "GB": 1000**3,
    "TB": 1000**4,
    "PB": 1000**5,
    "KIB": 1024,
    "MIB": 1024**2,
    "GIB": 1024**3,
    "TIB": 1024**4,
    "PIB": 1024**5,
}

_LAUNCHPAD_ICONS: list[tuple[str, str, str]] = [
    ("emby", "fa-solid fa-play", "launchpad-icon-emby"),
    ("immich", "fa-solid fa-images", "launchpad-icon-immich"),
    ("plex", "fa-solid fa-circle-play", "launchpad-icon-plex"),
    ("jellyfin", "fa-solid fa-clapperboard", "launchpad-icon-jellyfin"),
    ("grafana", "fa-solid fa-chart-column", "launchpad-icon-grafana"),
    ("portainer", "fa-solid fa-cubes", "launchpad-icon-portainer"),
    ("nextcloud", "fa-solid fa-cloud", "launchpad-icon-nextcloud"),
]


@dataclass(frozen=True, slots=True)
class ServiceLink:
    port: int
    container_port: int
    protocol: str
    url: str
    label: str


@dataclass(frozen=True, slots=True)
class ComposeGroupKey:
    key: str
    title: str
    detail: str


@dataclass
class ContainerGroup:
    key: str
    title: str
    detail: str
    containers: list[dict[str, Any]] = field(default_factory=list)
    service_links: list[ServiceLink] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "title": self.title,
            "detail": self.detail,
            "containers": self.containers,
            "service_links": [asdict(link) for link in self.service_links],
        }


@dataclass(frozen=True, slots=True)
class ServerMetrics:
    cpu_cores: str
    total_memory: str
    used_memory: str
    memory_utilization: str
    monitored_containers: int
    available: bool
    warning: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _sort_text(value: str) -> tuple[str, str]:
    return (value.casefold(), value)


def _basename(path_value: str) -> str:
    trimmed = path_value.strip()
    if not trimmed:
        return ""
    parts = [p for p in re.split(r"[\\/]", trimmed) if p]
    return parts[-1] if parts else trimmed


def parse_docker_labels(labels: str | None) -> dict[str, str]:
    result: dict[str, str] = {}
    if not labels:
        return result
    for pair in labels.split(","):
        sep = pair.find("=")
        if sep <= 0:
            continue
        key = pair[:sep].strip()
        if key:
            result[key] = pair[sep + 1 :].strip()
    return result


def resolve_compose_group(container: dict[str, Any]) -> ComposeGroupKey:
    labels = parse_docker_labels(container.get("Labels") or "")
    project = (labels.get(_COMPOSE_PROJECT) or "").strip()
    working_dir = (labels.get(_COMPOSE_WORKING_DIR) or "").strip()
    config_files = [
        item.strip() for item in (labels.get(_COMPOSE_CONFIG_FILES) or "").split(",") if item.strip()
    ]
    config_display = ", ".join(b for b in (_basename(p) for p in config_files) if b)

    if project:
        return ComposeGroupKey(key=f"project:{project}", title=project, detail=config_display)

    if working_dir or config_files:
        first_config = config_files[0] if config_files else ""
        title = _basename(working_dir) or _basename(first_config) or "Compose Stack"
        detail = " • ".join(part for part in (working_dir, config_display) if part)
        return ComposeGroupKey(
            key=f"compose:{working_dir}::{'|'.join(config_files)}",
            title=title,
            detail=detail,
        )

    return ComposeGroupKey(key="ungrouped", title=UNGROUPED_TITLE, detail="")


def get_service_host(server: Any) -> str:
    is_local = server.get("is_local") if isinstance(server, dict) else getattr(server, "is_local", False)
    if is_local:
        return "localhost"
    host = server.get("host") if isinstance(server, dict) else getattr(server, "host", "")
    host = (host or "").strip()
    if not host:
        return "localhost"
    return _URL_SCHEME_RE.sub("", host)


def infer_service_links_from_ports(ports: str | None, service_host: str) -> list[ServiceLink]:
    if not ports or not ports.strip():
        return []

    links: list[ServiceLink] = []
    seen: set[str] = set()
    for entry in (e.strip() for e in ports.split(",")):
        if not entry:
            continue
        match = _PORT_ENTRY_RE.search(entry)
        if match is None:
            continue
        if match.group("transport").lower() != "tcp":
            continue

        host_port = int(match.group("host_port"))
        container_port = int(match.group("container_port"))
        protocol = "https" if 443 in (host_port, container_port) else "http"
        url = f"{protocol}://{service_host}:{host_port}"
        if url in seen:
            continue
        seen.add(url)
        links.append(
            ServiceLink(
                port=host_port,
                container_port=container_port,
                protocol=protocol,
                url=url,
                label=f"{protocol.upper()} {host_port}",
            )
        )

    links.sort(key=lambda link: link.port)
    return links


def parse_human_size_to_bytes(value: str | None) -> float | None:
    trimmed = (value or "").strip()
    if not trimmed:
        return None
    match = _HUMAN_SIZE_RE.match(trimmed)
    if match is None:
        return None
    multiplier = _SIZE_MULTIPLIERS.get(match.group("unit").upper())
    if multiplier is None:
        return None
    return float(match.group("amount")) * multiplier


def parse_used_memory(mem_usage: str | None) -> float | None:
    used = (mem_usage or "").split("/")[0].strip()
    return parse_human_size_to_bytes(used)


def format_bytes(value: float | int | None) -> str:
    if value is None:
        return "-"
    value = float(value)
    if not math.isfinite(value) or value < 0:
        return "-"
    if value < 1024:
        return f"{round(value)} B"

    units = ["KiB", "MiB", "GiB", "TiB", "PiB"]
    idx = -1
    normalized = value
    while True:
        normalized /= 1024
        idx += 1
        if normalized < 1024 or idx >= len(units) - 1:
            break

    decimals = 0 if normalized >= 100 else 1 if normalized >= 10 else 2
    return f"{normalized:.{decimals}f} {units[idx]}"


def normalize_container_identifier(identifier: str | None) -> str:
    return (identifier or "").strip().lower()


def build_container_stats_lookup(stats: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    lookup: dict[str, dict[str, Any]] = {}
    for stat in stats:
        stat_id = str(stat.get("ID") or "")
        for candidate in (stat.get("Name"), stat.get("Container"), stat_id, stat_id[:12]):
            normalized = normalize_container_identifier(candidate)
            if normalized:
                lookup[normalized] = stat
    return lookup


def resolve_container_stat(
    container: dict[str, Any], lookup: dict[str, dict[str, Any]]
) -> dict[str, Any] | None:
    container_id = str(container.get("ID") or "")
    for candidate in (container.get("Names"), container_id, container_id[:12]):
        normalized = normalize_container_identifier(candidate)
        if not normalized:
            continue
        stat = lookup.get(normalized)
        if stat is not None:
            return stat
    return None


def group_containers_by_compose_file(
    containers: list[dict[str, Any]],
    service_host: str,
    stats_lookup: dict[str, dict[str, Any]],
) -> list[ContainerGroup]:
    grouped: dict[str, ContainerGroup] = {}

    for container in containers:
        links = infer_service_links_from_ports(container.get("Ports"), service_host)
        stat = resolve_container_stat(container, stats_lookup) or {}
        item = {
            **container,
            "service_links": [asdict(link) for link in links],
            "resource_cpu": stat.get("CPUPerc") or "-",
            "resource_memory": stat.get("MemUsage") or "-",
            "resource_net_io": stat.get("NetIO") or "-",
            "resource_block_io": stat.get("BlockIO") or "-",
        }

        resolved = resolve_compose_group(container)
        group = grouped.get(resolved.key)
        if group is None:
            grouped[resolved.key] = ContainerGroup(
                key=resolved.key,
                title=resolved.title,
                detail=resolved.detail,
                containers=[item],
                service_links=list(links),
            )
            continue

        group.containers.append(item)
        known = {link.url for link in group.service_links}
        for link in links:
            if link.url not in known:
                group.service_links.append(link)
                known.add(link.url)
        group.service_links.sort(key=lambda link: link.port)

    groups = list(grouped.values())
    for group in groups:
        group.containers.sort(key=lambda c: _sort_text(str(c.get("Names") or "")))
    groups.sort(key=lambda g: (g.title == UNGROUPED_TITLE, *_sort_text(g.title)))
    return groups


def create_unavailable_server_metrics(warning: str) -> ServerMetrics:
    return ServerMetrics(
        cpu_cores="-",
        total_memory="-",
        used_memory="-",
        memory_utilization="-",
        monitored_containers=0,
        available=False,
        warning=warning,
    )


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def build_server_metrics(
    host_info: dict[str, Any] | None,
    stats: list[dict[str, Any]],
    warning: str = "",
) -> ServerMetrics:
    if not host_info and not stats:
        return create_unavailable_server_metrics(warning)

    info = host_info or {}
    total_memory = _as_number(info.get("MemTotal"))
    cpu_count = _as_number(info.get("NCPU"))
    used_memory = sum(parse_used_memory(s.get("MemUsage")) or 0.0 for s in stats)
    monitored = len(stats)

    if total_memory:
        utilization = f"{used_memory / total_memory * 100:.1f}%"
    else:
        utilization = "-"

    return ServerMetrics(
        cpu_cores=str(int(cpu_count)) if cpu_count is not None else "-",
        total_memory=format_bytes(total_memory) if total_memory else "-",
        used_memory=format_bytes(used_memory) if monitored else "-",
        memory_utilization=utilization,
        monitored_containers=monitored,
        available=monitored > 0 or bool(total_memory) or cpu_count is not None,
        warning=warning,
    )


def is_local_docker_unavailable_error(error: BaseException | str | None) -> bool:
    message = str(error or "").lower()
    if not message:
        return False
    return (
        "cannot connect to the docker daemon" in message
        or "dockerdesktoplinuxengine" in message
        or "error during connect" in message
        or "the system cannot find the file specified" in message
        or "docker engine not running" in message
    )


def is_container_running(container: dict[str, Any]) -> bool:
    state = str(container.get("State") or "").lower()
    status = str(container.get("Status") or "").lower()
    return state == "running" or status.startswith("up")


def container_matches_identifier(container: dict[str, Any], identifier: str) -> bool:
    normalized = (identifier or "").strip()
    if not normalized:
        return False
    container_id = str(container.get("ID") or "")
    return (
        container.get("Names") == normalized
        or container_id == normalized
        or container_id.startswith(normalized)
    )


def infer_launchpad_icon(container: dict[str, Any]) -> tuple[str, str]:
    candidate = f"{container.get('Names') or ''} {container.get('Image') or ''}".lower()
    for keyword, icon_class, color_class in _LAUNCHPAD_ICONS:
        if keyword in candidate:
            return icon_class, color_class
    return "fa-solid fa-rocket", "launchpad-icon-default"


def build_launchpad_tiles(containers: list[dict[str, Any]], service_host: str) -> list[dict[str, Any]]:
    tiles: list[dict[str, Any]] = []
    for container in containers:
        links = infer_service_links_from_ports(container.get("Ports"), service_host)
        if not links:
            continue
        icon_class, color_class = infer_launchpad_icon(container)
        tiles.append(
            {
                "id": container.get("ID") or "",
                "name": container.get("Names") or "",
                "description": container.get("Image") or "",
                "icon_class": icon_class,
                "icon_color_class": color_class,
                "launch_url": links[0].url,
                "local_url": links[0].url,
                "public_url": "",
                "hidden": False,
            }
        )
    tiles.sort(key=lambda t: _sort_text(str(t["name"])))
    return tiles
