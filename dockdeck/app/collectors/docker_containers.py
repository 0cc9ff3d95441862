from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

import docker
from docker.errors import DockerException, NotFound

from app.core.config import COMMAND_TIMEOUT_SECONDS
from app.services.derivation import format_bytes

logger = logging.getLogger(__name__)

CONTAINER_ID_OR_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]{0,127}$")


class DockerCommandError(RuntimeError):
    """A Docker query or lifecycle command failed on the target server."""


def validate_container_identifier(identifier: str) -> str:
    value = (identifier or "").strip()
    if not CONTAINER_ID_OR_NAME_PATTERN.match(value):
        raise DockerCommandError("Invalid container identifier.")
    return value


def humanize_docker_error(err: BaseException) -> str:
    msg = (str(err) or "").strip()
    lower = msg.lower()

    # Windows Docker Desktop / named pipe missing
    if "createfile" in lower and "the system cannot find the file specified" in lower:
        return "Docker engine not running (start Docker Desktop)"
    if "docker_engine" in lower and ("file not found" in lower or "cannot find" in lower):
        return "Docker engine not running (start Docker Desktop)"
    if "is the docker daemon running" in lower or "cannot connect to the docker daemon" in lower:
        return "Docker engine not running (cannot connect to the Docker daemon)"
    if "connection refused" in lower or "no such file or directory" in lower:
        return "Docker engine not running (cannot connect to the Docker daemon)"

    # Permissions / access
    if "access is denied" in lower or "permission" in lower:
        return "Docker not accessible (permission denied)"

    # Timeouts / networking
    if "timed out" in lower or "timeout" in lower:
        return "Docker engine not responding (timeout)"

    if not msg:
        return "docker unavailable"

    # Keep UI readable: one line, bounded length
    first_line = msg.splitlines()[0].strip()
    if len(first_line) > 180:
        return first_line[:177] + "..."
    return first_line


def _get_client():
    try:
        return docker.from_env(timeout=int(COMMAND_TIMEOUT_SECONDS))
    except DockerException as e:
        raise DockerCommandError(humanize_docker_error(e)) from e


def _format_ports(attrs: dict[str, Any] | None) -> str:
    """Render published ports the way ``docker ps`` prints them."""
    if not attrs:
        return ""
    ports = (attrs.get("NetworkSettings") or {}).get("Ports") or {}
    if not isinstance(ports, dict):
        return ""

    results: list[str] = []
    for container_port, bindings in ports.items():
        if not bindings:
            results.append(str(container_port))
            continue
        if isinstance(bindings, dict):
            bindings = [bindings]
        for b in bindings:
            if not isinstance(b, dict):
                continue
            host_ip = b.get("HostIp") or "0.0.0.0"
            host_port = b.get("HostPort")
            if host_port:
                results.append(f"{host_ip}:{host_port}->{container_port}")
    return ", ".join(results)


def _format_labels(labels: dict[str, Any] | None) -> str:
    if not labels:
        return ""
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


def _container_row(c: Any) -> dict[str, Any]:
    attrs = getattr(c, "attrs", None) or {}
    state = attrs.get("State") or {}
    name = getattr(c, "name", None) or attrs.get("Name") or ""
    if name.startswith("/"):
        name = name[1:]
    config = attrs.get("Config") or {}
    image_tags = getattr(getattr(c, "image", None), "tags", None) or []
    status = str(state.get("Status") or getattr(c, "status", "") or "")
    return {
        "ID": str(getattr(c, "id", "") or "")[:12],
        "Names": str(name),
        "Image": str(config.get("Image") or (image_tags[0] if image_tags else "")),
        "Labels": _format_labels(config.get("Labels") or getattr(c, "labels", None)),
        "Ports": _format_ports(attrs),
        "State": status,
        "Status": "Up" if status == "running" else status.capitalize(),
        "CreatedAt": str(attrs.get("Created") or ""),
        "Command": " ".join(config.get("Cmd") or []),
    }


def _compute_cpu_percent(stats: dict[str, Any]) -> float:
    cpu_stats = stats.get("cpu_stats") or {}
    precpu_stats = stats.get("precpu_stats") or {}
    cpu_total = float((cpu_stats.get("cpu_usage") or {}).get("total_usage") or 0.0)
    pre_cpu_total = float((precpu_stats.get("cpu_usage") or {}).get("total_usage") or 0.0)
    system_cpu = float(cpu_stats.get("system_cpu_usage") or 0.0)
    pre_system_cpu = float(precpu_stats.get("system_cpu_usage") or 0.0)

    cpu_delta = cpu_total - pre_cpu_total
    system_delta = system_cpu - pre_system_cpu

    online = cpu_stats.get("online_cpus")
    if isinstance(online, int) and online > 0:
        num_cpus = online
    else:
        percpu = (cpu_stats.get("cpu_usage") or {}).get("percpu_usage") or []
        num_cpus = len(percpu) if isinstance(percpu, list) and len(percpu) > 0 else 1

    if system_delta <= 0 or cpu_delta <= 0:
        return 0.0
    return (cpu_delta / system_delta) * float(num_cpus) * 100.0


def _sum_io(entries: list[dict[str, Any]] | None, op_key: str, ops: tuple[str, str]) -> tuple[int, int]:
    first = 0
    second = 0
    for entry in entries or []:
        op = str(entry.get(op_key) or "").lower()
        if op == ops[0]:
            first += int(entry.get("value") or 0)
        elif op == ops[1]:
            second += int(entry.get("value") or 0)
    return first, second


def _stat_row(container_id: str, name: str, stats: dict[str, Any]) -> dict[str, Any]:
    mem_stats = stats.get("memory_stats") or {}
    mem_usage = int(mem_stats.get("usage") or 0)
    mem_limit = int(mem_stats.get("limit") or 0)
    mem_percent = (mem_usage / mem_limit * 100.0) if mem_limit > 0 else 0.0

    rx = tx = 0
    for net in (stats.get("networks") or {}).values():
        if isinstance(net, dict):
            rx += int(net.get("rx_bytes") or 0)
            tx += int(net.get("tx_bytes") or 0)

    blkio = (stats.get("blkio_stats") or {}).get("io_service_bytes_recursive")
    read_b, write_b = _sum_io(blkio, "op", ("read", "write"))

    return {
        "ID": container_id[:12],
        "Container": container_id[:12],
        "Name": name,
        "CPUPerc": f"{_compute_cpu_percent(stats):.2f}%",
        "MemUsage": f"{format_bytes(mem_usage)} / {format_bytes(mem_limit)}",
        "MemPerc": f"{mem_percent:.2f}%",
        "NetIO": f"{format_bytes(rx)} / {format_bytes(tx)}",
        "BlockIO": f"{format_bytes(read_b)} / {format_bytes(write_b)}",
    }


def list_running_containers_sync() -> list[dict[str, Any]]:
    client = _get_client()
    try:
        containers = client.containers.list()
    except DockerException as e:
        raise DockerCommandError(humanize_docker_error(e)) from e

    items = [_container_row(c) for c in containers]
    items.sort(key=lambda x: (x["Names"], x["ID"]))
    return items


def list_container_stats_sync() -> list[dict[str, Any]]:
    client = _get_client()
    try:
        containers = client.containers.list()
    except DockerException as e:
        raise DockerCommandError(humanize_docker_error(e)) from e

    rows: list[dict[str, Any]] = []
    for c in containers:
        try:
            raw = client.api.stats(c.id, stream=False)
        except DockerException:
            # container may have exited between list and stats
            logger.debug("Stats unavailable for %s", c.id, exc_info=True)
            continue
        rows.append(_stat_row(str(c.id), str(c.name), raw or {}))
    return rows


def get_host_info_sync() -> dict[str, Any]:
    client = _get_client()
    try:
        info = client.info() or {}
    except DockerException as e:
        raise DockerCommandError(humanize_docker_error(e)) from e
    return {
        "NCPU": info.get("NCPU"),
        "MemTotal": info.get("MemTotal"),
        "Name": info.get("Name"),
        "ServerVersion": info.get("ServerVersion"),
        "OperatingSystem": info.get("OperatingSystem"),
    }


LIFECYCLE_ACTIONS: tuple[str, ...] = ("start", "stop", "restart", "remove")


def run_lifecycle_sync(action: str, identifier: str) -> None:
    if action not in LIFECYCLE_ACTIONS:
        raise DockerCommandError(f"Unsupported container action: {action}")
    target = validate_container_identifier(identifier)

    client = _get_client()
    try:
        container = client.containers.get(target)
        getattr(container, action)()
    except NotFound as e:
        raise DockerCommandError(f"No such container: {target}") from e
    except DockerException as e:
        raise DockerCommandError(humanize_docker_error(e)) from e


async def list_running_containers() -> list[dict[str, Any]]:
    return await asyncio.to_thread(list_running_containers_sync)


async def list_container_stats() -> list[dict[str, Any]]:
    return await asyncio.to_thread(list_container_stats_sync)


async def get_host_info() -> dict[str, Any]:
    return await asyncio.to_thread(get_host_info_sync)


async def run_lifecycle(action: str, identifier: str) -> None:
    await asyncio.to_thread(run_lifecycle_sync, action, identifier)
