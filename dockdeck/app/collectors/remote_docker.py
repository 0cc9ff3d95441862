from __future__ import annotations

import asyncio
import json
import logging
import shlex
from typing import Any

import paramiko

from app.collectors.docker_containers import (
    LIFECYCLE_ACTIONS,
    DockerCommandError,
    validate_container_identifier,
)
from app.core.config import COMMAND_TIMEOUT_SECONDS, SSH_PORT, SSH_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

_LIFECYCLE_COMMANDS: dict[str, str] = {
    "start": "start",
    "stop": "stop",
    "restart": "restart",
    "remove": "rm",
}


def _split_host(host: str) -> tuple[str, int]:
    host = (host or "").strip()
    for prefix in ("ssh://", "http://", "https://"):
        if host.lower().startswith(prefix):
            host = host[len(prefix):]
    host = host.rstrip("/")
    if host.count(":") == 1:
        name, _, port = host.partition(":")
        if port.isdigit():
            return name, int(port)
    return host, SSH_PORT


def exec_remote(server: dict[str, Any], args: list[str]) -> str:
    """Run ``docker <args>`` on a remote server over SSH and return stdout."""
    hostname, port = _split_host(str(server.get("host") or ""))
    if not hostname:
        raise DockerCommandError("Remote server host is not configured.")

    command = " ".join(["docker", *(shlex.quote(a) for a in args)])
    ssh = paramiko.SSHClient()
    ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    conn_kwargs: dict[str, Any] = {
        "hostname": hostname,
        "port": port,
        "username": server.get("username") or None,
        "timeout": SSH_TIMEOUT_SECONDS,
        "banner_timeout": SSH_TIMEOUT_SECONDS,
        "auth_timeout": SSH_TIMEOUT_SECONDS,
    }
    if server.get("password"):
        conn_kwargs["password"] = server["password"]
        conn_kwargs["look_for_keys"] = False
        conn_kwargs["allow_agent"] = False

    try:
        ssh.connect(**conn_kwargs)
        _stdin, stdout, stderr = ssh.exec_command(command, timeout=COMMAND_TIMEOUT_SECONDS)
        out = stdout.read().decode("utf-8", errors="replace")
        err = stderr.read().decode("utf-8", errors="replace").strip()
        exit_status = stdout.channel.recv_exit_status()
    except (paramiko.SSHException, OSError) as e:
        raise DockerCommandError(f"SSH to {hostname} failed: {e}") from e
    finally:
        ssh.close()

    if exit_status != 0 or (err and not out.strip()):
        first_line = (err or f"exit status {exit_status}").splitlines()[0]
        raise DockerCommandError(first_line)
    return out


def _parse_json_lines(out: str) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    for line in out.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            row = json.loads(line)
        except json.JSONDecodeError as e:
            raise DockerCommandError(f"Unexpected docker output: {line[:80]}") from e
        if isinstance(row, dict):
            rows.append(row)
    return rows


def list_running_containers_sync(server: dict[str, Any]) -> list[dict[str, Any]]:
    out = exec_remote(server, ["ps", "--format", "{{json .}}"])
    return _parse_json_lines(out)


def list_container_stats_sync(server: dict[str, Any]) -> list[dict[str, Any]]:
    out = exec_remote(server, ["stats", "--no-stream", "--format", "{{json .}}"])
    return _parse_json_lines(out)


def get_host_info_sync(server: dict[str, Any]) -> dict[str, Any]:
    out = exec_remote(server, ["info", "--format", "{{json .}}"])
    rows = _parse_json_lines(out)
    info = rows[0] if rows else {}
    return {
        "NCPU": info.get("NCPU"),
        "MemTotal": info.get("MemTotal"),
        "Name": info.get("Name"),
        "ServerVersion": info.get("ServerVersion"),
        "OperatingSystem": info.get("OperatingSystem"),
    }


def run_lifecycle_sync(server: dict[str, Any], action: str, identifier: str) -> None:
    if action not in LIFECYCLE_ACTIONS:
        raise DockerCommandError(f"Unsupported container action: {action}")
    target = validate_container_identifier(identifier)
    exec_remote(server, [_LIFECYCLE_COMMANDS[action], target])
    logger.debug("Remote %s of %s on %s done", action, target, server.get("host"))


async def list_running_containers(server: dict[str, Any]) -> list[dict[str, Any]]:
    return await asyncio.to_thread(list_running_containers_sync, server)


async def list_container_stats(server: dict[str, Any]) -> list[dict[str, Any]]:
    return await asyncio.to_thread(list_container_stats_sync, server)


async def get_host_info(server: dict[str, Any]) -> dict[str, Any]:
    return await asyncio.to_thread(get_host_info_sync, server)


async def run_lifecycle(server: dict[str, Any], action: str, identifier: str) -> None:
    await asyncio.to_thread(run_lifecycle_sync, server, action, identifier)
