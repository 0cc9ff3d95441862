from __future__ import annotations

import asyncio
import logging
import subprocess
import sys
from typing import Any

import psutil

from app.core.config import COMMAND_TIMEOUT_SECONDS, DEMO_MODE

logger = logging.getLogger(__name__)


def local_host_info() -> dict[str, Any]:
    return {
        "NCPU": psutil.cpu_count(logical=True),
        "MemTotal": int(psutil.virtual_memory().total),
    }


def fill_local_host_info(info: dict[str, Any] | None) -> dict[str, Any]:
    """Fill CPU and memory gaps in Docker's host info from the local machine."""
    merged = dict(info or {})
    if merged.get("NCPU") and merged.get("MemTotal"):
        return merged
    fallback = local_host_info()
    for key, value in fallback.items():
        if not merged.get(key):
            merged[key] = value
    return merged


def _restart_command(platform: str) -> list[str]:
    if platform == "win32":
        return ["shutdown", "/r", "/t", "0"]
    if platform.startswith("linux") or platform == "darwin":
        return ["shutdown", "-r", "now"]
    raise RuntimeError(f"Unsupported platform for host restart: {platform}")


def restart_host_sync(platform: str | None = None) -> None:
    platform = platform or sys.platform
    if DEMO_MODE:
        logger.info("[DEMO MODE] Simulated action: restart_host platform=%s", platform)
        return
    command = _restart_command(platform)
    subprocess.run(command, check=True, timeout=COMMAND_TIMEOUT_SECONDS)


async def restart_host() -> None:
    await asyncio.to_thread(restart_host_sync)
