from __future__ import annotations

import os
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = (os.environ.get(name) or "").strip().lower()
    if not value:
        return default
    return value in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


APP_NAME: str = "DockDeck"
DB_PATH: Path = Path(
    os.environ.get("DOCKDECK_DB_PATH")
    or Path(__file__).resolve().parents[2] / "dockdeck.db"
)
LOG_LEVEL: str = (os.environ.get("DOCKDECK_LOG_LEVEL") or "INFO").upper()

# Simulate lifecycle actions and host restarts instead of executing them.
DEMO_MODE: bool = _env_bool("DOCKDECK_DEMO_MODE")

INVENTORY_CACHE_TTL_SECONDS: float = 10.0
PENDING_ACTION_TTL_SECONDS: float = 15.0
PENDING_SWEEP_INTERVAL_SECONDS: float = 30.0

SSH_PORT: int = 22
SSH_TIMEOUT_SECONDS: float = _env_float("DOCKDECK_SSH_TIMEOUT_SECONDS", 8.0)
COMMAND_TIMEOUT_SECONDS: float = _env_float("DOCKDECK_COMMAND_TIMEOUT_SECONDS", 30.0)

LOCAL_SERVER_ID: str = "local"
LOCAL_SERVER_NAME: str = "Local Server"

TIMELINE_DEFAULT_HOURS: int = 24
