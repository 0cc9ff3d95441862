import sys
from pathlib import Path
from typing import Any

import pytest

project_root = Path(__file__).resolve().parents[1]
backend_path = project_root / "dockdeck"
if str(backend_path) not in sys.path:
    sys.path.insert(0, str(backend_path))

from app.services.dashboard import DockerGateway  # noqa: E402
import app.storage.db as storage_db  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway(DockerGateway):
    """In-memory Docker collaborator keyed by server id."""

    def __init__(self) -> None:
        self.containers: dict[str, list[dict[str, Any]]] = {}
        self.stats: dict[str, list[dict[str, Any]]] = {}
        self.host_info: dict[str, dict[str, Any]] = {}
        self.errors: dict[str, Exception] = {}
        self.action_errors: dict[str, Exception] = {}
        self.actions: list[tuple[str, str, str]] = []
        self.fetch_count = 0

    def _check(self, server: dict[str, Any]) -> None:
        error = self.errors.get(server["id"])
        if error is not None:
            raise error

    async def list_containers(self, server):
        self._check(server)
        return list(self.containers.get(server["id"], []))

    async def list_container_stats(self, server):
        self._check(server)
        return list(self.stats.get(server["id"], []))

    async def get_host_info(self, server):
        self._check(server)
        return dict(self.host_info.get(server["id"], {}))

    async def fetch_snapshot(self, server):
        self.fetch_count += 1
        return await super().fetch_snapshot(server)

    async def run_action(self, server, action, identifier):
        error = self.action_errors.get(identifier)
        if error is not None:
            raise error
        self.actions.append((server["id"], action, identifier))


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path, monkeypatch) -> Path:
    path = tmp_path / "dockdeck-test.db"
    monkeypatch.setattr(storage_db, "DB_PATH", path)
    return path


@pytest.fixture
def db_conn(db_path):
    storage_db.init_db()
    conn = storage_db.get_connection()
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def fake_gateway() -> FakeGateway:
    gateway = FakeGateway()
    gateway.containers["local"] = [
        {
            "ID": "abc123def456",
            "Names": "web",
            "Image": "nginx:latest",
            "State": "running",
            "Status": "Up 2 hours",
            "Ports": "0.0.0.0:8080->80/tcp",
            "Labels": "com.docker.compose.project=shop",
        },
        {
            "ID": "fff000111222",
            "Names": "old-worker",
            "Image": "busybox",
            "State": "exited",
            "Status": "Exited (0) 1 hour ago",
            "Ports": "",
            "Labels": "",
        },
    ]
    gateway.stats["local"] = [
        {"ID": "abc123def456", "Name": "web", "CPUPerc": "1.50%", "MemUsage": "512MiB / 4GiB"},
    ]
    gateway.host_info["local"] = {"NCPU": 4, "MemTotal": 4 * 1024**3}
    return gateway
