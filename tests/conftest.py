"""
Global test configuration and fixtures for FleetSync

This module provides shared test fixtures used across all test modules: a
temporary device store, a scripted record service behind httpx's
MockTransport, a controllable clock and sleeper, and a FastAPI test client.
"""

import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from fleetsync.core.advisories import AdvisoryFeed
from fleetsync.core.config import Settings
from fleetsync.core.limiter import limiter
from fleetsync.schemas.identity import Identity
from fleetsync.schemas.records import BASE_HEADERS, rate_column
from fleetsync.services.connectivity import ConnectivityMonitor
from fleetsync.services.device_store import DeviceStore, ScopedKeyRegistry
from fleetsync.services.engine import SyncEngine
from fleetsync.services.transport import RemoteTransport

ENDPOINT = "https://records.example.test/exec"

# 2026-03-02 09:00:00 UTC
START_TIME = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc).timestamp()


def iso(ts: float) -> str:
    """Render epoch seconds the way the record service does."""
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


# ============================================================================
# Test Doubles
# ============================================================================

class FakeClock:
    """Clock that only moves when told to"""

    def __init__(self, start: float = START_TIME):
        self.current = start

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class RecordingSleeper:
    """Async sleep replacement that records requested delays"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class RemoteStub:
    """
    Scripted record service.

    ``GET`` returns ``document``. Each ``POST`` consumes the next entry of
    ``write_outcomes`` ("ok", "network" or "reject"; default "ok").
    """

    def __init__(self):
        self.document: Dict[str, Any] = {}
        self.reads = 0
        self.writes: List[Any] = []
        self.attempted_writes: List[Any] = []
        self.write_outcomes: List[str] = []
        self.read_outcome = "ok"
        self.on_write: Optional[Callable[[Any], None]] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            self.reads += 1
            if self.read_outcome == "network":
                raise httpx.ConnectError("connection reset", request=request)
            if self.read_outcome == "html":
                return httpx.Response(200, text="<!DOCTYPE html><html>Sign in</html>")
            return httpx.Response(200, text=json.dumps(self.document))

        payload = json.loads(request.content)
        self.attempted_writes.append(payload)
        outcome = self.write_outcomes.pop(0) if self.write_outcomes else "ok"
        if outcome == "network":
            raise httpx.ConnectError("connection reset", request=request)
        if outcome == "reject":
            return httpx.Response(500, text="Script error")
        self.writes.append(payload)
        if self.on_write is not None:
            self.on_write(payload)
        return httpx.Response(200, text='{"status": "success"}')


def inspection_row(
    timestamp: str,
    truck: str,
    rate: Any,
    sheet: str = "General",
    row_id: str = "R1",
) -> List[Any]:
    """Build a sheet row with ``rate`` in the column the sheet uses."""
    width = len(BASE_HEADERS) + 2
    row: List[Any] = [""] * width
    row[0] = row_id
    row[1] = timestamp
    row[2] = truck
    row[rate_column(sheet)] = rate
    return row


def sheet(*rows: List[Any]) -> List[List[Any]]:
    """Prefix ``rows`` with a header row."""
    return [list(BASE_HEADERS)] + [list(r) for r in rows]


# ============================================================================
# Test Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


@pytest.fixture(autouse=True)
def reset_limiter():
    """Clear rate limit counters so tests do not affect each other."""
    limiter.reset()
    yield
    limiter.reset()


# ============================================================================
# Core Fixtures
# ============================================================================

@pytest.fixture
def config():
    return Settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return RecordingSleeper()


@pytest.fixture
def store(tmp_path):
    """Device store on a temporary SQLite file"""
    return DeviceStore.from_url(f"sqlite:///{tmp_path / 'device.db'}")


@pytest.fixture
def registry(store):
    return ScopedKeyRegistry(store)


@pytest.fixture
def remote():
    return RemoteStub()


@pytest.fixture
def transport(remote, clock):
    client = httpx.AsyncClient(transport=httpx.MockTransport(remote.handler))
    return RemoteTransport(ENDPOINT, client=client, clock=clock)


@pytest.fixture
def connectivity():
    return ConnectivityMonitor(online=True)


@pytest.fixture
def advisories(clock):
    return AdvisoryFeed(clock=clock)


# ============================================================================
# Test Data
# ============================================================================

@pytest.fixture
def inspector():
    return Identity(username="insp-1", name="Ina Inspector", role="Inspector")


@pytest.fixture
def admin():
    return Identity(username="admin@fleet.test", name="Ada Admin", role="admin")


@pytest.fixture
def make_row():
    return inspection_row


@pytest.fixture
def make_sheet():
    return sheet


@pytest.fixture
def recent(clock):
    """Render a timestamp ``seconds_ago`` before the fake clock's now."""
    def _recent(seconds_ago: float = 60) -> str:
        return iso(clock.now() - seconds_ago)
    return _recent


# ============================================================================
# Engine and Application Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def engine(store, transport, clock, sleeper, config):
    """Fully wired engine; timers are cancelled on teardown

    The fetch scheduled at login is off so tests control every remote read.
    """
    sync_engine = SyncEngine(
        store, transport, clock=clock, config=config, sleep=sleeper, prefetch_on_login=False
    )
    yield sync_engine
    await sync_engine.dispose()


@pytest.fixture
def api_client(store, transport, clock, sleeper, config):
    """FastAPI test client running the lifespan around a test engine"""
    from fleetsync.main import create_app

    sync_engine = SyncEngine(
        store, transport, clock=clock, config=config, sleep=sleeper, prefetch_on_login=False
    )
    app = create_app(sync_engine)
    with TestClient(app) as client:
        client.engine = sync_engine
        yield client
