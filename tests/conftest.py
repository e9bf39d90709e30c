import json
from datetime import datetime, timedelta, timezone

import pytest

from backend import MemoryBackend
from coordinator import SessionCoordinator
from registry import RoomRegistry
from store import StateWriter
from transport import ConnectionManager


class FakeClock:
    def __init__(self, start=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class FakeWebSocket:
    """Collects the frames the server pushes to one client."""

    def __init__(self):
        self.frames = []

    async def send_text(self, text):
        self.frames.append(json.loads(text))

    def events(self, name=None):
        return [f for f in self.frames if name is None or f["event"] == name]


class FailingBackend(MemoryBackend):
    def __init__(self, failures):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def save(self, state):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise OSError("disk full")
        super().save(state)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def writer(backend):
    return StateWriter(backend, max_attempts=3, retry_delay=0)


@pytest.fixture
def registry(writer, clock):
    return RoomRegistry(writer=writer, clock=clock)


@pytest.fixture
def transport():
    return ConnectionManager()


@pytest.fixture
def connect(registry, transport):
    """Open a fake client connection; returns (session, websocket)."""

    def _connect():
        ws = FakeWebSocket()
        connection_id = transport.connect(ws)
        return SessionCoordinator(connection_id, registry, transport), ws

    return _connect


@pytest.fixture
def failing_backend():
    return FailingBackend
