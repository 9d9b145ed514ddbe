import asyncio
from typing import Callable, List
from unittest.mock import AsyncMock

import pytest
from faker import Faker
from websockets.asyncio.client import connect

from relay.config import RelayConfig
from relay.server import RelayServer

ALLOWED_ORIGIN = "http://localhost:3000"


@pytest.fixture
def relay_config() -> RelayConfig:
    """Loopback configuration on an ephemeral port."""
    return RelayConfig.for_testing()


@pytest.fixture
async def relay_server(relay_config):
    """A running relay server with the default test configuration."""
    async with RelayServer(relay_config) as server:
        yield server


@pytest.fixture
async def server_factory():
    """Start relay servers with configuration overrides; all are stopped at teardown."""
    servers: List[RelayServer] = []

    async def _start(**overrides) -> RelayServer:
        server = RelayServer(RelayConfig.for_testing().replace(**overrides))
        await server.start()
        servers.append(server)
        return server

    yield _start

    for server in servers:
        await server.stop()


@pytest.fixture
def open_client():
    """Open a raw websocket client to a relay server."""
    def _open(server: RelayServer, origin=ALLOWED_ORIGIN, path=None):
        url = server.url if path is None else f"ws://{server.config.host}:{server.port}{path}"
        return connect(url, origin=origin)
    return _open


@pytest.fixture
def faker_instance() -> Faker:
    """Create a Faker instance for generating test data."""
    fake = Faker()
    Faker.seed(42)  # For reproducible test data
    return fake


@pytest.fixture
def mock_websocket_connection():
    """Create a mock WebSocket connection for testing."""
    mock_ws = AsyncMock()
    mock_ws.id = "0f1e2d3c-test"
    mock_ws.remote_address = ("127.0.0.1", 50000)
    mock_ws.send = AsyncMock()
    mock_ws.recv = AsyncMock()
    mock_ws.close = AsyncMock()
    return mock_ws


@pytest.fixture
def wait_until():
    """Poll until condition() is true or fail after timeout."""
    async def _wait(condition: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)
    return _wait
