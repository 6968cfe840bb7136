"""Test fixtures — one isolated Gateway per test.

Learn: Nothing in the bridge lives in module globals, so every test gets
its own Gateway built from Settings that point at a temporary directory.
Sessions, the PID lock and the log file never touch ~/.paired.

Two ways in:
1. `client` — httpx AsyncClient over ASGITransport for the HTTP side
   channel. ASGITransport does not run the lifespan, so the fixture starts
   and stops the gateway itself.
2. `ws_client` — Starlette TestClient, which does run the lifespan and
   supports WebSocket sessions for end-to-end flows.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from starlette.testclient import TestClient

from paired_bridge.config import Settings
from paired_bridge.gateway import Gateway
from paired_bridge.main import create_app


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "data_dir": tmp_path / "data",
        "pid_file": tmp_path / "bridge.pid",
        "response_timeout_ms": 2000,
        "takeover_wait_seconds": 0.5,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture()
def gateway(settings):
    return Gateway(settings)


@pytest_asyncio.fixture()
async def client(gateway):
    """HTTP client bound to a started gateway."""
    app = create_app(gateway)
    await gateway.start()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await gateway.stop()


@pytest.fixture()
def ws_client(gateway):
    """TestClient with the lifespan running; use `.websocket_connect("/")`."""
    with TestClient(create_app(gateway)) as tc:
        yield tc
