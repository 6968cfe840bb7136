"""Health endpoint tests."""

import pytest


@pytest.mark.asyncio
async def test_health_returns_counts(client):
    """Health endpoint should return service status, version and counts."""
    resp = await client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "active"
    assert data["service"] == "paired-bridge"
    assert "version" in data
    assert data["connectedInstances"] == 0
    assert data["activeSessions"] == 0
    assert data["specialists"] == 7
    assert data["pendingRequests"] == 0


@pytest.mark.asyncio
async def test_relay_check(client):
    resp = await client.get("/test-relay")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "success"
    assert data["coordinatorActive"] is True
    assert data["teamAgents"] == 6
