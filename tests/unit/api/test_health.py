"""Tests for GET /health: 200, pause state and chain validity, correlation ID in body."""


async def test_health_returns_200(async_client):
    r = await async_client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ok"
    assert data["is_paused"] is False
    assert data["chain_valid"] is True
    assert len(data["correlation_id"]) > 0


async def test_health_reports_pause(async_client):
    await async_client.post("/security/pause")
    r = await async_client.get("/health")
    assert r.json()["is_paused"] is True
