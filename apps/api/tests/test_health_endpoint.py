import pytest
from httpx import ASGITransport, AsyncClient

from pumprewards_api.services.points.errors import InsufficientBalanceError


@pytest.mark.asyncio
async def test_healthz_reports_ok(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_readyz_reports_scheduler_and_points(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/readyz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] in {"ready", "degraded"}
    assert "running" in payload["scheduler"]
    assert set(payload["points"]) == {"ledger", "conflicts", "redemptions", "expiry", "side_effects"}


@pytest.mark.asyncio
async def test_points_errors_map_to_json(app_with_db) -> None:
    app, _ = app_with_db

    @app.get("/boom")
    async def boom() -> None:
        raise InsufficientBalanceError(available=10, requested=50)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/boom")

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "message": "Insufficient points balance",
        "code": "INSUFFICIENT_BALANCE",
    }
