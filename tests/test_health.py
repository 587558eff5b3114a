"""
Tests for health check endpoints.
"""
from types import SimpleNamespace

import pytest
from fastapi import status
from httpx import AsyncClient

from rds_operator.main import app


@pytest.fixture
def ready_controller():
    controller = SimpleNamespace(
        running=True,
        synced=True,
        status=lambda: {"running": True, "synced": True, "known_databases": 2, "pending_reconciles": 0},
    )
    app.state.controller = controller
    yield controller
    del app.state.controller


@pytest.mark.asyncio
async def test_health_check(test_client: AsyncClient):
    """Test basic health check endpoint."""
    response = await test_client.get("/health/")
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert "provider" in data
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_liveness_probe(test_client: AsyncClient):
    """Test Kubernetes liveness probe."""
    response = await test_client.get("/health/live")
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "alive"
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_readiness_probe_before_controller(test_client: AsyncClient):
    """Not ready until the controller has listed Databases."""
    response = await test_client.get("/health/ready")
    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.json()["status"] == "not_ready"


@pytest.mark.asyncio
async def test_readiness_probe_not_synced(test_client: AsyncClient, ready_controller):
    ready_controller.synced = False
    response = await test_client.get("/health/ready")
    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE


@pytest.mark.asyncio
async def test_readiness_probe_synced(test_client: AsyncClient, ready_controller):
    response = await test_client.get("/health/ready")
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "ready"
    assert data["controller"]["known_databases"] == 2


@pytest.mark.asyncio
async def test_startup_probe(test_client: AsyncClient, ready_controller):
    """Test Kubernetes startup probe."""
    response = await test_client.get("/health/startup")
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "started"
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_metrics_exposed(test_client: AsyncClient):
    response = await test_client.get("/metrics")
    assert response.status_code == status.HTTP_200_OK
    assert "rds_operator_reconcile_total" in response.text
