"""
Tests for health check endpoints.
"""
import pytest

from flight_tracker.models import JobType
from flight_tracker.services import job_store


@pytest.mark.asyncio
async def test_health_endpoint_returns_healthy(client):
    """Test that the /health endpoint returns a healthy status."""
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["database"] == "healthy"
    assert data["execution_mode"] == "local"
    assert data["scheduler_running"] is False


@pytest.mark.asyncio
async def test_health_returns_json(client):
    """Test that the /health endpoint returns JSON content type."""
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/json"


@pytest.mark.asyncio
async def test_health_counts_jobs_by_status(client, db_session):
    job_store.create_job(db_session, JobType.CHECK_ALL)
    job_store.create_job(db_session, JobType.CHECK_ALL)

    data = (await client.get("/health")).json()

    assert data["jobs"] == {"queued": 2}
