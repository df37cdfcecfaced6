"""
Tests for the report API endpoints.

Covers synchronous generation, background job dispatch, re-assembly,
listing and lookup via the ``/api/v1/reports`` routes, plus the mapping
of engine errors onto HTTP status codes.
"""

from __future__ import annotations

import logging
from unittest.mock import MagicMock, patch

import pytest
from httpx import AsyncClient

from conftest import API_KEY
from posturescope.core.exceptions import PluginFailure
from posturescope.core.security import caller_reference
from posturescope.plugins.base import PluginName


@pytest.mark.asyncio
async def test_create_report_success(client: AsyncClient) -> None:
    """POST /api/v1/reports scans the domain and returns 201 with the report."""
    response = await client.post("/api/v1/reports", json={"domain": "Example.COM "})

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["domain"] == "example.com"
    assert data["dns_scan_id"] == "abc123"
    assert data["score"] == 0
    assert data["tier"] == "Low"
    assert set(data["results_by_plugin"]) == {name.value for name in PluginName}
    assert data["results_by_plugin"]["DNS"]["status"] == "ok"
    assert response.headers["X-Content-Type-Options"] == "nosniff"


@pytest.mark.asyncio
async def test_create_report_with_failed_plugin(
    client: AsyncClient, fake_plugins: dict
) -> None:
    """A failed fan-out plugin is reported in its slot; the request still succeeds."""
    fake_plugins[PluginName.TLS].error = PluginFailure(PluginName.TLS, "handshake failure")

    response = await client.post("/api/v1/reports", json={"domain": "example.com"})

    assert response.status_code == 201
    tls = response.json()["results_by_plugin"]["TLS"]
    assert tls["status"] == "error"
    assert tls["error_message"] == "handshake failure"


@pytest.mark.asyncio
async def test_create_report_without_api_key(client: AsyncClient) -> None:
    """A request without X-API-Key is rejected with 401."""
    del client.headers["X-API-Key"]

    response = await client.post("/api/v1/reports", json={"domain": "example.com"})

    assert response.status_code == 401
    assert response.json()["error"] == "Unauthenticated"
    assert response.headers["WWW-Authenticate"] == "ApiKey"


@pytest.mark.asyncio
async def test_create_report_invalid_domain(client: AsyncClient) -> None:
    """A malformed domain is rejected with 400."""
    response = await client.post("/api/v1/reports", json={"domain": "not a domain!"})

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidDomain"


@pytest.mark.asyncio
async def test_create_report_dns_failure(client: AsyncClient, fake_plugins: dict) -> None:
    """A failed DNS scan is reported as 502 and no report is stored."""
    fake_plugins[PluginName.DNS].error = PluginFailure(PluginName.DNS, "SERVFAIL")

    response = await client.post("/api/v1/reports", json={"domain": "example.com"})
    listing = await client.get("/api/v1/reports")

    assert response.status_code == 502
    assert response.json()["error"] == "CoreDependencyFailed"
    assert "SERVFAIL" in response.json()["detail"]
    assert listing.json() == []


@pytest.mark.asyncio
async def test_get_and_list_reports(client: AsyncClient) -> None:
    """Stored reports can be listed by domain and fetched by id."""
    created = (await client.post("/api/v1/reports", json={"domain": "example.com"})).json()

    listed = await client.get("/api/v1/reports", params={"domain": "example.com"})
    fetched = await client.get(f"/api/v1/reports/{created['report_id']}")

    assert listed.status_code == 200
    assert [r["report_id"] for r in listed.json()] == [created["report_id"]]
    assert fetched.status_code == 200
    assert fetched.json() == created


@pytest.mark.asyncio
async def test_get_unknown_report(client: AsyncClient) -> None:
    """GET /api/v1/reports/{id} with an unknown id returns 404."""
    response = await client.get("/api/v1/reports/00000000-0000-0000-0000-000000000000")

    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


@pytest.mark.asyncio
async def test_rebuild_report(client: AsyncClient) -> None:
    """POST /api/v1/reports/rebuild re-assembles a stored scan into a new report."""
    created = (await client.post("/api/v1/reports", json={"domain": "example.com"})).json()

    response = await client.post(
        "/api/v1/reports/rebuild", json={"dns_scan_id": created["dns_scan_id"]}
    )

    assert response.status_code == 201
    assert response.json()["report_id"] != created["report_id"]
    assert response.json()["dns_scan_id"] == created["dns_scan_id"]


@pytest.mark.asyncio
async def test_queue_report_job(client: AsyncClient) -> None:
    """POST /api/v1/reports/jobs validates the request and dispatches the Celery task."""
    with patch("posturescope.api.v1.reports.generate_report_task") as mock_task:
        mock_task.delay.return_value = MagicMock(id="task-1")
        response = await client.post("/api/v1/reports/jobs", json={"domain": "Example.com"})

    assert response.status_code == 202
    assert response.json() == {"task_id": "task-1", "domain": "example.com", "status": "queued"}
    mock_task.delay.assert_called_once_with("example.com", caller_reference(API_KEY))
    assert API_KEY not in mock_task.delay.call_args.args


@pytest.mark.asyncio
async def test_queue_report_job_is_logged_without_the_token(
    client: AsyncClient, caplog: pytest.LogCaptureFixture
) -> None:
    """Queued jobs are logged under the posturescope namespace with the target only."""
    with caplog.at_level(logging.INFO, logger="posturescope"), patch(
        "posturescope.api.v1.reports.generate_report_task"
    ) as mock_task:
        mock_task.delay.return_value = MagicMock(id="task-1")
        await client.post("/api/v1/reports/jobs", json={"domain": "example.com"})

    queued = [r for r in caplog.records if getattr(r, "action", None) == "report_queued"]
    assert len(queued) == 1
    assert queued[0].name == "posturescope.api.v1.reports"
    assert queued[0].target == "example.com"
    assert API_KEY not in caplog.text


@pytest.mark.asyncio
async def test_queue_report_job_rejects_invalid_domain(client: AsyncClient) -> None:
    """Invalid domains are rejected before anything is queued."""
    with patch("posturescope.api.v1.reports.generate_report_task") as mock_task:
        response = await client.post("/api/v1/reports/jobs", json={"domain": ""})

    assert response.status_code == 400
    mock_task.delay.assert_not_called()


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    """GET /health reports the service as healthy."""
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
