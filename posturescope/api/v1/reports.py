"""
Report endpoints.

Generate a report synchronously, queue one on the Celery worker, re-assemble
one from stored results, and read stored reports back.  Engine errors are
translated to HTTP status codes by the handlers registered in
:mod:`posturescope.main`.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from posturescope.api.deps import get_identity, get_report_service
from posturescope.api.schemas.report import (
    ReportCreate,
    ReportJobResponse,
    ReportRebuild,
    ReportResponse,
)
from posturescope.core.logging import get_logger
from posturescope.core.security import caller_reference, normalize_domain
from posturescope.engine.reports import Report
from posturescope.engine.service import ReportService
from posturescope.tasks.report_tasks import generate_report as generate_report_task

logger = get_logger(__name__)

router = APIRouter()


def _to_response(report: Report) -> ReportResponse:
    return ReportResponse.model_validate(report.to_dict())


# ---------------------------------------------------------------------------
# POST /reports
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=ReportResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Scan a domain and generate its posture report",
)
async def create_report(
    body: ReportCreate,
    identity: Optional[str] = Depends(get_identity),
    service: ReportService = Depends(get_report_service),
) -> ReportResponse:
    """Run a full scan and return the stored report.

    The request blocks until the fan-out deadline at the latest.  Use
    ``POST /reports/jobs`` to run the scan in the background instead.
    """
    report = await service.generate_report(identity, body.domain)
    return _to_response(report)


@router.post(
    "/jobs",
    response_model=ReportJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue report generation on the worker",
)
async def queue_report(
    body: ReportCreate,
    identity: Optional[str] = Depends(get_identity),
    service: ReportService = Depends(get_report_service),
) -> ReportJobResponse:
    """Validate the request and dispatch ``posturescope.generate_report``.

    The worker receives a caller reference, never the API key.
    """
    service.context.identity_check(identity)
    domain = normalize_domain(body.domain)
    task = generate_report_task.delay(domain, caller_reference(identity))
    logger.info(
        "Queued report job %s",
        task.id,
        extra={"action": "report_queued", "target": domain},
    )
    return ReportJobResponse(task_id=str(task.id), domain=domain)


@router.post(
    "/rebuild",
    response_model=ReportResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Re-assemble a report from stored results",
)
async def rebuild_report(
    body: ReportRebuild,
    identity: Optional[str] = Depends(get_identity),
    service: ReportService = Depends(get_report_service),
) -> ReportResponse:
    report = await service.rebuild_report(identity, body.dns_scan_id)
    return _to_response(report)


# ---------------------------------------------------------------------------
# GET /reports
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=list[ReportResponse],
    summary="List reports, newest first",
)
async def list_reports(
    domain: Optional[str] = Query(default=None, description="Only reports for this domain."),
    identity: Optional[str] = Depends(get_identity),
    service: ReportService = Depends(get_report_service),
) -> list[ReportResponse]:
    reports = await service.list_reports(identity, domain)
    return [_to_response(report) for report in reports]


@router.get(
    "/{report_id}",
    response_model=ReportResponse,
    summary="Get a report exactly as it was assembled",
)
async def get_report(
    report_id: str,
    identity: Optional[str] = Depends(get_identity),
    service: ReportService = Depends(get_report_service),
) -> ReportResponse:
    report = await service.get_report_by_id(identity, report_id)
    return _to_response(report)
