"""
Scan-level endpoints.

Re-score a domain from its latest stored scan, and re-run a single fan-out
plugin under an existing correlation key.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from posturescope.api.deps import get_identity, get_report_service
from posturescope.api.schemas.report import PluginResultResponse, RiskScoreResponse
from posturescope.core.security import normalize_domain
from posturescope.engine.service import ReportService

router = APIRouter()


@router.get(
    "/risk-score",
    response_model=RiskScoreResponse,
    summary="Score the latest correlated scan of a domain",
)
async def get_risk_score(
    domain: str = Query(..., description="Domain to score."),
    identity: Optional[str] = Depends(get_identity),
    service: ReportService = Depends(get_report_service),
) -> RiskScoreResponse:
    """Return the score without scanning and without storing a report."""
    risk = await service.calculate_risk_score(identity, domain)
    return RiskScoreResponse(domain=normalize_domain(domain), **risk.to_dict())


@router.post(
    "/scans/{dns_scan_id}/plugins/{plugin}",
    response_model=PluginResultResponse,
    summary="Re-run one plugin for an existing scan",
)
async def rescan_plugin(
    dns_scan_id: str,
    plugin: str,
    identity: Optional[str] = Depends(get_identity),
    service: ReportService = Depends(get_report_service),
) -> PluginResultResponse:
    """Invoke *plugin* again; the stored result supersedes the earlier one."""
    result = await service.rescan_plugin(identity, dns_scan_id, plugin)
    return PluginResultResponse.model_validate(result.to_dict())
