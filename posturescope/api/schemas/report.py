"""
Pydantic v2 schemas for report-related API requests and responses.

Responses are validated from the engine's ``to_dict()`` output, so every
datetime arrives as an ISO-8601 string and is parsed back by pydantic.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class ReportCreate(BaseModel):
    """Payload for ``POST /api/v1/reports`` and ``POST /api/v1/reports/jobs``.

    The domain is normalised and validated by the engine, so a malformed
    value yields *400 Bad Request* rather than a schema error.
    """

    domain: str = Field(
        ...,
        max_length=255,
        examples=["example.com"],
        description="Domain to scan.",
    )


class ReportRebuild(BaseModel):
    """Payload for ``POST /api/v1/reports/rebuild``."""

    dns_scan_id: str = Field(
        ...,
        min_length=1,
        max_length=36,
        description="Correlation key of a stored scan.",
    )


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class PluginResultResponse(BaseModel):
    """One plugin slot of a report."""

    plugin: str
    status: str = Field(..., description="ok, error, timeout or absent.")
    dns_scan_id: Optional[str] = None
    payload: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    produced_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    model_config = ConfigDict(from_attributes=True)


class FindingResponse(BaseModel):
    """A weighted finding behind a score."""

    plugin: str
    reason: str
    penalty: int


class ReportResponse(BaseModel):
    """Full report as assembled."""

    report_id: str
    domain: str
    dns_scan_id: str
    score: int = Field(..., ge=0, le=100)
    tier: str
    created_at: datetime
    results_by_plugin: dict[str, PluginResultResponse]
    findings: list[FindingResponse] = Field(default_factory=list)


class RiskScoreResponse(BaseModel):
    """Score of the latest correlated bucket of a domain."""

    domain: str
    value: int = Field(..., ge=0, le=100)
    tier: str
    findings: list[FindingResponse] = Field(default_factory=list)


class ReportJobResponse(BaseModel):
    """Acknowledgement of a queued background report."""

    task_id: str
    domain: str
    status: str = "queued"
