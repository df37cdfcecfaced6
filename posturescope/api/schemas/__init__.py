"""
Pydantic v2 schemas for the PostureScope REST API.

Re-exports every public schema so consumers can do::

    from posturescope.api.schemas import ReportCreate, ReportResponse  # etc.
"""

from posturescope.api.schemas.report import (
    FindingResponse,
    PluginResultResponse,
    ReportCreate,
    ReportJobResponse,
    ReportRebuild,
    ReportResponse,
    RiskScoreResponse,
)

__all__: list[str] = [
    "FindingResponse",
    "PluginResultResponse",
    "ReportCreate",
    "ReportJobResponse",
    "ReportRebuild",
    "ReportResponse",
    "RiskScoreResponse",
]
