"""
Shared FastAPI dependency functions for the PostureScope API.

Provides the caller identity (the ``X-API-Key`` header) and the
:class:`~posturescope.engine.service.ReportService` built at startup.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request, Security
from fastapi.security import APIKeyHeader

from posturescope.engine.service import ReportService

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def get_identity(api_key: Optional[str] = Security(api_key_header)) -> Optional[str]:
    """Return the raw identity token, or ``None`` when the header is missing.

    Presence is enforced by the service so that every entry point (HTTP,
    Celery, tests) rejects anonymous calls the same way.
    """
    return api_key


def get_report_service(request: Request) -> ReportService:
    """Return the service instance stored on ``app.state`` at startup."""
    return request.app.state.report_service
