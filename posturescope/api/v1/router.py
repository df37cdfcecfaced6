"""
Aggregated APIRouter for API version 1.

All v1 endpoint routers are included here and exposed as a single ``router``
instance that is mounted by the FastAPI application in ``posturescope.main``.
The prefix ``/api/v1`` is applied by the application, so sub-routers only
declare their own resource prefix (e.g. ``/reports``).
"""

from __future__ import annotations

from fastapi import APIRouter

from posturescope.api.v1 import reports, scans

router = APIRouter()

router.include_router(
    reports.router,
    prefix="/reports",
    tags=["reports"],
)
router.include_router(
    scans.router,
    tags=["scans"],
)
