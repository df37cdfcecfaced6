"""
PostureScope FastAPI application entry point.

Creates and configures the FastAPI app with:
- CORS middleware
- Security headers middleware
- Exception handlers mapping engine errors to HTTP status codes
- API v1 router
- Health check endpoint
- A lifespan that builds the orchestration context and disposes of it
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from posturescope.api.v1.router import router as v1_router
from posturescope.config import get_settings
from posturescope.core.database import dispose_engine
from posturescope.core.exceptions import (
    CoreDependencyFailed,
    InvalidDomain,
    NotFound,
    PostureScopeError,
    Unauthenticated,
)
from posturescope.core.logging import configure_logging, get_logger
from posturescope.engine.context import OrchestrationContext, build_context
from posturescope.engine.service import ReportService

# ── Constants ────────────────────────────────────────────────────────────────

_HEALTH_CHECK_PATH: str = "/health"
_VERSION: str = "1.0.0"

_SECURITY_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), camera=(), microphone=()",
}

_ERROR_STATUS: dict[type[PostureScopeError], int] = {
    InvalidDomain: status.HTTP_400_BAD_REQUEST,
    Unauthenticated: status.HTTP_401_UNAUTHORIZED,
    NotFound: status.HTTP_404_NOT_FOUND,
    CoreDependencyFailed: status.HTTP_502_BAD_GATEWAY,
}


# ── Security Headers Middleware ──────────────────────────────────────────────

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware that injects security-related HTTP response headers."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response: Response = await call_next(request)
        for header_name, header_value in _SECURITY_HEADERS.items():
            response.headers[header_name] = header_value
        return response


# ── Error Handlers ───────────────────────────────────────────────────────────

async def posturescope_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render an engine error as ``{"error": ..., "detail": ...}``.

    The status code comes from :data:`_ERROR_STATUS`; unmapped engine errors
    are reported as *500*.
    """
    status_code = next(
        (code for kind, code in _ERROR_STATUS.items() if isinstance(exc, kind)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    headers = {"WWW-Authenticate": "ApiKey"} if isinstance(exc, Unauthenticated) else None
    get_logger(__name__).warning(
        "Request failed: %s",
        exc,
        extra={"action": "request_error", "target": request.url.path},
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.__class__.__name__, "detail": str(exc)},
        headers=headers,
    )


# ── Application Factory ─────────────────────────────────────────────────────

def create_app(context: Optional[OrchestrationContext] = None) -> FastAPI:
    """Build and return the configured FastAPI application instance.

    Args:
        context: A ready-made orchestration context.  When omitted the
            lifespan builds one from the settings at startup and disposes
            of it on shutdown.

    Returns:
        A fully configured ``FastAPI`` app ready to serve requests.
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        logger = get_logger(__name__)
        logger.info(
            "Application starting",
            extra={"action": "startup", "target": settings.APP_NAME},
        )
        owns_context = context is None
        if owns_context:
            application.state.report_service = ReportService(build_context(settings))
        try:
            yield
        finally:
            logger.info(
                "Application shutting down",
                extra={"action": "shutdown", "target": settings.APP_NAME},
            )
            if owns_context:
                await application.state.report_service.context.close()
                await dispose_engine()

    application = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Domain security posture reports -- DNS-first scanning, "
            "concurrent intelligence gathering, correlation and risk scoring."
        ),
        version=_VERSION,
        docs_url="/docs",
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    if context is not None:
        application.state.report_service = ReportService(context)

    # ── Middleware (order matters: outermost first) ───────────────────────

    application.add_middleware(SecurityHeadersMiddleware)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        max_age=600,
    )

    # ── Error Handlers ───────────────────────────────────────────────────

    application.add_exception_handler(PostureScopeError, posturescope_error_handler)

    # ── Routers ──────────────────────────────────────────────────────────

    application.include_router(v1_router, prefix=settings.API_V1_PREFIX)

    # ── Health Check ─────────────────────────────────────────────────────

    @application.get(
        _HEALTH_CHECK_PATH,
        tags=["health"],
        summary="Application health check",
        response_class=JSONResponse,
    )
    async def health_check() -> dict[str, Any]:
        """Return the current health status of the application."""
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": _VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return application


# ── Module-Level App Instance ────────────────────────────────────────────────

app: FastAPI = create_app()
