"""
Celery task definitions for background report generation.

Bridges the synchronous Celery worker with the async
:class:`~posturescope.engine.service.ReportService`.  Every task run gets its
own event loop, database engine and orchestration context, because engines
and Redis clients cannot be shared across event loops.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Optional

from posturescope.core.celery_app import celery
from posturescope.core.logging import configure_logging, get_logger

if TYPE_CHECKING:
    from posturescope.engine.context import OrchestrationContext

logger = get_logger(__name__)


async def _generate(
    domain: str,
    caller: str,
    context: Optional["OrchestrationContext"] = None,
) -> dict[str, Any]:
    """Generate and persist one report, returning its JSON snapshot.

    Args:
        domain: Domain to scan.
        caller: Caller reference from
            :func:`~posturescope.core.security.caller_reference`; it stands
            in for the API key, which never enters the broker.
        context: An existing orchestration context.  When omitted a fresh
            one is built and torn down around the call.
    """
    # Late imports to keep worker start-up independent of the engine.
    from posturescope.config import get_settings
    from posturescope.core.database import build_engine, build_session_factory
    from posturescope.engine.context import build_context
    from posturescope.engine.service import ReportService

    if context is not None:
        report = await ReportService(context).generate_report(caller, domain)
        return report.to_dict()

    settings = get_settings()
    task_engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
    task_context = build_context(settings, session_factory=build_session_factory(task_engine))
    try:
        report = await ReportService(task_context).generate_report(caller, domain)
        return report.to_dict()
    finally:
        await task_context.close()
        await task_engine.dispose()


@celery.task(
    name="posturescope.generate_report",
    bind=True,
    max_retries=0,
    acks_late=True,
    reject_on_worker_lost=True,
    track_started=True,
)
def generate_report(self: Any, domain: str, caller: str) -> dict[str, Any]:
    """Scan *domain* and store its report.

    Not retried: a failed DNS scan is reported to the caller through the
    task result, and re-running is the caller's decision.

    Returns:
        The stored report as produced by ``Report.to_dict()``.
    """
    configure_logging()
    logger.info(
        "Celery task received",
        extra={"action": "task_received", "target": domain},
    )

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        result = loop.run_until_complete(_generate(domain, caller))
    except Exception:
        logger.exception(
            "Report generation failed",
            extra={"action": "task_failed", "target": domain},
        )
        raise
    finally:
        loop.close()

    logger.info(
        "Celery task completed: report %s",
        result["report_id"],
        extra={"action": "task_completed", "target": domain},
    )
    return result
