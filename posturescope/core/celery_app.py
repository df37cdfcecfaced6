"""
Celery application instance and configuration.

The Celery app uses Redis as both broker and result backend, configured from
the application settings.  Report generation is the only task; it lives in
``posturescope.tasks.report_tasks``.
"""

from __future__ import annotations

from celery import Celery

from posturescope.config import get_settings

# ── Constants ────────────────────────────────────────────────────────────────

_REPORT_QUEUE: str = "reports"
# Added on top of the DNS and fan-out deadlines to cover persistence.
_TASK_TIME_MARGIN_SECONDS: int = 60
_TASK_DEFAULT_RATE_LIMIT: str = "10/m"
_RESULT_EXPIRES_SECONDS: int = 3600
_WORKER_PREFETCH_MULTIPLIER: int = 1


def _create_celery_app() -> Celery:
    """Build and configure the Celery application instance."""
    settings = get_settings()
    dns_deadline = settings.PLUGIN_TIMEOUTS.get("DNS", settings.PLUGIN_TIMEOUT_SECONDS)
    soft_limit = int(dns_deadline + settings.FANOUT_DEADLINE_SECONDS) + _TASK_TIME_MARGIN_SECONDS

    app = Celery(
        "posturescope",
        broker=settings.REDIS_URL,
        backend=settings.REDIS_URL,
        include=["posturescope.tasks.report_tasks"],
    )

    app.conf.update(
        # ── Serialization ────────────────────────────────────────────────
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",

        # ── Time Zones ───────────────────────────────────────────────────
        timezone="UTC",
        enable_utc=True,

        # ── Task Execution ───────────────────────────────────────────────
        task_soft_time_limit=soft_limit,
        task_time_limit=soft_limit + _TASK_TIME_MARGIN_SECONDS,
        task_default_rate_limit=_TASK_DEFAULT_RATE_LIMIT,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        task_track_started=True,

        # ── Routing ──────────────────────────────────────────────────────
        task_default_queue=_REPORT_QUEUE,
        task_routes={"posturescope.generate_report": {"queue": _REPORT_QUEUE}},

        # ── Result Backend ───────────────────────────────────────────────
        result_expires=_RESULT_EXPIRES_SECONDS,

        # ── Worker ───────────────────────────────────────────────────────
        worker_prefetch_multiplier=_WORKER_PREFETCH_MULTIPLIER,
        worker_max_tasks_per_child=200,
        worker_hijack_root_logger=False,

        # ── Broker ───────────────────────────────────────────────────────
        broker_connection_retry_on_startup=True,
    )

    return app


celery: Celery = _create_celery_app()
