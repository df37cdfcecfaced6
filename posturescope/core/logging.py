"""
Structured logging configuration for PostureScope.

Every log record carries the fields ``action``, ``target`` and ``scan_id``
so that a whole scan session can be followed through the coordinator, the
plugins and the report assembler by grepping a single correlation key.

Usage::

    from posturescope.core.logging import configure_logging, get_logger

    configure_logging()                # call once at startup
    logger = get_logger(__name__)
    logger.info(
        "fan-out finished",
        extra={"action": "fanout_done", "target": "example.com", "scan_id": key},
    )
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

from posturescope.config import get_settings

# ── Constants ────────────────────────────────────────────────────────────────

_LOG_FORMAT: str = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "action=%(action)s | target=%(target)s | scan_id=%(scan_id)s | %(message)s"
)
_DATE_FORMAT: str = "%Y-%m-%dT%H:%M:%S%z"
_ROOT_LOGGER_NAME: str = "posturescope"
_QUIET_LOGGERS: tuple[str, ...] = (
    "uvicorn.access",
    "sqlalchemy.engine",
    "celery",
    "httpx",
    "whois.whois",
)


# ── Custom Formatter ─────────────────────────────────────────────────────────

class StructuredFormatter(logging.Formatter):
    """Formatter that fills in structured fields a caller did not supply.

    Plugin code logs through plain ``logging.getLogger(__name__)`` and rarely
    passes ``extra``; missing fields render as ``-`` instead of raising.
    """

    _DEFAULTS: dict[str, str] = {
        "action": "-",
        "target": "-",
        "scan_id": "-",
    }

    def format(self, record: logging.LogRecord) -> str:
        for key, default in self._DEFAULTS.items():
            if not hasattr(record, key):
                setattr(record, key, default)
        return super().format(record)


# ── Public API ───────────────────────────────────────────────────────────────

def configure_logging(level: Optional[str] = None) -> None:
    """Initialise the application-wide logging configuration.

    Called from the FastAPI startup hook and from the Celery task entry
    point.  Repeated calls only adjust the level.

    Args:
        level: Override the log level.  When ``None``, ``DEBUG`` is used if
            ``settings.DEBUG`` is truthy, otherwise ``INFO``.
    """
    settings = get_settings()

    if level is None:
        level = "DEBUG" if settings.DEBUG else "INFO"

    root_logger: logging.Logger = logging.getLogger(_ROOT_LOGGER_NAME)
    root_logger.setLevel(level)

    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(StructuredFormatter(_LOG_FORMAT, datefmt=_DATE_FORMAT))
        root_logger.addHandler(handler)

    for noisy_logger in _QUIET_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    root_logger.info(
        "Logging configured at %s level",
        level,
        extra={"action": "logging_init", "target": settings.APP_NAME},
    )


def get_logger(name: str) -> logging.Logger:
    """Return a logger inside the ``posturescope`` namespace.

    Module names that already start with ``posturescope.`` are used as-is so
    that ``get_logger(__name__)`` does not double the prefix.

    Args:
        name: Typically ``__name__`` of the calling module.

    Returns:
        A :class:`logging.Logger` sharing the configured handlers.
    """
    if name == _ROOT_LOGGER_NAME or name.startswith(f"{_ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT_LOGGER_NAME}.{name}")
