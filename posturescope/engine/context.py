"""
Orchestration context for PostureScope.

Everything the engine needs from the outside world (settings, the plugin
registry, storage, the event publisher and the identity check) travels in one
explicitly constructed :class:`OrchestrationContext`.  The HTTP app builds one
at startup, each Celery task builds its own, and tests build theirs from
fakes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from posturescope.config import Settings, get_settings
from posturescope.core.database import get_session_factory
from posturescope.core.events import EventPublisher, RedisEventPublisher
from posturescope.core.security import require_identity
from posturescope.plugins.registry import PluginRegistry
from posturescope.storage import ReportStore, SqlReportStore


@dataclass
class OrchestrationContext:
    """Collaborators shared by the coordinator, assembler and service.

    Attributes:
        settings:       Effective configuration.
        registry:       One configured plugin per enumerated name.
        store:          Report and result storage.
        events:         Progress event publisher.
        identity_check: Callable that returns the caller identity or raises
                        :class:`~posturescope.core.exceptions.Unauthenticated`.
    """

    settings: Settings
    registry: PluginRegistry
    store: ReportStore
    events: EventPublisher = field(default_factory=EventPublisher)
    identity_check: Callable[[Optional[str]], str] = require_identity

    async def close(self) -> None:
        await self.events.close()


def build_context(
    settings: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    registry: Optional[PluginRegistry] = None,
    events: Optional[EventPublisher] = None,
) -> OrchestrationContext:
    """Build a context from settings, filling in production defaults.

    Args:
        settings:        Defaults to :func:`get_settings`.
        session_factory: Defaults to the process-wide factory.
        registry:        Defaults to every catalogued plugin.
        events:          Defaults to Redis when ``PUBLISH_EVENTS`` is on.
    """
    settings = settings or get_settings()
    if events is None:
        events = (
            RedisEventPublisher(settings.REDIS_URL, settings.EVENT_PUBLISH_TIMEOUT_SECONDS)
            if settings.PUBLISH_EVENTS
            else EventPublisher()
        )
    return OrchestrationContext(
        settings=settings,
        registry=registry or PluginRegistry.from_catalogue(settings),
        store=SqlReportStore(session_factory or get_session_factory()),
        events=events,
    )
