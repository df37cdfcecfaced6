"""
Scan progress events over Redis Pub/Sub.

The coordinator announces milestones of a scan session (``dns_resolved``,
``plugin_completed``, ...) on the channel ``scan:{dns_scan_id}`` so that a
dashboard can follow a long fan-out live.  Publishing is fire-and-forget:
a broken Redis connection is logged and never affects the scan.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis

from posturescope.core.logging import get_logger

logger = get_logger(__name__)


class EventPublisher:
    """Publisher that drops every event.

    Used when ``PUBLISH_EVENTS`` is disabled and as the default in tests.
    """

    async def publish(self, channel_key: str, event_type: str, data: dict[str, Any]) -> None:
        return None

    async def close(self) -> None:
        return None


class RedisEventPublisher(EventPublisher):
    """Publish scan events to Redis.

    One client is opened lazily and reused for the lifetime of the
    publisher.

    Args:
        redis_url: Connection URL, e.g. ``"redis://localhost:6379/0"``.
        timeout:   Socket connect and read timeout in seconds.
    """

    def __init__(self, redis_url: str, timeout: float = 2.0) -> None:
        self._redis_url = redis_url
        self._timeout = timeout
        self._client: aioredis.Redis | None = None

    async def publish(self, channel_key: str, event_type: str, data: dict[str, Any]) -> None:
        channel: str = f"scan:{channel_key}"
        message: str = json.dumps(
            {
                "event": event_type,
                "plugin": data.get("plugin"),
                "data": data,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            default=str,
        )

        try:
            if self._client is None:
                self._client = aioredis.from_url(
                    self._redis_url,
                    socket_timeout=self._timeout,
                    socket_connect_timeout=self._timeout,
                )
            await self._client.publish(channel, message)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Failed to publish Redis event: %s",
                exc,
                extra={"action": "redis_publish_error", "scan_id": channel_key},
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
