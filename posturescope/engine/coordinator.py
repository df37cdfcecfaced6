"""
Scan Coordinator for PostureScope.

Owns one scan session from start to aggregation:

1. Normalise the domain and invoke the DNS plugin, which mints the
   session's correlation key (``dns_scan_id``).
2. Abort with :class:`CoreDependencyFailed` if DNS fails -- no other plugin
   is invoked without a key.
3. Fan out to the remaining plugins concurrently.  Each call carries its own
   deadline (enforced by :meth:`BasePlugin.invoke`) and the fan-out as a
   whole is bounded by ``FANOUT_DEADLINE_SECONDS``; calls still running at
   that point are cancelled and recorded as timed out.
4. Hand the complete result set back to the caller for correlation.

Progress events are published from their own tasks, each bounded by
``EVENT_PUBLISH_TIMEOUT_SECONDS``, so a slow broker can neither stall a
scan nor change a plugin's result.  A session waits for its outstanding
events only once its results are final.

Plugin calls share nothing but the admission semaphore, which is held only
while a call runs, never across the aggregation.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from posturescope.config import Settings, get_settings
from posturescope.core.events import EventPublisher
from posturescope.core.exceptions import CoreDependencyFailed
from posturescope.core.logging import get_logger
from posturescope.core.security import normalize_domain
from posturescope.plugins.base import (
    BasePlugin,
    PluginName,
    PluginResult,
    PluginStatus,
)
from posturescope.plugins.registry import PluginRegistry

logger = get_logger(__name__)


class ScanState(str, Enum):
    """Lifecycle states of a :class:`ScanSession`."""

    INIT = "init"
    DNS_PENDING = "dns_pending"
    DNS_RESOLVED = "dns_resolved"
    DNS_FAILED = "dns_failed"
    FANNING_OUT = "fanning_out"
    AGGREGATED = "aggregated"


_TRANSITIONS: dict[ScanState, frozenset[ScanState]] = {
    ScanState.INIT: frozenset({ScanState.DNS_PENDING}),
    ScanState.DNS_PENDING: frozenset({ScanState.DNS_RESOLVED, ScanState.DNS_FAILED}),
    ScanState.DNS_RESOLVED: frozenset({ScanState.FANNING_OUT}),
    ScanState.FANNING_OUT: frozenset({ScanState.AGGREGATED}),
    ScanState.DNS_FAILED: frozenset(),
    ScanState.AGGREGATED: frozenset(),
}


@dataclass
class ScanSession:
    """Mutable state of one scan, owned by the coordinator.

    ``domain`` is fixed at creation and ``dns_scan_id`` can be assigned
    exactly once.
    """

    domain: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: ScanState = ScanState.INIT
    results: dict[PluginName, PluginResult] = field(default_factory=dict)
    pending_events: set[asyncio.Task[None]] = field(
        default_factory=set, repr=False, compare=False
    )
    _dns_scan_id: Optional[str] = field(default=None, repr=False)

    @property
    def dns_scan_id(self) -> Optional[str]:
        return self._dns_scan_id

    def assign_scan_id(self, dns_scan_id: str) -> None:
        if self._dns_scan_id is not None:
            raise RuntimeError(
                f"Session for {self.domain} already has dns_scan_id {self._dns_scan_id}."
            )
        if not dns_scan_id:
            raise ValueError("dns_scan_id must not be empty.")
        self._dns_scan_id = dns_scan_id

    def transition(self, new_state: ScanState) -> None:
        """Move to *new_state*.

        Raises:
            RuntimeError: If the transition is not part of the lifecycle.
        """
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal scan state transition {self.state.value} -> {new_state.value}."
            )
        self.state = new_state

    def record(self, result: PluginResult) -> None:
        # Results are recorded once per plugin per session.
        if result.plugin in self.results:
            raise RuntimeError(f"{result.plugin.value} result already recorded.")
        self.results[result.plugin] = result

    @property
    def dns_result(self) -> Optional[PluginResult]:
        return self.results.get(PluginName.DNS)

    def all_results(self) -> list[PluginResult]:
        """Recorded results in plugin enumeration order."""
        return [self.results[name] for name in PluginName if name in self.results]


class ScanCoordinator:
    """Drive a :class:`ScanSession` through DNS and the plugin fan-out.

    Usage::

        coordinator = ScanCoordinator(registry, settings, events)
        session = await coordinator.run("Example.COM ")
        session.dns_scan_id      # "3f0c..."
        session.all_results()    # 8 PluginResults
    """

    def __init__(
        self,
        registry: PluginRegistry,
        settings: Optional[Settings] = None,
        events: Optional[EventPublisher] = None,
    ) -> None:
        self._registry = registry
        self._settings = settings or get_settings()
        self._events = events or EventPublisher()

    # -- Public entry point ----------------------------------------------------

    async def run(self, domain: str) -> ScanSession:
        """Scan *domain* and return the aggregated session.

        Raises:
            InvalidDomain: If *domain* is empty or malformed.  No plugin is
                invoked.
            CoreDependencyFailed: If the DNS plugin errors or times out.  No
                fan-out plugin is invoked.
        """
        session = ScanSession(domain=normalize_domain(domain))
        session.transition(ScanState.DNS_PENDING)

        logger.info(
            "Starting scan",
            extra={"action": "scan_start", "target": session.domain},
        )

        # ── DNS ────────────────────────────────────────────────────────
        dns_result: PluginResult = await self._registry.dns.invoke(session.domain)
        session.record(dns_result)

        if not dns_result.succeeded:
            session.transition(ScanState.DNS_FAILED)
            logger.error(
                "DNS scan failed: %s",
                dns_result.error_message,
                extra={"action": "dns_failed", "target": session.domain},
            )
            self._publish(
                session,
                "dns_failed",
                {"plugin": PluginName.DNS.value, "error": dns_result.error_message},
                channel_key=dns_result.dns_scan_id or session.domain,
            )
            await self._drain_events(session)
            raise CoreDependencyFailed(
                session.domain,
                dns_result.error_message or dns_result.status.value,
                dns_result=dns_result,
            )

        session.assign_scan_id(dns_result.dns_scan_id)
        session.transition(ScanState.DNS_RESOLVED)
        self._publish(
            session,
            "dns_resolved",
            {"plugin": PluginName.DNS.value, "domain": session.domain},
        )

        # ── Fan-out ────────────────────────────────────────────────────
        session.transition(ScanState.FANNING_OUT)
        for result in await self._fan_out(session):
            session.record(result)
        session.transition(ScanState.AGGREGATED)

        statuses = {name.value: res.status.value for name, res in session.results.items()}
        logger.info(
            "Scan aggregated: %s",
            statuses,
            extra={
                "action": "scan_aggregated",
                "target": session.domain,
                "scan_id": session.dns_scan_id,
            },
        )
        self._publish(session, "fanout_completed", {"statuses": statuses})
        await self._drain_events(session)
        return session

    # -- Fan-out ---------------------------------------------------------------

    async def _fan_out(self, session: ScanSession) -> list[PluginResult]:
        """Invoke every fan-out plugin and collect exactly one result each."""
        plugins: list[BasePlugin] = self._registry.fanout()
        semaphore = asyncio.Semaphore(self._settings.MAX_CONCURRENT_PLUGINS)

        tasks: dict[asyncio.Task[PluginResult], BasePlugin] = {
            asyncio.create_task(
                self._invoke(plugin, session, semaphore),
                name=f"plugin-{plugin.name.value}",
            ): plugin
            for plugin in plugins
        }

        done, pending = await asyncio.wait(
            tasks.keys(), timeout=self._settings.FANOUT_DEADLINE_SECONDS
        )

        for task in pending:
            task.cancel()
        if pending:
            # Let cancellations settle so no task outlives the session.
            await asyncio.gather(*pending, return_exceptions=True)

        collected: dict[PluginName, PluginResult] = {}
        for task, plugin in tasks.items():
            if task in done and not task.cancelled() and task.exception() is None:
                collected[plugin.name] = task.result()
                continue
            if task in done:
                cause = "was cancelled" if task.cancelled() else f"crashed: {task.exception()!r}"
                reason = f"{plugin.name.value} {cause}"
                status = PluginStatus.ERROR
            else:
                reason = (
                    f"{plugin.name.value} still running at the fan-out deadline "
                    f"of {self._settings.FANOUT_DEADLINE_SECONDS:g}s"
                )
                status = PluginStatus.TIMEOUT
            logger.warning(
                "%s",
                reason,
                extra={
                    "action": "plugin_abandoned",
                    "target": session.domain,
                    "scan_id": session.dns_scan_id,
                },
            )
            collected[plugin.name] = PluginResult.failed(
                plugin.name, session.dns_scan_id, reason, status=status
            )

        return [collected[plugin.name] for plugin in plugins]

    async def _invoke(
        self,
        plugin: BasePlugin,
        session: ScanSession,
        semaphore: asyncio.Semaphore,
    ) -> PluginResult:
        async with semaphore:
            result = await plugin.invoke(session.domain, session.dns_scan_id)
        logger.info(
            "Plugin completed: %s (status=%s, duration=%.2fs)",
            plugin.name.value,
            result.status.value,
            result.duration_seconds,
            extra={
                "action": "plugin_completed",
                "target": session.domain,
                "scan_id": session.dns_scan_id,
            },
        )
        self._publish(
            session,
            "plugin_completed",
            {
                "plugin": plugin.name.value,
                "status": result.status.value,
                "duration": result.duration_seconds,
            },
        )
        return result

    # -- Events ----------------------------------------------------------------

    def _publish(
        self,
        session: ScanSession,
        event_type: str,
        data: dict,
        channel_key: Optional[str] = None,
    ) -> None:
        """Schedule one event without waiting for it."""
        if not self._settings.PUBLISH_EVENTS:
            return
        task = asyncio.create_task(
            self._send_event(session, channel_key or session.dns_scan_id, event_type, data),
            name=f"event-{event_type}",
        )
        session.pending_events.add(task)
        task.add_done_callback(session.pending_events.discard)

    async def _send_event(
        self,
        session: ScanSession,
        channel_key: str,
        event_type: str,
        data: dict,
    ) -> None:
        timeout = self._settings.EVENT_PUBLISH_TIMEOUT_SECONDS
        try:
            await asyncio.wait_for(
                self._events.publish(channel_key, event_type, data), timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Event %s not published within %gs",
                event_type,
                timeout,
                extra={
                    "action": "event_dropped",
                    "target": session.domain,
                    "scan_id": session.dns_scan_id,
                },
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Event %s not published: %s",
                event_type,
                exc,
                extra={
                    "action": "event_dropped",
                    "target": session.domain,
                    "scan_id": session.dns_scan_id,
                },
            )

    @staticmethod
    async def _drain_events(session: ScanSession) -> None:
        # Every send is bounded, so this returns within one publish timeout.
        if session.pending_events:
            await asyncio.gather(*list(session.pending_events), return_exceptions=True)
