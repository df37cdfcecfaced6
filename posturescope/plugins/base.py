"""
Base plugin interface for all PostureScope data sources.

Defines the closed enumeration of plugin names, the immutable result record
every invocation produces, and the abstract base class whose
:meth:`BasePlugin.invoke` enforces the uniform contract: a bounded deadline,
no uncaught exceptions, and a fresh timestamped result per call.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from posturescope.config import Settings, get_settings
from posturescope.core.exceptions import PluginFailure
from posturescope.core.logging import get_logger

logger = get_logger(__name__)


class PluginName(str, Enum):
    """The fixed set of intelligence sources.

    The value doubles as the grouping key in correlated buckets and in
    ``Report.results_by_plugin``.  Declaration order is the report order.
    """

    DNS = "DNS"
    TLS = "TLS"
    CRTSH = "CRTSH"
    CHAOS = "CHAOS"
    SHODAN = "SHODAN"
    OTX = "OTX"
    WHOIS = "WHOIS"
    ABUSECH = "ABUSECH"


MANDATORY_PLUGIN: PluginName = PluginName.DNS
FANOUT_PLUGINS: tuple[PluginName, ...] = tuple(
    name for name in PluginName if name is not MANDATORY_PLUGIN
)


class PluginStatus(str, Enum):
    """Outcome of a plugin slot.

    ``ABSENT`` never comes out of an invocation; it marks a slot for which
    no result exists in a correlated bucket.
    """

    OK = "ok"
    ERROR = "error"
    TIMEOUT = "timeout"
    ABSENT = "absent"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class PluginResult:
    """Immutable outcome of one plugin invocation.

    Attributes:
        plugin:        Which data source produced the result.
        status:        ``ok``, ``error``, ``timeout`` or the ``absent`` marker.
        dns_scan_id:   Correlation key the invocation was bound to.  For the
                       DNS plugin this is the key it minted.
        payload:       Plugin-specific JSON-safe data (``ok`` only).
        error_message: Failure reason (``error`` / ``timeout`` only).
        produced_at:   UTC completion time; ``None`` for absent markers.
        duration_seconds: Wall-clock time spent in the invocation.
    """

    plugin: PluginName
    status: PluginStatus
    dns_scan_id: Optional[str] = None
    payload: Optional[dict[str, Any]] = None
    error_message: Optional[str] = None
    produced_at: Optional[datetime] = None
    duration_seconds: float = field(default=0.0, compare=False)

    # -- Constructors ----------------------------------------------------------

    @classmethod
    def ok(
        cls,
        plugin: PluginName,
        dns_scan_id: Optional[str],
        payload: dict[str, Any],
        produced_at: Optional[datetime] = None,
        duration_seconds: float = 0.0,
    ) -> "PluginResult":
        return cls(
            plugin=plugin,
            status=PluginStatus.OK,
            dns_scan_id=dns_scan_id,
            payload=payload,
            produced_at=produced_at or _utcnow(),
            duration_seconds=duration_seconds,
        )

    @classmethod
    def failed(
        cls,
        plugin: PluginName,
        dns_scan_id: Optional[str],
        error_message: str,
        status: PluginStatus = PluginStatus.ERROR,
        produced_at: Optional[datetime] = None,
        duration_seconds: float = 0.0,
    ) -> "PluginResult":
        if status not in (PluginStatus.ERROR, PluginStatus.TIMEOUT):
            raise ValueError(f"A failed result cannot have status {status.value!r}.")
        return cls(
            plugin=plugin,
            status=status,
            dns_scan_id=dns_scan_id,
            error_message=error_message,
            produced_at=produced_at or _utcnow(),
            duration_seconds=duration_seconds,
        )

    @classmethod
    def absent(cls, plugin: PluginName, dns_scan_id: Optional[str] = None) -> "PluginResult":
        return cls(plugin=plugin, status=PluginStatus.ABSENT, dns_scan_id=dns_scan_id)

    # -- Queries ---------------------------------------------------------------

    @property
    def succeeded(self) -> bool:
        return self.status is PluginStatus.OK

    # -- Serialisation ---------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-safe representation used by storage and the API."""
        return {
            "plugin": self.plugin.value,
            "status": self.status.value,
            "dns_scan_id": self.dns_scan_id,
            "payload": self.payload,
            "error_message": self.error_message,
            "produced_at": self.produced_at.isoformat() if self.produced_at else None,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PluginResult":
        """Rebuild a result from :meth:`to_dict` output."""
        return cls(
            plugin=PluginName(data["plugin"]),
            status=PluginStatus(data["status"]),
            dns_scan_id=data.get("dns_scan_id"),
            payload=data.get("payload"),
            error_message=data.get("error_message"),
            produced_at=_parse_datetime(data.get("produced_at")),
            duration_seconds=float(data.get("duration_seconds") or 0.0),
        )


class BasePlugin(ABC):
    """Abstract base class that every data-source plugin must implement.

    Subclasses **must** override :meth:`scan` and set ``name`` and
    ``description``.  They raise on failure (``PluginFailure`` for upstream
    errors they detect, anything else for transport problems); turning
    exceptions and deadlines into results is :meth:`invoke`'s job.

    Attributes:
        name:             Enumerated plugin name used as the grouping key.
        description:      Human-readable one-liner describing the source.
        mints_scan_id:    ``True`` only for the DNS plugin, which creates
                          the correlation key instead of consuming one.
        timeout_seconds:  Class default deadline; ``None`` defers to
                          ``Settings.PLUGIN_TIMEOUT_SECONDS``.
        api_key_setting:  Name of the ``Settings`` attribute holding the
                          upstream API key, or ``""`` when none is needed.
    """

    name: PluginName
    description: str = ""
    mints_scan_id: bool = False
    timeout_seconds: Optional[float] = None
    api_key_setting: str = ""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings: Settings = settings or get_settings()

    # -- Configuration ---------------------------------------------------------

    @property
    def timeout(self) -> float:
        """Effective deadline: settings override, class default, global default."""
        override = self.settings.PLUGIN_TIMEOUTS.get(self.name.value)
        if override is not None:
            return override
        if self.timeout_seconds is not None:
            return self.timeout_seconds
        return self.settings.PLUGIN_TIMEOUT_SECONDS

    @property
    def api_key(self) -> Optional[str]:
        if not self.api_key_setting:
            return None
        return getattr(self.settings, self.api_key_setting, None)

    def require_api_key(self) -> str:
        """Return the configured API key or fail the invocation."""
        key = self.api_key
        if not key:
            raise PluginFailure(self.name, f"{self.api_key_setting} is not configured")
        return key

    def new_scan_id(self) -> str:
        """Mint a correlation key; only called on plugins with ``mints_scan_id``."""
        return str(uuid.uuid4())

    # -- Contract --------------------------------------------------------------

    @abstractmethod
    async def scan(self, domain: str, dns_scan_id: str) -> dict[str, Any]:
        """Query the upstream source for *domain* and return its payload.

        Args:
            domain:      Normalised domain (e.g. ``"example.com"``).
            dns_scan_id: Correlation key of the current scan session.

        Returns:
            A JSON-safe dict; datetimes must be ISO-8601 strings.
        """

    async def invoke(self, domain: str, dns_scan_id: Optional[str] = None) -> PluginResult:
        """Run :meth:`scan` under the plugin deadline and capture the outcome.

        Args:
            domain:      Normalised domain to scan.
            dns_scan_id: Correlation key; required unless the plugin mints
                         its own.

        Returns:
            A new :class:`PluginResult`.  Upstream failures and deadline
            expiry are reported through ``status``, never raised.

        Raises:
            ValueError: If a non-minting plugin is called without a key.
        """
        if self.mints_scan_id:
            dns_scan_id = self.new_scan_id()
        elif not dns_scan_id:
            raise ValueError(f"Plugin {self.name.value} requires a dns_scan_id.")

        start: float = time.monotonic()
        try:
            payload = await asyncio.wait_for(
                self.scan(domain, dns_scan_id), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            duration = round(time.monotonic() - start, 3)
            logger.warning(
                "%s timed out after %.1fs",
                self.name.value,
                self.timeout,
                extra={"action": "plugin_timeout", "target": domain, "scan_id": dns_scan_id},
            )
            return PluginResult.failed(
                self.name,
                dns_scan_id,
                f"{self.name.value} did not finish within {self.timeout:g}s",
                status=PluginStatus.TIMEOUT,
                duration_seconds=duration,
            )
        except Exception as exc:  # noqa: BLE001
            duration = round(time.monotonic() - start, 3)
            reason = str(exc) or exc.__class__.__name__
            if isinstance(exc, PluginFailure):
                logger.warning(
                    "%s failed: %s",
                    self.name.value,
                    reason,
                    extra={"action": "plugin_error", "target": domain, "scan_id": dns_scan_id},
                )
            else:
                logger.exception(
                    "%s raised unexpectedly",
                    self.name.value,
                    extra={"action": "plugin_error", "target": domain, "scan_id": dns_scan_id},
                )
            return PluginResult.failed(
                self.name, dns_scan_id, reason, duration_seconds=duration
            )

        duration = round(time.monotonic() - start, 3)
        return PluginResult.ok(
            self.name, dns_scan_id, payload, duration_seconds=duration
        )
