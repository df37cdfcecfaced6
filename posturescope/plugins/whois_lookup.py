"""
WHOIS plugin for PostureScope.

Retrieves domain registration data (registrar, creation and expiry dates,
registrant, name servers) through the standard WHOIS protocol.  An expired
or soon-to-expire registration is one of the scored findings.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any, Optional

import whois  # python-whois

from posturescope.plugins.base import BasePlugin, PluginName
from posturescope.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)


@PluginRegistry.register
class WhoisPlugin(BasePlugin):
    """WHOIS registration lookup.

    Wraps the synchronous ``python-whois`` library in the default executor so
    it does not block the event loop.  Registries may return several dates
    for one field; the earliest creation and the earliest expiry are kept.
    """

    name = PluginName.WHOIS
    description = "WHOIS Domain Registration Data"
    timeout_seconds = 30.0

    async def scan(self, domain: str, dns_scan_id: str) -> dict[str, Any]:
        loop = asyncio.get_running_loop()
        record = await loop.run_in_executor(None, whois.whois, domain)

        registered_name = record.domain_name
        if isinstance(registered_name, list):
            registered_name = registered_name[0] if registered_name else None

        name_servers = record.name_servers or []
        if isinstance(name_servers, str):
            name_servers = [name_servers]

        return {
            "domain": (registered_name or "").lower(),
            "registrar": record.registrar or "",
            "creation_date": self._date_to_str(record.creation_date),
            "expiry_date": self._date_to_str(record.expiration_date),
            "registrant_name": getattr(record, "name", None) or "",
            "name_servers": sorted({str(ns).lower() for ns in name_servers}),
        }

    @staticmethod
    def _date_to_str(
        value: datetime | date | list[datetime | date] | None,
    ) -> Optional[str]:
        """Convert a WHOIS date field to one aware ISO-8601 string.

        ``python-whois`` may return a ``datetime``, a ``date``, a list of
        either, a raw string or ``None``.
        """
        if isinstance(value, list):
            dated = [item for item in value if isinstance(item, (datetime, date))]
            value = min(dated, key=_as_datetime) if dated else None
        if value is None:
            return None
        if isinstance(value, (datetime, date)):
            return _as_datetime(value).isoformat()
        return str(value)


def _as_datetime(value: datetime | date) -> datetime:
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value
