"""
Malware IOC feed plugin for PostureScope.

Searches abuse.ch ThreatFox for indicators of compromise that mention the
target domain.  ThreatFox reports ``no_result`` for clean domains, which is
a successful scan with an empty IOC list.  Requires ``ABUSECH_AUTH_KEY``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from posturescope.core.exceptions import PluginFailure
from posturescope.plugins.base import BasePlugin, PluginName
from posturescope.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

_THREATFOX_TIME_FORMAT = "%Y-%m-%d %H:%M:%S UTC"


def _threatfox_time(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    for fmt in (_THREATFOX_TIME_FORMAT, "%Y-%m-%d %H:%M:%S"):
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc).isoformat()
        except ValueError:
            continue
    return None


@PluginRegistry.register
class AbuseChPlugin(BasePlugin):
    """IOC lookup against the ThreatFox API."""

    name = PluginName.ABUSECH
    description = "Malware IOCs via abuse.ch ThreatFox"
    api_key_setting = "ABUSECH_AUTH_KEY"

    async def scan(self, domain: str, dns_scan_id: str) -> dict[str, Any]:
        auth_key = self.require_api_key()

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10.0, read=30.0, write=10.0, pool=10.0),
        ) as client:
            try:
                response = await client.post(
                    self.settings.THREATFOX_URL,
                    json={"query": "search_ioc", "search_term": domain},
                    headers={"Auth-Key": auth_key},
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise PluginFailure(
                    self.name, f"ThreatFox returned HTTP {exc.response.status_code}"
                ) from exc
            body: dict[str, Any] = response.json()

        query_status = body.get("query_status")
        if query_status == "no_result":
            return {"iocs": []}
        if query_status != "ok":
            raise PluginFailure(self.name, f"ThreatFox API error: {query_status}")

        iocs: list[dict[str, Any]] = []
        for item in body.get("data") or []:
            iocs.append(
                {
                    "ioc_type": item.get("ioc_type", ""),
                    "ioc_value": item.get("ioc", ""),
                    "threat_type": item.get("threat_type", ""),
                    # ThreatFox reports confidence as a percentage.
                    "confidence": round(float(item.get("confidence_level") or 0) / 100.0, 2),
                    "first_seen": _threatfox_time(item.get("first_seen")),
                    "last_seen": _threatfox_time(item.get("last_seen")),
                    "malware_alias": [
                        alias.strip()
                        for alias in (item.get("malware_alias") or "").split(",")
                        if alias.strip()
                    ],
                    "tags": list(item.get("tags") or []),
                }
            )
        logger.info("ThreatFox returned %d IOCs for %s", len(iocs), domain)
        return {"iocs": iocs}
