"""
Threat-intelligence plugin for PostureScope.

Reads three AlienVault OTX indicator sections for the domain: ``general``
(pulses that reference it), ``malware`` (samples contacting it) and
``url_list`` (URLs observed on it).  Requires ``OTX_API_KEY``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from posturescope.core.exceptions import PluginFailure
from posturescope.plugins.base import BasePlugin, PluginName
from posturescope.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)


def _otx_datetime(value: Any) -> Optional[str]:
    """OTX mixes epoch seconds and naive ISO strings; return aware ISO-8601."""
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.isoformat()


@PluginRegistry.register
class OtxPlugin(BasePlugin):
    """Pulse, malware and URL indicators from AlienVault OTX."""

    name = PluginName.OTX
    description = "Threat Intelligence via AlienVault OTX"
    api_key_setting = "OTX_API_KEY"

    async def scan(self, domain: str, dns_scan_id: str) -> dict[str, Any]:
        api_key = self.require_api_key()
        base = f"{self.settings.OTX_BASE_URL.rstrip('/')}/indicators/domain/{domain}"

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10.0, read=30.0, write=10.0, pool=10.0),
            headers={"X-OTX-API-KEY": api_key},
            follow_redirects=True,
        ) as client:
            general, malware, url_list = await asyncio.gather(
                self._section(client, f"{base}/general"),
                self._section(client, f"{base}/malware"),
                self._section(client, f"{base}/url_list"),
            )

        pulse_info: dict[str, Any] = general.get("pulse_info") or {}
        pulses = [pulse.get("name", "") for pulse in pulse_info.get("pulses") or []]

        return {
            "pulse_count": int(pulse_info.get("count") or 0),
            "pulses": pulses,
            "malware": [
                {"hash": item.get("hash", ""), "datetime": _otx_datetime(item.get("datetime_int"))}
                for item in malware.get("data") or []
            ],
            "urls": [
                {"url": item.get("url", ""), "datetime": _otx_datetime(item.get("date"))}
                for item in url_list.get("url_list") or []
            ],
        }

    async def _section(self, client: httpx.AsyncClient, url: str) -> dict[str, Any]:
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            section = url.rsplit("/", 1)[-1]
            raise PluginFailure(
                self.name,
                f"OTX {section} query failed: HTTP {exc.response.status_code}",
            ) from exc
        return response.json()
