"""
Host search plugin for PostureScope.

Searches Shodan for banners whose hostnames belong to the target and keeps,
per exposed service, the facts the scorer looks at: hostnames, Shodan tags,
TLS certificate expiry and when the host was last crawled.  Requires
``SHODAN_API_KEY``.
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

_SHODAN_CERT_TIME_FORMAT = "%Y%m%d%H%M%SZ"


def _cert_expiry(banner: dict[str, Any]) -> Optional[str]:
    expires = ((banner.get("ssl") or {}).get("cert") or {}).get("expires")
    if not expires:
        return None
    try:
        parsed = datetime.strptime(expires, _SHODAN_CERT_TIME_FORMAT)
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc).isoformat()


def _crawl_time(banner: dict[str, Any]) -> Optional[str]:
    value = banner.get("timestamp")
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.isoformat()


@PluginRegistry.register
class ShodanPlugin(BasePlugin):
    """Exposed-service discovery via the Shodan host search API."""

    name = PluginName.SHODAN
    description = "Host & Service Search via Shodan"
    api_key_setting = "SHODAN_API_KEY"

    async def scan(self, domain: str, dns_scan_id: str) -> dict[str, Any]:
        api_key = self.require_api_key()
        url = f"{self.settings.SHODAN_BASE_URL.rstrip('/')}/shodan/host/search"

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10.0, read=30.0, write=10.0, pool=10.0),
        ) as client:
            try:
                response = await client.get(
                    url, params={"key": api_key, "query": f"hostname:{domain}"}
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise PluginFailure(
                    self.name, f"Shodan returned HTTP {exc.response.status_code}"
                ) from exc
            data: dict[str, Any] = response.json()

        if data.get("error"):
            raise PluginFailure(self.name, f"Shodan API error: {data['error']}")

        hosts: list[dict[str, Any]] = [
            {
                "ip": banner.get("ip_str", ""),
                "port": banner.get("port"),
                "hostnames": list(banner.get("hostnames") or []),
                "tags": list(banner.get("tags") or []),
                "org": banner.get("org") or "",
                "ssl_not_after": _cert_expiry(banner),
                "timestamp": _crawl_time(banner),
            }
            for banner in data.get("matches") or []
        ]
        logger.info("Shodan matched %d services for %s", len(hosts), domain)
        return {"hosts": hosts, "total": data.get("total", len(hosts))}
