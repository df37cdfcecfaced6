"""
Subdomain enumeration plugin for PostureScope.

Queries the ProjectDiscovery Chaos dataset, which publishes the subdomains
observed for a registered domain.  Requires ``CHAOS_API_KEY``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from posturescope.core.exceptions import PluginFailure
from posturescope.plugins.base import BasePlugin, PluginName
from posturescope.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)


@PluginRegistry.register
class ChaosPlugin(BasePlugin):
    """Subdomain enumeration via the Chaos API."""

    name = PluginName.CHAOS
    description = "Subdomain Enumeration via ProjectDiscovery Chaos"
    api_key_setting = "CHAOS_API_KEY"

    async def scan(self, domain: str, dns_scan_id: str) -> dict[str, Any]:
        api_key = self.require_api_key()
        url = f"{self.settings.CHAOS_BASE_URL.rstrip('/')}/dns/{domain}/subdomains"

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10.0, read=30.0, write=10.0, pool=10.0),
            follow_redirects=True,
        ) as client:
            try:
                response = await client.get(url, headers={"Authorization": api_key})
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise PluginFailure(
                    self.name, f"Chaos returned HTTP {exc.response.status_code}"
                ) from exc
            data: dict[str, Any] = response.json()

        subdomains: set[str] = set()
        for label in data.get("subdomains") or []:
            label = str(label).strip().lower().lstrip("*.")
            if label:
                subdomains.add(f"{label}.{domain}")

        logger.info("Chaos listed %d subdomains for %s", len(subdomains), domain)
        return {"subdomains": sorted(subdomains)}
