"""
Certificate Transparency plugin for PostureScope.

Queries the crt.sh database for every publicly logged certificate issued
for the target or its subdomains.  Besides the subdomain names found in the
certificates, each certificate's validity window and SAN count are kept
because expired or over-broad certificates feed the risk score.
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


def _ct_timestamp(value: Optional[str]) -> Optional[str]:
    """crt.sh returns naive UTC timestamps; normalise to aware ISO-8601."""
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
class CrtshPlugin(BasePlugin):
    """Certificate and subdomain discovery via crt.sh.

    Sends a single JSON query for ``%.{domain}`` and folds the entries into
    one record per certificate id.
    """

    name = PluginName.CRTSH
    description = "Certificate Transparency Logs (crt.sh)"
    timeout_seconds = 45.0

    CRTSH_URL: str = "https://crt.sh/"

    async def scan(self, domain: str, dns_scan_id: str) -> dict[str, Any]:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10.0, read=30.0, write=10.0, pool=10.0),
            follow_redirects=True,
        ) as client:
            try:
                response = await client.get(
                    self.CRTSH_URL,
                    params={"q": f"%.{domain}", "output": "json"},
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise PluginFailure(
                    self.name, f"crt.sh returned HTTP {exc.response.status_code}"
                ) from exc
            entries: list[dict[str, Any]] = response.json()

        certificates: dict[int, dict[str, Any]] = {}
        subdomains: set[str] = set()

        for entry in entries:
            names: list[str] = []
            for raw_name in entry.get("name_value", "").split("\n"):
                name = raw_name.strip().lower()
                if name.startswith("*."):
                    name = name[2:]
                if not name:
                    continue
                names.append(name)
                if name == domain or name.endswith(f".{domain}"):
                    subdomains.add(name)

            cert_id = entry.get("id")
            if cert_id is None or cert_id in certificates:
                continue
            certificates[cert_id] = {
                "id": cert_id,
                "common_name": entry.get("common_name", ""),
                "issuer": entry.get("issuer_name", ""),
                "not_before": _ct_timestamp(entry.get("not_before")),
                "not_after": _ct_timestamp(entry.get("not_after")),
                "serial_number": entry.get("serial_number", ""),
                "dns_names": sorted(set(names)),
            }

        logger.info(
            "crt.sh returned %d certificates and %d names for %s",
            len(certificates),
            len(subdomains),
            domain,
        )
        return {
            "certificates": [certificates[key] for key in sorted(certificates)],
            "subdomains": sorted(subdomains),
        }
