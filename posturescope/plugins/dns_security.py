"""
DNS security plugin for PostureScope.

The mandatory first step of every scan.  Resolves the address, mail and
name-server records of the target and evaluates its e-mail authentication
(SPF, DKIM, DMARC) and DNSSEC posture.  A successful invocation mints the
correlation key that every other plugin of the session is bound to.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import dns.exception
import dns.resolver

from posturescope.core.exceptions import PluginFailure
from posturescope.plugins.base import BasePlugin, PluginName
from posturescope.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

_DKIM_SELECTORS: tuple[str, ...] = ("default", "google", "selector1", "selector2", "k1")
_SPF_POLICIES: dict[str, str] = {
    "-all": "hardfail",
    "~all": "softfail",
    "?all": "neutral",
    "+all": "pass",
    "all": "pass",
}
_DMARC_POLICIES: frozenset[str] = frozenset({"none", "quarantine", "reject"})


@PluginRegistry.register
class DnsSecurityPlugin(BasePlugin):
    """DNS record and e-mail authentication audit.

    Uses ``dnspython`` with conservative timeouts inside the default thread
    pool.  Negative answers (NXDOMAIN, NoAnswer) simply leave a record type
    empty; resolver timeouts are collected in ``errors``.  A domain without
    any A, AAAA, MX or NS record is treated as a failed scan.
    """

    name = PluginName.DNS
    description = "DNS Records, SPF, DKIM, DMARC and DNSSEC"
    mints_scan_id = True
    timeout_seconds = 20.0

    async def scan(self, domain: str, dns_scan_id: str) -> dict[str, Any]:
        resolver = dns.resolver.Resolver()
        resolver.timeout = 3.0
        resolver.lifetime = 5.0

        errors: list[str] = []
        loop = asyncio.get_running_loop()

        async def lookup(name: str, rtype: str) -> list[str]:
            try:
                return await loop.run_in_executor(
                    None, self._resolve_record, resolver, name, rtype
                )
            except dns.exception.Timeout:
                errors.append(f"DNS {rtype} lookup for {name} timed out")
                return []

        a_records, aaaa_records, mx_records, ns_records, txt_records = await asyncio.gather(
            lookup(domain, "A"),
            lookup(domain, "AAAA"),
            lookup(domain, "MX"),
            lookup(domain, "NS"),
            lookup(domain, "TXT"),
        )
        if not (a_records or aaaa_records or mx_records or ns_records):
            raise PluginFailure(self.name, f"{domain} has no A, AAAA, MX or NS records")

        dmarc_records = await lookup(f"_dmarc.{domain}", "TXT")
        dnskey_records = await lookup(domain, "DNSKEY")
        ds_records = await lookup(domain, "DS") if dnskey_records else []

        dkim_record: Optional[str] = None
        for selector in _DKIM_SELECTORS:
            candidates = await lookup(f"{selector}._domainkey.{domain}", "TXT")
            dkim_record = next(
                (txt for txt in candidates if "v=DKIM1" in txt or "p=" in txt), None
            )
            if dkim_record:
                break

        payload: dict[str, Any] = {
            **self._evaluate_spf(txt_records),
            **self._evaluate_dmarc(dmarc_records),
            "dkim_record": dkim_record or "",
            "dkim_valid": bool(dkim_record and "p=" in dkim_record),
            "dnssec_enabled": bool(dnskey_records),
            "dnssec_valid": bool(dnskey_records and ds_records),
            "ip_addresses": sorted(set(a_records) | set(aaaa_records)),
            "mx_records": sorted(mx_records),
            "ns_records": sorted(ns_records),
            "errors": errors,
        }
        logger.info(
            "DNS scan of %s: spf_valid=%s dmarc_valid=%s dnssec=%s",
            domain,
            payload["spf_valid"],
            payload["dmarc_valid"],
            payload["dnssec_enabled"],
        )
        return payload

    # ------------------------------------------------------------------
    # Evaluation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _evaluate_spf(txt_records: list[str]) -> dict[str, Any]:
        """Evaluate the SPF policy published in the apex TXT records.

        Valid means exactly one ``v=spf1`` record whose ``all`` mechanism is
        not the permissive ``+all``.
        """
        spf_records = [txt for txt in txt_records if txt.lower().startswith("v=spf1")]
        if not spf_records:
            return {"spf_record": "", "spf_valid": False, "spf_policy": "missing"}

        record = spf_records[0]
        policy = "none"
        for term in record.lower().split():
            if term in _SPF_POLICIES:
                policy = _SPF_POLICIES[term]
        valid = len(spf_records) == 1 and policy in ("hardfail", "softfail", "neutral")
        return {"spf_record": record, "spf_valid": valid, "spf_policy": policy}

    @staticmethod
    def _evaluate_dmarc(txt_records: list[str]) -> dict[str, Any]:
        """Evaluate the ``_dmarc`` TXT record."""
        record = next(
            (txt for txt in txt_records if txt.upper().startswith("V=DMARC1")), None
        )
        if record is None:
            return {"dmarc_record": "", "dmarc_policy": "", "dmarc_valid": False}

        tags: dict[str, str] = {}
        for part in record.split(";"):
            key, _, value = part.strip().partition("=")
            if key:
                tags[key.strip().lower()] = value.strip().lower()
        policy = tags.get("p", "")
        return {
            "dmarc_record": record,
            "dmarc_policy": policy,
            "dmarc_valid": policy in _DMARC_POLICIES,
        }

    @staticmethod
    def _resolve_record(
        resolver: dns.resolver.Resolver,
        name: str,
        rtype: str,
    ) -> list[str]:
        """Resolve one record type and return its values as strings.

        TXT strings are concatenated and decoded; other types use the
        presentation format.  Negative answers yield an empty list, a
        resolver timeout propagates as :class:`dns.exception.Timeout`.
        """
        try:
            answers = resolver.resolve(name, rtype)
        except (
            dns.resolver.NXDOMAIN,
            dns.resolver.NoAnswer,
            dns.resolver.NoNameservers,
        ):
            return []

        values: list[str] = []
        for rdata in answers:
            if rtype == "TXT":
                values.append(b"".join(rdata.strings).decode("utf-8", "replace"))
            elif rtype == "MX":
                values.append(str(rdata.exchange).rstrip("."))
            else:
                values.append(str(rdata).rstrip("."))
        return values
