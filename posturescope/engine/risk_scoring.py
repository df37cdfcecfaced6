"""
Posture risk scoring for PostureScope reports.

The :class:`RiskScorer` walks a :class:`CorrelatedBucket` plugin by plugin,
collects a weighted finding for every weakness a successful result reveals,
and sums the penalties into a 0--100 value that maps onto a fixed tier.

Only ``ok`` slots are scored.  An ``absent``, ``error`` or ``timeout`` slot
adds no penalty and no credit, so a domain whose lookups failed scores the
same as one that was never looked up.  Partial failures a successful plugin
reports in its payload ``errors`` list do count: each entry costs
:data:`DNS_SOFT_ERROR` for DNS and :data:`SOFT_ERROR` for any other plugin.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Iterator, Optional

from posturescope.engine.correlation import CorrelatedBucket
from posturescope.plugins.base import PluginName, PluginResult

# ── Penalty weights ──────────────────────────────────────────────────────────

SPF_INVALID: int = 20
DMARC_INVALID: int = 20
DNSSEC_MISSING: int = 15

TLS_LEGACY_VERSION: int = 25
TLS_12: int = 10
TLS_UNKNOWN_VERSION: int = 15
TLS_NO_HSTS: int = 10
TLS_BAD_CERTIFICATE: int = 20
TLS_WEAK_KEY: int = 10
TLS_MIN_KEY_BITS: int = 2048

CT_EXPIRED_CERT: int = 10
CT_BROAD_CERT: int = 5
SUBDOMAIN_SPRAWL: int = 10
MAX_SUBDOMAINS: int = 10
MAX_NAMES_PER_ASSET: int = 5

SHODAN_EXPIRED_SSL: int = 10
SHODAN_MANY_HOSTNAMES: int = 5
SHODAN_RISKY_TAG: int = 10
SHODAN_STALE_HOST: int = 5
SHODAN_RISKY_TAGS: frozenset[str] = frozenset({"vulnerable", "exposed"})
SHODAN_STALE_AFTER: timedelta = timedelta(days=30)

OTX_PULSE: int = 15
OTX_RECENT_MALWARE: int = 20
OTX_RECENT_URL: int = 10
OTX_RECENT_WINDOW: timedelta = timedelta(days=90)

WHOIS_EXPIRED: int = 20
WHOIS_EXPIRING: int = 10
WHOIS_NO_DOMAIN: int = 5
WHOIS_EXPIRY_WARNING: timedelta = timedelta(days=30)

IOC_HIGH_CONFIDENCE: int = 15
IOC_MEDIUM_CONFIDENCE: int = 10
IOC_RECENT: int = 10
IOC_HIGH_THRESHOLD: float = 0.7
IOC_MEDIUM_THRESHOLD: float = 0.5
IOC_RECENT_WINDOW: timedelta = timedelta(days=30)

DNS_SOFT_ERROR: int = 10
SOFT_ERROR: int = 5

MAX_SCORE: int = 100
MIN_SCORE: int = 0


# ── Tiers ────────────────────────────────────────────────────────────────────

class RiskTier(str, Enum):
    """Ordinal risk classification; compares by severity, not by name."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, RiskTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, RiskTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, RiskTier):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def from_score(cls, value: int) -> "RiskTier":
        """Map a score onto its tier using :data:`TIER_THRESHOLDS`."""
        for threshold, tier in TIER_THRESHOLDS:
            if value >= threshold:
                return tier
        return cls.LOW


_TIER_ORDER: tuple[RiskTier, ...] = (
    RiskTier.LOW,
    RiskTier.MEDIUM,
    RiskTier.HIGH,
    RiskTier.CRITICAL,
)

# Highest threshold first.
TIER_THRESHOLDS: tuple[tuple[int, RiskTier], ...] = (
    (80, RiskTier.CRITICAL),
    (60, RiskTier.HIGH),
    (40, RiskTier.MEDIUM),
)


# ── Results ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Finding:
    """One weighted observation that contributed to a score."""

    plugin: PluginName
    reason: str
    penalty: int

    def to_dict(self) -> dict[str, Any]:
        return {"plugin": self.plugin.value, "reason": self.reason, "penalty": self.penalty}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Finding":
        return cls(
            plugin=PluginName(data["plugin"]),
            reason=data["reason"],
            penalty=int(data["penalty"]),
        )


@dataclass(frozen=True)
class RiskScore:
    """Score value, tier and the findings that explain them."""

    value: int
    tier: RiskTier
    findings: tuple[Finding, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "tier": self.tier.value,
            "findings": [finding.to_dict() for finding in self.findings],
        }


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── Scorer ───────────────────────────────────────────────────────────────────

class RiskScorer:
    """Turn a correlated bucket into a :class:`RiskScore`.

    Each plugin has one rule method receiving the plugin payload and the
    reference time and yielding ``(reason, penalty)`` pairs.  Penalties are
    summed, capped at :data:`MAX_SCORE` and floored at :data:`MIN_SCORE`.

    Example::

        scorer = RiskScorer()
        risk = scorer.score(bucket)
        risk.value, risk.tier    # (45, RiskTier.MEDIUM)
    """

    def __init__(self) -> None:
        self._rules: dict[
            PluginName,
            Callable[[dict[str, Any], datetime], Iterator[tuple[str, int]]],
        ] = {
            PluginName.DNS: self._score_dns,
            PluginName.TLS: self._score_tls,
            PluginName.CRTSH: self._score_crtsh,
            PluginName.CHAOS: self._score_chaos,
            PluginName.SHODAN: self._score_shodan,
            PluginName.OTX: self._score_otx,
            PluginName.WHOIS: self._score_whois,
            PluginName.ABUSECH: self._score_abusech,
        }

    def score(self, bucket: CorrelatedBucket, now: Optional[datetime] = None) -> RiskScore:
        """Score *bucket* as of *now* (defaults to the current UTC time)."""
        now = now or datetime.now(timezone.utc)
        findings: list[Finding] = []
        for result in bucket.results.values():
            findings.extend(self.findings_for(result, now))

        total: int = sum(finding.penalty for finding in findings)
        value: int = max(MIN_SCORE, min(MAX_SCORE, total))
        return RiskScore(value=value, tier=RiskTier.from_score(value), findings=tuple(findings))

    def findings_for(self, result: PluginResult, now: datetime) -> list[Finding]:
        """Return the findings of one slot; empty unless the result is ``ok``."""
        if not result.succeeded or not result.payload:
            return []
        rule = self._rules[result.plugin]
        return [
            Finding(plugin=result.plugin, reason=reason, penalty=penalty)
            for reason, penalty in (
                *rule(result.payload, now),
                *self._score_soft_errors(result.plugin, result.payload),
            )
        ]

    @staticmethod
    def _score_soft_errors(
        plugin: PluginName, payload: dict[str, Any]
    ) -> Iterator[tuple[str, int]]:
        penalty = DNS_SOFT_ERROR if plugin is PluginName.DNS else SOFT_ERROR
        for error in payload.get("errors") or []:
            yield f"Partial failure: {error}", penalty

    # -- DNS -------------------------------------------------------------------

    @staticmethod
    def _score_dns(payload: dict[str, Any], now: datetime) -> Iterator[tuple[str, int]]:
        if not payload.get("spf_valid"):
            yield "SPF record missing or invalid", SPF_INVALID
        if not payload.get("dmarc_valid"):
            yield "DMARC record missing or invalid", DMARC_INVALID
        if not payload.get("dnssec_enabled") or not payload.get("dnssec_valid"):
            yield "DNSSEC not enabled or not valid", DNSSEC_MISSING

    # -- TLS -------------------------------------------------------------------

    @staticmethod
    def _score_tls(payload: dict[str, Any], now: datetime) -> Iterator[tuple[str, int]]:
        version = payload.get("tls_version")
        if version in ("TLS 1.0", "TLS 1.1"):
            yield f"Outdated protocol {version}", TLS_LEGACY_VERSION
        elif version == "TLS 1.2":
            yield "Best protocol offered is TLS 1.2", TLS_12
        elif version != "TLS 1.3":
            yield f"Unknown TLS version {version!r}", TLS_UNKNOWN_VERSION

        if not payload.get("hsts_header"):
            yield "HSTS header missing", TLS_NO_HSTS

        not_after = _parse_time(payload.get("cert_not_after"))
        if not payload.get("certificate_valid"):
            yield "Certificate failed validation", TLS_BAD_CERTIFICATE
        elif not_after is not None and now > not_after:
            yield "Certificate expired", TLS_BAD_CERTIFICATE

        # Bit-length thresholds only make sense for RSA and DSA moduli.
        key_bits = payload.get("cert_key_strength")
        key_type = payload.get("cert_key_type", "RSA")
        if key_bits and key_type in ("RSA", "DSA") and key_bits < TLS_MIN_KEY_BITS:
            yield f"Weak {key_bits}-bit certificate key", TLS_WEAK_KEY

    # -- Certificate transparency / subdomains ---------------------------------

    @staticmethod
    def _score_crtsh(payload: dict[str, Any], now: datetime) -> Iterator[tuple[str, int]]:
        for cert in payload.get("certificates") or []:
            serial = cert.get("serial_number") or cert.get("id")
            not_after = _parse_time(cert.get("not_after"))
            if not_after is not None and now > not_after:
                yield f"Expired certificate {serial}", CT_EXPIRED_CERT
            if len(cert.get("dns_names") or []) > MAX_NAMES_PER_ASSET:
                yield f"Certificate {serial} covers many names", CT_BROAD_CERT
        subdomains = payload.get("subdomains") or []
        if len(subdomains) > MAX_SUBDOMAINS:
            yield f"{len(subdomains)} subdomains in CT logs", SUBDOMAIN_SPRAWL

    @staticmethod
    def _score_chaos(payload: dict[str, Any], now: datetime) -> Iterator[tuple[str, int]]:
        subdomains = payload.get("subdomains") or []
        if len(subdomains) > MAX_SUBDOMAINS:
            yield f"{len(subdomains)} subdomains enumerated", SUBDOMAIN_SPRAWL

    # -- Host search -----------------------------------------------------------

    @staticmethod
    def _score_shodan(payload: dict[str, Any], now: datetime) -> Iterator[tuple[str, int]]:
        for host in payload.get("hosts") or []:
            label = f"{host.get('ip', '')}:{host.get('port', '')}"
            ssl_not_after = _parse_time(host.get("ssl_not_after"))
            if ssl_not_after is not None and now > ssl_not_after:
                yield f"Expired SSL certificate on {label}", SHODAN_EXPIRED_SSL
            if len(host.get("hostnames") or []) > MAX_NAMES_PER_ASSET:
                yield f"Many hostnames on {label}", SHODAN_MANY_HOSTNAMES
            for tag in host.get("tags") or []:
                if tag in SHODAN_RISKY_TAGS:
                    yield f"Host {label} tagged {tag}", SHODAN_RISKY_TAG
            seen = _parse_time(host.get("timestamp"))
            if seen is not None and now - seen > SHODAN_STALE_AFTER:
                yield f"Host {label} not seen for over 30 days", SHODAN_STALE_HOST

    # -- Threat intelligence ---------------------------------------------------

    @staticmethod
    def _score_otx(payload: dict[str, Any], now: datetime) -> Iterator[tuple[str, int]]:
        pulse_count = int(payload.get("pulse_count") or 0)
        if pulse_count > 0:
            yield f"Referenced by {pulse_count} OTX pulse(s)", OTX_PULSE * pulse_count
        for sample in payload.get("malware") or []:
            seen = _parse_time(sample.get("datetime"))
            if seen is not None and now - seen < OTX_RECENT_WINDOW:
                yield f"Recent malware sample {sample.get('hash', '')}".rstrip(), OTX_RECENT_MALWARE
        for entry in payload.get("urls") or []:
            seen = _parse_time(entry.get("datetime"))
            if seen is not None and now - seen < OTX_RECENT_WINDOW:
                yield f"Recently reported URL {entry.get('url', '')}".rstrip(), OTX_RECENT_URL

    # -- Registration ----------------------------------------------------------

    @staticmethod
    def _score_whois(payload: dict[str, Any], now: datetime) -> Iterator[tuple[str, int]]:
        expiry = _parse_time(payload.get("expiry_date"))
        if expiry is not None:
            if now > expiry:
                yield "Domain registration expired", WHOIS_EXPIRED
            elif now + WHOIS_EXPIRY_WARNING > expiry:
                yield "Domain registration expires within 30 days", WHOIS_EXPIRING
        if not payload.get("domain"):
            yield "Registry returned no domain name", WHOIS_NO_DOMAIN

    # -- IOC feed --------------------------------------------------------------

    @staticmethod
    def _score_abusech(payload: dict[str, Any], now: datetime) -> Iterator[tuple[str, int]]:
        for ioc in payload.get("iocs") or []:
            value = ioc.get("ioc_value", "")
            confidence = float(ioc.get("confidence") or 0.0)
            if confidence > IOC_HIGH_THRESHOLD:
                yield f"High-confidence IOC {value}", IOC_HIGH_CONFIDENCE
            elif confidence > IOC_MEDIUM_THRESHOLD:
                yield f"Medium-confidence IOC {value}", IOC_MEDIUM_CONFIDENCE
            last_seen = _parse_time(ioc.get("last_seen"))
            if last_seen is not None and now - last_seen < IOC_RECENT_WINDOW:
                yield f"IOC {value} seen within 30 days", IOC_RECENT
