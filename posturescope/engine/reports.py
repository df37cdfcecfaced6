"""
Report assembly for PostureScope.

:class:`ReportAssembler` is the top of the engine: it drives a fresh scan
through the :class:`~posturescope.engine.coordinator.ScanCoordinator` (or
takes stored results for an existing correlation key), correlates the
results, scores the bucket and packages an immutable :class:`Report`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from posturescope.core.exceptions import CoreDependencyFailed
from posturescope.core.logging import get_logger
from posturescope.engine.coordinator import ScanCoordinator
from posturescope.engine.correlation import CorrelatedBucket, ResultCorrelator
from posturescope.engine.risk_scoring import Finding, RiskScore, RiskScorer, RiskTier
from posturescope.plugins.base import PluginName, PluginResult

logger = get_logger(__name__)


def _parse_created_at(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Report:
    """Immutable result of one report synthesis.

    ``results_by_plugin`` always has one entry per :class:`PluginName`:
    the plugin's result, or an ``absent`` marker when the scan session behind
    the report has no result for it.

    Attributes:
        report_id:         UUID string; the report's identity.
        domain:            Normalised domain the report describes.
        dns_scan_id:       Correlation key of the underlying scan session.
        score:             Risk score value, 0--100.
        tier:              Tier derived from ``score``.
        created_at:        UTC time the report was assembled.
        results_by_plugin: Per-plugin results in enumeration order.
        findings:          Weighted findings that make up ``score``.
    """

    report_id: str
    domain: str
    dns_scan_id: str
    score: int
    tier: RiskTier
    created_at: datetime
    results_by_plugin: dict[PluginName, PluginResult]
    findings: tuple[Finding, ...] = field(default_factory=tuple)

    @property
    def risk_score(self) -> RiskScore:
        return RiskScore(value=self.score, tier=self.tier, findings=self.findings)

    def result(self, plugin: PluginName) -> PluginResult:
        return self.results_by_plugin[PluginName(plugin)]

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe snapshot, used for storage and the HTTP API."""
        return {
            "report_id": self.report_id,
            "domain": self.domain,
            "dns_scan_id": self.dns_scan_id,
            "score": self.score,
            "tier": self.tier.value,
            "created_at": self.created_at.isoformat(),
            "results_by_plugin": {
                name.value: result.to_dict()
                for name, result in self.results_by_plugin.items()
            },
            "findings": [finding.to_dict() for finding in self.findings],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Report":
        """Rebuild a report from :meth:`to_dict` output."""
        stored: dict[str, Any] = data.get("results_by_plugin") or {}
        results: dict[PluginName, PluginResult] = {}
        for name in PluginName:
            if name.value in stored:
                results[name] = PluginResult.from_dict(stored[name.value])
            else:
                results[name] = PluginResult.absent(name, data["dns_scan_id"])
        return cls(
            report_id=data["report_id"],
            domain=data["domain"],
            dns_scan_id=data["dns_scan_id"],
            score=int(data["score"]),
            tier=RiskTier(data["tier"]),
            created_at=_parse_created_at(data["created_at"]),
            results_by_plugin=results,
            findings=tuple(Finding.from_dict(item) for item in data.get("findings") or []),
        )


class ReportAssembler:
    """Turn scans or stored results into :class:`Report` objects.

    Every call produces exactly one report or raises; nothing is persisted
    here.

    Args:
        coordinator: Runs fresh scans.
        correlator:  Buckets results; a default instance when omitted.
        scorer:      Scores buckets; a default instance when omitted.
    """

    def __init__(
        self,
        coordinator: ScanCoordinator,
        correlator: Optional[ResultCorrelator] = None,
        scorer: Optional[RiskScorer] = None,
    ) -> None:
        self._coordinator = coordinator
        self._correlator = correlator or ResultCorrelator()
        self._scorer = scorer or RiskScorer()

    async def build_report(self, domain: str) -> Report:
        """Scan *domain* from scratch and assemble its report.

        Raises:
            InvalidDomain: For an empty or malformed domain.
            CoreDependencyFailed: If the DNS plugin fails.
        """
        session = await self._coordinator.run(domain)
        bucket = self._correlator.correlate(session.dns_scan_id, session.all_results())
        return self._package(session.domain, bucket)

    def rebuild_report(
        self,
        dns_scan_id: str,
        results: Iterable[PluginResult],
        domain: str,
    ) -> Report:
        """Re-assemble a report for an existing correlation key.

        No plugin is invoked.  The bucket is the session's: it is dated by
        the newest successful DNS result for the key and holds the latest
        result per plugin from that day onwards.

        Raises:
            CoreDependencyFailed: If no successful DNS result exists for
                *dns_scan_id* among *results*.
        """
        bucket = self._correlator.correlate(dns_scan_id, results)
        if not bucket.dns.succeeded:
            raise CoreDependencyFailed(
                domain,
                f"no successful DNS result stored for scan {dns_scan_id}",
            )
        return self._package(domain, bucket)

    def score(self, bucket: CorrelatedBucket) -> RiskScore:
        return self._scorer.score(bucket)

    def _package(self, domain: str, bucket: CorrelatedBucket) -> Report:
        risk = self._scorer.score(bucket)
        report = Report(
            report_id=str(uuid.uuid4()),
            domain=domain,
            dns_scan_id=bucket.dns_scan_id,
            score=risk.value,
            tier=risk.tier,
            created_at=datetime.now(timezone.utc),
            results_by_plugin=dict(bucket.results),
            findings=risk.findings,
        )
        logger.info(
            "Report assembled: score=%d tier=%s",
            report.score,
            report.tier.value,
            extra={
                "action": "report_assembled",
                "target": domain,
                "scan_id": bucket.dns_scan_id,
            },
        )
        return report
