"""
Public surface of the PostureScope engine.

:class:`ReportService` is what the HTTP API and the Celery tasks call.  Every
operation takes the caller identity token first and rejects calls without
one before doing any work.  Reports are persisted exactly once, after
assembly; nothing is written while a scan is running.
"""

from __future__ import annotations

from typing import Optional

from posturescope.core.exceptions import NotFound
from posturescope.core.logging import get_logger
from posturescope.core.security import normalize_domain
from posturescope.engine.context import OrchestrationContext
from posturescope.engine.coordinator import ScanCoordinator
from posturescope.engine.correlation import ResultCorrelator
from posturescope.engine.reports import Report, ReportAssembler
from posturescope.engine.risk_scoring import RiskScore, RiskScorer
from posturescope.plugins.base import MANDATORY_PLUGIN, PluginName, PluginResult

logger = get_logger(__name__)


class ReportService:
    """Generate, re-assemble, list and re-score posture reports.

    Usage::

        service = ReportService(context)
        report = await service.generate_report(api_key, "example.com")
        same = await service.get_report_by_id(api_key, report.report_id)
    """

    def __init__(self, context: OrchestrationContext) -> None:
        self._context = context
        self._correlator = ResultCorrelator()
        self._scorer = RiskScorer()
        self._assembler = ReportAssembler(
            ScanCoordinator(context.registry, context.settings, context.events),
            correlator=self._correlator,
            scorer=self._scorer,
        )

    @property
    def context(self) -> OrchestrationContext:
        return self._context

    # -- Reports ---------------------------------------------------------------

    async def generate_report(self, identity: Optional[str], domain: str) -> Report:
        """Scan *domain*, assemble its report and persist it.

        Raises:
            Unauthenticated: Missing identity.
            InvalidDomain: Empty or malformed domain.
            CoreDependencyFailed: The DNS plugin failed; nothing is stored.
        """
        self._context.identity_check(identity)
        report = await self._assembler.build_report(domain)
        await self._context.store.save_report(report)
        logger.info(
            "Report %s generated",
            report.report_id,
            extra={
                "action": "report_generated",
                "target": report.domain,
                "scan_id": report.dns_scan_id,
            },
        )
        return report

    async def rebuild_report(self, identity: Optional[str], dns_scan_id: str) -> Report:
        """Assemble and persist a new report from stored results for a key.

        Raises:
            Unauthenticated: Missing identity.
            NotFound: No results are stored for *dns_scan_id*.
            CoreDependencyFailed: The stored DNS result is missing or failed.
        """
        self._context.identity_check(identity)
        results = await self._context.store.load_results(dns_scan_id)
        domain = await self._context.store.domain_of(dns_scan_id)
        if not results or domain is None:
            raise NotFound("scan", dns_scan_id)

        report = self._assembler.rebuild_report(dns_scan_id, results, domain)
        # The results behind a rebuilt report are already stored.
        await self._context.store.save_report(report, include_results=False)
        return report

    async def get_report_by_id(self, identity: Optional[str], report_id: str) -> Report:
        self._context.identity_check(identity)
        return await self._context.store.load_report_by_id(report_id)

    async def list_reports(
        self, identity: Optional[str], domain: Optional[str] = None
    ) -> list[Report]:
        """List reports newest first, optionally for one domain only."""
        self._context.identity_check(identity)
        if domain is not None:
            return await self._context.store.load_reports_by_domain(normalize_domain(domain))
        return await self._context.store.list_reports()

    # -- Scoring ---------------------------------------------------------------

    async def calculate_risk_score(self, identity: Optional[str], domain: str) -> RiskScore:
        """Re-score the latest correlated bucket of *domain* without scanning.

        Nothing is persisted.

        Raises:
            Unauthenticated: Missing identity.
            InvalidDomain: Malformed domain.
            NotFound: The domain has no successful scan on record.
        """
        self._context.identity_check(identity)
        domain = normalize_domain(domain)
        dns_scan_id = await self._context.store.latest_dns_scan_id(domain)
        if dns_scan_id is None:
            raise NotFound("domain", domain)
        results = await self._context.store.load_results(dns_scan_id)
        bucket = self._correlator.correlate(dns_scan_id, results)
        return self._scorer.score(bucket)

    # -- Single plugin ---------------------------------------------------------

    async def rescan_plugin(
        self,
        identity: Optional[str],
        dns_scan_id: str,
        plugin: PluginName | str,
    ) -> PluginResult:
        """Invoke one fan-out plugin again under an existing correlation key.

        The new result is stored; because it is newer, it replaces the
        earlier result in the session's bucket.

        Raises:
            Unauthenticated: Missing identity.
            NotFound: Unknown plugin, the DNS plugin, or an unknown key.
        """
        self._context.identity_check(identity)
        try:
            name = plugin if isinstance(plugin, PluginName) else PluginName(plugin.upper())
        except ValueError:
            raise NotFound("plugin", str(plugin)) from None
        if name is MANDATORY_PLUGIN:
            raise NotFound("fan-out plugin", name.value)

        domain = await self._context.store.domain_of(dns_scan_id)
        if domain is None:
            raise NotFound("scan", dns_scan_id)

        result = await self._context.registry.get(name).invoke(domain, dns_scan_id)
        await self._context.store.save_results(domain, [result])
        logger.info(
            "Plugin %s re-run: %s",
            name.value,
            result.status.value,
            extra={"action": "plugin_rescanned", "target": domain, "scan_id": dns_scan_id},
        )
        return result
