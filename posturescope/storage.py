"""
Report and result storage for PostureScope.

The engine talks to storage only through :class:`ReportStore`: reports are
saved once after assembly and read back by id or domain, and raw plugin
results are kept per correlation key for later re-assembly and re-scoring.
:class:`SqlReportStore` implements the interface on async SQLAlchemy.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timezone
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from posturescope.core.exceptions import NotFound
from posturescope.core.logging import get_logger
from posturescope.engine.reports import Report
from posturescope.models.plugin_result import PluginResultRecord
from posturescope.models.report import ReportRecord
from posturescope.plugins.base import PluginName, PluginResult, PluginStatus

logger = get_logger(__name__)


class ReportStore(ABC):
    """Storage collaborator used by :class:`~posturescope.engine.service.ReportService`."""

    @abstractmethod
    async def save_report(self, report: Report, include_results: bool = True) -> None:
        """Persist *report*, and unless told otherwise the results it was built from."""

    @abstractmethod
    async def load_report_by_id(self, report_id: str) -> Report:
        """Return the report with *report_id*; raise :class:`NotFound` otherwise."""

    @abstractmethod
    async def load_reports_by_domain(self, domain: str) -> list[Report]:
        """Return every report for *domain*, newest first."""

    @abstractmethod
    async def list_reports(self, domain: Optional[str] = None) -> list[Report]:
        """Return all reports, optionally filtered by domain, newest first."""

    @abstractmethod
    async def save_results(self, domain: str, results: Iterable[PluginResult]) -> None:
        """Persist raw plugin results; ``absent`` markers are skipped."""

    @abstractmethod
    async def load_results(self, dns_scan_id: str) -> list[PluginResult]:
        """Return every stored result for *dns_scan_id*, oldest first."""

    @abstractmethod
    async def domain_of(self, dns_scan_id: str) -> Optional[str]:
        """Return the domain scanned under *dns_scan_id*, or ``None``."""

    @abstractmethod
    async def latest_dns_scan_id(self, domain: str) -> Optional[str]:
        """Return the key of the newest successful DNS scan of *domain*."""


class SqlReportStore(ReportStore):
    """:class:`ReportStore` backed by the ``reports`` and ``plugin_results`` tables.

    Each operation opens its own session from *session_factory* and commits
    before returning, so the store can be shared by concurrent requests.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # -- Reports ---------------------------------------------------------------

    async def save_report(self, report: Report, include_results: bool = True) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add(
                    ReportRecord(
                        id=report.report_id,
                        domain=report.domain,
                        dns_scan_id=report.dns_scan_id,
                        score=report.score,
                        tier=report.tier.value,
                        snapshot=report.to_dict(),
                        created_at=report.created_at,
                    )
                )
                if include_results:
                    session.add_all(
                        self._result_records(report.domain, report.results_by_plugin.values())
                    )
        logger.info(
            "Report saved",
            extra={
                "action": "report_saved",
                "target": report.domain,
                "scan_id": report.dns_scan_id,
            },
        )

    async def load_report_by_id(self, report_id: str) -> Report:
        async with self._session_factory() as session:
            record: ReportRecord | None = await session.get(ReportRecord, report_id)
        if record is None:
            raise NotFound("report", report_id)
        return Report.from_dict(record.snapshot)

    async def load_reports_by_domain(self, domain: str) -> list[Report]:
        return await self.list_reports(domain)

    async def list_reports(self, domain: Optional[str] = None) -> list[Report]:
        stmt = select(ReportRecord).order_by(
            ReportRecord.created_at.desc(), ReportRecord.id.desc()
        )
        if domain is not None:
            stmt = stmt.where(ReportRecord.domain == domain)
        async with self._session_factory() as session:
            records = (await session.execute(stmt)).scalars().all()
        return [Report.from_dict(record.snapshot) for record in records]

    # -- Plugin results --------------------------------------------------------

    async def save_results(self, domain: str, results: Iterable[PluginResult]) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                session.add_all(self._result_records(domain, results))

    async def load_results(self, dns_scan_id: str) -> list[PluginResult]:
        stmt = (
            select(PluginResultRecord)
            .where(PluginResultRecord.dns_scan_id == dns_scan_id)
            .order_by(PluginResultRecord.produced_at)
        )
        async with self._session_factory() as session:
            records = (await session.execute(stmt)).scalars().all()
        return [self._to_result(record) for record in records]

    async def domain_of(self, dns_scan_id: str) -> Optional[str]:
        stmt = (
            select(PluginResultRecord.domain)
            .where(PluginResultRecord.dns_scan_id == dns_scan_id)
            .limit(1)
        )
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    async def latest_dns_scan_id(self, domain: str) -> Optional[str]:
        stmt = (
            select(PluginResultRecord.dns_scan_id)
            .where(
                PluginResultRecord.domain == domain,
                PluginResultRecord.plugin == PluginName.DNS.value,
                PluginResultRecord.status == PluginStatus.OK.value,
            )
            .order_by(PluginResultRecord.produced_at.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one_or_none()

    # -- Mapping ---------------------------------------------------------------

    @staticmethod
    def _result_records(
        domain: str, results: Iterable[PluginResult]
    ) -> list[PluginResultRecord]:
        return [
            PluginResultRecord(
                domain=domain,
                dns_scan_id=result.dns_scan_id,
                plugin=result.plugin.value,
                status=result.status.value,
                payload=result.payload,
                error_message=result.error_message,
                produced_at=result.produced_at,
                duration_seconds=result.duration_seconds,
            )
            for result in results
            if result.status is not PluginStatus.ABSENT
        ]

    @staticmethod
    def _to_result(record: PluginResultRecord) -> PluginResult:
        produced_at = record.produced_at
        # SQLite drops tzinfo on the way back.
        if produced_at.tzinfo is None:
            produced_at = produced_at.replace(tzinfo=timezone.utc)
        return PluginResult(
            plugin=PluginName(record.plugin),
            status=PluginStatus(record.status),
            dns_scan_id=record.dns_scan_id,
            payload=record.payload,
            error_message=record.error_message,
            produced_at=produced_at,
            duration_seconds=record.duration_seconds,
        )
