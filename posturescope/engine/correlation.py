"""
Result correlation for PostureScope.

Joins plugin results that belong to one scan session.  Results are grouped
by ``(dns_scan_id, calendar day of produced_at)``; inside a group the most
recently produced result per plugin wins, and every enumerated plugin
without a result is represented by an explicit ``absent`` marker so callers
can tell "never invoked" apart from "invoked and failed".

Without an explicit day, :meth:`ResultCorrelator.correlate` builds the
session's bucket: it is dated by the DNS result that minted the key and
also holds results of that session produced after midnight UTC.  The same
correlator serves fresh scans and re-assembly from stored results.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable, Optional

from posturescope.plugins.base import PluginName, PluginResult, PluginStatus


def bucket_day(result: PluginResult) -> date:
    """Return the UTC calendar day a result was produced on."""
    if result.produced_at is None:
        raise ValueError(f"{result.plugin.value} result has no produced_at timestamp.")
    return result.produced_at.astimezone(timezone.utc).date()


@dataclass(frozen=True)
class CorrelatedBucket:
    """All results of one scan session for one calendar day.

    ``results`` holds exactly one entry per :class:`PluginName`, in
    enumeration order.

    Attributes:
        dns_scan_id: Correlation key minted by the DNS plugin.
        day:         UTC calendar day of the grouped results.
        results:     Latest result per plugin, or an ``absent`` marker.
    """

    dns_scan_id: str
    day: date
    results: dict[PluginName, PluginResult]

    def get(self, plugin: PluginName) -> PluginResult:
        return self.results[PluginName(plugin)]

    @property
    def dns(self) -> PluginResult:
        return self.results[PluginName.DNS]

    def statuses(self) -> dict[str, str]:
        """Return ``{plugin name: status}`` for logging and summaries."""
        return {name.value: result.status.value for name, result in self.results.items()}


class ResultCorrelator:
    """Group and merge :class:`PluginResult` objects into buckets.

    The correlator is stateless; the same input always yields equal
    buckets.

    Example::

        correlator = ResultCorrelator()
        bucket = correlator.correlate("abc123", results)
        bucket.get(PluginName.TLS).status   # PluginStatus.ERROR
    """

    def group(self, results: Iterable[PluginResult]) -> list[CorrelatedBucket]:
        """Split *results* into one bucket per ``(dns_scan_id, day)``.

        Absent markers and results without a correlation key are ignored.

        Returns:
            Buckets ordered by day, then by ``dns_scan_id``.
        """
        groups: dict[tuple[str, date], dict[PluginName, PluginResult]] = {}
        for result in results:
            if not self._is_correlatable(result):
                continue
            key = (result.dns_scan_id, bucket_day(result))
            self._keep_latest(groups.setdefault(key, {}), result)

        return [
            self._fill(dns_scan_id, day, latest)
            for (dns_scan_id, day), latest in sorted(
                groups.items(), key=lambda item: (item[0][1], item[0][0])
            )
        ]

    def correlate(
        self,
        dns_scan_id: str,
        results: Iterable[PluginResult],
        day: Optional[date] = None,
    ) -> CorrelatedBucket:
        """Build the bucket for *dns_scan_id*.

        Only results whose ``dns_scan_id`` equals the requested key take
        part; a result for another key is never substituted for a missing
        one.

        Args:
            dns_scan_id: The correlation key to build the bucket for.
            results:     Candidate results, in any order.
            day:         Restrict the bucket to this calendar day.  When
                         omitted the bucket is the session's: it is dated
                         by the newest successful DNS result for the key
                         (then the newest day with any result, then today)
                         and takes every result from that day onwards, so
                         a fan-out that finishes after midnight UTC stays
                         in its session.

        Returns:
            A bucket with one entry per enumerated plugin.
        """
        matching: list[PluginResult] = [
            result
            for result in results
            if self._is_correlatable(result) and result.dns_scan_id == dns_scan_id
        ]

        if day is not None:
            in_bucket = [result for result in matching if bucket_day(result) == day]
        else:
            day = self._anchor_day(matching)
            in_bucket = [result for result in matching if bucket_day(result) >= day]

        latest: dict[PluginName, PluginResult] = {}
        for result in in_bucket:
            self._keep_latest(latest, result)
        return self._fill(dns_scan_id, day, latest)

    # -- Internals -------------------------------------------------------------

    @staticmethod
    def _is_correlatable(result: PluginResult) -> bool:
        return (
            result.status is not PluginStatus.ABSENT
            and bool(result.dns_scan_id)
            and result.produced_at is not None
        )

    @staticmethod
    def _keep_latest(latest: dict[PluginName, PluginResult], result: PluginResult) -> None:
        # Ties go to the result seen last.
        current = latest.get(result.plugin)
        if current is None or result.produced_at >= current.produced_at:
            latest[result.plugin] = result

    @staticmethod
    def _anchor_day(results: list[PluginResult]) -> date:
        dns_days = [
            result.produced_at
            for result in results
            if result.plugin is PluginName.DNS and result.succeeded
        ]
        if dns_days:
            return max(dns_days).astimezone(timezone.utc).date()
        if results:
            return max(bucket_day(result) for result in results)
        return datetime.now(timezone.utc).date()

    @staticmethod
    def _fill(
        dns_scan_id: str,
        day: date,
        latest: dict[PluginName, PluginResult],
    ) -> CorrelatedBucket:
        results: dict[PluginName, PluginResult] = {
            name: latest.get(name) or PluginResult.absent(name, dns_scan_id)
            for name in PluginName
        }
        return CorrelatedBucket(dns_scan_id=dns_scan_id, day=day, results=results)
