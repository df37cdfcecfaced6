"""
Tests for the ResultCorrelator.

Validates grouping by correlation key and calendar day, latest-result-wins
merging, absent markers for missing plugins, exact-key matching, and the
choice of bucket day for re-assembly.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from posturescope.engine.correlation import ResultCorrelator, bucket_day
from posturescope.plugins.base import PluginName, PluginResult, PluginStatus

DAY_ONE = datetime(2026, 5, 4, 9, 0, tzinfo=timezone.utc)
DAY_TWO = DAY_ONE + timedelta(days=1)


@pytest.fixture()
def correlator() -> ResultCorrelator:
    """Return a fresh ResultCorrelator instance for each test."""
    return ResultCorrelator()


def _ok(plugin: PluginName, key: str, at: datetime, **payload: object) -> PluginResult:
    return PluginResult.ok(plugin, key, dict(payload), produced_at=at)


def test_bucket_contains_every_plugin(correlator: ResultCorrelator) -> None:
    """Plugins without a result are filled with absent markers."""
    results = [
        _ok(PluginName.DNS, "abc123", DAY_ONE),
        _ok(PluginName.WHOIS, "abc123", DAY_ONE + timedelta(seconds=5)),
    ]

    bucket = correlator.correlate("abc123", results)

    assert list(bucket.results) == list(PluginName)
    assert bucket.get(PluginName.WHOIS).succeeded
    assert bucket.get(PluginName.TLS).status is PluginStatus.ABSENT
    assert bucket.get(PluginName.TLS).dns_scan_id == "abc123"
    assert bucket.day == DAY_ONE.date()


def test_latest_result_wins(correlator: ResultCorrelator) -> None:
    """Within one bucket the most recently produced result per plugin is kept."""
    early = PluginResult.failed(PluginName.TLS, "abc123", "handshake failure", produced_at=DAY_ONE)
    late = _ok(PluginName.TLS, "abc123", DAY_ONE + timedelta(hours=2), tls_version="TLS 1.3")

    for ordering in ([early, late], [late, early]):
        bucket = correlator.correlate(
            "abc123", [_ok(PluginName.DNS, "abc123", DAY_ONE), *ordering]
        )
        assert bucket.get(PluginName.TLS) is late


def test_equal_timestamps_keep_the_last_seen(correlator: ResultCorrelator) -> None:
    """Ties on produced_at go to the result that appears later in the input."""
    first = _ok(PluginName.OTX, "abc123", DAY_ONE, pulse_count=0)
    second = _ok(PluginName.OTX, "abc123", DAY_ONE, pulse_count=3)

    bucket = correlator.correlate("abc123", [first, second])

    assert bucket.get(PluginName.OTX) is second


def test_results_of_other_keys_are_never_substituted(correlator: ResultCorrelator) -> None:
    """A result minted under another key does not fill a missing slot."""
    results = [
        _ok(PluginName.DNS, "abc123", DAY_ONE),
        _ok(PluginName.SHODAN, "zzz999", DAY_ONE),
    ]

    bucket = correlator.correlate("abc123", results)

    assert bucket.get(PluginName.SHODAN).status is PluginStatus.ABSENT


def test_correlation_is_deterministic(correlator: ResultCorrelator) -> None:
    """The same input always yields an equal bucket."""
    results = [
        _ok(PluginName.DNS, "abc123", DAY_ONE),
        _ok(PluginName.CRTSH, "abc123", DAY_ONE, subdomains=["www.example.com"]),
        PluginResult.failed(
            PluginName.OTX, "abc123", "timed out", status=PluginStatus.TIMEOUT, produced_at=DAY_ONE
        ),
    ]

    assert correlator.correlate("abc123", results) == correlator.correlate("abc123", results)
    assert correlator.group(results) == correlator.group(list(reversed(results)))


def test_group_splits_by_key_and_day(correlator: ResultCorrelator) -> None:
    """group() yields one bucket per (key, day), ordered by day then key."""
    results = [
        _ok(PluginName.DNS, "bbb", DAY_TWO),
        _ok(PluginName.DNS, "aaa", DAY_ONE),
        _ok(PluginName.TLS, "aaa", DAY_TWO),
        PluginResult.absent(PluginName.CHAOS, "aaa"),
    ]

    buckets = correlator.group(results)

    assert [(b.dns_scan_id, b.day) for b in buckets] == [
        ("aaa", DAY_ONE.date()),
        ("aaa", DAY_TWO.date()),
        ("bbb", DAY_TWO.date()),
    ]
    assert buckets[1].dns.status is PluginStatus.ABSENT
    assert buckets[1].get(PluginName.TLS).succeeded


def test_correlate_anchors_on_the_latest_dns_day(correlator: ResultCorrelator) -> None:
    """Without an explicit day the bucket is dated by the newest successful DNS result."""
    results = [
        _ok(PluginName.DNS, "abc123", DAY_ONE),
        _ok(PluginName.TLS, "abc123", DAY_ONE),
        _ok(PluginName.TLS, "abc123", DAY_TWO),
    ]

    bucket = correlator.correlate("abc123", results)
    assert bucket.day == DAY_ONE.date()
    assert bucket.dns.succeeded
    assert bucket.get(PluginName.TLS).produced_at == DAY_TWO

    first_day = correlator.correlate("abc123", results, day=DAY_ONE.date())
    assert first_day.get(PluginName.TLS).produced_at == DAY_ONE

    later = correlator.correlate("abc123", results, day=DAY_TWO.date())
    assert later.dns.status is PluginStatus.ABSENT
    assert later.get(PluginName.TLS).produced_at == DAY_TWO


def test_session_bucket_keeps_results_after_midnight(correlator: ResultCorrelator) -> None:
    """A fan-out that finishes after midnight UTC stays in its session's bucket."""
    dns_at = datetime(2026, 1, 1, 23, 59, 59, tzinfo=timezone.utc)
    after_midnight = datetime(2026, 1, 2, 0, 0, 1, tzinfo=timezone.utc)
    results = [
        _ok(PluginName.DNS, "abc123", dns_at),
        _ok(PluginName.TLS, "abc123", after_midnight, tls_version="TLS 1.3"),
        PluginResult.failed(PluginName.OTX, "abc123", "rate limited", produced_at=after_midnight),
    ]

    bucket = correlator.correlate("abc123", results)

    assert bucket.day == dns_at.date()
    assert bucket.get(PluginName.TLS).succeeded
    assert bucket.get(PluginName.OTX).status is PluginStatus.ERROR
    assert bucket.get(PluginName.SHODAN).status is PluginStatus.ABSENT
    assert correlator.correlate("abc123", results, day=dns_at.date()).get(
        PluginName.TLS
    ).status is PluginStatus.ABSENT


def test_session_bucket_ignores_results_before_the_dns_day(
    correlator: ResultCorrelator,
) -> None:
    """Results dated before the anchoring DNS day are not part of the session."""
    results = [
        _ok(PluginName.TLS, "abc123", DAY_ONE),
        _ok(PluginName.DNS, "abc123", DAY_TWO),
    ]

    bucket = correlator.correlate("abc123", results)

    assert bucket.day == DAY_TWO.date()
    assert bucket.get(PluginName.TLS).status is PluginStatus.ABSENT


def test_correlate_without_results(correlator: ResultCorrelator) -> None:
    """An unknown key correlates to a bucket of absent markers."""
    bucket = correlator.correlate("missing", [])

    assert all(r.status is PluginStatus.ABSENT for r in bucket.results.values())
    assert bucket.statuses()["DNS"] == "absent"


def test_bucket_day_uses_utc() -> None:
    """Days are taken in UTC regardless of the timestamp's offset."""
    late_evening_west = datetime(2026, 5, 4, 22, 30, tzinfo=timezone(timedelta(hours=-5)))
    result = _ok(PluginName.DNS, "abc123", late_evening_west)

    assert bucket_day(result) == DAY_TWO.date()
    with pytest.raises(ValueError):
        bucket_day(PluginResult.absent(PluginName.DNS))
