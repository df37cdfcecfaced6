"""
Tests for the plugin invocation contract.

Covers result construction for success, upstream failure, unexpected
exceptions and deadline expiry, key minting by the DNS plugin, per-plugin
timeout overrides, and serialisation of results.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import FakePlugin
from posturescope.config import Settings
from posturescope.core.exceptions import PluginFailure
from posturescope.plugins.base import (
    FANOUT_PLUGINS,
    PluginName,
    PluginResult,
    PluginStatus,
)


@pytest.mark.asyncio
async def test_invoke_returns_ok_result(settings: Settings) -> None:
    """A plugin that answers in time yields an ok result carrying its payload."""
    plugin = FakePlugin(PluginName.OTX, settings, payload={"pulse_count": 0})

    result = await plugin.invoke("example.com", "abc123")

    assert result.status is PluginStatus.OK
    assert result.plugin is PluginName.OTX
    assert result.dns_scan_id == "abc123"
    assert result.payload == {"pulse_count": 0}
    assert result.error_message is None
    assert result.produced_at is not None
    assert result.produced_at.tzinfo is not None
    assert plugin.calls == [("example.com", "abc123")]


@pytest.mark.asyncio
async def test_invoke_converts_plugin_failure_to_error(settings: Settings) -> None:
    """A PluginFailure becomes an error result with the bare reason as message."""
    plugin = FakePlugin(
        PluginName.TLS,
        settings,
        error=PluginFailure(PluginName.TLS, "handshake failure"),
    )

    result = await plugin.invoke("example.com", "abc123")

    assert result.status is PluginStatus.ERROR
    assert result.error_message == "handshake failure"
    assert result.payload is None
    assert result.dns_scan_id == "abc123"


@pytest.mark.asyncio
async def test_invoke_never_raises_on_unexpected_exception(settings: Settings) -> None:
    """Transport errors are captured; an exception without text reports its class name."""
    plugin = FakePlugin(PluginName.SHODAN, settings, error=ConnectionResetError())

    result = await plugin.invoke("example.com", "abc123")

    assert result.status is PluginStatus.ERROR
    assert result.error_message == "ConnectionResetError"


@pytest.mark.asyncio
async def test_invoke_times_out_at_plugin_deadline() -> None:
    """A plugin that exceeds its deadline yields a timeout result, not an exception."""
    settings = Settings(_env_file=None, PLUGIN_TIMEOUTS={"whois": 0.05})
    plugin = FakePlugin(PluginName.WHOIS, settings, delay=1.0)

    result = await plugin.invoke("example.com", "abc123")

    assert result.status is PluginStatus.TIMEOUT
    assert result.payload is None
    assert "0.05s" in result.error_message


def test_timeout_precedence(settings: Settings) -> None:
    """Per-plugin overrides beat the class default, which beats the global default."""
    plugin = FakePlugin(PluginName.CRTSH, settings)
    assert plugin.timeout == settings.PLUGIN_TIMEOUT_SECONDS

    plugin.timeout_seconds = 45.0
    assert plugin.timeout == 45.0

    override = Settings(_env_file=None, PLUGIN_TIMEOUTS={"CRTSH": 3})
    plugin.settings = override
    assert plugin.timeout == 3.0


@pytest.mark.asyncio
async def test_dns_plugin_mints_a_fresh_key_per_invocation(settings: Settings) -> None:
    """Every DNS invocation mints its own non-empty correlation key."""
    plugin = FakePlugin(PluginName.DNS, settings)

    first = await plugin.invoke("example.com")
    second = await plugin.invoke("example.com")

    assert first.dns_scan_id
    assert second.dns_scan_id
    assert first.dns_scan_id != second.dns_scan_id


@pytest.mark.asyncio
async def test_fanout_plugin_requires_a_key(settings: Settings) -> None:
    """A fan-out plugin cannot be invoked without a correlation key."""
    plugin = FakePlugin(PluginName.CHAOS, settings)

    with pytest.raises(ValueError):
        await plugin.invoke("example.com")
    assert plugin.calls == []


@pytest.mark.asyncio
async def test_missing_api_key_is_an_error_result() -> None:
    """require_api_key fails the invocation when the key is not configured."""

    class KeyedPlugin(FakePlugin):
        api_key_setting = "SHODAN_API_KEY"

        async def scan(self, domain: str, dns_scan_id: str) -> dict:
            self.require_api_key()
            return {}

    plugin = KeyedPlugin(PluginName.SHODAN, Settings(_env_file=None, SHODAN_API_KEY=None))
    result = await plugin.invoke("example.com", "abc123")

    assert result.status is PluginStatus.ERROR
    assert result.error_message == "SHODAN_API_KEY is not configured"


def test_fanout_plugins_exclude_dns() -> None:
    """The fan-out set is every enumerated plugin except DNS, in enum order."""
    assert PluginName.DNS not in FANOUT_PLUGINS
    assert len(FANOUT_PLUGINS) == len(PluginName) - 1
    assert FANOUT_PLUGINS[0] is PluginName.TLS


def test_failed_result_rejects_ok_status() -> None:
    """PluginResult.failed only accepts the error and timeout statuses."""
    with pytest.raises(ValueError):
        PluginResult.failed(PluginName.TLS, "abc123", "boom", status=PluginStatus.OK)


def test_absent_marker_has_no_timestamp() -> None:
    """Absent markers carry no payload, no error and no produced_at."""
    marker = PluginResult.absent(PluginName.CHAOS, "abc123")

    assert marker.status is PluginStatus.ABSENT
    assert marker.produced_at is None
    assert marker.payload is None
    assert not marker.succeeded


def test_result_dict_restores_equal_result() -> None:
    """from_dict(to_dict()) restores an equal result with an aware timestamp."""
    produced = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)
    result = PluginResult.ok(
        PluginName.WHOIS, "abc123", {"domain": "example.com"}, produced_at=produced
    )

    data = result.to_dict()
    assert data["plugin"] == "WHOIS"
    assert data["status"] == "ok"
    assert data["produced_at"] == "2026-03-01T12:30:00+00:00"
    assert PluginResult.from_dict(data) == result
