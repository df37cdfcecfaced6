"""
Tests for the API-keyed intelligence plugins: Chaos, Shodan, OTX and
abuse.ch ThreatFox.

Each upstream is mocked at ``httpx.AsyncClient``.  The tests check payload
shaping, timestamp normalisation, upstream error reporting and the missing
API key path.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from posturescope.config import Settings
from posturescope.plugins.abusech import AbuseChPlugin
from posturescope.plugins.base import PluginStatus
from posturescope.plugins.chaos import ChaosPlugin
from posturescope.plugins.otx import OtxPlugin
from posturescope.plugins.shodan import ShodanPlugin


def _response(body: object = None, status_code: int = 200) -> MagicMock:
    mock_response = MagicMock(spec=httpx.Response)
    mock_response.status_code = status_code
    mock_response.json.return_value = body
    if status_code >= 400:
        mock_response.raise_for_status.side_effect = httpx.HTTPStatusError(
            f"HTTP {status_code}", request=MagicMock(), response=mock_response
        )
    else:
        mock_response.raise_for_status = MagicMock()
    return mock_response


def _client(**methods: object) -> AsyncMock:
    """Build an AsyncClient stand-in usable as an async context manager."""
    mock_client_instance = AsyncMock()
    for method, outcome in methods.items():
        target = getattr(mock_client_instance, method)
        if isinstance(outcome, list):
            target.side_effect = outcome
        else:
            target.return_value = outcome
    mock_client_instance.__aenter__ = AsyncMock(return_value=mock_client_instance)
    mock_client_instance.__aexit__ = AsyncMock(return_value=False)
    return mock_client_instance


# ---------------------------------------------------------------------------
# Chaos
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_chaos_expands_labels_to_subdomains(settings: Settings) -> None:
    """Chaos labels are lower-cased, de-duplicated and joined to the domain."""
    client = _client(get=_response({"domain": "example.com", "subdomains": ["www", "API", "api", "*.dev"]}))

    with patch("posturescope.plugins.chaos.httpx.AsyncClient", return_value=client):
        result = await ChaosPlugin(settings).invoke("example.com", "abc123")

    assert result.status is PluginStatus.OK
    assert result.payload == {
        "subdomains": ["api.example.com", "dev.example.com", "www.example.com"]
    }
    args, kwargs = client.get.call_args
    assert args[0] == "https://dns.projectdiscovery.io/dns/example.com/subdomains"
    assert kwargs["headers"] == {"Authorization": "chaos-key"}


@pytest.mark.asyncio
async def test_chaos_without_api_key_fails() -> None:
    """Without CHAOS_API_KEY the plugin fails before any request is made."""
    with patch("posturescope.plugins.chaos.httpx.AsyncClient") as MockClient:
        result = await ChaosPlugin(Settings(_env_file=None, CHAOS_API_KEY=None)).invoke(
            "example.com", "abc123"
        )

    assert result.status is PluginStatus.ERROR
    assert result.error_message == "CHAOS_API_KEY is not configured"
    MockClient.assert_not_called()


@pytest.mark.asyncio
async def test_chaos_unauthorised(settings: Settings) -> None:
    """A rejected key surfaces as an error result naming the HTTP status."""
    client = _client(get=_response(status_code=401))

    with patch("posturescope.plugins.chaos.httpx.AsyncClient", return_value=client):
        result = await ChaosPlugin(settings).invoke("example.com", "abc123")

    assert result.status is PluginStatus.ERROR
    assert result.error_message == "Chaos returned HTTP 401"


# ---------------------------------------------------------------------------
# Shodan
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_shodan_shapes_hosts(settings: Settings) -> None:
    """Banners are reduced to the host facts the scorer reads."""
    body = {
        "total": 1,
        "matches": [
            {
                "ip_str": "203.0.113.10",
                "port": 443,
                "hostnames": ["www.example.com"],
                "tags": ["cloud"],
                "org": "Example Hosting",
                "timestamp": "2026-09-30T08:15:00.123456",
                "ssl": {"cert": {"expires": "20261231235959Z"}},
            }
        ],
    }
    client = _client(get=_response(body))

    with patch("posturescope.plugins.shodan.httpx.AsyncClient", return_value=client):
        result = await ShodanPlugin(settings).invoke("example.com", "abc123")

    assert result.status is PluginStatus.OK
    assert result.payload["total"] == 1
    host = result.payload["hosts"][0]
    assert host["ip"] == "203.0.113.10"
    assert host["port"] == 443
    assert host["tags"] == ["cloud"]
    assert host["ssl_not_after"] == "2026-12-31T23:59:59+00:00"
    assert host["timestamp"] == "2026-09-30T08:15:00.123456+00:00"

    _, kwargs = client.get.call_args
    assert kwargs["params"] == {"key": "shodan-key", "query": "hostname:example.com"}


@pytest.mark.asyncio
async def test_shodan_api_error_in_body(settings: Settings) -> None:
    """Shodan errors reported in the JSON body fail the invocation."""
    client = _client(get=_response({"error": "Invalid API key"}))

    with patch("posturescope.plugins.shodan.httpx.AsyncClient", return_value=client):
        result = await ShodanPlugin(settings).invoke("example.com", "abc123")

    assert result.status is PluginStatus.ERROR
    assert result.error_message == "Shodan API error: Invalid API key"


# ---------------------------------------------------------------------------
# OTX
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_otx_merges_indicator_sections(settings: Settings) -> None:
    """The general, malware and url_list sections are merged into one payload."""
    general = {"pulse_info": {"count": 2, "pulses": [{"name": "Phishing kit"}, {"name": "C2"}]}}
    malware = {"data": [{"hash": "44d88612fea8a8f36de82e1278abb02f", "datetime_int": 1767225600}]}
    urls = {"url_list": [{"url": "http://example.com/login.php", "date": "2026-01-02T03:04:05"}]}
    client = _client(get=[_response(general), _response(malware), _response(urls)])

    with patch("posturescope.plugins.otx.httpx.AsyncClient", return_value=client) as MockClient:
        result = await OtxPlugin(settings).invoke("example.com", "abc123")

    assert result.status is PluginStatus.OK
    assert result.payload["pulse_count"] == 2
    assert result.payload["pulses"] == ["Phishing kit", "C2"]
    assert result.payload["malware"] == [
        {
            "hash": "44d88612fea8a8f36de82e1278abb02f",
            "datetime": datetime(2026, 1, 1, tzinfo=timezone.utc).isoformat(),
        }
    ]
    assert result.payload["urls"] == [
        {"url": "http://example.com/login.php", "datetime": "2026-01-02T03:04:05+00:00"}
    ]
    _, kwargs = MockClient.call_args
    assert kwargs["headers"] == {"X-OTX-API-KEY": "otx-key"}


@pytest.mark.asyncio
async def test_otx_failed_section_fails_the_scan(settings: Settings) -> None:
    """Any section failing fails the whole OTX invocation."""
    client = _client(
        get=[_response({"pulse_info": {"count": 0}}), _response(status_code=429), _response({})]
    )

    with patch("posturescope.plugins.otx.httpx.AsyncClient", return_value=client):
        result = await OtxPlugin(settings).invoke("example.com", "abc123")

    assert result.status is PluginStatus.ERROR
    assert result.error_message == "OTX malware query failed: HTTP 429"


# ---------------------------------------------------------------------------
# abuse.ch ThreatFox
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_threatfox_shapes_iocs(settings: Settings) -> None:
    """IOC confidence becomes a fraction and timestamps become aware ISO strings."""
    body = {
        "query_status": "ok",
        "data": [
            {
                "ioc": "example.com",
                "ioc_type": "domain",
                "threat_type": "botnet_cc",
                "confidence_level": 75,
                "first_seen": "2026-08-01 10:00:00 UTC",
                "last_seen": "2026-10-01 10:00:00",
                "malware_alias": "Cobalt Strike, Agentemis",
                "tags": ["c2"],
            }
        ],
    }
    client = _client(post=_response(body))

    with patch("posturescope.plugins.abusech.httpx.AsyncClient", return_value=client):
        result = await AbuseChPlugin(settings).invoke("example.com", "abc123")

    assert result.status is PluginStatus.OK
    ioc = result.payload["iocs"][0]
    assert ioc["ioc_value"] == "example.com"
    assert ioc["confidence"] == 0.75
    assert ioc["first_seen"] == "2026-08-01T10:00:00+00:00"
    assert ioc["last_seen"] == "2026-10-01T10:00:00+00:00"
    assert ioc["malware_alias"] == ["Cobalt Strike", "Agentemis"]

    _, kwargs = client.post.call_args
    assert kwargs["json"] == {"query": "search_ioc", "search_term": "example.com"}
    assert kwargs["headers"] == {"Auth-Key": "abusech-key"}


@pytest.mark.asyncio
async def test_threatfox_no_result_is_clean(settings: Settings) -> None:
    """ThreatFox's no_result status is a successful scan with no IOCs."""
    client = _client(post=_response({"query_status": "no_result", "data": "Your search did not yield any results"}))

    with patch("posturescope.plugins.abusech.httpx.AsyncClient", return_value=client):
        result = await AbuseChPlugin(settings).invoke("example.com", "abc123")

    assert result.status is PluginStatus.OK
    assert result.payload == {"iocs": []}


@pytest.mark.asyncio
async def test_threatfox_query_error(settings: Settings) -> None:
    """Any other query status is an upstream error."""
    client = _client(post=_response({"query_status": "illegal_search_term"}))

    with patch("posturescope.plugins.abusech.httpx.AsyncClient", return_value=client):
        result = await AbuseChPlugin(settings).invoke("example.com", "abc123")

    assert result.status is PluginStatus.ERROR
    assert result.error_message == "ThreatFox API error: illegal_search_term"
