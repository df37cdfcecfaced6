"""
Shared pytest fixtures for the PostureScope test suite.

Provides a throwaway SQLite database (via aiosqlite), a report store bound
to it, configurable fake plugins that stand in for the real data sources,
an orchestration context and service built from those fakes, and an
``httpx.AsyncClient`` wired to a FastAPI app that uses the same context.
"""

from __future__ import annotations

import asyncio
import copy
from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from posturescope.config import Settings
from posturescope.core.database import Base, build_engine, build_session_factory
from posturescope.core.events import EventPublisher
from posturescope.engine.context import OrchestrationContext
from posturescope.engine.service import ReportService
from posturescope.models import PluginResultRecord, ReportRecord  # noqa: F401
from posturescope.plugins.base import BasePlugin, PluginName
from posturescope.plugins.registry import PluginRegistry
from posturescope.storage import SqlReportStore

API_KEY: str = "test-api-key"


# ---------------------------------------------------------------------------
# Payloads that produce no findings
# ---------------------------------------------------------------------------

CLEAN_PAYLOADS: dict[PluginName, dict[str, Any]] = {
    PluginName.DNS: {
        "a_records": ["93.184.216.34"],
        "mx_records": ["10 mail.example.com."],
        "spf_record": "v=spf1 -all",
        "spf_valid": True,
        "dmarc_record": "v=DMARC1; p=reject",
        "dmarc_valid": True,
        "dkim_selectors": ["default"],
        "dnssec_enabled": True,
        "dnssec_valid": True,
        "errors": [],
    },
    PluginName.TLS: {
        "tls_version": "TLS 1.3",
        "hsts_header": True,
        "certificate_valid": True,
        "cert_not_after": "2099-01-01T00:00:00+00:00",
        "cert_key_strength": 2048,
    },
    PluginName.CRTSH: {"certificates": [], "subdomains": []},
    PluginName.CHAOS: {"subdomains": []},
    PluginName.SHODAN: {"hosts": [], "total": 0},
    PluginName.OTX: {"pulse_count": 0, "pulses": [], "malware": [], "urls": []},
    PluginName.WHOIS: {
        "domain": "example.com",
        "registrar": "Example Registrar",
        "expiry_date": "2099-01-01T00:00:00+00:00",
    },
    PluginName.ABUSECH: {"iocs": []},
}


# ---------------------------------------------------------------------------
# Fake plugins
# ---------------------------------------------------------------------------

class FakePlugin(BasePlugin):
    """Scriptable plugin that never touches the network.

    Args:
        name:     Plugin slot the fake fills.
        settings: Settings used for deadlines.
        payload:  Payload returned on success.
        error:    Exception raised from :meth:`scan` instead of returning.
        delay:    Seconds to sleep before answering.
        scan_id:  Key minted when the fake stands in for DNS.
    """

    def __init__(
        self,
        name: PluginName,
        settings: Settings,
        payload: Optional[dict[str, Any]] = None,
        error: Optional[BaseException] = None,
        delay: float = 0.0,
        scan_id: Optional[str] = None,
    ) -> None:
        super().__init__(settings)
        self.name = name
        self.mints_scan_id = name is PluginName.DNS
        self.payload = payload if payload is not None else copy.deepcopy(CLEAN_PAYLOADS[name])
        self.error = error
        self.delay = delay
        self.scan_id = scan_id
        self.calls: list[tuple[str, str]] = []

    def new_scan_id(self) -> str:
        return self.scan_id or super().new_scan_id()

    async def scan(self, domain: str, dns_scan_id: str) -> dict[str, Any]:
        self.calls.append((domain, dns_scan_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.payload)


# ---------------------------------------------------------------------------
# Settings and plugins
# ---------------------------------------------------------------------------

@pytest.fixture()
def settings() -> Settings:
    """Settings with short deadlines and event publishing switched off."""
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite+aiosqlite:///",
        PUBLISH_EVENTS=False,
        PLUGIN_TIMEOUT_SECONDS=2.0,
        FANOUT_DEADLINE_SECONDS=5.0,
        SHODAN_API_KEY="shodan-key",
        OTX_API_KEY="otx-key",
        CHAOS_API_KEY="chaos-key",
        ABUSECH_AUTH_KEY="abusech-key",
    )


@pytest.fixture()
def fake_plugins(settings: Settings) -> dict[PluginName, FakePlugin]:
    """One clean fake per plugin; DNS mints the key ``abc123``."""
    plugins = {name: FakePlugin(name, settings) for name in PluginName}
    plugins[PluginName.DNS].scan_id = "abc123"
    return plugins


@pytest.fixture()
def registry(fake_plugins: dict[PluginName, FakePlugin]) -> PluginRegistry:
    """A registry built from :func:`fake_plugins`."""
    return PluginRegistry(fake_plugins)


# ---------------------------------------------------------------------------
# Database engine and store
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create an async SQLite engine on a temporary file and provision all tables.

    A file database is shared by every connection in the pool, which an
    in-memory one is not.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'posturescope.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture()
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(test_engine)


@pytest.fixture()
def store(session_factory: async_sessionmaker[AsyncSession]) -> SqlReportStore:
    return SqlReportStore(session_factory)


# ---------------------------------------------------------------------------
# Context, service and HTTP client
# ---------------------------------------------------------------------------

@pytest.fixture()
def context(
    settings: Settings,
    registry: PluginRegistry,
    store: SqlReportStore,
) -> OrchestrationContext:
    return OrchestrationContext(
        settings=settings,
        registry=registry,
        store=store,
        events=EventPublisher(),
    )


@pytest.fixture()
def service(context: OrchestrationContext) -> ReportService:
    return ReportService(context)


@pytest.fixture()
def make_service(
    settings: Settings,
    store: SqlReportStore,
) -> Callable[[dict[PluginName, FakePlugin]], ReportService]:
    """Factory building a service around a custom set of fake plugins."""

    def _make(plugins: dict[PluginName, FakePlugin]) -> ReportService:
        return ReportService(
            OrchestrationContext(
                settings=settings,
                registry=PluginRegistry(plugins),
                store=store,
            )
        )

    return _make


@pytest_asyncio.fixture()
async def client(context: OrchestrationContext) -> AsyncGenerator[AsyncClient, None]:
    """Yield an httpx.AsyncClient wired to an app using the test context."""
    from posturescope.main import create_app

    transport = ASGITransport(app=create_app(context))
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-API-Key": API_KEY},
    ) as ac:
        yield ac
