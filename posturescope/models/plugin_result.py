"""
Plugin result model.

Every plugin invocation that ran (successfully or not) is kept as one row,
so historical views can be re-assembled for a correlation key without
re-scanning.  ``absent`` markers are never stored.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Float, Index, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from posturescope.core.database import Base


class PluginResultRecord(Base):
    """A stored :class:`~posturescope.plugins.base.PluginResult`.

    Attributes:
        id: Row UUID.
        domain: Normalised domain the plugin scanned.
        dns_scan_id: Correlation key the invocation was bound to.
        plugin: Enumerated plugin name.
        status: ``ok``, ``error`` or ``timeout``.
        payload: Plugin payload for ``ok`` rows.
        error_message: Failure reason for ``error``/``timeout`` rows.
        produced_at: When the invocation completed.
        duration_seconds: Time spent in the invocation.
    """

    __tablename__ = "plugin_results"
    __table_args__ = (
        Index("ix_plugin_results_domain_produced_at", "domain", "produced_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    domain: Mapped[str] = mapped_column(
        String(253),
        nullable=False,
    )
    dns_scan_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )
    plugin: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
    )
    payload: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
    )
    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    produced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    duration_seconds: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        default=0.0,
    )

    def __repr__(self) -> str:
        return (
            f"<PluginResultRecord plugin={self.plugin} status={self.status} "
            f"scan={self.dns_scan_id}>"
        )
