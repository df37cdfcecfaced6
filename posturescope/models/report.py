"""
Report model.

Stores the complete snapshot of an assembled report.  Reports are written
once and never updated, so reading a row back always yields exactly the
report that was handed to the caller when it was generated.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from posturescope.core.database import Base


class ReportRecord(Base):
    """One immutable report.

    Attributes:
        id: Report UUID (string form), the report's identity.
        domain: Normalised domain (indexed for listing by domain).
        dns_scan_id: Correlation key of the scan the report was built from.
        score: Risk score value, 0--100.
        tier: Risk tier label (``Low`` ... ``Critical``).
        snapshot: Full JSON serialisation of the report.
        created_at: Assembly time.
    """

    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
    )
    domain: Mapped[str] = mapped_column(
        String(253),
        nullable=False,
        index=True,
    )
    dns_scan_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True,
    )
    score: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    tier: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
    )
    snapshot: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<ReportRecord id={self.id} domain={self.domain!r} score={self.score}>"
