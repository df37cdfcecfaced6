"""PostureScope engine - scan orchestration, correlation, scoring and reports.

The service layer (``engine.context``, ``engine.service``) depends on
``posturescope.storage`` and is imported from its own modules.
"""

from posturescope.engine.correlation import CorrelatedBucket, ResultCorrelator
from posturescope.engine.risk_scoring import Finding, RiskScore, RiskScorer, RiskTier
from posturescope.engine.coordinator import ScanCoordinator, ScanSession, ScanState
from posturescope.engine.reports import Report, ReportAssembler

__all__ = [
    "CorrelatedBucket",
    "ResultCorrelator",
    "Finding",
    "RiskScore",
    "RiskScorer",
    "RiskTier",
    "ScanCoordinator",
    "ScanSession",
    "ScanState",
    "Report",
    "ReportAssembler",
]
