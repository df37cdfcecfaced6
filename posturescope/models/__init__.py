"""
PostureScope ORM models package.

Re-exports every model class so that consumers (and Alembic's autogenerate)
can import directly from ``posturescope.models``::

    from posturescope.models import ReportRecord, PluginResultRecord
"""

from posturescope.models.report import ReportRecord
from posturescope.models.plugin_result import PluginResultRecord

__all__: list[str] = [
    "ReportRecord",
    "PluginResultRecord",
]
