"""
Report Exceptions

Data-quality problems are never raised; they are tallied as rejections.
Only configuration mistakes and unreadable sources abort a run.
"""


class ReportError(Exception):
    """Base class for report failures"""


class ConfigurationError(ReportError):
    """Invalid report configuration, raised before aggregation begins"""


class SourceUnavailableError(ReportError):
    """A warehouse source table is missing or unreadable"""

    def __init__(self, table: str, reason: str):
        self.table = table
        self.reason = reason
        super().__init__(f"Source table '{table}' unavailable: {reason}")
