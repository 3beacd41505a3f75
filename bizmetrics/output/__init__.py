"""
Report Output Module
"""
from .writer import OutputFormat, ReportWriter

__all__ = [
    "OutputFormat",
    "ReportWriter",
]
