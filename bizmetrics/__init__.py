"""
Business Metrics Reporting

Period-bucketed aggregation of warehouse facts into scheduled reports.
"""

__version__ = "1.0.0"
