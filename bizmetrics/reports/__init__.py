"""
Reports Module

Importing this package registers every report.
"""
from .base import Report, ReportFrame, ReportResult, REPORTS, available_reports, get_report, register
from .sales_performance import SalesPerformanceReport
from .product_adoption import ProductAdoptionReport
from .revenue_hierarchy import RevenueHierarchyReport
from .partner_usage import PartnerUsageReport

__all__ = [
    "Report",
    "ReportFrame",
    "ReportResult",
    "REPORTS",
    "available_reports",
    "get_report",
    "register",
    "SalesPerformanceReport",
    "ProductAdoptionReport",
    "RevenueHierarchyReport",
    "PartnerUsageReport",
]
