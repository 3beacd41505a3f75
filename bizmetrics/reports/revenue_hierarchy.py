"""
Revenue by Product Hierarchy

Monthly customer count, ACV and MRR for one product category at every
level of the hierarchy (Category > Group > Product), with year-over-year
growth, in long format:

    month_end_date | aggregation_level | aggregation_object | metrics...
"""

from datetime import date
from typing import Dict, List

import polars as pl
import structlog
from sqlalchemy import select

from bizmetrics.database.models import DimProductHierarchy, FactMonthlyCustomerRevenue
from bizmetrics.engine.aggregator import (
    MISSING_EVENT_DATE,
    FactAggregator,
    MetricSpec,
    Reducer,
    RejectionTally,
    split_rejected,
)
from bizmetrics.engine.derived import growth_rate_expr, unpivot_levels, with_lagged
from bizmetrics.quality import DataValidator, ValidationSeverity
from bizmetrics.reports.base import Report, ReportFrame, register
from bizmetrics.warehouse import WarehouseReader

logger = structlog.get_logger(__name__)

# (aggregation_level label, hierarchy column)
LEVELS = [
    ("Product Group", "product_group"),
    ("Product Name", "product_name"),
    ("Product Category", "product_category"),
]

METRICS = ["num_customers", "total_acv", "total_mrr"]
GROWTH_COLUMNS = {
    "num_customers": "yoy_growth_customers",
    "total_acv": "yoy_growth_acv",
    "total_mrr": "yoy_growth_mrr",
}
YOY_LAG_MONTHS = 12

OUTPUT_COLUMNS = [
    "month_end_date",
    "aggregation_level",
    "aggregation_object",
    *METRICS,
    *[f"{m}_prior_year" for m in METRICS],
    *GROWTH_COLUMNS.values(),
]


def level_aggregator(level_column: str) -> FactAggregator:
    """Monthly metrics for one hierarchy level"""
    return FactAggregator(
        periods=[],
        metrics=[
            MetricSpec("num_customers", Reducer.COUNT_DISTINCT, measure="customer_id"),
            MetricSpec("total_acv", Reducer.SUM, measure="acv"),
            MetricSpec("total_mrr", Reducer.SUM, measure="mrr"),
        ],
        group_by=["month_end_date", level_column],
    )


@register
class RevenueHierarchyReport(Report):
    """Hierarchy-level revenue with YoY growth"""

    name = "revenue_hierarchy"

    async def load(self, reader: WarehouseReader, reference_date: date) -> Dict[str, pl.DataFrame]:
        revenue = await reader.read(
            select(
                FactMonthlyCustomerRevenue.month_end_date,
                FactMonthlyCustomerRevenue.customer_id,
                DimProductHierarchy.product_category,
                DimProductHierarchy.product_group,
                DimProductHierarchy.product_name,
                FactMonthlyCustomerRevenue.acv,
                FactMonthlyCustomerRevenue.mrr,
            )
            .join(DimProductHierarchy, FactMonthlyCustomerRevenue.product_id == DimProductHierarchy.product_id)
            .where(DimProductHierarchy.product_category == self.settings.product_category),
            source=FactMonthlyCustomerRevenue.__tablename__,
        )
        return {"revenue": revenue}

    def validators(self) -> Dict[str, DataValidator]:
        return {
            "revenue": (
                DataValidator("fact_monthly_customer_revenue")
                .add_not_null_check("month_end_date", severity=ValidationSeverity.WARNING)
                .add_not_null_check("customer_id", severity=ValidationSeverity.WARNING)
                .add_range_check("acv", min_value=0, severity=ValidationSeverity.WARNING)
                .add_range_check("mrr", min_value=0, severity=ValidationSeverity.WARNING)
            ),
        }

    def build(self, sources: Dict[str, pl.DataFrame], reference_date: date) -> ReportFrame:
        tally = RejectionTally()
        revenue = sources["revenue"].with_columns(pl.col("month_end_date").cast(pl.Date))

        # Rejected once here rather than once per level
        revenue, _ = split_rejected(
            revenue,
            [(MISSING_EVENT_DATE, pl.col("month_end_date").is_null())],
            tally,
        )
        revenue = revenue.filter(pl.col("month_end_date") <= pl.lit(reference_date))

        levels: List = []
        for label, column in LEVELS:
            result = level_aggregator(column).aggregate(revenue)
            tally.extend(result.rejections)
            lagged = with_lagged(
                result.frame,
                METRICS,
                periods=YOY_LAG_MONTHS,
                partition_by=column,
                order_by="month_end_date",
            )
            levels.append((label, lagged, column))

        report = (
            unpivot_levels(levels)
            .with_columns([
                growth_rate_expr(metric, f"{metric}_prior_year").alias(growth)
                for metric, growth in GROWTH_COLUMNS.items()
            ])
            .sort(
                ["month_end_date", "aggregation_level", "aggregation_object"],
                descending=[True, False, False],
                nulls_last=True,
            )
            .select(OUTPUT_COLUMNS)
        )

        logger.info(
            "Revenue hierarchy built",
            category=self.settings.product_category,
            months=report["month_end_date"].n_unique(),
            rows=len(report),
        )
        return ReportFrame(frame=report, rejections=tally)
