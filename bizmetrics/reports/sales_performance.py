"""
Sales Performance vs. Target

Pipeline and closed-won ACV for one industry vertical, compared with the
vertical's sales targets.

Cohort:
- Tier 2: every customer in the vertical with a CRM account id
- Tier 1: curated strategic accounts for the reference year

Actuals are bucketed into prior year, YTD, QTD and MTD per account, then
summed per priority tier. Targets apply to every tier.
"""

from datetime import date
from typing import Dict

import polars as pl
import structlog
from sqlalchemy import select

from bizmetrics.database.models import (
    CrmOpportunity,
    DimCustomer,
    OpportunityStage,
    OpportunityType,
    StrategicAccount,
    VerticalTarget,
)
from bizmetrics.engine.aggregator import FactAggregator, MetricSpec
from bizmetrics.engine.derived import safe_divide_expr
from bizmetrics.engine.windows import (
    CURRENT_MONTH,
    CURRENT_QUARTER,
    CURRENT_YEAR,
    PRIOR_YEAR,
    first_day_of_month,
    quarter_number,
    resolve_periods,
)
from bizmetrics.quality import DataValidator, ValidationSeverity
from bizmetrics.reports.base import Report, ReportFrame, register
from bizmetrics.warehouse import WarehouseReader

logger = structlog.get_logger(__name__)

TIER_1 = "Tier 1"
TIER_2 = "Tier 2"

SALES_PERIODS = (PRIOR_YEAR, CURRENT_YEAR, CURRENT_QUARTER, CURRENT_MONTH)

OUTPUT_COLUMNS = [
    "report_date",
    "priority_level",
    "total_prior_year_pipeline_acv",
    "total_prior_year_closed_won_acv",
    "total_ytd_pipeline_acv",
    "total_ytd_closed_won_acv",
    "total_qtd_pipeline_acv",
    "total_qtd_closed_won_acv",
    "total_mtd_pipeline_acv",
    "total_mtd_closed_won_acv",
    "total_annual_target_acv",
    "current_quarter_target_acv",
    "current_month_target_acv",
    "ytd_percent_to_annual_target",
    "qtd_percent_to_quarter_target",
    "mtd_percent_to_month_target",
]


@register
class SalesPerformanceReport(Report):
    """Actuals vs. targets per priority tier"""

    name = "sales_performance"

    async def load(self, reader: WarehouseReader, reference_date: date) -> Dict[str, pl.DataFrame]:
        vertical = self.settings.sales_vertical

        customers = await reader.read(
            select(DimCustomer.crm_account_id, DimCustomer.account_name).where(
                DimCustomer.industry_vertical == vertical,
                DimCustomer.crm_account_id.is_not(None),
            ),
            source=DimCustomer.__tablename__,
        )
        strategic = await reader.read(
            select(StrategicAccount.crm_account_id, StrategicAccount.account_name).where(
                StrategicAccount.fiscal_year == reference_date.year,
            ),
            source=StrategicAccount.__tablename__,
        )
        opportunities = await reader.read(
            select(
                CrmOpportunity.opportunity_id,
                CrmOpportunity.crm_account_id,
                CrmOpportunity.opportunity_type,
                CrmOpportunity.stage_name,
                CrmOpportunity.pipeline_creation_date,
                CrmOpportunity.close_date,
                CrmOpportunity.annual_contract_value,
            ).where(CrmOpportunity.opportunity_type.in_(self.settings.opportunity_types)),
            source=CrmOpportunity.__tablename__,
        )
        targets = await reader.read(
            select(VerticalTarget.target_month, VerticalTarget.target_acv).where(
                VerticalTarget.target_vertical == vertical,
                VerticalTarget.target_month.between(date(reference_date.year, 1, 1), date(reference_date.year, 12, 31)),
            ),
            source=VerticalTarget.__tablename__,
        )

        return {
            "customers": customers,
            "strategic_accounts": strategic,
            "opportunities": opportunities,
            "targets": targets,
        }

    def validators(self) -> Dict[str, DataValidator]:
        return {
            "opportunities": (
                DataValidator("crm_opportunity")
                .add_unique_check("opportunity_id", severity=ValidationSeverity.WARNING)
                .add_not_null_check("crm_account_id", severity=ValidationSeverity.WARNING)
                .add_not_null_check("pipeline_creation_date", severity=ValidationSeverity.WARNING)
                .add_range_check("annual_contract_value", min_value=0, severity=ValidationSeverity.WARNING)
                .add_enum_check(
                    "opportunity_type",
                    [t.value for t in OpportunityType],
                    severity=ValidationSeverity.WARNING,
                )
                .add_enum_check(
                    "stage_name",
                    [s.value for s in OpportunityStage],
                    severity=ValidationSeverity.WARNING,
                )
            ),
            "targets": (
                DataValidator("vertical_targets")
                .add_range_check("target_acv", min_value=0, severity=ValidationSeverity.WARNING)
                .add_custom_check(
                    name="targets_present",
                    check_func=lambda df: "target_acv" in df.columns and (df["target_acv"].sum() or 0) > 0,
                    message_on_fail="No targets for the vertical and year",
                    severity=ValidationSeverity.WARNING,
                )
            ),
        }

    def cohort(self, customers: pl.DataFrame, strategic: pl.DataFrame) -> pl.DataFrame:
        """Both tiers stacked; an account may appear under each tier"""
        tier_2 = (
            customers.filter(pl.col("crm_account_id").is_not_null())
            .select(["crm_account_id", "account_name"])
            .unique(maintain_order=True)
            .with_columns(pl.lit(TIER_2).alias("priority_level"))
        )
        tier_1 = strategic.select(["crm_account_id", "account_name"]).with_columns(
            pl.lit(TIER_1).alias("priority_level")
        )
        return pl.concat([tier_2, tier_1], how="vertical_relaxed")

    def actuals(self, opportunities: pl.DataFrame, reference_date: date):
        """
        Per-account actuals. Each metric is bucketed by its own date, so an
        opportunity without a close date still counts as pipeline and a won
        deal without a creation date still counts as closed-won.
        """
        periods = resolve_periods(reference_date, SALES_PERIODS)
        aggregator = FactAggregator(
            periods=list(periods.values()),
            metrics=[
                MetricSpec(
                    "pipeline_acv",
                    measure="annual_contract_value",
                    date_column="pipeline_creation_date",
                ),
                MetricSpec(
                    "closed_won_acv",
                    measure="annual_contract_value",
                    predicate=pl.col("stage_name") == self.settings.closed_won_stage,
                    date_column="close_date",
                ),
            ],
            group_by=["crm_account_id"],
        )
        return aggregator.aggregate(opportunities)

    @staticmethod
    def targets(targets: pl.DataFrame, reference_date: date) -> pl.DataFrame:
        """Single row of annual, current-quarter and current-month targets"""
        acv = pl.col("target_acv").cast(pl.Float64)
        month = pl.col("target_month").cast(pl.Date)
        return targets.select([
            acv.sum().alias("total_annual_target_acv"),
            acv.filter(month.dt.quarter() == quarter_number(reference_date)).sum().alias("current_quarter_target_acv"),
            acv.filter(month.dt.truncate("1mo") == pl.lit(first_day_of_month(reference_date)))
            .sum()
            .alias("current_month_target_acv"),
        ])

    def build(self, sources: Dict[str, pl.DataFrame], reference_date: date) -> ReportFrame:
        cohort = self.cohort(sources["customers"], sources["strategic_accounts"])
        actuals = self.actuals(sources["opportunities"], reference_date)
        metric_columns = actuals.metric_columns

        per_tier = (
            cohort.join(actuals.frame, on="crm_account_id", how="left")
            .group_by("priority_level")
            .agg([pl.col(c).fill_null(0).sum().alias(f"total_{c}") for c in metric_columns])
        )
        report = (
            per_tier.join(self.targets(sources["targets"], reference_date), how="cross")
            .with_columns([
                pl.lit(reference_date).alias("report_date"),
                safe_divide_expr("total_ytd_closed_won_acv", "total_annual_target_acv")
                .alias("ytd_percent_to_annual_target"),
                safe_divide_expr("total_qtd_closed_won_acv", "current_quarter_target_acv")
                .alias("qtd_percent_to_quarter_target"),
                safe_divide_expr("total_mtd_closed_won_acv", "current_month_target_acv")
                .alias("mtd_percent_to_month_target"),
            ])
            .sort("priority_level")
            .select(OUTPUT_COLUMNS)
        )

        logger.info(
            "Sales performance built",
            cohort_accounts=cohort["crm_account_id"].n_unique(),
            accounts_with_actuals=len(actuals.frame),
            tiers=len(report),
        )
        return ReportFrame(frame=report, rejections=actuals.rejections)
