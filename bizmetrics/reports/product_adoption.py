"""
Product Adoption

Daily adoption of security features by active users, accounts and
organizations, per subscription plan plus an "All" rollup.

Features:
- Heuristic Rule         heuristic firewall rule used on the report date
- Analytics Dashboard    proxied traffic recorded on the report date
- Company Setting        client-side challenge enabled
- UI Interactions        analytics page visited in the lookback window

Organizations missing a CRM organization id count as their own
single-account organization.
"""

from datetime import date, timedelta
from typing import Dict

import polars as pl
import structlog
from sqlalchemy import and_, select

from bizmetrics.database.models import (
    CompanySetting,
    DashboardInteraction,
    DimAccount,
    DimOrg,
    DimUser,
    FactAnalyticsRecordsDaily,
    FactFirewallRulesDaily,
)
from bizmetrics.engine.aggregator import (
    FactAggregator,
    KeyFallback,
    MetricSpec,
    Reducer,
    RejectionTally,
    apply_key_fallbacks,
)
from bizmetrics.engine.derived import TOTAL_LABEL, melt_metrics, rollup_distinct, safe_divide_expr
from bizmetrics.engine.windows import PeriodBoundary
from bizmetrics.quality import DataValidator, ValidationSeverity
from bizmetrics.reports.base import Report, ReportFrame, register
from bizmetrics.warehouse import WarehouseReader

logger = structlog.get_logger(__name__)

SCENARIO = "Adopted vs. Total Active"

HEURISTIC_RULE = "Heuristic Rule"
ANALYTICS_DASHBOARD = "Analytics Dashboard"
COMPANY_SETTING = "Company Setting"
UI_INTERACTIONS = "UI Interactions"

# Single-account organizations are keyed by their account id
ORG_FALLBACK = KeyFallback(column="organization_id", surrogate="account_id")

ENTITY_COLUMNS = {"users": "user_id", "accounts": "account_id", "orgs": "organization_id"}

OUTPUT_COLUMNS = [
    "report_date",
    "scenario",
    "subscription_plan",
    "metric_name",
    "adopted_users",
    "adopted_accounts",
    "adopted_orgs",
    "total_users",
    "total_accounts",
    "total_orgs",
    "pct_adoption_users",
    "pct_adoption_accounts",
    "pct_adoption_orgs",
]


def report_day(reference_date: date) -> PeriodBoundary:
    return PeriodBoundary("report_day", reference_date, reference_date)


def lookback_window(reference_date: date, days: int) -> PeriodBoundary:
    return PeriodBoundary("lookback", reference_date - timedelta(days=days), reference_date)


@register
class ProductAdoptionReport(Report):
    """Adopted vs. total active entities per plan and feature"""

    name = "product_adoption"

    async def load(self, reader: WarehouseReader, reference_date: date) -> Dict[str, pl.DataFrame]:
        lookback = lookback_window(reference_date, self.settings.dashboard_lookback_days)

        users = await reader.read(
            select(
                DimUser.user_id,
                DimUser.subscription_plan,
                DimAccount.account_id,
                DimOrg.crm_organization_id.label("organization_id"),
            )
            .join(DimAccount, and_(DimUser.account_id == DimAccount.account_id, DimAccount.is_active.is_(True)))
            .outerjoin(DimOrg, DimAccount.organization_id == DimOrg.organization_id)
            .where(DimUser.is_active.is_(True)),
            source=DimUser.__tablename__,
        )
        firewall = await reader.read(
            select(
                FactFirewallRulesDaily.user_id,
                FactFirewallRulesDaily.event_date,
                FactFirewallRulesDaily.uses_heuristic_rule,
            ).where(FactFirewallRulesDaily.event_date == reference_date),
            source=FactFirewallRulesDaily.__tablename__,
        )
        analytics = await reader.read(
            select(
                FactAnalyticsRecordsDaily.user_id,
                FactAnalyticsRecordsDaily.event_date,
                FactAnalyticsRecordsDaily.is_proxied,
            ).where(
                FactAnalyticsRecordsDaily.event_date == reference_date,
                FactAnalyticsRecordsDaily.is_proxied.is_(True),
            ),
            source=FactAnalyticsRecordsDaily.__tablename__,
        )
        settings = await reader.read(
            select(CompanySetting.user_id, CompanySetting.is_js_challenge_enabled).where(
                CompanySetting.is_js_challenge_enabled.is_(True)
            ),
            source=CompanySetting.__tablename__,
        )
        interactions = await reader.read(
            select(
                DashboardInteraction.user_id,
                DashboardInteraction.event_date,
                DashboardInteraction.page_url,
            ).where(
                DashboardInteraction.event_date.between(lookback.start, lookback.end),
                DashboardInteraction.page_url.like(f"%{self.settings.dashboard_page_pattern}"),
            ),
            source=DashboardInteraction.__tablename__,
        )

        return {
            "users": users,
            "firewall_rules": firewall,
            "analytics_records": analytics,
            "company_settings": settings,
            "interactions": interactions,
        }

    def validators(self) -> Dict[str, DataValidator]:
        return {
            "users": (
                DataValidator("dim_users")
                .add_unique_check("user_id", severity=ValidationSeverity.WARNING)
                .add_not_null_check("subscription_plan", severity=ValidationSeverity.WARNING)
            ),
            "firewall_rules": (
                DataValidator("fact_firewall_rules_daily")
                .add_not_null_check("user_id", severity=ValidationSeverity.WARNING)
            ),
        }

    def base_population(self, users: pl.DataFrame, tally: RejectionTally) -> pl.DataFrame:
        """Active users with their account and (fallback) organization"""
        base = apply_key_fallbacks(users, [ORG_FALLBACK])
        # Users without a plan only count toward the "All" rollup
        tally.add("missing_group_key:subscription_plan", base["subscription_plan"].null_count())

        # A plan literally named like the rollup row is treated as plan-less
        collides = pl.col("subscription_plan") == TOTAL_LABEL
        tally.add("group_key_collides_with_rollup:subscription_plan", base.filter(collides).height)
        base = base.with_columns(
            pl.when(collides).then(None).otherwise(pl.col("subscription_plan")).alias("subscription_plan")
        )
        return base.select(["subscription_plan", "user_id", "account_id", "organization_id"])

    def feature_flags(
        self,
        base: pl.DataFrame,
        sources: Dict[str, pl.DataFrame],
        reference_date: date,
        tally: RejectionTally,
    ) -> pl.DataFrame:
        """One row per base user with a boolean column per feature"""
        day = report_day(reference_date)
        lookback = lookback_window(reference_date, self.settings.dashboard_lookback_days)

        usage = [
            (
                HEURISTIC_RULE,
                sources["firewall_rules"],
                FactAggregator(
                    periods=[day],
                    metrics=[MetricSpec("heuristic_rule", Reducer.ANY, measure="uses_heuristic_rule")],
                    group_by=["user_id"],
                    event_date_column="event_date",
                ),
            ),
            (
                ANALYTICS_DASHBOARD,
                sources["analytics_records"],
                FactAggregator(
                    periods=[day],
                    metrics=[MetricSpec("proxied_records", Reducer.COUNT, predicate=pl.col("is_proxied"))],
                    group_by=["user_id"],
                    event_date_column="event_date",
                ),
            ),
            (
                UI_INTERACTIONS,
                sources["interactions"],
                FactAggregator(
                    periods=[lookback],
                    metrics=[MetricSpec("page_views", Reducer.COUNT)],
                    group_by=["user_id"],
                    event_date_column="event_date",
                ),
            ),
        ]

        flags = base
        for label, facts, aggregator in usage:
            result = aggregator.aggregate(facts)
            tally.extend(result.rejections)
            column = result.metric_columns[0]
            value = pl.col(column) if result.column_reducers[column] == Reducer.ANY else pl.col(column) > 0
            adopters = result.frame.select([pl.col("user_id"), value.alias(label)])
            flags = flags.join(adopters, on="user_id", how="left")

        enabled = (
            sources["company_settings"]
            .filter(pl.col("is_js_challenge_enabled").fill_null(False))
            .select(pl.col("user_id"))
            .unique()
            .with_columns(pl.lit(True).alias(COMPANY_SETTING))
        )
        flags = flags.join(enabled, on="user_id", how="left")

        features = [HEURISTIC_RULE, ANALYTICS_DASHBOARD, COMPANY_SETTING, UI_INTERACTIONS]
        return flags.with_columns([pl.col(f).fill_null(False) for f in features])

    def build(self, sources: Dict[str, pl.DataFrame], reference_date: date) -> ReportFrame:
        tally = RejectionTally()
        base = self.base_population(sources["users"], tally)
        flags = self.feature_flags(base, sources, reference_date, tally)
        features = [HEURISTIC_RULE, ANALYTICS_DASHBOARD, COMPANY_SETTING, UI_INTERACTIONS]

        adopted = melt_metrics(
            flags,
            id_columns=["subscription_plan", "user_id", "account_id", "organization_id"],
            metric_columns=features,
        ).filter(pl.col("metric_value"))

        adopted_counts = pl.concat(
            [
                rollup_distinct(
                    adopted.filter(pl.col("metric_name") == feature),
                    "subscription_plan",
                    {f"adopted_{entity}": column for entity, column in ENTITY_COLUMNS.items()},
                ).with_columns(pl.lit(feature).alias("metric_name"))
                for feature in features
            ],
            how="vertical_relaxed",
        )
        totals = rollup_distinct(
            base,
            "subscription_plan",
            {f"total_{entity}": column for entity, column in ENTITY_COLUMNS.items()},
        )

        # Every plan reports every feature, adopted or not
        grid = totals.select("subscription_plan").join(
            pl.DataFrame({"metric_name": features}), how="cross"
        )
        adopted_columns = [f"adopted_{entity}" for entity in ENTITY_COLUMNS]
        report = (
            grid.join(adopted_counts, on=["subscription_plan", "metric_name"], how="left")
            .with_columns([pl.col(c).fill_null(0) for c in adopted_columns])
            .join(totals, on="subscription_plan", how="left")
            .with_columns([
                pl.lit(reference_date).alias("report_date"),
                pl.lit(SCENARIO).alias("scenario"),
                *[
                    safe_divide_expr(f"adopted_{entity}", f"total_{entity}").alias(f"pct_adoption_{entity}")
                    for entity in ENTITY_COLUMNS
                ],
            ])
            .sort(["subscription_plan", "metric_name"])
            .select(OUTPUT_COLUMNS)
        )

        logger.info(
            "Product adoption built",
            active_users=len(base),
            plans=totals.height - 1,
            rows=len(report),
        )
        return ReportFrame(frame=report, rejections=tally)
