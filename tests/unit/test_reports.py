"""
Unit Tests - Reports
"""
from datetime import date

import pytest
import polars as pl

from bizmetrics.engine.derived import TOTAL_LABEL
from bizmetrics.engine.hashing import hash_identifier
from bizmetrics.exceptions import ConfigurationError
from bizmetrics.reports import (
    PartnerUsageReport,
    ProductAdoptionReport,
    RevenueHierarchyReport,
    SalesPerformanceReport,
    available_reports,
    get_report,
)


class TestRegistry:
    """Tests for the report registry"""

    def test_all_reports_registered(self):
        assert available_reports() == [
            "partner_usage",
            "product_adoption",
            "revenue_hierarchy",
            "sales_performance",
        ]

    def test_get_report(self, report_settings):
        report = get_report("revenue_hierarchy", report_settings)

        assert isinstance(report, RevenueHierarchyReport)
        assert report.settings is report_settings

    def test_unknown_report(self):
        with pytest.raises(ConfigurationError, match="Unknown report"):
            get_report("churn")

    def test_reference_date_resolution(self, report_settings):
        report = SalesPerformanceReport(report_settings)

        assert report.resolve_reference_date() == date(2024, 3, 15)
        assert report.resolve_reference_date("2024-06-30") == date(2024, 6, 30)


class TestSalesPerformance:
    """Tests for the sales performance report"""

    @pytest.fixture
    def sources(self, customers_df, strategic_accounts_df, opportunities_df, targets_df) -> dict:
        return {
            "customers": customers_df,
            "strategic_accounts": strategic_accounts_df,
            "opportunities": opportunities_df,
            "targets": targets_df,
        }

    def test_actuals_and_targets_per_tier(self, report_settings, sources, reference_date):
        built = SalesPerformanceReport(report_settings).build(sources, reference_date)
        rows = {r["priority_level"]: r for r in built.frame.iter_rows(named=True)}

        assert built.frame["priority_level"].to_list() == ["Tier 1", "Tier 2"]
        assert rows["Tier 1"]["report_date"] == reference_date
        assert rows["Tier 1"]["total_ytd_closed_won_acv"] == 350.0
        assert rows["Tier 1"]["total_mtd_closed_won_acv"] == 150.0
        assert rows["Tier 2"]["total_prior_year_closed_won_acv"] == 400.0
        assert rows["Tier 2"]["total_ytd_pipeline_acv"] == 450.0
        assert rows["Tier 2"]["total_ytd_closed_won_acv"] == 150.0

        assert rows["Tier 1"]["total_annual_target_acv"] == 1200.0
        assert rows["Tier 1"]["current_quarter_target_acv"] == 300.0
        assert rows["Tier 1"]["current_month_target_acv"] == 100.0
        assert rows["Tier 1"]["ytd_percent_to_annual_target"] == pytest.approx(350 / 1200)
        assert rows["Tier 1"]["mtd_percent_to_month_target"] == pytest.approx(1.5)

    def test_rejections_reported(self, report_settings, sources, reference_date):
        built = SalesPerformanceReport(report_settings).build(sources, reference_date)

        assert built.rejections.counts == {"missing_group_key:crm_account_id": 1}

    def test_zero_target_gives_null_percent(self, report_settings, customers_df, strategic_accounts_df, reference_date):
        opportunities = pl.DataFrame({
            "opportunity_id": ["opp-1"],
            "crm_account_id": ["acc-1"],
            "opportunity_type": ["New Business"],
            "stage_name": ["Closed Won"],
            "pipeline_creation_date": [date(2024, 3, 1)],
            "close_date": [date(2024, 3, 10)],
            "annual_contract_value": [500.0],
        })
        targets = pl.DataFrame({
            "target_month": [date(2024, m, 1) for m in range(1, 13)],
            "target_acv": [0.0] * 12,
        })

        built = SalesPerformanceReport(report_settings).build(
            {
                "customers": customers_df,
                "strategic_accounts": strategic_accounts_df,
                "opportunities": opportunities,
                "targets": targets,
            },
            reference_date,
        )
        tier_1 = built.frame.filter(pl.col("priority_level") == "Tier 1").row(0, named=True)

        assert tier_1["total_ytd_closed_won_acv"] == 500.0
        assert tier_1["ytd_percent_to_annual_target"] is None
        assert tier_1["qtd_percent_to_quarter_target"] is None
        assert tier_1["mtd_percent_to_month_target"] is None

    def test_closed_won_without_creation_date_counts(
        self, report_settings, customers_df, strategic_accounts_df, targets_df, reference_date
    ):
        opportunities = pl.DataFrame({
            "opportunity_id": ["opp-1", "opp-2"],
            "crm_account_id": ["acc-1", "acc-1"],
            "opportunity_type": ["New Business", "Renewal"],
            "stage_name": ["Closed Won", "Negotiation"],
            "pipeline_creation_date": [None, date(2024, 3, 2)],
            "close_date": [date(2024, 3, 5), None],
            "annual_contract_value": [500.0, 80.0],
        }, schema_overrides={"pipeline_creation_date": pl.Date, "close_date": pl.Date})

        built = SalesPerformanceReport(report_settings).build(
            {
                "customers": customers_df,
                "strategic_accounts": strategic_accounts_df,
                "opportunities": opportunities,
                "targets": targets_df,
            },
            reference_date,
        )
        tier_1 = built.frame.filter(pl.col("priority_level") == "Tier 1").row(0, named=True)

        # Each metric is bucketed by its own date
        assert tier_1["total_ytd_closed_won_acv"] == 500.0
        assert tier_1["total_mtd_closed_won_acv"] == 500.0
        assert tier_1["total_mtd_pipeline_acv"] == 80.0
        assert built.rejections.counts == {}

    def test_build_is_idempotent(self, report_settings, sources, reference_date):
        report = SalesPerformanceReport(report_settings)

        assert report.build(sources, reference_date).frame.equals(report.build(sources, reference_date).frame)


class TestProductAdoption:
    """Tests for the product adoption report"""

    @pytest.fixture
    def built(self, report_settings, adoption_sources, reference_date):
        return ProductAdoptionReport(report_settings).build(adoption_sources, reference_date)

    @staticmethod
    def row(built, plan, metric) -> dict:
        return built.frame.filter(
            (pl.col("subscription_plan") == plan) & (pl.col("metric_name") == metric)
        ).row(0, named=True)

    def test_every_plan_reports_every_feature(self, built):
        assert len(built.frame) == 12
        assert built.frame["subscription_plan"].unique().sort().to_list() == [TOTAL_LABEL, "Free", "Pro"]
        assert set(built.frame["scenario"].to_list()) == {"Adopted vs. Total Active"}

    def test_totals_use_org_fallback(self, built):
        total = self.row(built, TOTAL_LABEL, "Heuristic Rule")

        assert total["total_users"] == 5
        assert total["total_accounts"] == 4
        # org-a, org-b and two single-account orgs keyed by account id
        assert total["total_orgs"] == 4

    def test_adopted_counts(self, built):
        assert self.row(built, "Pro", "Heuristic Rule")["adopted_users"] == 1
        assert self.row(built, "Free", "Heuristic Rule")["adopted_users"] == 1
        assert self.row(built, "Pro", "Analytics Dashboard")["adopted_users"] == 1
        assert self.row(built, "Free", "Company Setting")["adopted_orgs"] == 1
        # Firewall usage the day before the report date does not count
        assert self.row(built, "Free", "Heuristic Rule")["adopted_accounts"] == 1

    def test_rollup_adopted_is_distinct_union(self, built):
        heuristic = self.row(built, TOTAL_LABEL, "Heuristic Rule")
        interactions = self.row(built, TOTAL_LABEL, "UI Interactions")

        assert heuristic["adopted_users"] == 2
        # u5 has no plan but still counts in the rollup
        assert interactions["adopted_users"] == 2
        assert interactions["pct_adoption_users"] == pytest.approx(0.4)

    def test_no_adoption_is_zero_not_null(self, built):
        row = self.row(built, "Free", "Analytics Dashboard")

        assert row["adopted_users"] == 0
        assert row["pct_adoption_users"] == 0.0

    def test_plan_named_like_rollup_is_rejected(self, report_settings, adoption_sources, reference_date):
        users = adoption_sources["users"].with_columns(
            pl.when(pl.col("user_id") == "u3")
            .then(pl.lit(TOTAL_LABEL))
            .otherwise(pl.col("subscription_plan"))
            .alias("subscription_plan")
        )

        built = ProductAdoptionReport(report_settings).build({**adoption_sources, "users": users}, reference_date)

        assert built.rejections.counts["group_key_collides_with_rollup:subscription_plan"] == 1
        assert len(built.frame) == 12
        assert self.row(built, TOTAL_LABEL, "Heuristic Rule")["total_users"] == 5
        assert self.row(built, TOTAL_LABEL, "Heuristic Rule")["adopted_users"] == 2
        assert self.row(built, "Free", "Heuristic Rule")["total_users"] == 1
        assert self.row(built, "Free", "Heuristic Rule")["adopted_users"] == 0

    def test_rejections(self, built):
        assert built.rejections.counts == {
            "missing_group_key:subscription_plan": 1,
            "missing_group_key:user_id": 1,
        }


class TestRevenueHierarchy:
    """Tests for the revenue hierarchy report"""

    def test_levels_are_unpivoted(self, report_settings, revenue_df, reference_date):
        built = RevenueHierarchyReport(report_settings).build({"revenue": revenue_df}, reference_date)
        frame = built.frame

        # 14 months x (1 group + 2 products + 1 category)
        assert len(frame) == 56
        assert frame.row(0, named=True)["month_end_date"] == date(2024, 2, 29)
        assert frame["aggregation_level"].to_list()[:4] == [
            "Product Category",
            "Product Group",
            "Product Name",
            "Product Name",
        ]

    def test_year_over_year_growth(self, report_settings, revenue_df, reference_date):
        frame = RevenueHierarchyReport(report_settings).build({"revenue": revenue_df}, reference_date).frame

        def row(level, obj, month):
            return frame.filter(
                (pl.col("aggregation_level") == level)
                & (pl.col("aggregation_object") == obj)
                & (pl.col("month_end_date") == month)
            ).row(0, named=True)

        dash_pro = row("Product Name", "Dash Pro", date(2024, 1, 31))
        assert dash_pro["total_acv_prior_year"] == 1200.0
        assert dash_pro["yoy_growth_acv"] == pytest.approx(1.2)

        group = row("Product Group", "Dashboards", date(2024, 1, 31))
        assert group["num_customers"] == 2
        assert group["yoy_growth_customers"] == 0.0
        assert group["yoy_growth_acv"] == pytest.approx(0.8)

        first_year = row("Product Category", "Analytics", date(2023, 6, 30))
        assert first_year["total_acv_prior_year"] is None
        assert first_year["yoy_growth_acv"] is None

    def test_months_after_reference_date_excluded(self, report_settings, revenue_df):
        frame = RevenueHierarchyReport(report_settings).build({"revenue": revenue_df}, date(2023, 12, 31)).frame

        assert frame["month_end_date"].max() == date(2023, 12, 31)

    def test_rejections_counted_once(self, report_settings, revenue_df, reference_date):
        extra = pl.DataFrame(
            [
                (None, "cust-9", "Analytics", "Dashboards", "Dash Pro", 1.0, 1.0),
                (date(2024, 2, 29), "cust-9", "Analytics", None, "Dash Pro", 1.0, 1.0),
            ],
            schema=revenue_df.schema,
            orient="row",
        )

        built = RevenueHierarchyReport(report_settings).build(
            {"revenue": pl.concat([revenue_df, extra])}, reference_date
        )

        assert built.rejections.counts == {
            "missing_event_date": 1,
            "missing_group_key:product_group": 1,
        }


class TestPartnerUsage:
    """Tests for the partner usage report"""

    @pytest.fixture
    def built(self, report_settings, inference_logs_df, customer_accounts_df, reference_date):
        sources = {"inference_logs": inference_logs_df, "customer_accounts": customer_accounts_df}
        return PartnerUsageReport(report_settings).build(sources, reference_date)

    def test_weekly_rows(self, built):
        frame = built.frame

        assert len(frame) == 2
        assert frame["report_month"].to_list() == ["february_2024", "february_2024"]
        assert frame["report_week_start"].to_list() == [date(2024, 2, 1), date(2024, 2, 29)]
        assert frame["report_week_end"].to_list() == [date(2024, 2, 7), date(2024, 2, 29)]
        assert frame["deployment_type"].to_list() == ["cloud_hosted", "cloud_hosted"]

    def test_totals_and_averages(self, built):
        week = built.frame.row(0, named=True)

        assert week["total_call_volume"] == 45.0
        assert week["total_input_tokens"] == 1000
        assert week["total_output_tokens"] == 100
        assert week["avg_ttft_ms"] == 250.0
        assert week["avg_inference_time_ms"] == 2500.0
        assert week["industry_vertical"] == "Financial Services"
        assert week["billing_country"] == "US"

    def test_hourly_percentiles(self, built):
        week = built.frame.row(0, named=True)

        # Hourly volumes 20, 5, 20
        assert week["p20_hourly_call_volume"] == 5.0
        assert week["p50_hourly_call_volume"] == 20.0
        assert week["p80_hourly_call_volume"] == 20.0
        assert week["peak_hourly_call_volume"] == 20.0

    def test_customers_are_hashed(self, built):
        salt = "a_secret_salt_for_reporting"

        assert built.frame["customer_uuid"].to_list() == [hash_identifier(1, salt), hash_identifier(2, salt)]

    def test_rejections(self, built):
        assert built.rejections.counts == {
            "missing_event_date": 1,
            "missing_group_key:account_id": 1,
        }
