"""
Unit Tests - Warehouse Access, Output and Runner
"""
from datetime import date

import pytest
import polars as pl
from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from bizmetrics.cli import main
from bizmetrics.database.models import (
    Base,
    CrmOpportunity,
    DimCustomer,
    StrategicAccount,
    VerticalTarget,
)
from bizmetrics.exceptions import ConfigurationError, SourceUnavailableError
from bizmetrics.output import OutputFormat, ReportWriter
from bizmetrics.reports import SalesPerformanceReport
from bizmetrics.runner import expand_report_names, run_reports
from bizmetrics.warehouse import WarehouseReader, polars_schema


async def seed_sales(engine) -> None:
    """Minimal CRM snapshot for the Financial Services vertical"""
    async with engine.begin() as conn:
        await conn.execute(insert(DimCustomer.__table__), [
            {"customer_id": 1, "crm_account_id": "acc-1", "account_name": "Acme Bank",
             "industry_vertical": "Financial Services"},
            {"customer_id": 2, "crm_account_id": "acc-2", "account_name": "Beta Credit",
             "industry_vertical": "Financial Services"},
            {"customer_id": 3, "crm_account_id": "acc-9", "account_name": "Shop Co",
             "industry_vertical": "Retail"},
        ])
        await conn.execute(insert(StrategicAccount.__table__), [
            {"id": 1, "crm_account_id": "acc-1", "account_name": "Acme Bank", "fiscal_year": 2024},
            {"id": 2, "crm_account_id": "acc-2", "account_name": "Beta Credit", "fiscal_year": 2023},
        ])
        await conn.execute(insert(CrmOpportunity.__table__), [
            {"opportunity_id": "opp-1", "crm_account_id": "acc-1", "opportunity_type": "New Business",
             "stage_name": "Closed Won", "pipeline_creation_date": date(2024, 3, 1),
             "close_date": date(2024, 3, 5), "annual_contract_value": 150.0},
            {"opportunity_id": "opp-2", "crm_account_id": "acc-2", "opportunity_type": "Renewal",
             "stage_name": "Negotiation", "pipeline_creation_date": date(2024, 2, 5),
             "close_date": None, "annual_contract_value": 300.0},
            {"opportunity_id": "opp-3", "crm_account_id": "acc-2", "opportunity_type": "Services",
             "stage_name": "Closed Won", "pipeline_creation_date": date(2024, 2, 5),
             "close_date": date(2024, 2, 20), "annual_contract_value": 5000.0},
        ])
        await conn.execute(insert(VerticalTarget.__table__), [
            {"id": m, "target_vertical": "Financial Services", "target_month": date(2024, m, 1),
             "target_acv": 100.0}
            for m in range(1, 13)
        ])


class TestWarehouseReader:
    """Tests for WarehouseReader"""

    async def test_empty_result_is_typed(self, warehouse):
        reader = WarehouseReader()

        frame = await reader.read_table(CrmOpportunity)

        assert len(frame) == 0
        assert frame.schema["pipeline_creation_date"] == pl.Date
        assert frame.schema["annual_contract_value"] == pl.Float64
        assert frame.schema["crm_account_id"] == pl.Utf8

    async def test_read_rows(self, warehouse):
        await seed_sales(warehouse)
        reader = WarehouseReader()

        frame = await reader.read(
            select(DimCustomer.crm_account_id).where(DimCustomer.industry_vertical == "Retail"),
            source="dim_customer",
        )

        assert frame["crm_account_id"].to_list() == ["acc-9"]

    async def test_missing_table_raises(self):
        engine = create_async_engine("sqlite+aiosqlite:///:memory:")
        reader = WarehouseReader(async_sessionmaker(engine))

        try:
            with pytest.raises(SourceUnavailableError) as exc_info:
                await reader.read_table(VerticalTarget)
        finally:
            await engine.dispose()

        assert exc_info.value.table == "vertical_targets"

    def test_schema_from_statement(self):
        schema = polars_schema(select(StrategicAccount.fiscal_year, StrategicAccount.account_name))

        assert schema == {"fiscal_year": pl.Int64, "account_name": pl.Utf8}


class TestReportRun:
    """End-to-end report runs against the in-memory warehouse"""

    async def test_sales_report_run(self, warehouse, report_settings):
        await seed_sales(warehouse)

        result = await SalesPerformanceReport(report_settings).run(WarehouseReader())
        rows = {r["priority_level"]: r for r in result.frame.iter_rows(named=True)}

        assert result.report_date == date(2024, 3, 15)
        assert result.source_rows == {
            "customers": 2,
            "strategic_accounts": 1,
            "opportunities": 2,
            "targets": 12,
        }
        # Services opportunities do not count toward the goal
        assert rows["Tier 2"]["total_ytd_closed_won_acv"] == 150.0
        assert rows["Tier 2"]["total_ytd_pipeline_acv"] == 450.0
        assert rows["Tier 1"]["total_ytd_pipeline_acv"] == 150.0
        assert rows["Tier 1"]["mtd_percent_to_month_target"] == pytest.approx(1.5)
        assert result.rejections.total == 0
        assert result.duration_seconds >= 0
        assert result.started_at.tzinfo is not None


class TestReportWriter:
    """Tests for ReportWriter"""

    @pytest.fixture
    def frame(self) -> pl.DataFrame:
        return pl.DataFrame({"priority_level": ["Tier 1"], "total_ytd_closed_won_acv": [150.0]})

    def test_csv_file_name(self, tmp_path, frame):
        writer = ReportWriter(tmp_path, "csv")

        path = writer.write(frame, "sales_performance", date(2024, 3, 15))

        assert path.endswith("sales_performance_20240315.csv")
        assert pl.read_csv(path)["total_ytd_closed_won_acv"].to_list() == [150.0]

    def test_parquet_overwrites(self, tmp_path, frame):
        writer = ReportWriter(tmp_path / "out", OutputFormat.PARQUET)

        writer.write(frame, "sales_performance", date(2024, 3, 15))
        path = writer.write(frame.with_columns(pl.lit(1.0).alias("total_ytd_closed_won_acv")),
                            "sales_performance", date(2024, 3, 15))

        assert pl.read_parquet(path)["total_ytd_closed_won_acv"].to_list() == [1.0]
        assert len(list((tmp_path / "out").iterdir())) == 1

    def test_unknown_format(self, tmp_path):
        with pytest.raises(ValueError):
            ReportWriter(tmp_path, "xlsx")


class TestRunner:
    """Tests for run_reports and the CLI"""

    def test_expand_all(self):
        names = expand_report_names(["revenue_hierarchy", "all"])

        assert names[0] == "revenue_hierarchy"
        assert sorted(names) == [
            "partner_usage",
            "product_adoption",
            "revenue_hierarchy",
            "sales_performance",
        ]

    async def test_unknown_report_fails_before_connecting(self):
        with pytest.raises(ConfigurationError):
            await run_reports(["churn"], database_url="postgresql+asyncpg://nobody@invalid/none")

    async def test_run_and_write(self, tmp_path):
        db_path = tmp_path / "warehouse.db"
        url = f"sqlite+aiosqlite:///{db_path}"
        engine = create_async_engine(url)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await seed_sales(engine)
        await engine.dispose()

        results = await run_reports(
            ["sales_performance"],
            reference_date=date(2024, 3, 15),
            output_dir=str(tmp_path / "reports"),
            output_format="csv",
            database_url=url,
        )

        assert len(results) == 1
        assert results[0].output_path.endswith("sales_performance_20240315.csv")
        assert pl.read_csv(results[0].output_path).height == 2

    async def test_unreachable_warehouse(self, tmp_path):
        url = f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'warehouse.db'}"

        with pytest.raises(SourceUnavailableError) as exc_info:
            await run_reports(["sales_performance"], database_url=url, write=False)

        assert exc_info.value.table == "warehouse"

    def test_cli_unreachable_warehouse(self, tmp_path):
        url = f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'warehouse.db'}"

        assert main(["run", "sales_performance", "--database-url", url]) == 1

    def test_cli_list(self, capsys):
        assert main(["list"]) == 0

        assert "sales_performance" in capsys.readouterr().out

    def test_cli_unknown_report(self):
        assert main(["run", "churn"]) == 1
