"""
Test Suite Configuration
"""
from datetime import date, datetime

import pytest
import polars as pl
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from bizmetrics.config import Settings
from bizmetrics.config.settings import ReportSettings
from bizmetrics.database import close_database, init_database
from bizmetrics.database.models import Base


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
    )


@pytest.fixture
def report_settings(tmp_path) -> ReportSettings:
    """Report parameters with output going to a temp directory"""
    return ReportSettings(
        as_of_date=date(2024, 3, 15),
        output_dir=str(tmp_path / "reports"),
        output_format="csv",
    )


@pytest.fixture
def reference_date() -> date:
    return date(2024, 3, 15)


@pytest.fixture
async def test_engine():
    """In-memory warehouse shared by every connection of the test"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def warehouse(test_engine):
    """Initialized global database pointing at the test engine"""
    await init_database(engine=test_engine)
    yield test_engine
    await close_database()


@pytest.fixture
def opportunities_df() -> pl.DataFrame:
    """CRM opportunities around a 2024-03-15 reference date"""
    return pl.DataFrame({
        "opportunity_id": ["opp-1", "opp-2", "opp-3", "opp-4", "opp-5", "opp-6"],
        "crm_account_id": ["acc-1", "acc-1", "acc-2", "acc-2", "acc-3", None],
        "opportunity_type": ["New Business", "Upsell", "Renewal", "New Business", "Cross-sell", "Upsell"],
        "stage_name": ["Closed Won", "Closed Won", "Negotiation", "Closed Won", "Closed Won", "Closed Won"],
        "pipeline_creation_date": [
            date(2024, 3, 1),
            date(2024, 3, 10),
            date(2024, 2, 5),
            date(2023, 6, 1),
            date(2024, 1, 20),
            date(2024, 3, 2),
        ],
        "close_date": [
            date(2024, 3, 5),
            date(2024, 3, 12),
            None,
            date(2023, 12, 20),
            date(2024, 2, 10),
            date(2024, 3, 3),
        ],
        "annual_contract_value": [100.0, 50.0, 300.0, 400.0, 200.0, 999.0],
    })


@pytest.fixture
def customers_df() -> pl.DataFrame:
    return pl.DataFrame({
        "crm_account_id": ["acc-1", "acc-2", "acc-2"],
        "account_name": ["Acme Bank", "Beta Credit", "Beta Credit"],
    })


@pytest.fixture
def strategic_accounts_df() -> pl.DataFrame:
    return pl.DataFrame({
        "crm_account_id": ["acc-1", "acc-3"],
        "account_name": ["Acme Bank", "Gamma Capital"],
    })


@pytest.fixture
def targets_df() -> pl.DataFrame:
    """Monthly targets for 2024"""
    return pl.DataFrame({
        "target_month": [date(2024, m, 1) for m in range(1, 13)],
        "target_acv": [100.0] * 12,
    })


@pytest.fixture
def adoption_sources() -> dict:
    """Users across two plans plus their feature usage on 2024-03-15"""
    users = pl.DataFrame({
        "user_id": ["u1", "u2", "u3", "u4", "u5"],
        "subscription_plan": ["Pro", "Pro", "Free", "Free", None],
        "account_id": [10, 10, 20, 30, 40],
        "organization_id": ["org-a", "org-a", None, "org-b", None],
    })
    firewall = pl.DataFrame({
        "user_id": ["u1", "u1", "u3", "u4"],
        "event_date": [date(2024, 3, 15), date(2024, 3, 15), date(2024, 3, 15), date(2024, 3, 14)],
        "uses_heuristic_rule": [False, True, True, True],
    })
    analytics = pl.DataFrame({
        "user_id": ["u2", None],
        "event_date": [date(2024, 3, 15), date(2024, 3, 15)],
        "is_proxied": [True, True],
    })
    settings = pl.DataFrame({
        "user_id": ["u4"],
        "is_js_challenge_enabled": [True],
    })
    interactions = pl.DataFrame({
        "user_id": ["u1", "u3", "u5"],
        "event_date": [date(2024, 3, 8), date(2024, 3, 1), date(2024, 3, 15)],
        "page_url": ["https://dash/x/security/analytics"] * 3,
    })
    return {
        "users": users,
        "firewall_rules": firewall,
        "analytics_records": analytics,
        "company_settings": settings,
        "interactions": interactions,
    }


@pytest.fixture
def revenue_df() -> pl.DataFrame:
    """Fourteen months of revenue for two products in one group"""
    months = [
        date(2023, 1, 31), date(2023, 2, 28), date(2023, 3, 31), date(2023, 4, 30),
        date(2023, 5, 31), date(2023, 6, 30), date(2023, 7, 31), date(2023, 8, 31),
        date(2023, 9, 30), date(2023, 10, 31), date(2023, 11, 30), date(2023, 12, 31),
        date(2024, 1, 31), date(2024, 2, 29),
    ]
    rows = []
    for i, month in enumerate(months):
        rows.append((month, "cust-1", "Analytics", "Dashboards", "Dash Pro", 1200.0 + i * 120, 100.0 + i * 10))
        rows.append((month, "cust-2", "Analytics", "Dashboards", "Dash Lite", 600.0, 50.0))
    return pl.DataFrame(
        rows,
        schema={
            "month_end_date": pl.Date,
            "customer_id": pl.Utf8,
            "product_category": pl.Utf8,
            "product_group": pl.Utf8,
            "product_name": pl.Utf8,
            "acv": pl.Float64,
            "mrr": pl.Float64,
        },
        orient="row",
    )


@pytest.fixture
def inference_logs_df() -> pl.DataFrame:
    """Partner calls in February 2024 (the last full month before 2024-03-15)"""
    return pl.DataFrame({
        "event_date": [
            date(2024, 2, 1), date(2024, 2, 1), date(2024, 2, 1),
            date(2024, 2, 3), date(2024, 2, 29), None, date(2024, 2, 10),
        ],
        "event_timestamp": [
            datetime(2024, 2, 1, 9, 5), datetime(2024, 2, 1, 9, 40), datetime(2024, 2, 1, 10, 15),
            datetime(2024, 2, 3, 12, 0), datetime(2024, 2, 29, 23, 59), datetime(2024, 2, 5, 1, 0),
            datetime(2024, 2, 10, 8, 0),
        ],
        "account_id": [1, 1, 1, 1, 2, 1, None],
        "model_name": ["partner-a/model-family-x-small"] * 7,
        "call_weight_from_sampling": [10.0, 10.0, 5.0, 20.0, 1.0, 10.0, 10.0],
        "input_tokens": [100, 200, 300, 400, 50, 10, 10],
        "output_tokens": [10, 20, 30, 40, 5, 1, 1],
        "time_to_first_token_ms": [100.0, 200.0, 300.0, 400.0, 50.0, 10.0, 10.0],
        "inference_duration_ms": [1000.0, 2000.0, 3000.0, 4000.0, 500.0, 10.0, 10.0],
    })


@pytest.fixture
def customer_accounts_df() -> pl.DataFrame:
    return pl.DataFrame({
        "account_id": [1, 2],
        "industry_vertical": ["Financial Services", "Retail"],
        "billing_country": ["US", "DE"],
    })
