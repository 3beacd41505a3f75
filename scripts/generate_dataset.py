"""
Sample Warehouse Generator
Seeds a local SQLite warehouse with synthetic CRM, revenue, product usage
and inference-log data so every report can be run end to end.

Usage:
    python scripts/generate_dataset.py
    WAREHOUSE_URL=sqlite+aiosqlite:///data/warehouse.db bizmetrics-report run all
"""

import asyncio
import uuid
from datetime import date, datetime, timedelta
from pathlib import Path

import numpy as np
import polars as pl
from faker import Faker
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import create_async_engine

from bizmetrics.database.models import (
    Base,
    CompanySetting,
    CrmOpportunity,
    DashboardInteraction,
    DimAccount,
    DimCustomer,
    DimCustomerAccount,
    DimOrg,
    DimProductHierarchy,
    DimUser,
    FactAnalyticsRecordsDaily,
    FactFirewallRulesDaily,
    FactLlmInferenceLog,
    FactMonthlyCustomerRevenue,
    StrategicAccount,
    VerticalTarget,
)

fake = Faker()
rng = np.random.default_rng(42)
Faker.seed(42)

OUTPUT_DIR = Path(__file__).parent.parent / "data"
OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
DATABASE_URL = f"sqlite+aiosqlite:///{OUTPUT_DIR / 'warehouse.db'}"

REFERENCE_DATE = date.today() - timedelta(days=1)
VERTICALS = ["Financial Services", "Healthcare", "Retail", "Manufacturing"]


def random_dates(start: date, end: date, n: int) -> list:
    offsets = rng.integers(0, (end - start).days + 1, n)
    return [start + timedelta(days=int(o)) for o in offsets]


# ==========================================
# CRM
# ==========================================
def generate_crm(n_customers=2000, n_opportunities=20000):
    print(f"📊 Generating {n_customers:,} customers and {n_opportunities:,} opportunities...")

    crm_ids = [str(uuid.uuid4()) for _ in range(n_customers)]
    customers = pl.DataFrame({
        "customer_id": np.arange(1, n_customers + 1),
        "crm_account_id": crm_ids,
        "account_name": [fake.company() for _ in range(n_customers)],
        "industry_vertical": rng.choice(VERTICALS, n_customers),
    })

    finance_ids = customers.filter(pl.col("industry_vertical") == "Financial Services")["crm_account_id"]
    strategic_ids = finance_ids.sample(n=min(50, len(finance_ids)), seed=42)
    strategic = pl.DataFrame({
        "id": np.arange(1, len(strategic_ids) + 1),
        "crm_account_id": strategic_ids,
        "account_name": [fake.company() for _ in range(len(strategic_ids))],
        "fiscal_year": [REFERENCE_DATE.year] * len(strategic_ids),
    })

    start = date(REFERENCE_DATE.year - 1, 1, 1)
    created = random_dates(start, REFERENCE_DATE, n_opportunities)
    close_offsets = rng.integers(0, 120, n_opportunities)
    stages = rng.choice(["Prospecting", "Negotiation", "Closed Won", "Closed Lost"], n_opportunities, p=[0.3, 0.2, 0.3, 0.2])
    opportunities = pl.DataFrame({
        "opportunity_id": [str(uuid.uuid4()) for _ in range(n_opportunities)],
        "crm_account_id": rng.choice(crm_ids, n_opportunities),
        "opportunity_type": rng.choice(["New Business", "Upsell", "Cross-sell", "Renewal", "Services"], n_opportunities),
        "stage_name": stages,
        "pipeline_creation_date": created,
        "close_date": [min(c + timedelta(days=int(o)), REFERENCE_DATE) for c, o in zip(created, close_offsets)],
        "annual_contract_value": np.round(rng.lognormal(10, 1, n_opportunities), 2),
    })

    months = [date(REFERENCE_DATE.year, m, 1) for m in range(1, 13)]
    targets = pl.DataFrame({
        "id": np.arange(1, len(months) * len(VERTICALS) + 1),
        "target_vertical": [v for v in VERTICALS for _ in months],
        "target_month": months * len(VERTICALS),
        "target_acv": np.round(rng.uniform(1e6, 5e6, len(months) * len(VERTICALS)), 2),
    })

    return {
        DimCustomer: customers,
        StrategicAccount: strategic,
        CrmOpportunity: opportunities,
        VerticalTarget: targets,
    }


# ==========================================
# REVENUE
# ==========================================
def generate_revenue(n_customers=500, n_products=40, n_months=30):
    print(f"📊 Generating {n_months} months of revenue...")

    groups = ["Dashboards", "Data Pipelines", "Reporting", "Streaming"]
    products = pl.DataFrame({
        "product_id": [str(uuid.uuid4()) for _ in range(n_products)],
        "product_category": rng.choice(["Analytics", "Security"], n_products, p=[0.6, 0.4]),
        "product_group": rng.choice(groups, n_products),
        "product_name": [f"{fake.word().title()} {i}" for i in range(n_products)],
    })

    month_ends = []
    month = date(REFERENCE_DATE.year, REFERENCE_DATE.month, 1)
    for _ in range(n_months):
        month = (month - timedelta(days=1)).replace(day=1)
        next_month = (month + timedelta(days=32)).replace(day=1)
        month_ends.append(next_month - timedelta(days=1))

    n = n_customers * 3
    customer_ids = [str(uuid.uuid4()) for _ in range(n_customers)]
    subscriptions = pl.DataFrame({
        "customer_id": rng.choice(customer_ids, n),
        "product_id": rng.choice(products["product_id"].to_list(), n),
        "mrr": np.round(rng.uniform(100, 10000, n), 2),
    })
    revenue = (
        subscriptions.join(pl.DataFrame({"month_end_date": month_ends}), how="cross")
        .with_columns((pl.col("mrr") * 12).alias("acv"))
        .with_row_index("id", offset=1)
    )

    return {DimProductHierarchy: products, FactMonthlyCustomerRevenue: revenue}


# ==========================================
# PRODUCT USAGE
# ==========================================
def generate_usage(n_orgs=200, n_accounts=800, n_users=3000):
    print(f"📊 Generating {n_users:,} users and their feature usage...")

    orgs = pl.DataFrame({
        "organization_id": np.arange(1, n_orgs + 1),
        "crm_organization_id": [str(uuid.uuid4()) if rng.random() > 0.1 else None for _ in range(n_orgs)],
    })
    accounts = pl.DataFrame({
        "account_id": np.arange(1, n_accounts + 1),
        "organization_id": rng.integers(1, n_orgs + 1, n_accounts),
        "is_active": rng.random(n_accounts) > 0.05,
    })
    users = pl.DataFrame({
        "user_id": [str(uuid.uuid4()) for _ in range(n_users)],
        "account_id": rng.integers(1, n_accounts + 1, n_users),
        "subscription_plan": rng.choice(["Free", "Pro", "Business", "Enterprise"], n_users),
        "is_active": rng.random(n_users) > 0.1,
    })
    user_ids = users["user_id"].to_list()

    def daily(n):
        return pl.DataFrame({
            "id": np.arange(1, n + 1),
            "user_id": rng.choice(user_ids, n),
            "event_date": random_dates(REFERENCE_DATE - timedelta(days=10), REFERENCE_DATE, n),
        })

    firewall = daily(4000).with_columns(pl.Series("uses_heuristic_rule", rng.random(4000) > 0.6))
    analytics = daily(4000).with_columns(pl.Series("is_proxied", rng.random(4000) > 0.5))
    interactions = daily(6000).with_columns(
        pl.Series("page_url", rng.choice(["/security/analytics", "/dns", "/billing"], 6000)).map_elements(
            lambda p: f"https://dash.example.com/{uuid.uuid4().hex[:8]}{p}", return_dtype=pl.Utf8
        )
    )
    settings = pl.DataFrame({
        "user_id": user_ids,
        "is_js_challenge_enabled": rng.random(n_users) > 0.7,
    })

    return {
        DimOrg: orgs,
        DimAccount: accounts,
        DimUser: users,
        CompanySetting: settings,
        FactFirewallRulesDaily: firewall,
        FactAnalyticsRecordsDaily: analytics,
        DashboardInteraction: interactions,
    }


# ==========================================
# INFERENCE LOGS
# ==========================================
def generate_inference_logs(n_accounts=300, n=50000):
    print(f"📊 Generating {n:,} inference log rows...")

    accounts = pl.DataFrame({
        "account_id": np.arange(1, n_accounts + 1),
        "industry_vertical": rng.choice(VERTICALS, n_accounts),
        "billing_country": rng.choice(["US", "GB", "DE", "FR", "JP"], n_accounts),
    })

    month_start = (REFERENCE_DATE.replace(day=1) - timedelta(days=1)).replace(day=1)
    base = datetime.combine(month_start, datetime.min.time())
    seconds = rng.integers(0, 62 * 24 * 3600, n)
    timestamps = [base + timedelta(seconds=int(s)) for s in seconds]
    models = [
        "partner-a/model-family-x-small",
        "partner-a/model-family-x-large",
        "partner-a/model-family-y-chat",
        "other/model-z",
    ]
    logs = pl.DataFrame({
        "id": np.arange(1, n + 1),
        "event_timestamp": timestamps,
        "account_id": rng.integers(1, n_accounts + 1, n),
        "model_name": rng.choice(models, n),
        "error_code": rng.choice([0, 0, 0, 0, 429, 500], n),
        "call_weight_from_sampling": rng.choice([1.0, 10.0, 100.0], n),
        "input_tokens": rng.integers(10, 4000, n),
        "output_tokens": rng.integers(10, 2000, n),
        "time_to_first_token_ms": np.round(rng.gamma(2.0, 150.0, n), 1),
        "inference_duration_ms": np.round(rng.gamma(3.0, 400.0, n), 1),
    }).with_columns(pl.col("event_timestamp").dt.date().alias("event_date"))

    return {DimCustomerAccount: accounts, FactLlmInferenceLog: logs}


async def load_warehouse(tables: dict) -> None:
    engine = create_async_engine(DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
        for model, df in tables.items():
            columns = [c.name for c in model.__table__.columns]
            rows = df.select([c for c in columns if c in df.columns]).to_dicts()
            await conn.execute(insert(model.__table__), rows)
            print(f"   ✅ {model.__tablename__}: {len(rows):,} rows")
    await engine.dispose()


if __name__ == "__main__":
    print("🚀 Generating sample warehouse...\n")

    tables = {}
    tables.update(generate_crm())
    tables.update(generate_revenue())
    tables.update(generate_usage())
    tables.update(generate_inference_logs())

    asyncio.run(load_warehouse(tables))

    print(f"\n✅ Warehouse written to {DATABASE_URL}")
