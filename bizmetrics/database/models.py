"""
Warehouse Models - Read Contract

SQLAlchemy declarations of the warehouse tables the reports read. The
warehouse is owned upstream; these models describe the columns we rely on
and are never used to write in production (tests and the sample-data
script create them locally).

CRM:
- DimCustomer, StrategicAccount, CrmOpportunity, VerticalTarget

Revenue:
- FactMonthlyCustomerRevenue, DimProductHierarchy

Product usage:
- DimUser, DimAccount, DimOrg, CompanySetting
- FactFirewallRulesDaily, FactAnalyticsRecordsDaily, DashboardInteraction

Partner usage:
- FactLlmInferenceLog, DimCustomerAccount
"""

from datetime import datetime, date
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all warehouse models"""
    pass


# =============================================================================
# ENUMERATIONS
# =============================================================================

class OpportunityType(str, Enum):
    """Opportunity types counted toward sales goals"""
    NEW_BUSINESS = "New Business"
    UPSELL = "Upsell"
    CROSS_SELL = "Cross-sell"
    RENEWAL = "Renewal"


class OpportunityStage(str, Enum):
    """CRM stages referenced by the reports"""
    PROSPECTING = "Prospecting"
    NEGOTIATION = "Negotiation"
    CLOSED_WON = "Closed Won"
    CLOSED_LOST = "Closed Lost"


# =============================================================================
# CRM
# =============================================================================

class DimCustomer(Base):
    """
    Customer Dimension

    One row per customer; ``crm_account_id`` links to the CRM.
    """
    __tablename__ = "dim_customer"

    customer_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    crm_account_id: Mapped[Optional[str]] = mapped_column(String(36))
    account_name: Mapped[Optional[str]] = mapped_column(String(255))
    industry_vertical: Mapped[Optional[str]] = mapped_column(String(100))

    __table_args__ = (
        Index("ix_dim_customer_vertical", "industry_vertical"),
    )


class StrategicAccount(Base):
    """Curated high-priority accounts per fiscal year"""
    __tablename__ = "strategic_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    crm_account_id: Mapped[str] = mapped_column(String(36), nullable=False)
    account_name: Mapped[Optional[str]] = mapped_column(String(255))
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)


class CrmOpportunity(Base):
    """
    CRM Opportunity

    Snapshot of each opportunity's current stage and contract value.
    """
    __tablename__ = "crm_opportunity"

    opportunity_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    crm_account_id: Mapped[Optional[str]] = mapped_column(String(36))
    opportunity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    stage_name: Mapped[str] = mapped_column(String(50), nullable=False)
    pipeline_creation_date: Mapped[Optional[date]] = mapped_column(Date)
    close_date: Mapped[Optional[date]] = mapped_column(Date)
    annual_contract_value: Mapped[Optional[float]] = mapped_column(Float)

    __table_args__ = (
        Index("ix_crm_opportunity_account", "crm_account_id"),
    )


class VerticalTarget(Base):
    """Monthly ACV targets per vertical"""
    __tablename__ = "vertical_targets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    target_vertical: Mapped[str] = mapped_column(String(100), nullable=False)
    target_month: Mapped[date] = mapped_column(Date, nullable=False)
    target_acv: Mapped[float] = mapped_column(Float, nullable=False, default=0)


# =============================================================================
# REVENUE
# =============================================================================

class DimProductHierarchy(Base):
    """Product hierarchy: Category > Group > Product"""
    __tablename__ = "dim_product_hierarchy"

    product_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    product_category: Mapped[Optional[str]] = mapped_column(String(100))
    product_group: Mapped[Optional[str]] = mapped_column(String(100))
    product_name: Mapped[Optional[str]] = mapped_column(String(255))


class FactMonthlyCustomerRevenue(Base):
    """Month-end revenue per customer and product"""
    __tablename__ = "fact_monthly_customer_revenue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    month_end_date: Mapped[Optional[date]] = mapped_column(Date)
    customer_id: Mapped[Optional[str]] = mapped_column(String(36))
    product_id: Mapped[Optional[str]] = mapped_column(String(36))
    acv: Mapped[Optional[float]] = mapped_column(Float)
    mrr: Mapped[Optional[float]] = mapped_column(Float)

    __table_args__ = (
        Index("ix_fact_revenue_month", "month_end_date"),
    )


# =============================================================================
# PRODUCT USAGE
# =============================================================================

class DimUser(Base):
    """Dashboard users"""
    __tablename__ = "dim_users"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    account_id: Mapped[Optional[int]] = mapped_column(Integer)
    subscription_plan: Mapped[Optional[str]] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class DimAccount(Base):
    """Billing accounts"""
    __tablename__ = "dim_accounts"

    account_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    organization_id: Mapped[Optional[int]] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class DimOrg(Base):
    """Organizations mapped to CRM organizations"""
    __tablename__ = "dim_orgs"

    organization_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    crm_organization_id: Mapped[Optional[str]] = mapped_column(String(36))


class CompanySetting(Base):
    """Per-user security settings"""
    __tablename__ = "company_settings"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    is_js_challenge_enabled: Mapped[bool] = mapped_column(Boolean, default=False)


class FactFirewallRulesDaily(Base):
    """Daily firewall rule usage per user"""
    __tablename__ = "fact_firewall_rules_daily"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(36))
    event_date: Mapped[Optional[date]] = mapped_column(Date)
    uses_heuristic_rule: Mapped[Optional[bool]] = mapped_column(Boolean)


class FactAnalyticsRecordsDaily(Base):
    """Daily traffic analytics records per user"""
    __tablename__ = "fact_analytics_records_daily"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(36))
    event_date: Mapped[Optional[date]] = mapped_column(Date)
    is_proxied: Mapped[Optional[bool]] = mapped_column(Boolean)


class DashboardInteraction(Base):
    """UI interaction events"""
    __tablename__ = "dashboard_interactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(36))
    event_date: Mapped[Optional[date]] = mapped_column(Date)
    page_url: Mapped[Optional[str]] = mapped_column(String(500))


# =============================================================================
# PARTNER USAGE
# =============================================================================

class DimCustomerAccount(Base):
    """Customer segmentation attributes"""
    __tablename__ = "dim_customer_accounts"

    account_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    industry_vertical: Mapped[Optional[str]] = mapped_column(String(100))
    billing_country: Mapped[Optional[str]] = mapped_column(String(2))


class FactLlmInferenceLog(Base):
    """
    Sampled inference logs

    ``call_weight_from_sampling`` reconstructs the true call volume from
    the sample.
    """
    __tablename__ = "fact_llm_inference_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_date: Mapped[Optional[date]] = mapped_column(Date)
    event_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime)
    account_id: Mapped[Optional[int]] = mapped_column(Integer)
    model_name: Mapped[str] = mapped_column(String(255), nullable=False)
    error_code: Mapped[int] = mapped_column(Integer, default=0)
    call_weight_from_sampling: Mapped[float] = mapped_column(Float, default=1.0)
    input_tokens: Mapped[Optional[int]] = mapped_column(Integer)
    output_tokens: Mapped[Optional[int]] = mapped_column(Integer)
    time_to_first_token_ms: Mapped[Optional[float]] = mapped_column(Float)
    inference_duration_ms: Mapped[Optional[float]] = mapped_column(Float)

    __table_args__ = (
        Index("ix_fact_llm_event_date", "event_date"),
    )
