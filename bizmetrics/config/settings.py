"""
Business Metrics Reporting
Centralized Configuration Management

Pydantic settings with environment variable support for the warehouse
connection, report parameters and logging.
"""

from datetime import date
from functools import lru_cache
from typing import Optional, List
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class WarehouseSettings(BaseSettings):
    """Warehouse (read-only source) Configuration"""

    model_config = SettingsConfigDict(env_prefix="WAREHOUSE_")

    host: str = Field(default="localhost", description="Warehouse host")
    port: int = Field(default=5432, description="Warehouse port")
    database: str = Field(default="data_warehouse", description="Warehouse database name")
    user: str = Field(default="reporting", description="Warehouse user")
    password: SecretStr = Field(default="reporting_password", description="Warehouse password")
    driver: str = Field(default="postgresql+asyncpg", description="SQLAlchemy async driver")
    url: Optional[str] = Field(default=None, description="Full URL (overrides host/port/db)")
    echo: bool = Field(default=False, description="Echo SQL queries")

    @property
    def async_url(self) -> str:
        """Async database URL - uses WAREHOUSE_URL if set"""
        if self.url:
            return self.url
        return f"{self.driver}://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.database}"


class ReportSettings(BaseSettings):
    """Report Parameters"""

    model_config = SettingsConfigDict(env_prefix="REPORT_")

    as_of_date: Optional[date] = Field(default=None, description="Reference date override (defaults to yesterday)")
    hash_salt: SecretStr = Field(
        default="a_secret_salt_for_reporting",
        description="Application-wide salt for one-way identifier hashing",
    )
    output_dir: str = Field(default="./data/reports", description="Report output directory")
    output_format: str = Field(default="parquet", description="Output file format: parquet or csv")

    # Sales performance
    sales_vertical: str = Field(default="Financial Services", description="Industry vertical for sales report")
    opportunity_types: List[str] = Field(
        default=["New Business", "Upsell", "Cross-sell", "Renewal"],
        description="Opportunity types that count toward sales goals",
    )
    closed_won_stage: str = Field(default="Closed Won", description="CRM stage name of a won deal")

    # Revenue hierarchy
    product_category: str = Field(default="Analytics", description="Product category for revenue report")

    # Partner usage
    partner_model_prefixes: List[str] = Field(
        default=["partner-a/model-family-x-", "partner-a/model-family-y-"],
        description="Model name prefixes of the partner's models",
    )
    deployment_type: str = Field(default="cloud_hosted", description="Deployment label for partner rows")
    quantile_sketch_k: int = Field(default=200, description="Quantile sketch accuracy parameter")

    # Product adoption
    dashboard_page_pattern: str = Field(default="/security/analytics", description="UI page matched for dashboard adoption")
    dashboard_lookback_days: int = Field(default=7, description="Days of UI interactions counted as adoption")

    @field_validator("output_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate output format"""
        allowed = ["parquet", "csv"]
        if v.lower() not in allowed:
            raise ValueError(f"Output format must be one of: {allowed}")
        return v.lower()


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="", populate_by_name=True)

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="bizmetrics", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    warehouse: WarehouseSettings = Field(default_factory=WarehouseSettings)
    reports: ReportSettings = Field(default_factory=ReportSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
