"""
Partner Usage (monthly)

Weekly usage of a partner's hosted models over the last full calendar
month. Weeks are rolling 7-day buckets from the first of the month.

Per (week, customer, model):
- token and call-volume totals; logs are sampled, so call volume is the
  sum of the sampling weights
- mean time-to-first-token and inference time
- p20/p50/p80 and peak of the hourly call volume

Customers are identified only by a salted one-way hash of their account id.
"""

from datetime import date
from typing import Dict

import polars as pl
import structlog
from sqlalchemy import or_, select

from bizmetrics.database.models import DimCustomerAccount, FactLlmInferenceLog
from bizmetrics.engine.aggregator import (
    MISSING_EVENT_DATE,
    FactAggregator,
    MetricSpec,
    Reducer,
    RejectionTally,
    null_key_checks,
    split_rejected,
)
from bizmetrics.engine.hashing import hash_identifier_expr
from bizmetrics.engine.windows import LAST_FULL_MONTH, eligible_dates, resolve_periods
from bizmetrics.quality import DataValidator, ValidationSeverity
from bizmetrics.reports.base import Report, ReportFrame, register
from bizmetrics.warehouse import WarehouseReader

logger = structlog.get_logger(__name__)

PERCENTILES = (20, 50, 80)

WEEK_KEYS = ["week_start_date", "week_end_date", "customer_uuid", "model"]

OUTPUT_COLUMNS = [
    "report_month",
    "report_week_start",
    "report_week_end",
    "deployment_type",
    "model",
    "industry_vertical",
    "billing_country",
    "customer_uuid",
    "total_call_volume",
    "total_input_tokens",
    "total_output_tokens",
    "p20_hourly_call_volume",
    "p50_hourly_call_volume",
    "p80_hourly_call_volume",
    "peak_hourly_call_volume",
    "avg_ttft_ms",
    "avg_inference_time_ms",
]


@register
class PartnerUsageReport(Report):
    """Weekly partner model usage per hashed customer"""

    name = "partner_usage"

    async def load(self, reader: WarehouseReader, reference_date: date) -> Dict[str, pl.DataFrame]:
        window = resolve_periods(reference_date, [LAST_FULL_MONTH])[LAST_FULL_MONTH]
        log = FactLlmInferenceLog

        logs = await reader.read(
            select(
                log.event_date,
                log.event_timestamp,
                log.account_id,
                log.model_name,
                log.call_weight_from_sampling,
                log.input_tokens,
                log.output_tokens,
                log.time_to_first_token_ms,
                log.inference_duration_ms,
            ).where(
                log.error_code == 0,
                or_(*[log.model_name.startswith(prefix) for prefix in self.settings.partner_model_prefixes]),
                # Undated rows are kept so they can be counted as rejections
                or_(log.event_date.between(window.start, window.end), log.event_date.is_(None)),
            ),
            source=log.__tablename__,
        )
        accounts = await reader.read(
            select(
                DimCustomerAccount.account_id,
                DimCustomerAccount.industry_vertical,
                DimCustomerAccount.billing_country,
            ),
            source=DimCustomerAccount.__tablename__,
        )
        return {"inference_logs": logs, "customer_accounts": accounts}

    def validators(self) -> Dict[str, DataValidator]:
        return {
            "inference_logs": (
                DataValidator("fact_llm_inference_logs")
                .add_not_null_check("account_id", severity=ValidationSeverity.WARNING)
                .add_not_null_check("event_timestamp", severity=ValidationSeverity.WARNING)
                .add_range_check("call_weight_from_sampling", min_value=0, severity=ValidationSeverity.WARNING)
            ),
            "customer_accounts": (
                DataValidator("dim_customer_accounts")
                .add_unique_check("account_id", severity=ValidationSeverity.WARNING)
            ),
        }

    def weekly_facts(self, logs: pl.DataFrame, reference_date: date, tally: RejectionTally) -> pl.DataFrame:
        """Accepted calls inside the window, tagged with week, hour and hashed customer"""
        window = resolve_periods(reference_date, [LAST_FULL_MONTH])[LAST_FULL_MONTH]
        logs = logs.with_columns(pl.col("event_date").cast(pl.Date))
        accepted, _ = split_rejected(
            logs,
            [(MISSING_EVENT_DATE, pl.col("event_date").is_null()), *null_key_checks(["account_id"])],
            tally,
        )

        salt = self.settings.hash_salt.get_secret_value()
        return (
            accepted.join(eligible_dates(window), left_on="event_date", right_on="date", how="inner")
            .with_columns([
                hash_identifier_expr("account_id", salt).alias("customer_uuid"),
                pl.col("model_name").alias("model"),
                pl.col("event_timestamp").dt.truncate("1h").alias("hour_bucket"),
            ])
        )

    def hourly_percentiles(self, facts: pl.DataFrame, tally: RejectionTally) -> pl.DataFrame:
        hourly = FactAggregator(
            periods=[],
            metrics=[MetricSpec("hourly_api_calls", Reducer.SUM, measure="call_weight_from_sampling")],
            group_by=[*WEEK_KEYS, "hour_bucket"],
        ).aggregate(facts)
        tally.extend(hourly.rejections)

        percentiles = FactAggregator(
            periods=[],
            metrics=[
                MetricSpec(
                    "hourly_call_volume",
                    Reducer.APPROX_QUANTILE,
                    measure="hourly_api_calls",
                    quantiles=PERCENTILES,
                ),
                MetricSpec("peak_hourly_call_volume", Reducer.MAX, measure="hourly_api_calls"),
            ],
            group_by=WEEK_KEYS,
            quantile_k=self.settings.quantile_sketch_k,
        ).aggregate(hourly.frame)
        return percentiles.frame

    def weekly_totals(self, facts: pl.DataFrame) -> pl.DataFrame:
        return FactAggregator(
            periods=[],
            metrics=[
                MetricSpec("total_input_tokens", Reducer.SUM, measure="input_tokens"),
                MetricSpec("total_output_tokens", Reducer.SUM, measure="output_tokens"),
                MetricSpec("total_call_volume", Reducer.SUM, measure="call_weight_from_sampling"),
                MetricSpec("avg_ttft_ms", Reducer.MEAN, measure="time_to_first_token_ms"),
                MetricSpec("avg_inference_time_ms", Reducer.MEAN, measure="inference_duration_ms"),
            ],
            group_by=[*WEEK_KEYS, "account_id"],
        ).aggregate(facts).frame

    def build(self, sources: Dict[str, pl.DataFrame], reference_date: date) -> ReportFrame:
        tally = RejectionTally()
        facts = self.weekly_facts(sources["inference_logs"], reference_date, tally)

        totals = self.weekly_totals(facts)
        percentiles = self.hourly_percentiles(facts, tally)
        accounts = sources["customer_accounts"].unique(subset="account_id", keep="first", maintain_order=True)

        report = (
            totals.join(percentiles, on=WEEK_KEYS, how="left")
            .join(accounts, on="account_id", how="left")
            .with_columns([
                pl.col("week_start_date").dt.strftime("%B_%Y").str.to_lowercase().alias("report_month"),
                pl.col("week_start_date").alias("report_week_start"),
                pl.col("week_end_date").alias("report_week_end"),
                pl.lit(self.settings.deployment_type).alias("deployment_type"),
            ])
            .sort(["report_week_start", "customer_uuid", "model"])
            .select(OUTPUT_COLUMNS)
        )

        logger.info(
            "Partner usage built",
            calls=len(facts),
            customers=report["customer_uuid"].n_unique(),
            rows=len(report),
        )
        return ReportFrame(frame=report, rejections=tally)
