"""
Fact Aggregator

Buckets immutable fact rows into period windows and reduces them to
metrics per grouping key.

Windows are inclusive and overlapping: a fact dated in the current month
counts toward MTD, QTD and YTD at the same time. Each (metric, period)
pair becomes one output column, e.g. ``ytd_closed_won_acv``.

Rows that cannot be placed are never dropped silently:
- a null/unparsable primary event date rejects the row from every bucket
- a null grouping key component rejects the row unless a KeyFallback for
  that column supplies a surrogate value
Both are counted in the RejectionTally returned with the result.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import polars as pl
import structlog

from bizmetrics.engine.quantiles import DEFAULT_K, approx_percentiles
from bizmetrics.engine.windows import PeriodBoundary
from bizmetrics.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

_ALL_KEY = "__all__"
_IN_SCOPE = "__in_scope"
MISSING_EVENT_DATE = "missing_event_date"


class Reducer(str, Enum):
    """Associative reductions supported per metric"""
    SUM = "sum"
    COUNT = "count"
    COUNT_DISTINCT = "count_distinct"
    MAX = "max"
    MEAN = "mean"
    ANY = "any"
    APPROX_QUANTILE = "approx_quantile"


# Reducers whose partial results can be combined across disjoint fact subsets
MERGEABLE_REDUCERS = {Reducer.SUM, Reducer.COUNT, Reducer.MAX, Reducer.ANY}


@dataclass
class MetricSpec:
    """
    One metric family.

    Args:
        name: Metric name, used as output column suffix
        reducer: Reduction applied to ``measure``
        measure: Column reduced (unused for COUNT)
        predicate: Inclusion predicate (e.g. "is a won deal")
        date_column: Date tested against periods, defaults to the
            aggregator's event date column
        periods: Period names to fan out over. None means every period
            of the aggregator; an empty list means no bucketing
        quantiles: Integer percentiles read for APPROX_QUANTILE
    """
    name: str
    reducer: Reducer = Reducer.SUM
    measure: Optional[str] = None
    predicate: Optional[pl.Expr] = None
    date_column: Optional[str] = None
    periods: Optional[List[str]] = None
    quantiles: Sequence[int] = ()

    def __post_init__(self):
        self.reducer = Reducer(self.reducer)
        if self.reducer != Reducer.COUNT and self.measure is None:
            raise ConfigurationError(f"Metric '{self.name}' needs a measure column for {self.reducer.value}")
        if self.reducer == Reducer.APPROX_QUANTILE and not self.quantiles:
            raise ConfigurationError(f"Metric '{self.name}' needs at least one quantile")


@dataclass(frozen=True)
class KeyFallback:
    """Surrogate for a null grouping key component, e.g. org id <- account id"""
    column: str
    surrogate: str


@dataclass
class RejectionTally:
    """Record-level data-quality rejections by reason"""
    counts: Dict[str, int] = field(default_factory=dict)

    def add(self, reason: str, rows: int) -> None:
        if rows:
            self.counts[reason] = self.counts.get(reason, 0) + rows

    def extend(self, other: "RejectionTally") -> None:
        for reason, rows in other.counts.items():
            self.add(reason, rows)

    def merge(self, other: "RejectionTally") -> "RejectionTally":
        merged = RejectionTally(dict(self.counts))
        merged.extend(other)
        return merged

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def __bool__(self) -> bool:
        return self.total > 0


def apply_key_fallbacks(frame: pl.DataFrame, fallbacks: Iterable[KeyFallback]) -> pl.DataFrame:
    """Fill null key values from their surrogate column, cast to the key's type"""
    fills = []
    for fallback in fallbacks:
        dtype = frame.schema[fallback.column]
        if dtype == pl.Null:
            dtype = frame.schema[fallback.surrogate]
        fills.append(
            pl.coalesce([
                pl.col(fallback.column).cast(dtype),
                pl.col(fallback.surrogate).cast(dtype),
            ]).alias(fallback.column)
        )
    return frame.with_columns(fills) if fills else frame


def null_key_checks(columns: Iterable[str]) -> List[Tuple[str, pl.Expr]]:
    return [(f"missing_group_key:{c}", pl.col(c).is_null()) for c in columns]


def split_rejected(
    frame: pl.DataFrame,
    checks: Sequence[Tuple[str, pl.Expr]],
    tally: RejectionTally,
) -> Tuple[pl.DataFrame, Optional[pl.DataFrame]]:
    """
    Split off rows failing any check, tagging each with its first failing
    reason in ``_rejection_reason`` and counting it in ``tally``.

    Returns:
        (accepted rows, rejected rows or None when there are no checks)
    """
    if not checks:
        return frame, None

    reason_expr = pl.lit(None, dtype=pl.Utf8)
    for reason, condition in reversed(checks):
        reason_expr = pl.when(condition).then(pl.lit(reason)).otherwise(reason_expr)
    tagged = frame.with_columns(reason_expr.alias("_rejection_reason"))

    rejected = tagged.filter(pl.col("_rejection_reason").is_not_null())
    for reason, rows in rejected.group_by("_rejection_reason").len().iter_rows():
        tally.add(reason, rows)

    accepted = tagged.filter(pl.col("_rejection_reason").is_null()).drop("_rejection_reason")
    return accepted, rejected


@dataclass
class AggregationResult:
    """Aggregated metrics plus everything the caller needs to audit them"""
    frame: pl.DataFrame
    group_by: List[str]
    column_reducers: Dict[str, Reducer]
    input_rows: int
    rejections: RejectionTally = field(default_factory=RejectionTally)
    rejected_rows: Optional[pl.DataFrame] = None

    @property
    def metric_columns(self) -> List[str]:
        return list(self.column_reducers)

    def merge(self, other: "AggregationResult") -> "AggregationResult":
        """
        Combine partial results computed over disjoint fact subsets.

        Only additive reducers merge exactly; distinct counts, means and
        quantiles need the raw rows and raise ValueError.
        """
        if self.group_by != other.group_by or self.column_reducers != other.column_reducers:
            raise ValueError("Cannot merge results with different layouts")
        blocked = [c for c, r in self.column_reducers.items() if r not in MERGEABLE_REDUCERS]
        if blocked:
            raise ValueError(f"Columns are not mergeable from partials: {blocked}")

        combiners = {
            Reducer.SUM: lambda c: pl.col(c).sum(),
            Reducer.COUNT: lambda c: pl.col(c).sum(),
            Reducer.MAX: lambda c: pl.col(c).max(),
            Reducer.ANY: lambda c: pl.col(c).any(),
        }
        stacked = pl.concat([self.frame, other.frame], how="vertical_relaxed")
        aggs = [combiners[r](c).alias(c) for c, r in self.column_reducers.items()]
        if self.group_by:
            merged = stacked.group_by(self.group_by).agg(aggs).sort(self.group_by, nulls_last=True)
        else:
            merged = stacked.select(aggs)

        rejected = [f for f in (self.rejected_rows, other.rejected_rows) if f is not None]
        return AggregationResult(
            frame=merged.select(self.frame.columns),
            group_by=list(self.group_by),
            column_reducers=dict(self.column_reducers),
            input_rows=self.input_rows + other.input_rows,
            rejections=self.rejections.merge(other.rejections),
            rejected_rows=pl.concat(rejected, how="diagonal_relaxed") if rejected else None,
        )


class FactAggregator:
    """
    Period-bucketed aggregation over a fact frame.

    Example:
        periods = resolve_periods(date(2024, 3, 15))
        aggregator = FactAggregator(
            periods=[periods[p] for p in ("prior_year", "current_year", "current_month")],
            metrics=[MetricSpec("closed_won_acv", measure="acv", predicate=pl.col("won"))],
            group_by=["crm_account_id"],
            event_date_column="close_date",
        )
        result = aggregator.aggregate(opportunities_df)
    """

    def __init__(
        self,
        periods: Sequence[PeriodBoundary],
        metrics: Sequence[MetricSpec],
        group_by: Sequence[str] = (),
        event_date_column: Optional[str] = None,
        key_fallbacks: Sequence[KeyFallback] = (),
        quantile_k: int = DEFAULT_K,
    ):
        if not metrics:
            raise ConfigurationError("At least one metric is required")
        self.periods: Dict[str, PeriodBoundary] = {p.name: p for p in periods}
        self.metrics = list(metrics)
        self.group_by = list(group_by)
        self.event_date_column = event_date_column
        self.key_fallbacks: Mapping[str, KeyFallback] = {f.column: f for f in key_fallbacks}
        self.quantile_k = quantile_k

        unknown_fallbacks = [c for c in self.key_fallbacks if c not in self.group_by]
        if unknown_fallbacks:
            raise ConfigurationError(f"Fallbacks defined for non-grouping columns: {unknown_fallbacks}")

        for metric in self.metrics:
            missing = [p for p in self._metric_periods(metric) if p not in self.periods]
            if missing:
                raise ConfigurationError(f"Metric '{metric.name}' references undefined period(s): {missing}")
            if self._metric_periods(metric) and not (metric.date_column or event_date_column):
                raise ConfigurationError(f"Metric '{metric.name}' is bucketed but has no date column")

        self._column_reducers = self._plan_columns()

    def _metric_periods(self, metric: MetricSpec) -> List[str]:
        return list(self.periods) if metric.periods is None else list(metric.periods)

    def _plan_columns(self) -> Dict[str, Reducer]:
        columns: Dict[str, Reducer] = {}
        for metric in self.metrics:
            for column in self._output_columns(metric):
                if column in columns or column in self.group_by:
                    raise ConfigurationError(f"Duplicate output column '{column}'")
                columns[column] = metric.reducer
        return columns

    def _output_columns(self, metric: MetricSpec) -> List[str]:
        prefixes = [self.periods[p].label + "_" for p in self._metric_periods(metric)] or [""]
        if metric.reducer == Reducer.APPROX_QUANTILE:
            return [f"{prefix}p{q}_{metric.name}" for prefix in prefixes for q in metric.quantiles]
        return [f"{prefix}{metric.name}" for prefix in prefixes]

    @property
    def output_columns(self) -> List[str]:
        return self.group_by + list(self._column_reducers)

    def _required_columns(self) -> List[str]:
        required = set(self.group_by)
        required.update(f.surrogate for f in self.key_fallbacks.values())
        if self.event_date_column:
            required.add(self.event_date_column)
        for metric in self.metrics:
            if metric.measure:
                required.add(metric.measure)
            if metric.date_column:
                required.add(metric.date_column)
            if metric.predicate is not None:
                required.update(metric.predicate.meta.root_names())
        return sorted(required)

    def _validate_columns(self, facts: pl.DataFrame) -> None:
        missing = [c for c in self._required_columns() if c not in facts.columns]
        if missing:
            raise ConfigurationError(f"Fact frame is missing required column(s): {missing}")

    def _date_columns(self) -> List[str]:
        columns = {m.date_column for m in self.metrics if m.date_column}
        if self.event_date_column:
            columns.add(self.event_date_column)
        return sorted(columns)

    def _normalize_dates(self, facts: pl.DataFrame) -> pl.DataFrame:
        conversions = []
        for column in self._date_columns():
            dtype = facts.schema[column]
            if dtype == pl.Utf8:
                conversions.append(pl.col(column).str.to_date(strict=False).alias(column))
            elif dtype == pl.Null:
                conversions.append(pl.col(column).cast(pl.Date).alias(column))
        return facts.with_columns(conversions) if conversions else facts

    def _rejection_checks(self) -> List[Tuple[str, pl.Expr]]:
        checks = []
        if self.event_date_column:
            checks.append((MISSING_EVENT_DATE, pl.col(self.event_date_column).is_null()))
        checks.extend(null_key_checks(self.group_by))
        return checks

    def _expressions(self, metric: MetricSpec) -> List[pl.Expr]:
        in_scope = pl.col(_IN_SCOPE)
        predicate = in_scope & metric.predicate if metric.predicate is not None else in_scope
        date_column = metric.date_column or self.event_date_column
        period_names = self._metric_periods(metric)

        conditions = []
        if period_names:
            for name in period_names:
                period = self.periods[name]
                conditions.append((period.label + "_", predicate & period.contains_expr(date_column)))
        else:
            conditions.append(("", predicate))

        exprs = []
        for prefix, cond in conditions:
            column = f"{prefix}{metric.name}"
            if metric.reducer == Reducer.SUM:
                exprs.append(pl.when(cond).then(pl.col(metric.measure)).otherwise(0).sum().alias(column))
            elif metric.reducer == Reducer.COUNT:
                exprs.append(cond.fill_null(False).sum().cast(pl.Int64).alias(column))
            elif metric.reducer == Reducer.COUNT_DISTINCT:
                exprs.append(
                    pl.col(metric.measure).filter(cond).drop_nulls().n_unique().cast(pl.Int64).alias(column)
                )
            elif metric.reducer == Reducer.MAX:
                exprs.append(pl.col(metric.measure).filter(cond).max().alias(column))
            elif metric.reducer == Reducer.MEAN:
                exprs.append(pl.col(metric.measure).filter(cond).mean().alias(column))
            elif metric.reducer == Reducer.ANY:
                exprs.append(pl.col(metric.measure).filter(cond).fill_null(False).any().alias(column))
            elif metric.reducer == Reducer.APPROX_QUANTILE:
                # Raw values are collected per group and streamed into a sketch afterwards
                exprs.append(pl.col(metric.measure).filter(cond).drop_nulls().alias(f"__values_{column}"))
        return exprs

    def _finish_quantiles(self, frame: pl.DataFrame) -> pl.DataFrame:
        for metric in self.metrics:
            if metric.reducer != Reducer.APPROX_QUANTILE:
                continue
            prefixes = [self.periods[p].label + "_" for p in self._metric_periods(metric)] or [""]
            for prefix in prefixes:
                source = f"__values_{prefix}{metric.name}"
                estimates = [
                    approx_percentiles(values or [], metric.quantiles, k=self.quantile_k)
                    for values in frame[source].to_list()
                ]
                frame = frame.with_columns([
                    pl.Series(
                        f"{prefix}p{q}_{metric.name}",
                        [row[i] for row in estimates],
                        dtype=pl.Float64,
                    )
                    for i, q in enumerate(metric.quantiles)
                ]).drop(source)
        return frame

    def aggregate(self, facts: pl.DataFrame) -> AggregationResult:
        """
        Aggregate ``facts`` into one row per grouping key.

        Raises:
            ConfigurationError: Required columns are missing from ``facts``
        """
        self._validate_columns(facts)
        input_rows = len(facts)
        tally = RejectionTally()

        facts = self._normalize_dates(facts)
        facts = apply_key_fallbacks(facts, self.key_fallbacks.values())
        accepted, rejected = split_rejected(facts, self._rejection_checks(), tally)

        exprs = [e for metric in self.metrics for e in self._expressions(metric)]
        accepted = accepted.with_columns(pl.lit(True).alias(_IN_SCOPE))
        keys = self.group_by or [_ALL_KEY]
        if not self.group_by:
            accepted = accepted.with_columns(pl.lit(0, dtype=pl.Int64).alias(_ALL_KEY))

        frame = accepted.group_by(keys).agg(exprs)
        if not self.group_by:
            if frame.is_empty():
                # A grand total always exists, even over no facts
                frame = pl.DataFrame({_ALL_KEY: [0]}).join(frame, on=_ALL_KEY, how="left")
                frame = frame.with_columns([
                    pl.col(c).fill_null(False if r == Reducer.ANY else 0)
                    for c, r in self._column_reducers.items()
                    if r in (Reducer.SUM, Reducer.COUNT, Reducer.COUNT_DISTINCT, Reducer.ANY)
                ])
            frame = frame.drop(_ALL_KEY)
        else:
            frame = frame.sort(self.group_by, nulls_last=True)

        frame = self._finish_quantiles(frame)
        frame = frame.select(self.output_columns)

        if tally:
            logger.warning(
                "Fact rows rejected during aggregation",
                rejected=tally.total,
                reasons=tally.counts,
                input_rows=input_rows,
            )
        logger.debug(
            "Aggregation complete",
            input_rows=input_rows,
            groups=len(frame),
            metrics=len(self._column_reducers),
        )

        return AggregationResult(
            frame=frame,
            group_by=list(self.group_by),
            column_reducers=dict(self._column_reducers),
            input_rows=input_rows,
            rejections=tally,
            rejected_rows=rejected,
        )
