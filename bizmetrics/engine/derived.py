"""
Derived-Metric & Reshape Layer

Ratios and growth rates computed from aggregated metrics, plus the
reshaping helpers that turn per-level wide tables into long report rows.

Division never raises: a zero or null denominator yields null.
"""

import math
from typing import List, Mapping, Optional, Sequence, Tuple, Union

import polars as pl

from bizmetrics.exceptions import ConfigurationError

TOTAL_LABEL = "All"

Number = Union[int, float]
ColumnLike = Union[str, pl.Expr]


def _as_expr(value: ColumnLike) -> pl.Expr:
    return pl.col(value) if isinstance(value, str) else value


def _is_missing(value) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def safe_divide(numerator: Optional[Number], denominator: Optional[Number]) -> Optional[float]:
    """numerator / denominator, or None when either is null or the denominator is 0"""
    if _is_missing(numerator) or _is_missing(denominator) or denominator == 0:
        return None
    return numerator / denominator


def growth_rate(current: Optional[Number], prior: Optional[Number]) -> Optional[float]:
    """(current - prior) / prior with safe division"""
    if _is_missing(current) or _is_missing(prior):
        return None
    return safe_divide(current - prior, prior)


def safe_divide_expr(numerator: ColumnLike, denominator: ColumnLike) -> pl.Expr:
    num = _as_expr(numerator).cast(pl.Float64)
    den = _as_expr(denominator).cast(pl.Float64)
    return (
        pl.when(den.is_null() | den.is_nan() | (den == 0))
        .then(pl.lit(None, dtype=pl.Float64))
        .otherwise(num / den)
    )


def growth_rate_expr(current: ColumnLike, prior: ColumnLike) -> pl.Expr:
    cur = _as_expr(current)
    pri = _as_expr(prior)
    return safe_divide_expr(cur.cast(pl.Float64) - pri.cast(pl.Float64), pri)


def with_lagged(
    frame: pl.DataFrame,
    columns: Sequence[str],
    periods: int,
    partition_by: Union[str, Sequence[str]],
    order_by: Union[str, Sequence[str]],
    suffix: str = "_prior_year",
) -> pl.DataFrame:
    """
    Add ``{column}{suffix}`` holding the value ``periods`` rows earlier
    within each partition, ordered by ``order_by``.

    Offsets count rows, not calendar months: a partition with a missing
    month shifts across the gap.
    """
    partition = [partition_by] if isinstance(partition_by, str) else list(partition_by)
    order = [order_by] if isinstance(order_by, str) else list(order_by)
    ordered = frame.sort(partition + order, nulls_last=True)
    return ordered.with_columns([
        pl.col(c).shift(periods).over(partition).alias(f"{c}{suffix}")
        for c in columns
    ])


def unpivot_levels(
    levels: Sequence[Tuple[str, pl.DataFrame, str]],
    level_column: str = "aggregation_level",
    object_column: str = "aggregation_object",
) -> pl.DataFrame:
    """
    Stack per-level aggregate tables into one long frame.

    Each entry is ``(level_label, frame, key_column)``; the key column is
    renamed to ``object_column`` and tagged with ``level_label``. Input order
    is preserved and no row is added or lost.

    Raises:
        ConfigurationError: Levels disagree on their metric columns
    """
    if not levels:
        raise ConfigurationError("At least one aggregation level is required")

    stacked = []
    metric_columns: Optional[List[str]] = None
    for label, frame, key_column in levels:
        if key_column not in frame.columns:
            raise ConfigurationError(f"Level '{label}' has no key column '{key_column}'")
        columns = [c for c in frame.columns if c != key_column]
        if metric_columns is None:
            metric_columns = columns
        elif sorted(columns) != sorted(metric_columns):
            raise ConfigurationError(f"Level '{label}' columns {columns} differ from {metric_columns}")
        stacked.append(
            frame.select([
                pl.lit(label).alias(level_column),
                pl.col(key_column).cast(pl.Utf8).alias(object_column),
                *metric_columns,
            ])
        )
    return pl.concat(stacked, how="vertical_relaxed")


def melt_metrics(
    frame: pl.DataFrame,
    id_columns: Sequence[str],
    metric_columns: Sequence[str],
    name_column: str = "metric_name",
    value_column: str = "metric_value",
) -> pl.DataFrame:
    """Wide to long: one row per (id, metric). Rows out = rows in x metrics."""
    return frame.unpivot(
        index=list(id_columns),
        on=list(metric_columns),
        variable_name=name_column,
        value_name=value_column,
    )


def rollup_distinct(
    frame: pl.DataFrame,
    group_column: str,
    counts: Mapping[str, str],
    total_label: str = TOTAL_LABEL,
) -> pl.DataFrame:
    """
    Distinct counts per group plus one grand-total row.

    The total is a distinct count over the union of all members, so an
    entity appearing under two groups is counted once.

    Args:
        frame: Member rows
        group_column: Grouping dimension; rows with a null value only
            contribute to the total
        counts: Output column name -> column whose distinct values are counted
        total_label: Sentinel grouping value of the total row
    """
    grouped = frame.with_columns(pl.col(group_column).cast(pl.Utf8))
    if grouped.filter(pl.col(group_column) == total_label).height:
        raise ConfigurationError(f"Group value '{total_label}' collides with the rollup label")

    aggs = [
        pl.col(source).drop_nulls().n_unique().cast(pl.Int64).alias(name)
        for name, source in counts.items()
    ]
    per_group = (
        grouped.filter(pl.col(group_column).is_not_null())
        .group_by(group_column)
        .agg(aggs)
        .sort(group_column)
    )
    total = grouped.select(aggs).select([pl.lit(total_label).alias(group_column), *counts.keys()])
    return pl.concat([per_group, total], how="vertical_relaxed")
