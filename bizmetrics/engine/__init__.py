"""
Period-Bucketed Aggregation Engine
"""
from .windows import PeriodBoundary, resolve_periods, rolling_week, default_reference_date
from .aggregator import FactAggregator, MetricSpec, KeyFallback, Reducer, AggregationResult, RejectionTally
from .quantiles import QuantileSketch
from .derived import safe_divide, growth_rate, unpivot_levels, rollup_distinct

__all__ = [
    "PeriodBoundary",
    "resolve_periods",
    "rolling_week",
    "default_reference_date",
    "FactAggregator",
    "MetricSpec",
    "KeyFallback",
    "Reducer",
    "AggregationResult",
    "RejectionTally",
    "QuantileSketch",
    "safe_divide",
    "growth_rate",
    "unpivot_levels",
    "rollup_distinct",
]
