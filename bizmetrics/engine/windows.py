"""
Date-Window Resolver

Derives named period boundaries from a single reference ("as of") date.
Every function here is pure: the same reference date always yields the
same boundaries.

Periods:
- prior_year       full preceding calendar year
- current_year     Jan 1 .. reference date (to-date, open-ended)
- current_quarter  quarter start .. reference date (to-date, open-ended)
- current_month    month start .. reference date (to-date, open-ended)
- last_full_month  the calendar month before the reference month

Rolling weeks are 7-day buckets counted from the first day of each month,
so a week never crosses a month boundary and the last one may be short.
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Union

import polars as pl

from bizmetrics.exceptions import ConfigurationError

PRIOR_YEAR = "prior_year"
CURRENT_YEAR = "current_year"
CURRENT_QUARTER = "current_quarter"
CURRENT_MONTH = "current_month"
LAST_FULL_MONTH = "last_full_month"

STANDARD_PERIODS = (
    PRIOR_YEAR,
    CURRENT_YEAR,
    CURRENT_QUARTER,
    CURRENT_MONTH,
    LAST_FULL_MONTH,
)

# Column prefixes used when a metric is fanned out per period
PERIOD_LABELS = {
    PRIOR_YEAR: "prior_year",
    CURRENT_YEAR: "ytd",
    CURRENT_QUARTER: "qtd",
    CURRENT_MONTH: "mtd",
    LAST_FULL_MONTH: "last_full_month",
}


@dataclass(frozen=True)
class PeriodBoundary:
    """
    Named, inclusive date range.

    ``open_ended`` periods are "to-date" windows: only the lower bound is
    applied when testing membership, ``end`` records the as-of date.
    """
    name: str
    start: date
    end: date
    open_ended: bool = False

    def __post_init__(self):
        if self.start > self.end:
            raise ValueError(f"Period '{self.name}' starts after it ends: {self.start} > {self.end}")

    @property
    def label(self) -> str:
        return PERIOD_LABELS.get(self.name, self.name)

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, value: Optional[date]) -> bool:
        if value is None:
            return False
        if isinstance(value, datetime):
            value = value.date()
        if self.open_ended:
            return value >= self.start
        return self.start <= value <= self.end

    def contains_expr(self, column: Union[str, pl.Expr]) -> pl.Expr:
        """Polars predicate testing a date column against this period"""
        col = pl.col(column) if isinstance(column, str) else column
        col = col.cast(pl.Date)
        if self.open_ended:
            return col >= pl.lit(self.start)
        return col.is_between(pl.lit(self.start), pl.lit(self.end), closed="both")


def first_day_of_month(d: date) -> date:
    return d.replace(day=1)


def last_day_of_month(d: date) -> date:
    return d.replace(day=calendar.monthrange(d.year, d.month)[1])


def quarter_number(d: date) -> int:
    return (d.month - 1) // 3 + 1


def first_day_of_quarter(d: date) -> date:
    return date(d.year, 3 * (quarter_number(d) - 1) + 1, 1)


def default_reference_date(today: Optional[date] = None) -> date:
    """Yesterday, so that all of the reference day's data has settled"""
    today = today or datetime.now(timezone.utc).date()
    return today - timedelta(days=1)


def coerce_reference_date(reference_date) -> date:
    if reference_date is None:
        raise ConfigurationError("A reference date is required to resolve periods")
    if isinstance(reference_date, datetime):
        return reference_date.date()
    if isinstance(reference_date, date):
        return reference_date
    if isinstance(reference_date, str):
        try:
            return date.fromisoformat(reference_date)
        except ValueError as e:
            raise ConfigurationError(f"Invalid reference date '{reference_date}'") from e
    raise ConfigurationError(f"Unsupported reference date type: {type(reference_date).__name__}")


def prior_year(reference_date: date) -> PeriodBoundary:
    year = reference_date.year - 1
    return PeriodBoundary(PRIOR_YEAR, date(year, 1, 1), date(year, 12, 31))


def current_year(reference_date: date) -> PeriodBoundary:
    return PeriodBoundary(CURRENT_YEAR, date(reference_date.year, 1, 1), reference_date, open_ended=True)


def current_quarter(reference_date: date) -> PeriodBoundary:
    return PeriodBoundary(CURRENT_QUARTER, first_day_of_quarter(reference_date), reference_date, open_ended=True)


def current_month(reference_date: date) -> PeriodBoundary:
    return PeriodBoundary(CURRENT_MONTH, first_day_of_month(reference_date), reference_date, open_ended=True)


def last_full_month(reference_date: date) -> PeriodBoundary:
    end = first_day_of_month(reference_date) - timedelta(days=1)
    return PeriodBoundary(LAST_FULL_MONTH, first_day_of_month(end), end)


def rolling_week(d: date) -> PeriodBoundary:
    """
    Week bucket containing ``d``.

    Weeks are counted in 7-day steps from the first of the month and are
    clipped to the month's last day.
    """
    if isinstance(d, datetime):
        d = d.date()
    month_start = first_day_of_month(d)
    start = month_start + timedelta(days=((d.day - 1) // 7) * 7)
    end = min(start + timedelta(days=6), last_day_of_month(d))
    return PeriodBoundary("rolling_week", start, end)


def rolling_weeks(window: PeriodBoundary) -> List[PeriodBoundary]:
    """All distinct week buckets intersecting ``window``, in order"""
    weeks = []
    current = window.start
    while current <= window.end:
        week = rolling_week(current)
        weeks.append(week)
        current = week.end + timedelta(days=1)
    return weeks


_RESOLVERS = {
    PRIOR_YEAR: prior_year,
    CURRENT_YEAR: current_year,
    CURRENT_QUARTER: current_quarter,
    CURRENT_MONTH: current_month,
    LAST_FULL_MONTH: last_full_month,
}


def resolve_periods(
    reference_date,
    period_set: Optional[Iterable[str]] = None,
) -> Dict[str, PeriodBoundary]:
    """
    Resolve named period boundaries relative to ``reference_date``.

    Args:
        reference_date: As-of date (date, datetime or ISO string)
        period_set: Period names to resolve, defaults to all standard periods

    Returns:
        Mapping of period name to PeriodBoundary, in request order

    Raises:
        ConfigurationError: Missing reference date or unknown period name
    """
    ref = coerce_reference_date(reference_date)
    names = list(period_set) if period_set is not None else list(STANDARD_PERIODS)

    unknown = [n for n in names if n not in _RESOLVERS]
    if unknown:
        raise ConfigurationError(f"Unknown period(s): {unknown}. Known: {list(_RESOLVERS)}")

    return {name: _RESOLVERS[name](ref) for name in names}


def week_start_expr(column: Union[str, pl.Expr]) -> pl.Expr:
    """Polars form of ``rolling_week(d).start``"""
    col = (pl.col(column) if isinstance(column, str) else column).cast(pl.Date)
    offset_days = ((col.dt.day() - 1) // 7) * 7
    return (col.dt.truncate("1mo") + pl.duration(days=offset_days)).cast(pl.Date)


def week_end_expr(column: Union[str, pl.Expr]) -> pl.Expr:
    """Polars form of ``rolling_week(d).end``"""
    start = week_start_expr(column)
    return pl.min_horizontal((start + pl.duration(days=6)).cast(pl.Date), start.dt.month_end())


def eligible_dates(window: PeriodBoundary) -> pl.DataFrame:
    """
    Calendar spine for ``window``: one row per date with its week bucket.

    Columns: date, week_start_date, week_end_date
    """
    dates = pl.date_range(window.start, window.end, interval="1d", eager=True).alias("date")
    return pl.DataFrame(dates).with_columns([
        week_start_expr("date").alias("week_start_date"),
        week_end_expr("date").alias("week_end_date"),
    ])
