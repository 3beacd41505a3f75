"""
Report Base

Every report is a two-step pipeline:
1. load    - read the warehouse sources it needs into Polars frames
2. build   - turn those frames into the final report frame

``Report.run`` wires the steps together, profiles the sources with the
report's validators and collects record-level rejections so the caller
gets one auditable ReportResult per run.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Type

import polars as pl
import structlog

from bizmetrics.config import get_settings
from bizmetrics.config.settings import ReportSettings
from bizmetrics.engine.aggregator import RejectionTally
from bizmetrics.engine.windows import coerce_reference_date, default_reference_date
from bizmetrics.exceptions import ConfigurationError
from bizmetrics.quality import DataValidator, ValidationResult
from bizmetrics.warehouse import WarehouseReader

logger = structlog.get_logger(__name__)


@dataclass
class ReportFrame:
    """Output of ``Report.build``"""
    frame: pl.DataFrame
    rejections: RejectionTally = field(default_factory=RejectionTally)


@dataclass
class ReportResult:
    """Result of one report run"""
    report_name: str
    report_date: date
    frame: pl.DataFrame
    rejections: RejectionTally
    validations: List[ValidationResult]
    source_rows: Dict[str, int]
    started_at: datetime
    completed_at: datetime
    duration_seconds: float
    output_path: Optional[str] = None

    @property
    def output_rows(self) -> int:
        return len(self.frame)


class Report(ABC):
    """
    Base class for scheduled reports.

    Subclasses set ``name`` and implement ``load`` and ``build``; ``build``
    must be a pure function of its inputs so reruns over an unchanged
    snapshot produce identical output.
    """

    name: str = ""

    def __init__(self, settings: Optional[ReportSettings] = None):
        self.settings = settings or get_settings().reports

    @abstractmethod
    async def load(self, reader: WarehouseReader, reference_date: date) -> Dict[str, pl.DataFrame]:
        """Read the report's sources, keyed by source name"""

    @abstractmethod
    def build(self, sources: Dict[str, pl.DataFrame], reference_date: date) -> ReportFrame:
        """Compute the report frame from loaded sources"""

    def validators(self) -> Dict[str, DataValidator]:
        """Source name -> validator profiling that source"""
        return {}

    def validate(self, sources: Dict[str, pl.DataFrame]) -> List[ValidationResult]:
        results = []
        for source, validator in self.validators().items():
            if source in sources:
                results.append(validator.validate(sources[source]))
        return results

    def resolve_reference_date(self, reference_date=None) -> date:
        """Explicit date, else the configured as-of date, else yesterday"""
        if reference_date is None:
            reference_date = self.settings.as_of_date or default_reference_date()
        return coerce_reference_date(reference_date)

    async def run(self, reader: WarehouseReader, reference_date=None) -> ReportResult:
        """
        Load, validate and build the report.

        Raises:
            ConfigurationError: Invalid reference date or report configuration
            SourceUnavailableError: A source could not be read
        """
        started_at = datetime.now(timezone.utc)
        report_date = self.resolve_reference_date(reference_date)
        log = logger.bind(report=self.name, report_date=report_date.isoformat())

        log.info("Report started")
        sources = await self.load(reader, report_date)
        validations = self.validate(sources)
        built = self.build(sources, report_date)

        completed_at = datetime.now(timezone.utc)
        if built.rejections:
            log.warning(
                "Report rows rejected",
                rejected=built.rejections.total,
                reasons=built.rejections.counts,
            )
        log.info(
            "Report complete",
            rows=len(built.frame),
            duration_seconds=(completed_at - started_at).total_seconds(),
        )

        return ReportResult(
            report_name=self.name,
            report_date=report_date,
            frame=built.frame,
            rejections=built.rejections,
            validations=validations,
            source_rows={source: len(frame) for source, frame in sources.items()},
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=(completed_at - started_at).total_seconds(),
        )


REPORTS: Dict[str, Type[Report]] = {}


def register(cls: Type[Report]) -> Type[Report]:
    """Class decorator adding a report to the registry"""
    if not cls.name:
        raise ConfigurationError(f"Report class {cls.__name__} has no name")
    REPORTS[cls.name] = cls
    return cls


def available_reports() -> List[str]:
    return sorted(REPORTS)


def get_report(name: str, settings: Optional[ReportSettings] = None) -> Report:
    """
    Instantiate a registered report by name.

    Raises:
        ConfigurationError: Unknown report name
    """
    try:
        report_cls = REPORTS[name]
    except KeyError:
        raise ConfigurationError(f"Unknown report '{name}'. Available: {available_reports()}") from None
    return report_cls(settings)
