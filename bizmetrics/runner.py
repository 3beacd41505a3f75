"""
Report Runner

Runs one or more registered reports against the warehouse and writes
their output. Shared by the CLI and the scheduled flow.
"""

from typing import List, Optional, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError

from bizmetrics.database import close_database, init_database
from bizmetrics.exceptions import SourceUnavailableError
from bizmetrics.output import ReportWriter
from bizmetrics.reports import ReportResult, available_reports, get_report
from bizmetrics.warehouse import WarehouseReader

logger = structlog.get_logger(__name__)

ALL_REPORTS = "all"


def expand_report_names(names: Sequence[str]) -> List[str]:
    """Resolve ``all`` to every registered report, keeping order otherwise"""
    expanded: List[str] = []
    for name in names:
        candidates = available_reports() if name == ALL_REPORTS else [name]
        for candidate in candidates:
            if candidate not in expanded:
                expanded.append(candidate)
    return expanded


async def run_reports(
    names: Sequence[str],
    reference_date=None,
    output_dir: Optional[str] = None,
    output_format: Optional[str] = None,
    database_url: Optional[str] = None,
    write: bool = True,
) -> List[ReportResult]:
    """
    Run reports in order and write each result.

    Report names are checked before the warehouse is touched. Any report
    failure aborts the run.

    Raises:
        ConfigurationError: Unknown report name or invalid reference date
        SourceUnavailableError: The warehouse or one of its sources could not be read
    """
    reports = [get_report(name) for name in expand_report_names(names)]
    writer = ReportWriter(output_dir, output_format) if write else None

    try:
        await init_database(url=database_url)
    except (SQLAlchemyError, OSError) as e:
        raise SourceUnavailableError("warehouse", str(getattr(e, "orig", None) or e)) from e

    try:
        reader = WarehouseReader()
        results = []
        for report in reports:
            result = await report.run(reader, reference_date)
            if writer is not None:
                result.output_path = writer.write(result.frame, result.report_name, result.report_date)
            results.append(result)
    finally:
        await close_database()

    logger.info(
        "Reports finished",
        reports=[r.report_name for r in results],
        rejected=sum(r.rejections.total for r in results),
    )
    return results
