"""
Report Writer

Persists report frames to the output directory, one file per report and
report date: ``{report}_{YYYYMMDD}.{parquet|csv}``. Rerunning a report for
the same date overwrites its file.
"""

from datetime import date
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import polars as pl
import structlog

from bizmetrics.config import get_settings

logger = structlog.get_logger(__name__)


class OutputFormat(str, Enum):
    """Supported output formats"""
    PARQUET = "parquet"
    CSV = "csv"


class ReportWriter:
    """
    Writes report frames to files.

    Example:
        writer = ReportWriter("./data/reports", "csv")
        path = writer.write(result.frame, "sales_performance", result.report_date)
    """

    def __init__(
        self,
        output_dir: Optional[Union[str, Path]] = None,
        output_format: Optional[Union[str, OutputFormat]] = None,
    ):
        settings = get_settings()
        self.output_dir = Path(output_dir or settings.reports.output_dir)
        self.output_format = OutputFormat(output_format or settings.reports.output_format)

    def path_for(self, report_name: str, report_date: date) -> Path:
        return self.output_dir / f"{report_name}_{report_date:%Y%m%d}.{self.output_format.value}"

    def write(self, frame: pl.DataFrame, report_name: str, report_date: date) -> str:
        """Write ``frame`` and return the file path"""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(report_name, report_date)

        if self.output_format == OutputFormat.PARQUET:
            frame.write_parquet(path)
        else:
            frame.write_csv(path)

        logger.info("Report written", report=report_name, rows=len(frame), path=str(path))
        return str(path)
