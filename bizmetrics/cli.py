"""
Command Line Entry Point

Usage:
    bizmetrics-report list
    bizmetrics-report run sales_performance --as-of 2024-03-15
    bizmetrics-report run all --output ./data/reports --format csv
"""

import argparse
import asyncio
import sys
from datetime import date
from typing import List, Optional

import structlog

from bizmetrics.config.logging import configure_logging
from bizmetrics.exceptions import ReportError
from bizmetrics.reports import available_reports
from bizmetrics.runner import ALL_REPORTS, run_reports

logger = structlog.get_logger(__name__)


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bizmetrics-report",
        description="Period-bucketed business metrics reports",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    parser.add_argument("--log-format", choices=["json", "text"], default=None, help="Override LOG_FORMAT")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List available reports")

    run = subparsers.add_parser("run", help="Run one or more reports")
    run.add_argument(
        "reports",
        nargs="+",
        metavar="REPORT",
        help=f"Report name(s) or '{ALL_REPORTS}'",
    )
    run.add_argument("--as-of", type=_iso_date, default=None, help="Reference date (default: yesterday)")
    run.add_argument("--output", default=None, help="Output directory")
    run.add_argument("--format", choices=["parquet", "csv"], default=None, help="Output file format")
    run.add_argument("--database-url", default=None, help="Override the warehouse URL")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, args.log_format)

    if args.command == "list":
        for name in available_reports():
            print(name)
        return 0

    try:
        results = asyncio.run(
            run_reports(
                args.reports,
                reference_date=args.as_of,
                output_dir=args.output,
                output_format=args.format,
                database_url=args.database_url,
            )
        )
    except ReportError as e:
        logger.error("Report run failed", error=str(e))
        return 1

    for result in results:
        print(f"{result.report_name}\t{result.output_rows} rows\t{result.output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
