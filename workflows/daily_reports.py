"""
Prefect Workflow Orchestration - Daily Reports

Scheduled run of every registered report for yesterday's data:
- one task per report, retried on transient warehouse failures
- rejection and validation summaries logged per report
- failure alert when any report fails
"""

from datetime import date
from typing import List, Optional

from prefect import flow, task, get_run_logger

from bizmetrics.config import get_settings
from bizmetrics.engine.windows import default_reference_date
from bizmetrics.reports import available_reports
from bizmetrics.runner import run_reports

settings = get_settings()


# =============================================================================
# TASKS
# =============================================================================

@task(
    name="run_report",
    description="Run one report and write its output",
    retries=2,
    retry_delay_seconds=120,
)
async def run_report(
    report_name: str,
    report_date: date,
    output_dir: Optional[str] = None,
    output_format: Optional[str] = None,
) -> dict:
    """Run a single report"""
    logger = get_run_logger()

    [result] = await run_reports(
        [report_name],
        reference_date=report_date,
        output_dir=output_dir,
        output_format=output_format,
    )

    failed_validations = [v.source for v in result.validations if v.status.value != "passed"]
    if result.rejections:
        logger.warning(f"{report_name}: {result.rejections.total} rows rejected {result.rejections.counts}")
    if failed_validations:
        logger.warning(f"{report_name}: validation issues in {failed_validations}")

    logger.info(f"{report_name}: {result.output_rows} rows written to {result.output_path}")

    return {
        "report": result.report_name,
        "report_date": result.report_date.isoformat(),
        "rows": result.output_rows,
        "rejected": result.rejections.counts,
        "validation_issues": failed_validations,
        "output_path": result.output_path,
        "duration_seconds": result.duration_seconds,
    }


@task(
    name="send_alert",
    description="Send alert notification",
)
async def send_alert(
    alert_type: str,
    message: str,
    severity: str = "info",
) -> None:
    """Send alert notification"""
    logger = get_run_logger()
    logger.warning(f"[{severity.upper()}] {alert_type}: {message}")


# =============================================================================
# FLOWS
# =============================================================================

@flow(
    name="daily_reports",
    description="Daily business metrics reports",
)
async def daily_reports(
    report_date: Optional[date] = None,
    reports: Optional[List[str]] = None,
    output_dir: Optional[str] = None,
    output_format: Optional[str] = None,
) -> dict:
    """
    Run every report for ``report_date`` (default: yesterday).

    Reports run one after another; a failing report does not stop the
    remaining ones, but fails the flow at the end.
    """
    logger = get_run_logger()

    report_date = report_date or settings.reports.as_of_date or default_reference_date()
    names = reports or available_reports()

    logger.info(f"Starting daily reports for {report_date}: {names}")

    results = {
        "report_date": report_date.isoformat(),
        "reports": {},
        "failed": [],
    }

    for name in names:
        try:
            results["reports"][name] = await run_report(name, report_date, output_dir, output_format)
        except Exception as e:
            logger.error(f"Report {name} failed: {e}")
            results["failed"].append(name)
            results["reports"][name] = {"error": str(e)}

    if results["failed"]:
        await send_alert(
            alert_type="Reports Failed",
            message=f"{len(results['failed'])} report(s) failed for {report_date}: {results['failed']}",
            severity="critical",
        )
        raise RuntimeError(f"Reports failed: {results['failed']}")

    results["status"] = "success"
    return results


if __name__ == "__main__":
    import asyncio

    asyncio.run(daily_reports())
