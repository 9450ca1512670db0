"""
Progress report generation for the chat import executor
"""

from __future__ import annotations

import datetime
import logging
from pathlib import Path
from typing import Any

import click
import yaml

from chat_importer.constants import LOW_SUCCESS_RATE_THRESHOLD
from chat_importer.core.ledger import ProgressLedger, parse_timestamp
from chat_importer.types import LedgerStatistics
from chat_importer.utils.logging import log_with_context

# Only flag a low success rate once enough jobs have been tried
_MIN_PROCESSED_FOR_RATE = 10
_TOP_ERROR_MIN_COUNT = 5


def generate_recommendations(stats: LedgerStatistics) -> list[dict[str, str]]:
    """Turn ledger statistics into operator recommendations."""
    recommendations: list[dict[str, str]] = []

    if (
        stats["success_rate"] < LOW_SUCCESS_RATE_THRESHOLD
        and stats["processed"] > _MIN_PROCESSED_FOR_RATE
    ):
        recommendations.append(
            {
                "type": "low_success_rate",
                "message": "Low success rate detected. Check the channel connection"
                " and the pacing settings.",
                "severity": "warning",
            }
        )

    if stats["retryable"] > 0:
        recommendations.append(
            {
                "type": "retryable_failures",
                "message": f"{stats['retryable']} messages can be retried."
                " Run execute again to retry them.",
                "severity": "info",
            }
        )

    if stats["failed"] > 0 and stats["successful"] == 0:
        recommendations.append(
            {
                "type": "all_failing",
                "message": "All messages are failing. Check the destination chat id"
                " and the channel connection.",
                "severity": "error",
            }
        )

    if stats["error_summary"]:
        top_error = stats["error_summary"][0]
        if top_error["count"] > _TOP_ERROR_MIN_COUNT:
            recommendations.append(
                {
                    "type": "common_error",
                    "message": f'Most common error: "{top_error["error"]}"'
                    f" ({top_error['count']} occurrences)",
                    "severity": "warning",
                }
            )

    return recommendations


def build_report(ledger: ProgressLedger, max_attempts: int) -> dict[str, Any]:
    """Build the report dictionary for a ledger."""
    summary = ledger.summary
    stats = ledger.statistics(max_attempts)
    duration = (
        parse_timestamp(summary.last_updated) - parse_timestamp(summary.started_at)
    ).total_seconds()

    return {
        "summary": {
            "generated_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "plan_ref": summary.plan_ref,
            "started_at": summary.started_at,
            "last_updated": summary.last_updated,
            "status": summary.status.value,
            "reason_code": summary.reason_code.value if summary.reason_code else None,
            "reason": summary.reason,
            "duration_seconds": round(duration, 1),
        },
        "progress": {
            "total": stats["total"],
            "processed": stats["processed"],
            "successful": stats["successful"],
            "failed": stats["failed"],
            "remaining": stats["remaining"],
            "completion_percentage": stats["completion_percentage"],
            "success_rate": stats["success_rate"],
            "retryable": stats["retryable"],
        },
        "errors": [dict(row) for row in stats["error_summary"]],
        "recommendations": generate_recommendations(stats),
    }


def write_report(report: dict[str, Any], report_path: Path) -> Path:
    """Write the report as YAML."""
    report_path.parent.mkdir(parents=True, exist_ok=True)
    with open(report_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(report, f, default_flow_style=False, sort_keys=False)
    log_with_context(logging.INFO, f"Progress report written to {report_path}")
    return report_path


def print_status(report: dict[str, Any], dry_run: bool = False) -> None:
    """Print a human-readable status summary to the console."""
    summary = report["summary"]
    progress = report["progress"]

    click.echo("\n" + "=" * 60)
    click.echo("DRY RUN PROGRESS" if dry_run else "IMPORT PROGRESS")
    click.echo("=" * 60)
    click.echo(f"Plan:        {summary['plan_ref']}")
    status = summary["status"]
    if summary["reason_code"]:
        status += f" ({summary['reason_code']}: {summary['reason']})"
    click.echo(f"Status:      {status}")
    click.echo(f"Started:     {summary['started_at']}")
    click.echo(f"Updated:     {summary['last_updated']}")
    click.echo(
        f"Processed:   {progress['processed']}/{progress['total']}"
        f" ({progress['completion_percentage']}%)"
    )
    click.echo(f"Delivered:   {progress['successful']}")
    click.echo(f"Failed:      {progress['failed']} ({progress['retryable']} retryable)")
    click.echo(f"Remaining:   {progress['remaining']}")
    click.echo(f"Success rate: {progress['success_rate']}%")

    if report["errors"]:
        click.echo("\nMost common errors:")
        for row in report["errors"]:
            click.echo(f"  {row['count']:>5}  {row['error']}")

    if report["recommendations"]:
        click.echo("\nRecommendations:")
        for rec in report["recommendations"]:
            click.echo(f"  - [{rec['severity']}] {rec['message']}")
    click.echo("=" * 60)
