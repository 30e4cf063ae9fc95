"""
Report sinks and formatting helpers.

Sinks are plain callables taking a finished `NotificationReport`; the
orchestrator calls each one and logs (without re-raising) any failure.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from collections.abc import Callable
from typing import Any, Optional

from .models import NotificationReport, ReportStatus

logger = logging.getLogger(__name__)


def summarize(report: NotificationReport) -> dict[str, Any]:
    """Flat statistics for logging and CLI output."""
    categories: Counter[str] = Counter()
    for recipient in report.recipients:
        if recipient.error_category is not None:
            categories[recipient.error_category.value] += 1
        for channel, outcome in recipient.channel_outcomes().items():
            if outcome.error_category is not None:
                categories[f"{channel.value}:{outcome.error_category.value}"] += 1

    return {
        "resource_id": report.resource_id,
        "status": report.status.value,
        "total_recipients": report.total_recipients,
        "succeeded": report.succeeded,
        "failed": report.failed,
        "cancelled": report.cancelled,
        "error_categories": dict(categories),
    }


def log_report(report: NotificationReport) -> None:
    """Log the cycle summary, at a level matching its health, then each failed outcome."""
    stats = summarize(report)
    if report.status is ReportStatus.RESOURCE_NOT_FOUND:
        logger.error("Notification cycle aborted: resource not found", extra={"stats": stats})
    elif report.status is ReportStatus.NO_RECIPIENTS:
        logger.info("Notification cycle finished: no recipients", extra={"stats": stats})
    elif report.all_failed or report.cancelled:
        logger.warning(
            f"Notification cycle finished: {report.succeeded}/{report.total_recipients} recipients notified",
            extra={"stats": stats},
        )
    else:
        logger.info(
            f"Notification cycle finished: {report.succeeded}/{report.total_recipients} recipients notified",
            extra={"stats": stats},
        )

    for recipient in report.recipients:
        for channel, outcome in recipient.channel_outcomes().items():
            if outcome.success:
                continue
            logger.warning(
                "Delivery not completed",
                extra={
                    "user_id": recipient.user_id,
                    "channel": channel.value,
                    "state": outcome.state.value,
                    "error_category": outcome.error_category.value if outcome.error_category else None,
                    "detail": outcome.detail,
                },
            )
        if recipient.error_category is not None and not recipient.channel_outcomes():
            logger.warning(
                "Recipient not notified",
                extra={"user_id": recipient.user_id, "error_category": recipient.error_category.value},
            )


def report_to_json(report: NotificationReport, indent: Optional[int] = 2) -> str:
    return json.dumps(report.to_dict(), indent=indent, ensure_ascii=False, default=str)


def history_sink(db: Any, message: Optional[str] = None) -> Callable[[NotificationReport], None]:
    """
    Build a sink that writes delivery outcomes to the notification history table.

    Args:
        db: Object with a `record_report(report, message=None)` method
            (normally `NotifierDB`).
        message: Body text stored with each history row.
    """

    def record_history(report: NotificationReport) -> None:
        if report.status is not ReportStatus.COMPLETED:
            return
        db.record_report(report, message=message if message is not None else report.message)

    return record_history


def format_summary(report: NotificationReport) -> str:
    """Human-readable summary block printed by the CLI."""
    lines = [
        "=" * 60,
        "NOTIFIER SUMMARY",
        "=" * 60,
        f"Resource:   {report.resource_id}" + (f" ({report.resource_name})" if report.resource_name else ""),
        f"Status:     {report.status.value}",
        f"Recipients: {report.total_recipients}",
        f"Succeeded:  {report.succeeded}",
        f"Failed:     {report.failed}",
    ]
    if report.cancelled:
        lines.append("Cancelled:  yes (unstarted deliveries were not attempted)")
    for recipient in report.recipients:
        parts = []
        for channel, outcome in recipient.channel_outcomes().items():
            label = outcome.state.value
            if outcome.error_category is not None:
                label = f"{label} ({outcome.error_category.value})"
            parts.append(f"{channel.value}={label}")
        if recipient.error_category is not None and not parts:
            parts.append(recipient.error_category.value)
        lines.append(f"  user {recipient.user_id}: " + ", ".join(parts))
    lines.append("=" * 60)
    return "\n".join(lines)


__all__ = ["format_summary", "history_sink", "log_report", "report_to_json", "summarize"]
