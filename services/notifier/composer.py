"""
Message composition for resource change notifications.

The composer renders one channel-agnostic body per cycle. It performs no I/O
and degrades instead of failing: an unrecognized change reason becomes the
generic "content updated" phrase, missing resource fields become
placeholders. The only non-deterministic input is the timestamp, which is
the wall clock at call time unless the caller passes one explicitly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import ChangeCategory, ChangeEvent, Resource

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT_TEMPLATE = "Website update detected - {resource_name}"
DEFAULT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S %Z"
FINGERPRINT_PREVIEW_LENGTH = 12

CATEGORY_PHRASES: dict[ChangeCategory, str] = {
    ChangeCategory.CONTENT_CHANGED: "Page content has changed",
    ChangeCategory.KEYWORD_APPEARED: "New keywords were detected",
    ChangeCategory.KEYWORD_DISAPPEARED: "Keywords were removed",
    ChangeCategory.UNKNOWN: "Content has been updated",
}

# Reason fragments emitted by the change detectors (English and Japanese).
# Order matters: "keywords appeared" must win over a generic "changed".
_REASON_MARKERS: list[tuple[ChangeCategory, tuple[str, ...]]] = [
    (
        ChangeCategory.KEYWORD_APPEARED,
        ("keywords appeared", "keyword appeared", "new keyword", "新しいキーワードが検出されました"),
    ),
    (
        ChangeCategory.KEYWORD_DISAPPEARED,
        ("keywords disappeared", "keyword disappeared", "keyword removed", "keywords removed",
         "キーワードが削除されました"),
    ),
    (
        ChangeCategory.CONTENT_CHANGED,
        ("content changed", "compared to previous snapshot", "content has changed",
         "以前のスナップショットと比較して内容が変更されました"),
    ),
]


def classify_reason(reason: Any) -> ChangeCategory:
    """Map free-text detector output to a `ChangeCategory`."""
    if not isinstance(reason, str) or not reason.strip():
        return ChangeCategory.UNKNOWN
    lowered = reason.lower()
    for category, markers in _REASON_MARKERS:
        if any(marker in lowered for marker in markers):
            return category
    return ChangeCategory.UNKNOWN


def _resolve_timezone(name: Optional[str]) -> Any:
    if not name:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return timezone.utc


def _preview(fingerprint: Optional[str]) -> str:
    if not fingerprint:
        return "-"
    return str(fingerprint)[:FINGERPRINT_PREVIEW_LENGTH]


class MessageComposer:
    """
    Renders notification subjects and bodies.

    Args:
        subject_template: `str.format` template; `{resource_name}` and
            `{resource_url}` are available.
        timestamp_format: `strftime` format for the detection time line.
        tz_name: IANA timezone for the rendered timestamp (default UTC).
        clock: Callable returning the current aware datetime. Tests pass a
            fixed clock to get byte-identical output.
    """

    def __init__(
        self,
        subject_template: str = DEFAULT_SUBJECT_TEMPLATE,
        timestamp_format: str = DEFAULT_TIMESTAMP_FORMAT,
        tz_name: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.subject_template = subject_template
        self.timestamp_format = timestamp_format
        self.tz = _resolve_timezone(tz_name)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def compose(
        self,
        resource: Resource,
        change_event: ChangeEvent,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Render the notification body.

        The timestamp is `now` if given, else the clock at call time;
        `change_event.detected_at` is not used. Changing only
        `change_event.reason` changes only the category line; the raw reason
        text is never embedded.
        """
        category = classify_reason(getattr(change_event, "reason", None))
        name = getattr(resource, "name", None) or "(unnamed site)"
        url = getattr(resource, "url", None) or "-"

        lines = [
            "Website update detected!",
            "",
            f"Site: {name}",
            f"URL: {url}",
            f"Change: {CATEGORY_PHRASES[category]}",
            f"Detected at: {self._format_timestamp(now)}",
        ]

        previous = getattr(change_event, "previous_fingerprint", None)
        current = getattr(change_event, "current_fingerprint", None)
        if previous or current:
            lines.append(f"Snapshot: {_preview(previous)} -> {_preview(current)}")

        lines.extend(
            [
                "",
                "A website you are monitoring has been updated. Please check the latest content.",
                "This notification was sent automatically by the website monitoring system.",
            ]
        )
        return "\n".join(lines)

    def compose_subject(self, resource: Resource) -> str:
        name = getattr(resource, "name", None) or "(unnamed site)"
        url = getattr(resource, "url", None) or ""
        try:
            return self.subject_template.format(resource_name=name, resource_url=url)
        except (KeyError, IndexError, ValueError):
            logger.warning(
                "Invalid subject template, using default",
                extra={"subject_template": self.subject_template},
            )
            return DEFAULT_SUBJECT_TEMPLATE.format(resource_name=name)

    def _format_timestamp(self, now: Optional[datetime]) -> str:
        moment = now or self._clock()
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        try:
            return moment.astimezone(self.tz).strftime(self.timestamp_format)
        except ValueError:
            return moment.astimezone(self.tz).isoformat()


__all__ = ["CATEGORY_PHRASES", "MessageComposer", "classify_reason"]
