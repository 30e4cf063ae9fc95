"""
Data model for a single notification cycle.

Everything here is constructed at the start of a cycle and discarded at its
end. Nothing is cached between cycles; the returned `NotificationReport` is
the only artifact that outlives the call.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Channel(str, Enum):
    """Delivery channels supported by the engine."""

    EMAIL = "email"
    MESSAGING = "messaging"


class ChangeCategory(str, Enum):
    """Human-classifiable kinds of resource change."""

    CONTENT_CHANGED = "content-changed"
    KEYWORD_APPEARED = "keyword-appeared"
    KEYWORD_DISAPPEARED = "keyword-disappeared"
    UNKNOWN = "unknown"


class InvalidReason(str, Enum):
    # MALFORMED is only produced by the email check (missing or extra "@").
    EMPTY = "empty"
    WRONG_PREFIX = "wrong-prefix"
    TOO_SHORT = "too-short"
    CONTAINS_WHITESPACE = "contains-whitespace"
    MALFORMED = "malformed"


class ValidityStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    NOT_CONFIGURED = "not-configured"


class ErrorCategory(str, Enum):
    """Per-recipient, per-channel failure classification."""

    SKIPPED_INVALID_ADDRESS = "skipped-invalid-address"
    NO_CHANNEL_ENABLED = "no-channel-enabled"
    RECIPIENT_NOT_OPTED_IN = "recipient-not-opted-in"
    TRANSPORT_FAILURE = "transport-failure"
    CANCELLED = "cancelled"


class DispatchState(str, Enum):
    """
    States of a single (recipient, channel) dispatch.

    NOT_ELIGIBLE -> VALIDATING -> {SKIPPED | SENDING -> {DELIVERED | FAILED}}
    """

    NOT_ELIGIBLE = "not-eligible"
    VALIDATING = "validating"
    SKIPPED = "skipped"
    SENDING = "sending"
    DELIVERED = "delivered"
    FAILED = "failed"


class ReportStatus(str, Enum):
    COMPLETED = "completed"
    NO_RECIPIENTS = "no-recipients"
    RESOURCE_NOT_FOUND = "resource-not-found"


class ResourceNotFoundError(Exception):
    """Raised when a notification cycle targets a resource that does not exist."""

    def __init__(self, resource_id: Any):
        super().__init__(f"Resource not found: {resource_id}")
        self.resource_id = resource_id


@dataclass(frozen=True)
class Resource:
    """A monitored resource (e.g. a website) as seen by the notifier."""

    id: Any
    name: str
    url: str


@dataclass(frozen=True)
class ChangeEvent:
    """
    A detected change on a resource.

    `reason` is free text from the change detector. The fingerprints are only
    used as message context; deduplication happens outside this engine.
    """

    resource_id: Any
    reason: Optional[str] = None
    previous_fingerprint: Optional[str] = None
    current_fingerprint: Optional[str] = None
    detected_at: Optional[datetime] = None


@dataclass(frozen=True)
class Recipient:
    """An active user subscribed to a resource, with per-channel settings."""

    user_id: Any
    email: Optional[str] = None
    messaging_address: Optional[str] = None
    email_enabled: bool = True
    messaging_enabled: bool = False

    def is_enabled(self, channel: Channel) -> bool:
        if channel is Channel.EMAIL:
            return self.email_enabled
        return self.messaging_enabled

    def address_for(self, channel: Channel) -> Optional[str]:
        if channel is Channel.EMAIL:
            return self.email
        return self.messaging_address


@dataclass(frozen=True)
class ChannelAddressValidity:
    """Verdict of a channel address check. Exactly one of three shapes."""

    status: ValidityStatus
    normalized_address: Optional[str] = None
    reason: Optional[InvalidReason] = None

    @classmethod
    def valid(cls, normalized_address: str) -> "ChannelAddressValidity":
        return cls(ValidityStatus.VALID, normalized_address=normalized_address)

    @classmethod
    def invalid(cls, reason: InvalidReason) -> "ChannelAddressValidity":
        return cls(ValidityStatus.INVALID, reason=reason)

    @classmethod
    def not_configured(cls) -> "ChannelAddressValidity":
        return cls(ValidityStatus.NOT_CONFIGURED)

    @property
    def is_valid(self) -> bool:
        return self.status is ValidityStatus.VALID


@dataclass
class NotificationMessage:
    """
    A structured notification message handed to channel senders.

    `text` is the channel-agnostic body produced by the composer. `subject`
    is used by channels that support it (email). `metadata` carries context
    such as the resource id and change category.
    """

    subject: str
    text: str
    html: Optional[str] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of one (recipient, channel) dispatch."""

    success: bool
    state: DispatchState
    error_category: Optional[ErrorCategory] = None
    detail: Optional[str] = None

    @classmethod
    def delivered(cls) -> "DeliveryOutcome":
        return cls(True, DispatchState.DELIVERED)

    @classmethod
    def failed(cls, category: ErrorCategory, detail: Optional[str] = None) -> "DeliveryOutcome":
        return cls(False, DispatchState.FAILED, category, detail)

    @classmethod
    def skipped(cls, detail: Optional[str] = None) -> "DeliveryOutcome":
        return cls(False, DispatchState.SKIPPED, ErrorCategory.SKIPPED_INVALID_ADDRESS, detail)

    @classmethod
    def cancelled(cls) -> "DeliveryOutcome":
        return cls(False, DispatchState.SKIPPED, ErrorCategory.CANCELLED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "state": self.state.value,
            "error_category": self.error_category.value if self.error_category else None,
            "detail": self.detail,
        }


@dataclass
class RecipientOutcome:
    """All channel outcomes for one recipient in a cycle."""

    user_id: Any
    email: Optional[DeliveryOutcome] = None
    messaging: Optional[DeliveryOutcome] = None
    error_category: Optional[ErrorCategory] = None

    @property
    def success(self) -> bool:
        return any(o is not None and o.success for o in (self.email, self.messaging))

    def outcome_for(self, channel: Channel) -> Optional[DeliveryOutcome]:
        return self.email if channel is Channel.EMAIL else self.messaging

    def channel_outcomes(self) -> dict[Channel, DeliveryOutcome]:
        outcomes = {}
        if self.email is not None:
            outcomes[Channel.EMAIL] = self.email
        if self.messaging is not None:
            outcomes[Channel.MESSAGING] = self.messaging
        return outcomes

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "success": self.success,
            "error_category": self.error_category.value if self.error_category else None,
            "email": self.email.to_dict() if self.email else None,
            "messaging": self.messaging.to_dict() if self.messaging else None,
        }


@dataclass
class NotificationReport:
    """
    Aggregated outcome of one notification cycle.

    `succeeded` counts recipients with at least one delivered channel,
    `failed` counts the rest. Both are exposed so callers pick their own
    health threshold (`any_succeeded` vs `all_failed`).
    """

    resource_id: Any
    status: ReportStatus = ReportStatus.COMPLETED
    total_recipients: int = 0
    succeeded: int = 0
    failed: int = 0
    recipients: list[RecipientOutcome] = field(default_factory=list)
    cancelled: bool = False
    resource_name: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    message: Optional[str] = None

    @property
    def resource_not_found(self) -> bool:
        return self.status is ReportStatus.RESOURCE_NOT_FOUND

    @property
    def no_recipients(self) -> bool:
        return self.status is ReportStatus.NO_RECIPIENTS

    @property
    def any_succeeded(self) -> bool:
        return self.succeeded > 0

    @property
    def all_failed(self) -> bool:
        return self.total_recipients > 0 and self.succeeded == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "status": self.status.value,
            "cancelled": self.cancelled,
            "total_recipients": self.total_recipients,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "recipients": [r.to_dict() for r in self.recipients],
            "message": self.message,
        }
