"""
Notification fan-out and delivery.

`NotificationOrchestrator` is the entry point callers use. One cycle:

1. Look up the resource. Missing -> report with status resource-not-found,
   no sends attempted.
2. Resolve recipients. None -> report with status no-recipients.
3. Compose one message shared by every recipient and channel.
4. Dispatch every eligible (recipient, channel) pair as an independent unit
   of work on a bounded thread pool. Each pair validates its address first
   and is skipped without a network call when the address is unusable.
5. Aggregate into a `NotificationReport`, in resolution order.

Per-recipient problems never raise; they are captured in the report. Report
sinks (logging, persistence) are called with the finished report.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

from .base import ChannelSender
from .composer import MessageComposer, classify_reason
from .models import (
    Channel,
    ChangeEvent,
    DeliveryOutcome,
    ErrorCategory,
    NotificationMessage,
    NotificationReport,
    Recipient,
    RecipientOutcome,
    ReportStatus,
    Resource,
    ResourceNotFoundError,
)
from .resolver import RecipientResolver
from .validation import AddressValidator, default_validators, mask_address

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8
CHANNEL_ORDER: tuple[Channel, ...] = (Channel.EMAIL, Channel.MESSAGING)

ReportSink = Callable[[NotificationReport], None]


@dataclass(frozen=True)
class _DispatchTask:
    slot: int
    recipient: Recipient
    channel: Channel
    address: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationOrchestrator:
    """
    Coordinates resolution, composition, dispatch and aggregation.

    Args:
        resolver: Source of resources and recipients.
        composer: Renders the shared message body.
        senders: One `ChannelSender` per channel. A channel without a sender
            is treated as unavailable for every recipient.
        validators: Address validator per channel (defaults: email sanity
            check, messaging prefix/length check).
        max_workers: Upper bound on concurrent sends.
        timeout: Default cycle timeout in seconds, or None for no limit.
        report_sinks: Callables invoked with every finished report.
    """

    def __init__(
        self,
        resolver: RecipientResolver,
        composer: MessageComposer,
        senders: Mapping[Channel, ChannelSender],
        validators: Optional[Mapping[Channel, AddressValidator]] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        timeout: Optional[float] = None,
        report_sinks: Sequence[ReportSink] = (),
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.resolver = resolver
        self.composer = composer
        self.senders = dict(senders)
        self.validators = dict(validators) if validators is not None else default_validators()
        self.max_workers = max_workers
        self.timeout = timeout
        self.report_sinks = list(report_sinks)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def notify_resource_change(
        self,
        resource_id: Any,
        change_event: ChangeEvent,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> NotificationReport:
        """
        Run one notification cycle for a changed resource.

        Args:
            resource_id: Resource whose watchers should be notified.
            change_event: What changed.
            cancel_event: Set it to stop starting new dispatches. In-flight
                sends finish; unstarted ones are reported as cancelled.
            timeout: Seconds for the whole cycle (overrides the default).
                On expiry the cycle behaves as if cancelled.

        Returns:
            NotificationReport. Only a missing resource yields a
            resource-not-found report; everything else is per recipient.
        """
        started_at = _utcnow()
        deadline = self._deadline(timeout)

        try:
            resource = self.resolver.lookup_resource(resource_id)
        except ResourceNotFoundError:
            logger.warning("Resource not found, no notifications sent", extra={"resource_id": resource_id})
            report = NotificationReport(
                resource_id=resource_id,
                status=ReportStatus.RESOURCE_NOT_FOUND,
                started_at=started_at,
                finished_at=_utcnow(),
            )
            return self._publish(report)

        recipients = self.resolver.recipients_for(resource)
        if not recipients:
            report = NotificationReport(
                resource_id=resource.id,
                resource_name=resource.name,
                status=ReportStatus.NO_RECIPIENTS,
                started_at=started_at,
                finished_at=_utcnow(),
            )
            return self._publish(report)

        message = self.build_message(resource, change_event)
        cancel_event = cancel_event or threading.Event()
        outcomes = self._dispatch_all(recipients, message, cancel_event, deadline)

        report = self._aggregate(resource, outcomes, cancelled=cancel_event.is_set())
        report.started_at = started_at
        report.message = message.text
        return self._publish(report)

    def notify_recipient(
        self,
        recipient: Recipient,
        message: Union[NotificationMessage, str],
        cancel_event: Optional[threading.Event] = None,
    ) -> dict[Channel, Optional[DeliveryOutcome]]:
        """
        Deliver `message` to a single recipient on every enabled channel.

        Used for targeted re-delivery. Channels that were not eligible map
        to None.
        """
        if isinstance(message, str):
            message = NotificationMessage(subject=self.composer.compose_subject(None), text=message)
        outcome = self._dispatch_all(
            [recipient], message, cancel_event or threading.Event(), self._deadline(None)
        )[0]
        return {channel: outcome.outcome_for(channel) for channel in CHANNEL_ORDER}

    def notify_user(
        self,
        resource_id: Any,
        user_id: Any,
        change_event: ChangeEvent,
    ) -> NotificationReport:
        """
        Re-deliver a resource change notification to one user.

        The user does not have to be a current subscriber of the resource.
        An unknown or inactive user produces a no-recipients report.
        """
        started_at = _utcnow()
        try:
            resource = self.resolver.lookup_resource(resource_id)
        except ResourceNotFoundError:
            report = NotificationReport(
                resource_id=resource_id,
                status=ReportStatus.RESOURCE_NOT_FOUND,
                started_at=started_at,
                finished_at=_utcnow(),
            )
            return self._publish(report)

        recipient = self.resolver.resolve_user(user_id)
        if recipient is None:
            logger.warning("User not found or inactive", extra={"user_id": user_id})
            report = NotificationReport(
                resource_id=resource.id,
                resource_name=resource.name,
                status=ReportStatus.NO_RECIPIENTS,
                started_at=started_at,
                finished_at=_utcnow(),
            )
            return self._publish(report)

        message = self.build_message(resource, change_event)
        outcomes = self._dispatch_all([recipient], message, threading.Event(), self._deadline(None))
        report = self._aggregate(resource, outcomes, cancelled=False)
        report.started_at = started_at
        report.message = message.text
        return self._publish(report)

    def build_message(self, resource: Resource, change_event: ChangeEvent) -> NotificationMessage:
        category = classify_reason(change_event.reason)
        return NotificationMessage(
            subject=self.composer.compose_subject(resource),
            text=self.composer.compose(resource, change_event),
            metadata={
                "resource_id": resource.id,
                "change_category": category.value,
                "previous_fingerprint": change_event.previous_fingerprint,
                "current_fingerprint": change_event.current_fingerprint,
            },
        )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _deadline(self, timeout: Optional[float]) -> Optional[float]:
        effective = timeout if timeout is not None else self.timeout
        return time.monotonic() + effective if effective is not None else None

    def _eligible_address(self, recipient: Recipient, channel: Channel) -> Optional[str]:
        """Address for `channel`, or None when the pair is NOT_ELIGIBLE."""
        if channel not in self.senders or not recipient.is_enabled(channel):
            return None
        address = recipient.address_for(channel)
        if address is None or address == "":
            return None
        return address

    def _dispatch_all(
        self,
        recipients: Sequence[Recipient],
        message: NotificationMessage,
        cancel_event: threading.Event,
        deadline: Optional[float],
    ) -> list[RecipientOutcome]:
        # One pre-sized slot per (recipient, channel); each is written only by
        # the task that owns it, so no locking is needed.
        slots: list[list[Optional[DeliveryOutcome]]] = [[None] * len(CHANNEL_ORDER) for _ in recipients]
        tasks = []
        for index, recipient in enumerate(recipients):
            for channel in CHANNEL_ORDER:
                address = self._eligible_address(recipient, channel)
                if address is not None:
                    tasks.append(_DispatchTask(index, recipient, channel, address))

        if tasks:
            self._run_tasks(tasks, slots, message, cancel_event, deadline)

        results = []
        eligible = {(task.slot, task.channel) for task in tasks}
        for index, recipient in enumerate(recipients):
            outcome = RecipientOutcome(user_id=recipient.user_id)
            for position, channel in enumerate(CHANNEL_ORDER):
                delivery = slots[index][position]
                if delivery is None and (index, channel) in eligible:
                    delivery = DeliveryOutcome.cancelled()
                if channel is Channel.EMAIL:
                    outcome.email = delivery
                else:
                    outcome.messaging = delivery

            channel_results = outcome.channel_outcomes().values()
            if not channel_results:
                outcome.error_category = ErrorCategory.NO_CHANNEL_ENABLED
            elif all(d.error_category is ErrorCategory.CANCELLED for d in channel_results):
                outcome.error_category = ErrorCategory.CANCELLED
            results.append(outcome)
        return results

    def _run_tasks(
        self,
        tasks: Sequence[_DispatchTask],
        slots: list[list[Optional[DeliveryOutcome]]],
        message: NotificationMessage,
        cancel_event: threading.Event,
        deadline: Optional[float],
    ) -> None:
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(tasks)),
            thread_name_prefix="notifier",
        )
        try:
            futures = [executor.submit(self._run_task, task, slots, message, cancel_event) for task in tasks]
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            _, not_done = wait(futures, timeout=remaining)
            if not_done:
                logger.warning(
                    "Notification cycle timed out, cancelling remaining dispatches",
                    extra={"pending": len(not_done), "total": len(futures)},
                )
                cancel_event.set()
        except KeyboardInterrupt:
            cancel_event.set()
            raise
        finally:
            # In-flight sends complete; queued ones never start.
            executor.shutdown(wait=True, cancel_futures=True)

    def _run_task(
        self,
        task: _DispatchTask,
        slots: list[list[Optional[DeliveryOutcome]]],
        message: NotificationMessage,
        cancel_event: threading.Event,
    ) -> None:
        try:
            outcome = self._dispatch(task.recipient, task.channel, task.address, message, cancel_event)
        except Exception as e:
            logger.exception(
                "Dispatch failed unexpectedly",
                extra={"user_id": task.recipient.user_id, "channel": task.channel.value},
            )
            outcome = DeliveryOutcome.failed(ErrorCategory.TRANSPORT_FAILURE, str(e) or type(e).__name__)
        slots[task.slot][CHANNEL_ORDER.index(task.channel)] = outcome

    def _dispatch(
        self,
        recipient: Recipient,
        channel: Channel,
        address: str,
        message: NotificationMessage,
        cancel_event: threading.Event,
    ) -> DeliveryOutcome:
        """VALIDATING -> {SKIPPED | SENDING -> {DELIVERED | FAILED}} for one pair."""
        if cancel_event.is_set():
            return DeliveryOutcome.cancelled()

        validator = self.validators.get(channel)
        if validator is not None:
            verdict = validator(address)
            if not verdict.is_valid:
                reason = verdict.reason.value if verdict.reason else verdict.status.value
                logger.warning(
                    "Skipping %s dispatch: invalid address",
                    channel.value,
                    extra={
                        "user_id": recipient.user_id,
                        "channel": channel.value,
                        "address": mask_address(address),
                        "reason": reason,
                    },
                )
                return DeliveryOutcome.skipped(reason)
            address = verdict.normalized_address or address

        logger.debug(
            "Dispatching %s notification",
            channel.value,
            extra={"user_id": recipient.user_id, "channel": channel.value},
        )
        sender = self.senders[channel]
        try:
            return sender.send(address, message)
        except Exception as e:
            # ChannelSender.send converts its own errors; this guards third-party senders.
            logger.exception(
                "Sender raised instead of returning an outcome",
                extra={"user_id": recipient.user_id, "channel": channel.value},
            )
            return DeliveryOutcome.failed(ErrorCategory.TRANSPORT_FAILURE, str(e) or type(e).__name__)

    # ------------------------------------------------------------------
    # Aggregation and publishing
    # ------------------------------------------------------------------

    def _aggregate(
        self,
        resource: Resource,
        outcomes: list[RecipientOutcome],
        cancelled: bool,
    ) -> NotificationReport:
        succeeded = sum(1 for outcome in outcomes if outcome.success)
        return NotificationReport(
            resource_id=resource.id,
            resource_name=resource.name,
            status=ReportStatus.COMPLETED,
            total_recipients=len(outcomes),
            succeeded=succeeded,
            failed=len(outcomes) - succeeded,
            recipients=outcomes,
            cancelled=cancelled,
            finished_at=_utcnow(),
        )

    def _publish(self, report: NotificationReport) -> NotificationReport:
        for sink in self.report_sinks:
            try:
                sink(report)
            except Exception:
                logger.exception(
                    "Report sink failed",
                    extra={"sink": getattr(sink, "__name__", repr(sink)), "resource_id": report.resource_id},
                )
        return report


__all__ = ["CHANNEL_ORDER", "NotificationOrchestrator", "ReportSink"]
