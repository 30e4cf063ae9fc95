from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import nullcontext
from typing import Any, Optional

from .models import Channel, DeliveryOutcome, ErrorCategory, NotificationMessage
from .validation import mask_address

logger = logging.getLogger(__name__)


class ChannelTransportError(Exception):
    """
    Raised by channel clients when the provider or network rejects a send.

    `detail` is the provider-supplied diagnostic text (if any), `status_code`
    the HTTP status for HTTP-based providers. `retryable` tells the client's
    own retry policy whether another attempt makes sense.
    """

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.detail = detail or message
        self.status_code = status_code
        self.retryable = retryable


class ChannelSender(ABC):
    """
    Sends one composed message to one validated address over one channel.

    Subclasses implement `_deliver`, which talks to the channel client and may
    raise anything. `send` wraps it so that no exception escapes: every
    failure becomes a failed `DeliveryOutcome` carrying an error category.

    If the wrapped client declares ``thread_safe = False``, calls to it are
    serialized with a lock owned by this sender. Other senders are unaffected.

    Usage:
        class EmailSender(ChannelSender):
            channel = Channel.EMAIL

            def _deliver(self, address, message):
                self.client.send(address, message.subject, message.text)
    """

    channel: Channel

    def __init__(self, client: Any):
        self.client = client
        thread_safe = getattr(client, "thread_safe", True)
        self._lock = nullcontext() if thread_safe else threading.Lock()

    def send(self, address: str, message: NotificationMessage) -> DeliveryOutcome:
        """
        Deliver `message` to an already-validated `address`.

        Returns:
            DeliveryOutcome: delivered, or failed with an `ErrorCategory` and
                the provider diagnostic string.
        """
        try:
            with self._lock:
                self._deliver(address, message)
        except Exception as e:
            category = self.classify_error(e)
            detail = getattr(e, "detail", None) or str(e) or type(e).__name__
            logger.warning(
                "%s delivery failed",
                self.channel.value,
                extra={
                    "channel": self.channel.value,
                    "address": mask_address(address),
                    "error_category": category.value,
                    "error_type": type(e).__name__,
                    "error": detail,
                },
            )
            return DeliveryOutcome.failed(category, detail)

        logger.debug(
            "%s delivered",
            self.channel.value,
            extra={"channel": self.channel.value, "address": mask_address(address)},
        )
        return DeliveryOutcome.delivered()

    @abstractmethod
    def _deliver(self, address: str, message: NotificationMessage) -> None:
        """Hand the message to the channel client. Raise on failure."""

    def classify_error(self, error: Exception) -> ErrorCategory:
        """Map a transport exception to an error category."""
        return ErrorCategory.TRANSPORT_FAILURE

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(client={self.client.__class__.__name__})"


__all__ = ["ChannelSender", "ChannelTransportError"]
