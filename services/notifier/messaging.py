"""
Push-messaging channel (LINE Messaging API).

`LineMessagingClient` is the transport: one HTTP push per recipient, with
its own retry policy for transient provider errors. `MessagingSender` is the
engine-facing adapter: it appends the channel footer, enforces the provider's
text limit, and classifies known provider error texts.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Optional, Protocol

import requests

from services.common.retry import retry_with_backoff

from .base import ChannelSender, ChannelTransportError
from .models import Channel, ErrorCategory, NotificationMessage

logger = logging.getLogger(__name__)

# Constants
API_TIMEOUT_SECONDS = 10
DEFAULT_BASE_URL = "https://api.line.me"
PUSH_ENDPOINT = "/v2/bot/message/push"
MAX_TEXT_LENGTH = 5000
NON_RETRYABLE_STATUSES = {400, 401, 403, 404}

# Provider texts meaning the user has not authorized messages from the account
# (never added it as a friend, or blocked it).
DEFAULT_NOT_OPTED_IN_PATTERNS: tuple[str, ...] = (
    "not-opted-in",
    "not opted in",
    "hasn't added",
    "has not added",
    "not a friend",
    "not friends",
    "blocked the account",
    "has blocked",
    "unfollowed",
)


class MessagingClient(Protocol):
    """Transport-level push-messaging client consumed by `MessagingSender`."""

    def push(self, to_address: str, text: str) -> None:
        """Push one text message. Raise `ChannelTransportError` on failure."""


def _extract_error_text(response: requests.Response) -> str:
    """Pull the provider's diagnostic out of an error response body."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if not isinstance(data, dict):
        return str(data)[:200]

    parts = [str(data.get("message") or "")]
    for item in data.get("details") or []:
        if isinstance(item, dict) and item.get("message"):
            parts.append(str(item["message"]))
    text = "; ".join(p for p in parts if p)
    return text or response.text[:200]


class LineMessagingClient:
    """
    Client for the LINE Messaging API push endpoint.

    Args:
        access_token: Channel access token (Bearer).
        base_url: API base URL (default: https://api.line.me)
        timeout: Per-request timeout in seconds.
        max_retries: Retries for connection errors, timeouts, 429 and 5xx.
            400/401/403/404 are never retried.
        retry_initial_delay: First backoff delay in seconds.
    """

    thread_safe = True

    def __init__(
        self,
        access_token: Optional[str],
        base_url: Optional[str] = None,
        timeout: float = API_TIMEOUT_SECONDS,
        max_retries: int = 2,
        retry_initial_delay: float = 1.0,
    ):
        if not access_token:
            raise ValueError("MESSAGING_ACCESS_TOKEN must be set in environment or passed as parameter")

        self.access_token = access_token
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.push = retry_with_backoff(
            max_retries=max_retries,
            initial_delay=retry_initial_delay,
            backoff_factor=2.0,
            max_delay=5.0,
            jitter=0.25 if retry_initial_delay > 0 else 0.0,
            exceptions=(ChannelTransportError,),
            should_retry=lambda exc: getattr(exc, "retryable", False),
        )(self._push_once)

    def _push_once(self, to_address: str, text: str) -> None:
        url = f"{self.base_url}{PUSH_ENDPOINT}"
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        payload: dict[str, Any] = {
            "to": to_address,
            "messages": [{"type": "text", "text": text}],
        }

        try:
            response = requests.post(url, headers=headers, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            raise ChannelTransportError(f"Messaging API timeout: {exc}", retryable=True) from exc
        except requests.exceptions.RequestException as exc:
            raise ChannelTransportError(f"Messaging API request failed: {exc}", retryable=True) from exc

        if response.status_code < 400:
            return

        error_text = _extract_error_text(response)
        if response.status_code == 401:
            logger.error("Invalid messaging access token - check MESSAGING_ACCESS_TOKEN")
        raise ChannelTransportError(
            f"Messaging API error ({response.status_code}): {error_text}",
            detail=error_text,
            status_code=response.status_code,
            retryable=response.status_code == 429 or response.status_code >= 500,
        )


class MessagingSender(ChannelSender):
    """
    Push-messaging variant of `ChannelSender`.

    Args:
        client: A `MessagingClient`.
        footer: Optional text appended to every message (e.g. a friend-add link).
        not_opted_in_patterns: Case-insensitive fragments of provider error
            text that mean the recipient has not authorized this channel.
    """

    channel = Channel.MESSAGING

    def __init__(
        self,
        client: MessagingClient,
        footer: Optional[str] = None,
        not_opted_in_patterns: Optional[Sequence[str]] = None,
    ):
        super().__init__(client)
        self.footer = footer
        patterns = not_opted_in_patterns if not_opted_in_patterns is not None else DEFAULT_NOT_OPTED_IN_PATTERNS
        self.not_opted_in_patterns = tuple(p.lower() for p in patterns)

    def format_text(self, message: NotificationMessage) -> str:
        text = message.text
        if self.footer:
            text = f"{text}\n\n{self.footer}"
        if len(text) > MAX_TEXT_LENGTH:
            text = text[: MAX_TEXT_LENGTH - 1] + "…"
        return text

    def _deliver(self, address: str, message: NotificationMessage) -> None:
        self.client.push(address, self.format_text(message))

    def classify_error(self, error: Exception) -> ErrorCategory:
        text = " ".join(str(part) for part in (getattr(error, "detail", None), error) if part).lower()
        if any(pattern in text for pattern in self.not_opted_in_patterns):
            return ErrorCategory.RECIPIENT_NOT_OPTED_IN
        return ErrorCategory.TRANSPORT_FAILURE


__all__ = [
    "DEFAULT_NOT_OPTED_IN_PATTERNS",
    "LineMessagingClient",
    "MessagingClient",
    "MessagingSender",
]
