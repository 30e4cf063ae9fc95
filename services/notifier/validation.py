"""
Channel address validation.

Validators run before any send is attempted and return a
`ChannelAddressValidity` verdict. They are total: every input, including
None and non-string garbage, maps to exactly one verdict and nothing raises.

Absence (None or "") is NOT_CONFIGURED, which is not an error. A value that is
present but unusable is INVALID with a reason code.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from .models import Channel, ChannelAddressValidity, InvalidReason

logger = logging.getLogger(__name__)

# Push-messaging user ids look like "U" followed by 32 hex characters.
DEFAULT_MESSAGING_PREFIX = "U"
DEFAULT_MESSAGING_MIN_LENGTH = 30

AddressValidator = Callable[[Any], ChannelAddressValidity]


def _has_inner_whitespace(value: str) -> bool:
    return any(ch.isspace() for ch in value)


def validate_email_address(raw_address: Any) -> ChannelAddressValidity:
    """
    Minimal sanity check for an email address.

    Catches obviously broken data (missing or doubled "@", empty local or
    domain part, embedded whitespace). It is not an RFC 5322 parser.
    """
    if raw_address is None or not isinstance(raw_address, str) or raw_address == "":
        return ChannelAddressValidity.not_configured()

    address = raw_address.strip()
    if not address:
        return ChannelAddressValidity.invalid(InvalidReason.EMPTY)
    if _has_inner_whitespace(address):
        return ChannelAddressValidity.invalid(InvalidReason.CONTAINS_WHITESPACE)

    local, sep, domain = address.partition("@")
    # MALFORMED is only produced for the email channel.
    if not sep or "@" in domain or not local or not domain:
        return ChannelAddressValidity.invalid(InvalidReason.MALFORMED)
    return ChannelAddressValidity.valid(address)


class MessagingAddressValidator:
    """
    Validator for push-messaging user ids.

    Rules, applied in order after the NOT_CONFIGURED check:
      1. whitespace-only            -> INVALID(empty)
      2. whitespace inside the id   -> INVALID(contains-whitespace)
         (leading/trailing whitespace is trimmed and tolerated)
      3. trimmed id lacks prefix    -> INVALID(wrong-prefix)
      4. trimmed length < minimum   -> INVALID(too-short)
    """

    def __init__(
        self,
        prefix: str = DEFAULT_MESSAGING_PREFIX,
        min_length: int = DEFAULT_MESSAGING_MIN_LENGTH,
    ):
        self.prefix = prefix
        self.min_length = min_length

    def __call__(self, raw_address: Any) -> ChannelAddressValidity:
        return self.validate(raw_address)

    def validate(self, raw_address: Any) -> ChannelAddressValidity:
        if raw_address is None or not isinstance(raw_address, str) or raw_address == "":
            return ChannelAddressValidity.not_configured()

        address = raw_address.strip()
        if not address:
            return ChannelAddressValidity.invalid(InvalidReason.EMPTY)
        if _has_inner_whitespace(address):
            return ChannelAddressValidity.invalid(InvalidReason.CONTAINS_WHITESPACE)
        if not address.startswith(self.prefix):
            return ChannelAddressValidity.invalid(InvalidReason.WRONG_PREFIX)
        if len(address) < self.min_length:
            return ChannelAddressValidity.invalid(InvalidReason.TOO_SHORT)
        return ChannelAddressValidity.valid(address)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(prefix={self.prefix!r}, min_length={self.min_length})"


def default_validators() -> dict[Channel, AddressValidator]:
    return {
        Channel.EMAIL: validate_email_address,
        Channel.MESSAGING: MessagingAddressValidator(),
    }


def mask_address(address: Any) -> str:
    """Shorten an address for log output (``a***@example.com``, ``U3c48…cff3``)."""
    if not isinstance(address, str) or not address:
        return "<none>"
    if "@" in address:
        local, _, domain = address.partition("@")
        return f"{local[:1]}***@{domain}"
    if len(address) <= 10:
        return address[:2] + "…"
    return f"{address[:5]}…{address[-4:]}"


__all__ = [
    "AddressValidator",
    "MessagingAddressValidator",
    "default_validators",
    "mask_address",
    "validate_email_address",
]
