"""
Recipient resolution.

Turns a resource id into the ordered list of active subscribers, each with
per-channel enablement and addresses. Results are read fresh from the store
on every call and never cached.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Optional, Protocol

from .models import Recipient, Resource, ResourceNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_EMAIL_ENABLED = True
DEFAULT_MESSAGING_ENABLED = False


class RecipientStore(Protocol):
    """Read-only queries the resolver needs. `NotifierDB` implements this."""

    def get_resource(self, resource_id: Any) -> Optional[Mapping[str, Any]]:
        ...

    def fetch_recipient_rows(self, resource_id: Any) -> Sequence[Mapping[str, Any]]:
        ...

    def fetch_recipient_by_user(self, user_id: Any) -> Optional[Mapping[str, Any]]:
        ...


def _flag(value: Any, default: bool) -> bool:
    if value is None:
        return default
    return bool(value)


def recipient_from_row(row: Mapping[str, Any]) -> Recipient:
    """Build a `Recipient` from a store row, applying channel defaults for unset flags."""
    return Recipient(
        user_id=row.get("user_id"),
        email=row.get("email") or None,
        messaging_address=row.get("messaging_address") or None,
        email_enabled=_flag(row.get("email_enabled"), DEFAULT_EMAIL_ENABLED),
        messaging_enabled=_flag(row.get("messaging_enabled"), DEFAULT_MESSAGING_ENABLED),
    )


class RecipientResolver:
    """Resolves resources and their subscribers from a `RecipientStore`."""

    def __init__(self, store: RecipientStore):
        self.store = store

    def lookup_resource(self, resource_id: Any) -> Resource:
        """
        Raises:
            ResourceNotFoundError: If the store has no such resource.
        """
        row = self.store.get_resource(resource_id)
        if not row:
            raise ResourceNotFoundError(resource_id)
        return Resource(
            id=row.get("id", resource_id),
            name=row.get("name") or "",
            url=row.get("url") or "",
        )

    def resolve(self, resource_id: Any) -> list[Recipient]:
        """
        Return active subscribers of `resource_id` in subscription order.

        An empty list means nobody is watching. A missing resource raises
        `ResourceNotFoundError` instead, so the two cases stay distinct.
        Duplicate rows for the same user keep their first position.
        """
        return self.recipients_for(self.lookup_resource(resource_id))

    def recipients_for(self, resource: Resource) -> list[Recipient]:
        """Like `resolve`, for a resource that has already been looked up."""
        resource_id = resource.id
        recipients: list[Recipient] = []
        seen: set[Any] = set()
        inactive = 0
        for row in self.store.fetch_recipient_rows(resource_id):
            if not row.get("account_active"):
                inactive += 1
                continue
            user_id = row.get("user_id")
            if user_id in seen:
                continue
            seen.add(user_id)
            recipients.append(recipient_from_row(row))

        logger.debug(
            "Resolved recipients",
            extra={
                "resource_id": resource_id,
                "recipients": len(recipients),
                "inactive_skipped": inactive,
            },
        )
        return recipients

    def resolve_user(self, user_id: Any) -> Optional[Recipient]:
        """Return one active recipient by user id, or None if absent or inactive."""
        row = self.store.fetch_recipient_by_user(user_id)
        if not row or not row.get("account_active"):
            return None
        return recipient_from_row(row)


class InMemoryRecipientStore:
    """
    Dictionary-backed `RecipientStore` for tests and dry runs.

    Example:
        store = InMemoryRecipientStore(
            resources={"site-42": {"name": "Example", "url": "https://example.com"}},
            subscriptions={"site-42": [{"user_id": 1, "email": "a@example.com",
                                        "account_active": True}]},
        )
    """

    def __init__(
        self,
        resources: Optional[Mapping[Any, Mapping[str, Any]]] = None,
        subscriptions: Optional[Mapping[Any, Sequence[Mapping[str, Any]]]] = None,
    ):
        self.resources = {key: dict(value) for key, value in (resources or {}).items()}
        self.subscriptions = {key: [dict(r) for r in rows] for key, rows in (subscriptions or {}).items()}

    def get_resource(self, resource_id: Any) -> Optional[dict[str, Any]]:
        resource = self.resources.get(resource_id)
        if resource is None:
            return None
        return {"id": resource_id, **resource}

    def fetch_recipient_rows(self, resource_id: Any) -> list[dict[str, Any]]:
        return [dict(row) for row in self.subscriptions.get(resource_id, [])]

    def fetch_recipient_by_user(self, user_id: Any) -> Optional[dict[str, Any]]:
        for rows in self.subscriptions.values():
            for row in rows:
                if row.get("user_id") == user_id:
                    return dict(row)
        return None


__all__ = [
    "InMemoryRecipientStore",
    "RecipientResolver",
    "RecipientStore",
    "recipient_from_row",
]
