"""
Notifications microservice package.

Fans out one change notification per monitored site to every active
watcher, over email and push messaging, and reports per-recipient outcomes.
New channels are added by subclassing `ChannelSender`.
"""

from .base import ChannelSender, ChannelTransportError
from .composer import MessageComposer
from .email import EmailSender, SmtpEmailClient
from .messaging import LineMessagingClient, MessagingSender
from .models import (
    ChangeEvent,
    Channel,
    DeliveryOutcome,
    ErrorCategory,
    NotificationMessage,
    NotificationReport,
    Recipient,
    RecipientOutcome,
    Resource,
    ResourceNotFoundError,
)
from .orchestrator import NotificationOrchestrator
from .resolver import InMemoryRecipientStore, RecipientResolver

__all__ = [
    "ChangeEvent",
    "Channel",
    "ChannelSender",
    "ChannelTransportError",
    "DeliveryOutcome",
    "EmailSender",
    "ErrorCategory",
    "InMemoryRecipientStore",
    "LineMessagingClient",
    "MessageComposer",
    "MessagingSender",
    "NotificationMessage",
    "NotificationOrchestrator",
    "NotificationReport",
    "Recipient",
    "RecipientOutcome",
    "RecipientResolver",
    "Resource",
    "ResourceNotFoundError",
    "SmtpEmailClient",
]
