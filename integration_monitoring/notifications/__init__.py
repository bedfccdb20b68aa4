"""Outbound notifications for alerts and reports."""

from .channels import Attachment, EmailRecipient, NotificationChannel, RelayChannel, split_message
from .dispatcher import Notification, NotificationDispatcher

__all__ = [
    "Attachment",
    "EmailRecipient",
    "Notification",
    "NotificationChannel",
    "NotificationDispatcher",
    "RelayChannel",
    "split_message",
]
