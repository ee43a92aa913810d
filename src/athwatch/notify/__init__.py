"""Notification dispatch, recipients and senders."""

from .dispatcher import NotificationDispatcher
from .recipients import CsvRecipientDirectory, RecipientDirectory
from .senders import LogSender, ResendEmailSender, Sender

__all__ = [
    "CsvRecipientDirectory",
    "LogSender",
    "NotificationDispatcher",
    "RecipientDirectory",
    "ResendEmailSender",
    "Sender",
]
