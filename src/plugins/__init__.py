"""
Check Updates - Plugins Package
"""

from plugins.base import (
    PackageService,
    Transaction,
    ServiceError,
    NotificationKind,
    PackageNotification,
    UpdateDetailNotification,
    FinishedNotification,
    ErrorNotification,
)

__all__ = [
    "PackageService",
    "Transaction",
    "ServiceError",
    "NotificationKind",
    "PackageNotification",
    "UpdateDetailNotification",
    "FinishedNotification",
    "ErrorNotification",
]
