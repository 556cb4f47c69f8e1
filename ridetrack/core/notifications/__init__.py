# ridetrack/core/notifications/__init__.py
"""
Домен уведомлений.
"""

from ridetrack.core.notifications.service import NotificationData, NotificationService

__all__ = [
    "NotificationData",
    "NotificationService",
]
