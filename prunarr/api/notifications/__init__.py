"""Notification system for Prunarr"""

from .service import NotificationService
from .providers.base import NotificationChannel, NotificationEvent, NotificationPriority

__all__ = [
    'NotificationService',
    'NotificationChannel',
    'NotificationEvent',
    'NotificationPriority'
]
