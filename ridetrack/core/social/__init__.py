# ridetrack/core/social/__init__.py
"""
Внешние коллабораторы: социальный граф, блокировки, приватность.
"""

from ridetrack.core.social.interfaces import (
    BlockRelationships,
    FollowGraph,
    NotificationSink,
    PrivacyPreferences,
    ProfileDirectory,
)
from ridetrack.core.social.repository import BlockRepository, FollowRepository, UserSettingsRepository

__all__ = [
    "BlockRelationships",
    "FollowGraph",
    "NotificationSink",
    "PrivacyPreferences",
    "ProfileDirectory",
    "BlockRepository",
    "FollowRepository",
    "UserSettingsRepository",
]
