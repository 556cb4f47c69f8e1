# ridetrack/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class RideStatus(str, Enum):
    """Статусы LiveRide сессии."""
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"

    def __str__(self) -> str:
        return self.value


class TrackRequestStatus(str, Enum):
    """Статусы запроса на отслеживание."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    def __str__(self) -> str:
        return self.value


class WhoCanTrack(str, Enum):
    """Настройка приватности: кто может запросить отслеживание."""
    EVERYONE = "everyone"
    FOLLOWERS = "followers"
    NONE = "none"

    def __str__(self) -> str:
        return self.value


class NotificationType(str, Enum):
    """Типы уведомлений, создаваемых доменом."""
    TRACK_REQUEST = "track_request"
    TRACK_APPROVED = "track_approved"
    TRACK_REJECTED = "track_rejected"
    TRACK_REVOKED = "track_revoked"
    TRACKER_REMOVED = "tracker_removed"
    LIVERIDE_INVITE = "liveride_invite"

    def __str__(self) -> str:
        return self.value


# Имена коллекций в хранилище
class Collections:
    """Имена коллекций Store."""
    LIVE_RIDES = "live_rides"
    ACTIVE_RIDES = "active_rides"
    TRACK_REQUESTS = "track_requests"
    TRACK_REQUEST_PAIRS = "track_request_pairs"
    ACTIVE_TRACKS = "active_tracks"
    TRACKED_LOCATIONS = "tracked_locations"
