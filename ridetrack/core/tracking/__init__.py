# ridetrack/core/tracking/__init__.py
"""
Домен отслеживания.
Запросы с взаимным одобрением и публикация позиции для трекеров.
"""

from ridetrack.core.tracking.models import ActiveTrack, TrackedLocation, TrackedRider, TrackRequest
from ridetrack.core.tracking.publisher import LocationPublisher
from ridetrack.core.tracking.service import TrackingCoordinator
from ridetrack.core.tracking.state_machine import TrackRequestStateMachine

__all__ = [
    "ActiveTrack",
    "TrackedLocation",
    "TrackedRider",
    "TrackRequest",
    "LocationPublisher",
    "TrackingCoordinator",
    "TrackRequestStateMachine",
]
