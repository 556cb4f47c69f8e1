# ridetrack/core/__init__.py
"""
Доменный слой.
Бизнес-логика LiveRide и отслеживания поверх абстракции хранилища.
"""

from ridetrack.core.rides import LiveRideManager, LiveRideSession
from ridetrack.core.tracking import LocationPublisher, TrackingCoordinator
from ridetrack.core.visibility import VisibilityAggregator

__all__ = [
    "LiveRideManager",
    "LiveRideSession",
    "LocationPublisher",
    "TrackingCoordinator",
    "VisibilityAggregator",
]
