# ridetrack/core/rides/__init__.py
"""
Домен LiveRide.
Трансляция GPS-трека поездки разрешённой аудитории.
"""

from ridetrack.core.rides.models import GeoPosition, LiveRideSession, PathPoint, RiderProfile
from ridetrack.core.rides.service import LiveRideManager
from ridetrack.core.rides.state_machine import RideStateMachine

__all__ = [
    "GeoPosition",
    "LiveRideSession",
    "PathPoint",
    "RiderProfile",
    "LiveRideManager",
    "RideStateMachine",
]
