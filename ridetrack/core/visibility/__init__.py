# ridetrack/core/visibility/__init__.py
"""
Видимость LiveRide для зрителя.
"""

from ridetrack.core.visibility.aggregator import (
    VisibilityAggregator,
    VisibilitySubscription,
    VisibilityUpdate,
    combine_visible,
)

__all__ = [
    "VisibilityAggregator",
    "VisibilitySubscription",
    "VisibilityUpdate",
    "combine_visible",
]
