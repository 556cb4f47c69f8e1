# ridetrack/core/geo/__init__.py
"""
Геоматематика.
"""

from ridetrack.core.geo.geomath import (
    encode_geohash,
    format_distance,
    format_duration,
    haversine_km,
    path_distance_km,
)

__all__ = [
    "encode_geohash",
    "format_distance",
    "format_duration",
    "haversine_km",
    "path_distance_km",
]
