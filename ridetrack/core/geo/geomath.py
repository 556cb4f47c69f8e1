# ridetrack/core/geo/geomath.py
"""
Геоматематика: расстояние по большой окружности, geohash, форматирование.

Чистые функции без зависимостей от хранилища.
"""

from __future__ import annotations

import math
from typing import Iterable, Protocol


EARTH_RADIUS_KM = 6371.0

GEOHASH_BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"
DEFAULT_GEOHASH_PRECISION = 6


class HasLatLng(Protocol):
    """Любая точка с широтой и долготой."""
    lat: float
    lng: float


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Вычисляет расстояние между двумя точками (в км) по формуле Haversine.
    """
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlng / 2) ** 2)

    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def path_distance_km(points: Iterable[HasLatLng]) -> float:
    """
    Суммарная длина ломаной: сумма haversine между соседними точками.

    Args:
        points: Точки пути в порядке времени

    Returns:
        Длина пути в км (0.0 для пути из 0 или 1 точки)
    """
    total = 0.0
    previous = None
    for point in points:
        if previous is not None:
            total += haversine_km(previous.lat, previous.lng, point.lat, point.lng)
        previous = point
    return total


def encode_geohash(lat: float, lng: float, precision: int = DEFAULT_GEOHASH_PRECISION) -> str:
    """
    Кодирует координаты в geohash фиксированной длины.

    Биты долготы и широты чередуются, начиная с долготы; каждые 5 бит
    дают один символ base32. Точка ровно на середине интервала уходит
    в нижнюю половину.

    Args:
        lat: Широта [-90, 90]
        lng: Долгота [-180, 180]
        precision: Длина хеша в символах

    Returns:
        Строка geohash

    Raises:
        ValueError: координаты вне допустимого диапазона или precision < 1
    """
    if precision < 1:
        raise ValueError("precision должен быть >= 1")
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lng <= 180.0:
        raise ValueError(f"Некорректные координаты: ({lat}, {lng})")

    lat_range = [-90.0, 90.0]
    lng_range = [-180.0, 180.0]
    chars: list[str] = []
    is_lng_bit = True
    bit = 0
    ch = 0

    while len(chars) < precision:
        if is_lng_bit:
            mid = (lng_range[0] + lng_range[1]) / 2
            if lng > mid:
                ch |= 1 << (4 - bit)
                lng_range[0] = mid
            else:
                lng_range[1] = mid
        else:
            mid = (lat_range[0] + lat_range[1]) / 2
            if lat > mid:
                ch |= 1 << (4 - bit)
                lat_range[0] = mid
            else:
                lat_range[1] = mid

        is_lng_bit = not is_lng_bit
        if bit < 4:
            bit += 1
        else:
            chars.append(GEOHASH_BASE32[ch])
            bit = 0
            ch = 0

    return "".join(chars)


def format_distance(km: float) -> str:
    """Форматирует расстояние: '500 m' до километра, '12.5 km' дальше."""
    if km < 1:
        return f"{round(km * 1000)} m"
    return f"{km:.1f} km"


def format_duration(minutes: int) -> str:
    """Форматирует длительность: '45m', '1h 23m', '2h'."""
    if minutes < 60:
        return f"{minutes}m"
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}m" if mins else f"{hours}h"
