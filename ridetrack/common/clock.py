# ridetrack/common/clock.py
"""
Источник времени. Сервисы принимают clock через конструктор,
что позволяет управлять временем в тестах.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Текущее время в UTC (timezone-aware)."""
    return datetime.now(timezone.utc)


def epoch_seconds(moment: datetime) -> int:
    """Unix-время в секундах."""
    return int(moment.timestamp())


def whole_minutes_between(start: datetime, end: datetime) -> int:
    """Количество полных минут между моментами (не меньше нуля)."""
    return max(0, int((end - start).total_seconds() // 60))
