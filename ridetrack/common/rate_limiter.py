# ridetrack/common/rate_limiter.py
"""
Ограничитель частоты вызовов по ключу.

Используется для троттлинга позиционных обновлений: и LiveRideManager,
и LocationPublisher держат собственный экземпляр.
"""

from __future__ import annotations

import time
from typing import Callable


class RateLimiter:
    """
    Пропускает не более одного события на ключ за min_interval секунд.

    Состояние хранится в экземпляре, а не на уровне модуля.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            min_interval: Минимальный интервал между событиями (секунды)
            clock: Источник монотонного времени
        """
        if min_interval < 0:
            raise ValueError("min_interval не может быть отрицательным")
        self._min_interval = min_interval
        self._clock = clock
        self._last_allowed: dict[str, float] = {}

    @property
    def min_interval(self) -> float:
        return self._min_interval

    def allow(self, key: str) -> bool:
        """
        Проверяет, прошло ли достаточно времени с последнего события по ключу.
        При положительном ответе фиксирует текущий момент.
        """
        now = self._clock()
        last = self._last_allowed.get(key)
        if last is not None and now - last < self._min_interval:
            return False
        self._last_allowed[key] = now
        return True

    def remaining(self, key: str) -> float:
        """Сколько секунд осталось до следующего разрешённого события."""
        last = self._last_allowed.get(key)
        if last is None:
            return 0.0
        return max(0.0, self._min_interval - (self._clock() - last))

    def reset(self, key: str) -> None:
        """Сбрасывает состояние ключа (например, после завершения поездки)."""
        self._last_allowed.pop(key, None)
