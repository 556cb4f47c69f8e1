# ridetrack/worker/maintenance.py
"""
Периодическое обслуживание: перевод просроченных запросов отслеживания в expired.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from ridetrack.common.constants import TypeMsg
from ridetrack.common.logger import log_error, log_info
from ridetrack.core.tracking.service import TrackingCoordinator


class RequestExpiryWorker:
    """
    Воркер очистки запросов.
    Раз в interval секунд вызывает TrackingCoordinator.expire_stale_requests.
    """

    name = "request_expiry"

    def __init__(self, tracking: TrackingCoordinator, interval: Optional[float] = None) -> None:
        """
        Args:
            tracking: Сервис отслеживания
            interval: Период запуска в секундах (по умолчанию EXPIRY_SWEEP_INTERVAL)
        """
        from ridetrack.config import settings

        self._tracking = tracking
        self._interval = interval if interval is not None else settings.tracking.EXPIRY_SWEEP_INTERVAL
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Запускает воркер."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._loop(), name=f"worker:{self.name}")
        await log_info(f"Воркер {self.name} запущен (интервал {self._interval} с)", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        """Останавливает воркер."""
        if not self._running:
            return

        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        await log_info(f"Воркер {self.name} остановлен", type_msg=TypeMsg.INFO)

    async def run_once(self) -> int:
        """Один проход очистки. Ошибка логируется, воркер продолжает работу."""
        try:
            return await self._tracking.expire_stale_requests()
        except Exception as e:
            await log_error(f"Ошибка в воркере {self.name}: {e}")
            return 0

    async def _loop(self) -> None:
        while self._running:
            await self.run_once()
            await asyncio.sleep(self._interval)
