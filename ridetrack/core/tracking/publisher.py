# ridetrack/core/tracking/publisher.py
"""
Публикация позиции отслеживаемого пользователя.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable, Optional

from ridetrack.common.clock import Clock, utc_now
from ridetrack.common.constants import Collections, TypeMsg
from ridetrack.common.errors import InvalidArgumentError, NotFoundError
from ridetrack.common.logger import log_info
from ridetrack.common.rate_limiter import RateLimiter
from ridetrack.core.store.base import In, Store
from ridetrack.core.store.model import ModelStream, update_model
from ridetrack.core.tracking.models import TrackedLocation, TrackedRider
from ridetrack.core.tracking.service import TrackingCoordinator


class LocationPublisher:
    """
    Публикатор позиций.

    Устройство отслеживаемого вызывает report_position на каждой фиксации;
    запись обновляется, только если есть активные трекеры и прошёл
    интервал троттлинга.
    """

    def __init__(
        self,
        store: Store,
        tracking: TrackingCoordinator,
        clock: Clock = utc_now,
        rate_limiter: RateLimiter | None = None,
        freshness_window: timedelta | None = None,
    ) -> None:
        from ridetrack.config import settings

        self._store = store
        self._tracking = tracking
        self._clock = clock
        self._rate_limiter = rate_limiter or RateLimiter(settings.tracking.PUBLISH_INTERVAL)
        self._freshness_window = freshness_window or timedelta(minutes=settings.tracking.FRESHNESS_WINDOW_MINUTES)

    @property
    def freshness_window(self) -> timedelta:
        return self._freshness_window

    async def publish(
        self,
        user_id: str,
        lat: float,
        lng: float,
        heading: float = 0.0,
        speed: float = 0.0,
        name: str | None = None,
        avatar_url: str | None = None,
    ) -> TrackedLocation:
        """
        Записывает текущую позицию пользователя (upsert).

        Raises:
            InvalidArgumentError: некорректные координаты
        """
        if not -90.0 <= lat <= 90.0 or not -180.0 <= lng <= 180.0:
            raise InvalidArgumentError(f"Некорректные координаты: ({lat}, {lng})")

        location = TrackedLocation(
            id=user_id,
            user_id=user_id,
            lat=lat,
            lng=lng,
            timestamp=self._clock(),
            heading=heading,
            speed=max(speed, 0.0),
            name=name,
            avatar_url=avatar_url,
            sharing=True,
        )
        record = await self._store.put(Collections.TRACKED_LOCATIONS, user_id, location.to_record())

        await log_info(f"Позиция {user_id} опубликована: ({lat:.5f}, {lng:.5f})", type_msg=TypeMsg.DEBUG)
        return TrackedLocation.from_record(record)

    async def report_position(
        self,
        user_id: str,
        lat: float,
        lng: float,
        heading: float = 0.0,
        speed: float = 0.0,
        name: str | None = None,
        avatar_url: str | None = None,
    ) -> Optional[TrackedLocation]:
        """
        publish с проверкой наличия трекеров и троттлингом.

        Returns:
            Опубликованная позиция или None, если публикация пропущена
        """
        if not await self._tracking.has_active_trackers(user_id):
            return None
        if not self._rate_limiter.allow(user_id):
            return None
        try:
            return await self.publish(user_id, lat, lng, heading, speed, name, avatar_url)
        except Exception:
            self._rate_limiter.reset(user_id)
            raise

    async def set_sharing(self, user_id: str, sharing: bool) -> Optional[TrackedLocation]:
        """
        Включает или отключает трансляцию без удаления последней позиции.

        Returns:
            Обновлённая позиция или None, если позиция ещё не публиковалась
        """
        try:
            location = await update_model(
                self._store,
                Collections.TRACKED_LOCATIONS,
                TrackedLocation,
                user_id,
                lambda current: {"sharing": sharing, "timestamp": self._clock()},
            )
        except NotFoundError:
            return None

        self._rate_limiter.reset(user_id)
        await log_info(f"Трансляция позиции {user_id}: {'включена' if sharing else 'отключена'}", type_msg=TypeMsg.INFO)
        return location

    async def remove_location(self, user_id: str) -> bool:
        """Удаляет позицию пользователя."""
        self._rate_limiter.reset(user_id)
        return await self._store.delete(Collections.TRACKED_LOCATIONS, user_id)

    async def get_location(self, user_id: str) -> Optional[TrackedLocation]:
        record = await self._store.get(Collections.TRACKED_LOCATIONS, user_id)
        return TrackedLocation.from_record(record) if record is not None else None

    def is_online(self, location: TrackedLocation) -> bool:
        return location.is_online(self._clock(), self._freshness_window)

    async def watch_tracked_locations(self, tracked_ids: Iterable[str]) -> ModelStream[dict[str, TrackedRider]]:
        """
        Live-карта позиций отслеживаемых: {user_id: TrackedRider}.
        Пользователи без опубликованной позиции в карту не попадают.
        """
        live = await self._store.watch(Collections.TRACKED_LOCATIONS, In("id", tuple(dict.fromkeys(tracked_ids))))

        def to_map(records: list[dict]) -> dict[str, TrackedRider]:
            riders = {}
            for record in records:
                location = TrackedLocation.from_record(record)
                riders[location.user_id] = TrackedRider(location=location, is_online=self.is_online(location))
            return riders

        return ModelStream(live, to_map)
