# ridetrack/core/rides/service.py
"""
Сервис LiveRide.
Управляет жизненным циклом сессии, записью трека и списком зрителей.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional
from uuid import uuid4

from ridetrack.common.clock import Clock, epoch_seconds, utc_now, whole_minutes_between
from ridetrack.common.constants import Collections, NotificationType, RideStatus, TypeMsg
from ridetrack.common.errors import (
    AlreadyActiveError,
    AlreadyExistsError,
    ConflictError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    TransientFailureError,
)
from ridetrack.common.logger import log_info, log_warning
from ridetrack.common.rate_limiter import RateLimiter
from ridetrack.core.geo.geomath import encode_geohash, path_distance_km
from ridetrack.core.rides.models import (
    GeoPosition,
    LiveRideSession,
    PathPoint,
    RiderProfile,
    unique_ids,
)
from ridetrack.core.rides.state_machine import RideStateMachine
from ridetrack.core.social.interfaces import NotificationSink
from ridetrack.core.store.base import VERSION_FIELD, Eq, In, Store
from ridetrack.core.store.model import ModelStream, update_model

# Маркер без сессии старше этого считается брошенным
STALE_CLAIM_AGE = timedelta(minutes=1)

NON_COMPLETED_STATUSES = (RideStatus.ACTIVE.value, RideStatus.PAUSED.value)


def _validate_coordinates(lat: float, lng: float) -> None:
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lng <= 180.0:
        raise InvalidArgumentError(f"Некорректные координаты: ({lat}, {lng})")


class LiveRideManager:
    """
    Сервис LiveRide.

    У каждой сессии один пишущий участник — устройство райдера. Все
    изменения выполняются условной записью по токену версии: завершённая
    сессия не принимает запоздавших обновлений.
    """

    def __init__(
        self,
        store: Store,
        notifications: NotificationSink,
        clock: Clock = utc_now,
        rate_limiter: RateLimiter | None = None,
        geohash_precision: int | None = None,
        max_retries: int | None = None,
    ) -> None:
        """
        Args:
            store: Хранилище записей
            notifications: Приёмник уведомлений о приглашениях
            clock: Источник времени
            rate_limiter: Троттлинг report_position (по умолчанию из конфигурации)
            geohash_precision: Длина geohash
            max_retries: Попытки при конкурентной записи
        """
        from ridetrack.config import settings

        self._store = store
        self._notifications = notifications
        self._clock = clock
        self._rate_limiter = rate_limiter or RateLimiter(settings.live_ride.POSITION_UPDATE_INTERVAL)
        self._geohash_precision = geohash_precision or settings.live_ride.GEOHASH_PRECISION
        self._max_retries = max_retries or settings.live_ride.OCC_MAX_RETRIES

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    async def start(
        self,
        rider_id: str,
        profile: RiderProfile,
        lat: float,
        lng: float,
        viewers: Iterable[str] = (),
        is_public: bool = False,
        followers_only: bool = False,
    ) -> LiveRideSession:
        """
        Начинает LiveRide.

        Args:
            rider_id: ID райдера
            profile: Отображаемые данные райдера
            lat: Широта старта
            lng: Долгота старта
            viewers: Приглашённые зрители
            is_public: Видна всем
            followers_only: Видна подписчикам

        Returns:
            Созданная сессия

        Raises:
            AlreadyActiveError: у райдера уже есть незавершённая сессия
            InvalidArgumentError: некорректные координаты
        """
        _validate_coordinates(lat, lng)

        now = self._clock()
        session_id = str(uuid4())
        await self._claim_active_slot(rider_id, session_id)

        position = GeoPosition(lat=lat, lng=lng)
        session = LiveRideSession(
            id=session_id,
            rider_id=rider_id,
            rider_name=profile.name,
            avatar_url=profile.avatar_url,
            status=RideStatus.ACTIVE,
            started_at=now,
            updated_at=now,
            start_position=position,
            current_position=position,
            geohash=encode_geohash(lat, lng, self._geohash_precision),
            path_points=[PathPoint(lat=lat, lng=lng, time=epoch_seconds(now))],
            allowed_viewer_ids=[v for v in unique_ids(viewers) if v != rider_id],
            is_public=is_public,
            followers_only=followers_only,
        )

        try:
            record = await self._store.create(Collections.LIVE_RIDES, session.to_record(), record_id=session_id)
        except Exception:
            await self._release_active_slot(rider_id, session_id)
            raise

        created = LiveRideSession.from_record(record)
        await log_info(
            f"LiveRide {session_id} начата райдером {rider_id} "
            f"(public={is_public}, followers_only={followers_only}, viewers={len(created.allowed_viewer_ids)})",
            type_msg=TypeMsg.INFO,
        )

        await self._invite_viewers(created, created.allowed_viewer_ids)
        return created

    async def update_position(self, session_id: str, lat: float, lng: float) -> LiveRideSession:
        """
        Добавляет точку в трек активной сессии.

        Пересчитывает расстояние по всему треку, длительность, geohash
        и текущую позицию. Троттлинг вызовов — ответственность вызывающего.

        Raises:
            NotFoundError: сессия не найдена
            InvalidStateError: сессия на паузе или завершена
            InvalidArgumentError: некорректные координаты
        """
        _validate_coordinates(lat, lng)

        for _ in range(self._max_retries):
            session = await self.get_session(session_id)
            if session.status != RideStatus.ACTIVE:
                raise InvalidStateError(f"Нельзя обновить позицию сессии в статусе {session.status}")

            now = self._clock()
            # Время точек не убывает даже при скачке часов назад
            last_time = session.last_point.time if session.last_point else 0
            point = PathPoint(lat=lat, lng=lng, time=max(epoch_seconds(now), last_time))
            path = session.path_points + [point]

            updated = session.model_copy(update={
                "current_position": GeoPosition(lat=lat, lng=lng),
                "geohash": encode_geohash(lat, lng, self._geohash_precision),
                "total_distance_km": path_distance_km(path),
                "duration_minutes": whole_minutes_between(session.started_at, now),
                "updated_at": now,
            })

            try:
                record = await self._store.append_to_array(
                    Collections.LIVE_RIDES,
                    session_id,
                    "path_points",
                    point.model_dump(mode="json"),
                    updates=updated.record_fields(
                        "current_position", "geohash", "total_distance_km", "duration_minutes", "updated_at",
                    ),
                    expect={"status": RideStatus.ACTIVE.value, VERSION_FIELD: session.version},
                )
            except ConflictError:
                # Сессию изменили между чтением и записью: перечитываем
                continue

            result = LiveRideSession.from_record(record)
            await log_info(
                f"LiveRide {session_id}: точка {len(result.path_points)}, {result.total_distance_km:.3f} км",
                type_msg=TypeMsg.DEBUG,
            )
            return result

        raise TransientFailureError(f"LiveRide {session_id}: не удалось записать позицию")

    async def report_position(self, session_id: str, lat: float, lng: float) -> Optional[LiveRideSession]:
        """
        update_position с троттлингом по сессии.

        Returns:
            Обновлённая сессия или None, если вызов отброшен троттлингом
        """
        if not self._rate_limiter.allow(session_id):
            return None
        try:
            return await self.update_position(session_id, lat, lng)
        except Exception:
            # Неудачная запись не должна блокировать следующую попытку
            self._rate_limiter.reset(session_id)
            raise

    async def pause(self, session_id: str) -> LiveRideSession:
        """Ставит сессию на паузу (меняется только статус)."""
        return await self._transition(session_id, RideStatus.PAUSED)

    async def resume(self, session_id: str) -> LiveRideSession:
        """Возобновляет сессию после паузы (меняется только статус)."""
        return await self._transition(session_id, RideStatus.ACTIVE)

    async def end(self, session_id: str) -> LiveRideSession:
        """
        Завершает сессию: статус completed, фиксирует ended_at и длительность.
        После завершения запись доступна только для чтения.

        Raises:
            NotFoundError: сессия не найдена
            InvalidStateError: сессия уже завершена
        """
        def mutate(session: LiveRideSession) -> dict[str, Any]:
            self._ensure_transition(session, RideStatus.COMPLETED)
            now = self._clock()
            return {
                "status": RideStatus.COMPLETED,
                "ended_at": now,
                "updated_at": now,
                "duration_minutes": whole_minutes_between(session.started_at, now),
            }

        ended = await self._apply(session_id, mutate)
        await self._release_active_slot(ended.rider_id, session_id)
        self._rate_limiter.reset(session_id)

        await log_info(
            f"LiveRide {session_id} завершена: {ended.total_distance_km:.2f} км, {ended.duration_minutes} мин",
            type_msg=TypeMsg.INFO,
        )
        return ended

    # =========================================================================
    # ЗРИТЕЛИ И ВИДИМОСТЬ
    # =========================================================================

    async def set_viewers(self, session_id: str, viewer_ids: Iterable[str]) -> LiveRideSession:
        """
        Полностью заменяет список приглашённых зрителей.
        Новые зрители получают приглашение.
        """
        previous: list[str] = []
        requested = unique_ids(viewer_ids)

        def mutate(session: LiveRideSession) -> dict[str, Any]:
            self._ensure_mutable(session)
            previous[:] = session.allowed_viewer_ids
            return {"allowed_viewer_ids": [v for v in requested if v != session.rider_id]}

        updated = await self._apply(session_id, mutate)
        added = [v for v in updated.allowed_viewer_ids if v not in previous]

        await log_info(
            f"LiveRide {session_id}: зрители заменены ({len(updated.allowed_viewer_ids)}, новых {len(added)})",
            type_msg=TypeMsg.DEBUG,
        )
        await self._invite_viewers(updated, added)
        return updated

    async def add_viewer(self, session_id: str, viewer_id: str) -> LiveRideSession:
        """Добавляет одного зрителя (повторное добавление ничего не меняет)."""
        session = await self.get_session(session_id)
        return await self.set_viewers(session_id, [*session.allowed_viewer_ids, viewer_id])

    async def remove_viewer(self, session_id: str, viewer_id: str) -> LiveRideSession:
        """Убирает зрителя из списка приглашённых."""
        def mutate(session: LiveRideSession) -> dict[str, Any]:
            self._ensure_mutable(session)
            return {"allowed_viewer_ids": [v for v in session.allowed_viewer_ids if v != viewer_id]}

        return await self._apply(session_id, mutate)

    async def set_public(self, session_id: str, is_public: bool) -> LiveRideSession:
        """Меняет флаг публичности, не трогая зрителей и followers_only."""
        def mutate(session: LiveRideSession) -> dict[str, Any]:
            self._ensure_mutable(session)
            return {"is_public": is_public}

        return await self._apply(session_id, mutate)

    async def set_followers_only(self, session_id: str, followers_only: bool) -> LiveRideSession:
        """Меняет флаг видимости для подписчиков."""
        def mutate(session: LiveRideSession) -> dict[str, Any]:
            self._ensure_mutable(session)
            return {"followers_only": followers_only}

        return await self._apply(session_id, mutate)

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_session(self, session_id: str) -> LiveRideSession:
        """
        Возвращает сессию.

        Raises:
            NotFoundError: сессия не найдена
        """
        record = await self._store.get(Collections.LIVE_RIDES, session_id)
        if record is None:
            raise NotFoundError(f"LiveRide {session_id} не найдена")
        return LiveRideSession.from_record(record)

    async def get_active_session(self, rider_id: str) -> Optional[LiveRideSession]:
        """Незавершённая сессия райдера или None."""
        records = await self._store.query(
            Collections.LIVE_RIDES,
            Eq("rider_id", rider_id),
            In("status", NON_COMPLETED_STATUSES),
        )
        if not records:
            return None
        return LiveRideSession.from_record(records[0])

    async def watch_session(self, session_id: str) -> ModelStream[Optional[LiveRideSession]]:
        """Live-подписка на одну сессию (None, если запись исчезла)."""
        live = await self._store.watch_record(Collections.LIVE_RIDES, session_id)
        return ModelStream(live, lambda records: LiveRideSession.from_record(records[0]) if records else None)

    async def watch_active_session(self, rider_id: str) -> ModelStream[Optional[LiveRideSession]]:
        """Live-подписка на незавершённую сессию райдера."""
        live = await self._store.watch(
            Collections.LIVE_RIDES,
            Eq("rider_id", rider_id),
            In("status", NON_COMPLETED_STATUSES),
        )
        return ModelStream(live, lambda records: LiveRideSession.from_record(records[0]) if records else None)

    # =========================================================================
    # ВНУТРЕННИЕ МЕТОДЫ
    # =========================================================================

    @staticmethod
    def _ensure_mutable(session: LiveRideSession) -> None:
        if session.is_completed:
            raise InvalidStateError(f"LiveRide {session.id} завершена и доступна только для чтения")

    @staticmethod
    def _ensure_transition(session: LiveRideSession, new_status: RideStatus) -> None:
        LiveRideManager._ensure_mutable(session)
        if not RideStateMachine.can_transition(session.status, new_status):
            raise InvalidStateError(f"Переход {session.status} -> {new_status} недопустим")

    async def _transition(self, session_id: str, new_status: RideStatus) -> LiveRideSession:
        def mutate(session: LiveRideSession) -> dict[str, Any]:
            self._ensure_transition(session, new_status)
            return {"status": new_status}

        updated = await self._apply(session_id, mutate)
        await log_info(f"LiveRide {session_id}: статус {new_status}", type_msg=TypeMsg.INFO)
        return updated

    async def _apply(
        self,
        session_id: str,
        mutate: Callable[[LiveRideSession], dict[str, Any]],
    ) -> LiveRideSession:
        return await update_model(
            self._store,
            Collections.LIVE_RIDES,
            LiveRideSession,
            session_id,
            mutate,
            max_retries=self._max_retries,
        )

    async def _claim_active_slot(self, rider_id: str, session_id: str) -> None:
        """
        Занимает слот «одна незавершённая сессия на райдера».

        Слот — запись active_rides/{rider_id}, создаваемая только при
        отсутствии. Слот, указывающий на завершённую сессию, либо брошенный
        без сессии, перезаписывается условно по версии.
        """
        claim = {"rider_id": rider_id, "session_id": session_id, "claimed_at": self._clock().isoformat()}

        for _ in range(self._max_retries):
            try:
                await self._store.create(Collections.ACTIVE_RIDES, claim, record_id=rider_id)
                return
            except AlreadyExistsError:
                marker = await self._store.get(Collections.ACTIVE_RIDES, rider_id)

            if marker is None:
                continue

            if not await self._is_stale_claim(marker):
                raise AlreadyActiveError(f"У райдера {rider_id} уже есть незавершённая поездка")

            try:
                await self._store.update(
                    Collections.ACTIVE_RIDES,
                    rider_id,
                    claim,
                    expect={VERSION_FIELD: marker[VERSION_FIELD]},
                )
                return
            except (ConflictError, NotFoundError):
                continue

        raise AlreadyActiveError(f"У райдера {rider_id} уже есть незавершённая поездка")

    async def _is_stale_claim(self, marker: dict[str, Any]) -> bool:
        existing = await self._store.get(Collections.LIVE_RIDES, marker["session_id"])
        if existing is not None:
            return existing.get("status") == RideStatus.COMPLETED.value

        # Слот занят, но сессия ещё не создана: свежий захват считаем живым
        age = self._clock() - datetime.fromisoformat(marker["claimed_at"])
        return age > STALE_CLAIM_AGE

    async def _release_active_slot(self, rider_id: str, session_id: str) -> None:
        try:
            await self._store.delete(Collections.ACTIVE_RIDES, rider_id, expect={"session_id": session_id})
        except ConflictError:
            await log_warning(f"Слот активной поездки {rider_id} принадлежит другой сессии, не освобождён")

    async def _invite_viewers(self, session: LiveRideSession, viewer_ids: list[str]) -> None:
        if not viewer_ids:
            return
        await asyncio.gather(*(
            self._notifications.notify(
                viewer_id,
                NotificationType.LIVERIDE_INVITE,
                from_user_id=session.rider_id,
                from_name=session.rider_name,
                data={"ride_id": session.id},
            )
            for viewer_id in viewer_ids
        ))
