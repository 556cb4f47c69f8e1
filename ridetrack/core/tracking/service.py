# ridetrack/core/tracking/service.py
"""
Сервис отслеживания.
Запросы на отслеживание, одобрение и управление активными связями.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import uuid4

from ridetrack.common.clock import Clock, utc_now
from ridetrack.common.constants import (
    Collections,
    NotificationType,
    TrackRequestStatus,
    TypeMsg,
    WhoCanTrack,
)
from ridetrack.common.errors import (
    AlreadyExistsError,
    ConflictError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
)
from ridetrack.common.logger import log_info, log_warning
from ridetrack.core.social.interfaces import (
    BlockRelationships,
    FollowGraph,
    NotificationSink,
    PrivacyPreferences,
)
from ridetrack.core.store.base import VERSION_FIELD, Eq, Store
from ridetrack.core.store.model import ModelStream, update_model
from ridetrack.core.tracking.models import (
    ActiveTrack,
    TrackRequest,
    request_pair_id,
    track_id_for,
)
from ridetrack.core.tracking.state_machine import TrackRequestStateMachine

PENDING = TrackRequestStatus.PENDING.value

# Маркер без запроса старше этого считается брошенным
STALE_CLAIM_AGE = timedelta(minutes=1)


class TrackingCoordinator:
    """
    Сервис отслеживания.

    Запрос проходит путь pending → approved | rejected | cancelled | expired.
    Одобрение создаёт (или реактивирует) ровно одну ActiveTrack для пары
    (трекер, отслеживаемый). Единственность ожидающего запроса для
    упорядоченной пары обеспечивается маркером в track_request_pairs.
    """

    def __init__(
        self,
        store: Store,
        follow_graph: FollowGraph,
        blocks: BlockRelationships,
        privacy: PrivacyPreferences,
        notifications: NotificationSink,
        clock: Clock = utc_now,
        request_ttl: timedelta | None = None,
        max_retries: int | None = None,
    ) -> None:
        """
        Args:
            store: Хранилище записей
            follow_graph: Граф подписок
            blocks: Блокировки
            privacy: Настройки приватности
            notifications: Приёмник уведомлений
            clock: Источник времени
            request_ttl: Срок жизни ожидающего запроса
            max_retries: Попытки при конкурентной записи
        """
        from ridetrack.config import settings

        self._store = store
        self._follow_graph = follow_graph
        self._blocks = blocks
        self._privacy = privacy
        self._notifications = notifications
        self._clock = clock
        self._request_ttl = request_ttl or timedelta(hours=settings.tracking.REQUEST_TTL_HOURS)
        self._max_retries = max_retries or settings.live_ride.OCC_MAX_RETRIES

    # =========================================================================
    # ЗАПРОСЫ
    # =========================================================================

    async def send_request(
        self,
        from_user_id: str,
        to_user_id: str,
        from_name: str | None = None,
    ) -> TrackRequest:
        """
        Отправляет запрос на отслеживание.

        Args:
            from_user_id: Кто запрашивает
            to_user_id: Кого запрашивают
            from_name: Имя запрашивающего для уведомления

        Returns:
            Созданный запрос в статусе pending

        Raises:
            InvalidArgumentError: запрос самому себе
            PermissionDeniedError: блокировка или настройки приватности цели
            AlreadyExistsError: уже есть ожидающий запрос или активная связь
        """
        if from_user_id == to_user_id:
            raise InvalidArgumentError("Нельзя запросить отслеживание самого себя")

        await self._check_can_request(from_user_id, to_user_id)

        if await self.get_active_track_between(from_user_id, to_user_id) is not None:
            raise AlreadyExistsError(f"{from_user_id} уже отслеживает {to_user_id}")

        now = self._clock()
        request = TrackRequest(
            id=str(uuid4()),
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            from_name=from_name,
            status=TrackRequestStatus.PENDING,
            created_at=now,
            expires_at=now + self._request_ttl,
        )

        await self._claim_pair(request)
        try:
            record = await self._store.create(Collections.TRACK_REQUESTS, request.to_record(), record_id=request.id)
        except Exception:
            await self._release_pair(request)
            raise

        created = TrackRequest.from_record(record)
        await log_info(
            f"Запрос отслеживания {created.id}: {from_user_id} -> {to_user_id}",
            type_msg=TypeMsg.INFO,
        )

        await self._notifications.notify(
            to_user_id,
            NotificationType.TRACK_REQUEST,
            from_user_id=from_user_id,
            from_name=from_name,
            data={"request_id": created.id},
        )
        return created

    async def approve(self, request_id: str, approver_id: str) -> ActiveTrack:
        """
        Одобряет запрос и создаёт (или реактивирует) связь отслеживания.

        Raises:
            NotFoundError: запрос не найден
            PermissionDeniedError: одобряет не адресат запроса
            InvalidStateError: запрос не в статусе pending (в т.ч. истёк)
        """
        request = await self._respond(request_id, "to_user_id", approver_id, TrackRequestStatus.APPROVED)

        try:
            track = await self._activate_track(request)
        except Exception:
            await self._revert_to_pending(request)
            raise

        await self._release_pair(request)
        await log_info(
            f"Запрос {request_id} одобрен: {track.tracker_id} отслеживает {track.tracked_id}",
            type_msg=TypeMsg.INFO,
        )

        await self._notifications.notify(
            request.from_user_id,
            NotificationType.TRACK_APPROVED,
            from_user_id=approver_id,
            data={"track_id": track.id},
        )
        return track

    async def reject(self, request_id: str, approver_id: str) -> TrackRequest:
        """Отклоняет запрос (только адресат). Запрашивающий получает уведомление."""
        request = await self._respond(request_id, "to_user_id", approver_id, TrackRequestStatus.REJECTED)
        await self._release_pair(request)
        await log_info(f"Запрос {request_id} отклонён", type_msg=TypeMsg.INFO)

        await self._notifications.notify(
            request.from_user_id,
            NotificationType.TRACK_REJECTED,
            from_user_id=approver_id,
            data={"request_id": request_id},
        )
        return request

    async def cancel(self, request_id: str, requester_id: str) -> TrackRequest:
        """Отменяет запрос (только отправитель)."""
        request = await self._respond(request_id, "from_user_id", requester_id, TrackRequestStatus.CANCELLED)
        await self._release_pair(request)
        await log_info(f"Запрос {request_id} отменён отправителем", type_msg=TypeMsg.INFO)
        return request

    async def expire_stale_requests(self) -> int:
        """
        Помечает просроченные ожидающие запросы как expired.

        Returns:
            Количество помеченных запросов
        """
        now = self._clock()
        records = await self._store.query(Collections.TRACK_REQUESTS, Eq("status", PENDING))

        expired = 0
        for record in records:
            request = TrackRequest.from_record(record)
            if not request.is_overdue(now):
                continue
            if await self._expire(request):
                expired += 1

        if expired:
            await log_info(f"Просроченных запросов отслеживания: {expired}", type_msg=TypeMsg.INFO)
        return expired

    # =========================================================================
    # АКТИВНЫЕ СВЯЗИ
    # =========================================================================

    async def revoke_tracking(self, track_id: str, acting_user_id: str) -> ActiveTrack:
        """
        Отслеживаемый отзывает доступ у трекера.

        Raises:
            NotFoundError: связь не найдена
            PermissionDeniedError: действует не отслеживаемый
            InvalidStateError: связь уже неактивна
        """
        track = await self._deactivate(track_id, "tracked_id", acting_user_id)
        await log_info(f"Отслеживание {track_id} отозвано {acting_user_id}", type_msg=TypeMsg.INFO)

        await self._notifications.notify(
            track.tracker_id,
            NotificationType.TRACK_REVOKED,
            from_user_id=acting_user_id,
            data={"track_id": track_id},
        )
        return track

    async def remove_tracker(self, track_id: str, acting_user_id: str) -> ActiveTrack:
        """
        Трекер прекращает отслеживание.

        Raises:
            NotFoundError: связь не найдена
            PermissionDeniedError: действует не трекер
            InvalidStateError: связь уже неактивна
        """
        track = await self._deactivate(track_id, "tracker_id", acting_user_id)
        await log_info(f"Трекер {acting_user_id} прекратил отслеживание {track_id}", type_msg=TypeMsg.INFO)

        await self._notifications.notify(
            track.tracked_id,
            NotificationType.TRACKER_REMOVED,
            from_user_id=acting_user_id,
            data={"track_id": track_id},
        )
        return track

    async def is_mutual(self, track: ActiveTrack) -> bool:
        """Существует ли активная обратная связь."""
        reverse = await self.get_active_track_between(track.tracked_id, track.tracker_id)
        return reverse is not None

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_request(self, request_id: str) -> TrackRequest:
        record = await self._store.get(Collections.TRACK_REQUESTS, request_id)
        if record is None:
            raise NotFoundError(f"Запрос отслеживания {request_id} не найден")
        return TrackRequest.from_record(record)

    async def get_track(self, track_id: str) -> ActiveTrack:
        record = await self._store.get(Collections.ACTIVE_TRACKS, track_id)
        if record is None:
            raise NotFoundError(f"Связь отслеживания {track_id} не найдена")
        return ActiveTrack.from_record(record)

    async def get_pending_request_between(self, from_user_id: str, to_user_id: str) -> Optional[TrackRequest]:
        """Действующий ожидающий запрос для упорядоченной пары."""
        requests = await self._query_pending(Eq("from_user_id", from_user_id), Eq("to_user_id", to_user_id))
        return requests[0] if requests else None

    async def get_active_track_between(self, tracker_id: str, tracked_id: str) -> Optional[ActiveTrack]:
        record = await self._store.get(Collections.ACTIVE_TRACKS, track_id_for(tracker_id, tracked_id))
        if record is None:
            return None
        track = ActiveTrack.from_record(record)
        return track if track.is_active else None

    async def pending_requests_for(self, user_id: str) -> list[TrackRequest]:
        """Входящие ожидающие запросы."""
        return await self._query_pending(Eq("to_user_id", user_id))

    async def sent_pending_requests(self, user_id: str) -> list[TrackRequest]:
        """Исходящие ожидающие запросы."""
        return await self._query_pending(Eq("from_user_id", user_id))

    async def tracks_as_tracker(self, user_id: str) -> list[ActiveTrack]:
        """Кого отслеживает пользователь."""
        records = await self._store.query(Collections.ACTIVE_TRACKS, Eq("tracker_id", user_id), Eq("is_active", True))
        return [ActiveTrack.from_record(r) for r in records]

    async def tracks_as_tracked(self, user_id: str) -> list[ActiveTrack]:
        """Кто отслеживает пользователя."""
        records = await self._store.query(Collections.ACTIVE_TRACKS, Eq("tracked_id", user_id), Eq("is_active", True))
        return [ActiveTrack.from_record(r) for r in records]

    async def has_active_trackers(self, user_id: str) -> bool:
        return bool(await self.tracks_as_tracked(user_id))

    async def track_candidates(self, user_id: str) -> list[str]:
        """
        Взаимные подписки пользователя: кандидаты для запроса отслеживания.
        Только список; права проверяются при send_request.
        """
        following = await self._follow_graph.get_following(user_id)
        followers = await self._follow_graph.get_followers(user_id)
        return sorted((following & followers) - {user_id})

    async def watch_pending_requests(self, user_id: str) -> ModelStream[list[TrackRequest]]:
        """Live-подписка на входящие ожидающие запросы."""
        live = await self._store.watch(Collections.TRACK_REQUESTS, Eq("to_user_id", user_id), Eq("status", PENDING))
        return ModelStream(live, self._actual_pending)

    async def watch_tracks_as_tracker(self, user_id: str) -> ModelStream[list[ActiveTrack]]:
        """Live-подписка на связи, где пользователь — трекер."""
        live = await self._store.watch(Collections.ACTIVE_TRACKS, Eq("tracker_id", user_id), Eq("is_active", True))
        return ModelStream(live, lambda records: [ActiveTrack.from_record(r) for r in records])

    async def watch_tracks_as_tracked(self, user_id: str) -> ModelStream[list[ActiveTrack]]:
        """Live-подписка на связи, где пользователя отслеживают."""
        live = await self._store.watch(Collections.ACTIVE_TRACKS, Eq("tracked_id", user_id), Eq("is_active", True))
        return ModelStream(live, lambda records: [ActiveTrack.from_record(r) for r in records])

    # =========================================================================
    # ВНУТРЕННИЕ МЕТОДЫ
    # =========================================================================

    async def _check_can_request(self, from_user_id: str, to_user_id: str) -> None:
        if await self._blocks.has_block_relationship(from_user_id, to_user_id):
            raise PermissionDeniedError("Отслеживание недоступно: пользователь заблокирован")

        who_can_track = WhoCanTrack(await self._privacy.get_who_can_track(to_user_id))
        if who_can_track == WhoCanTrack.NONE:
            raise PermissionDeniedError(f"{to_user_id} не принимает запросы на отслеживание")
        if who_can_track == WhoCanTrack.FOLLOWERS:
            if not await self._follow_graph.is_following(from_user_id, to_user_id):
                raise PermissionDeniedError(f"{to_user_id} принимает запросы только от подписчиков")

    async def _query_pending(self, *predicates: Eq) -> list[TrackRequest]:
        records = await self._store.query(Collections.TRACK_REQUESTS, *predicates, Eq("status", PENDING))
        return self._actual_pending(records)

    def _actual_pending(self, records: list[dict[str, Any]]) -> list[TrackRequest]:
        now = self._clock()
        requests = [TrackRequest.from_record(r) for r in records]
        return [r for r in requests if not r.is_overdue(now)]

    async def _respond(
        self,
        request_id: str,
        actor_field: str,
        actor_id: str,
        new_status: TrackRequestStatus,
    ) -> TrackRequest:
        """Переводит ожидающий запрос в new_status от имени участника actor_field."""
        request = await self.get_request(request_id)
        if getattr(request, actor_field) != actor_id:
            raise PermissionDeniedError(f"Пользователь {actor_id} не может изменить запрос {request_id}")

        if request.is_overdue(self._clock()):
            await self._expire(request)
            raise InvalidStateError(f"Запрос {request_id} истёк")

        def mutate(current: TrackRequest) -> dict[str, Any]:
            if not TrackRequestStateMachine.can_transition(current.status, new_status):
                raise InvalidStateError(f"Запрос {request_id} уже в статусе {current.status}")
            return {"status": new_status, "responded_at": self._clock()}

        return await update_model(
            self._store,
            Collections.TRACK_REQUESTS,
            TrackRequest,
            request_id,
            mutate,
            max_retries=self._max_retries,
        )

    async def _expire(self, request: TrackRequest) -> bool:
        try:
            await self._store.update(
                Collections.TRACK_REQUESTS,
                request.id,
                {"status": TrackRequestStatus.EXPIRED.value},
                expect={"status": PENDING, VERSION_FIELD: request.version},
            )
        except ConflictError:
            return False
        await self._release_pair(request)
        await log_info(f"Запрос отслеживания {request.id} истёк", type_msg=TypeMsg.DEBUG)
        return True

    async def _revert_to_pending(self, request: TrackRequest) -> None:
        try:
            await self._store.update(
                Collections.TRACK_REQUESTS,
                request.id,
                {"status": PENDING, "responded_at": None},
                expect={VERSION_FIELD: request.version},
            )
        except ConflictError:
            await log_warning(f"Запрос {request.id} изменён конкурентно, откат не выполнен")

    async def _activate_track(self, request: TrackRequest) -> ActiveTrack:
        now = self._clock()
        track = ActiveTrack(
            id=track_id_for(request.from_user_id, request.to_user_id),
            tracker_id=request.from_user_id,
            tracked_id=request.to_user_id,
            request_id=request.id,
            created_at=now,
            updated_at=now,
            is_active=True,
        )

        try:
            record = await self._store.create(Collections.ACTIVE_TRACKS, track.to_record(), record_id=track.id)
            return ActiveTrack.from_record(record)
        except AlreadyExistsError:
            pass

        return await update_model(
            self._store,
            Collections.ACTIVE_TRACKS,
            ActiveTrack,
            track.id,
            lambda current: {"is_active": True, "request_id": request.id, "updated_at": now},
            max_retries=self._max_retries,
        )

    async def _deactivate(self, track_id: str, actor_field: str, actor_id: str) -> ActiveTrack:
        def mutate(track: ActiveTrack) -> dict[str, Any]:
            if getattr(track, actor_field) != actor_id:
                raise PermissionDeniedError(f"Пользователь {actor_id} не может изменить связь {track_id}")
            if not track.is_active:
                raise InvalidStateError(f"Связь {track_id} уже неактивна")
            return {"is_active": False, "updated_at": self._clock()}

        return await update_model(
            self._store,
            Collections.ACTIVE_TRACKS,
            ActiveTrack,
            track_id,
            mutate,
            max_retries=self._max_retries,
        )

    async def _claim_pair(self, request: TrackRequest) -> None:
        """
        Занимает маркер ожидающего запроса для пары (from, to).
        Маркер, указывающий на завершённый или просроченный запрос, перезаписывается.
        """
        pair_id = request_pair_id(request.from_user_id, request.to_user_id)
        claim = {
            "request_id": request.id,
            "from_user_id": request.from_user_id,
            "to_user_id": request.to_user_id,
            "claimed_at": self._clock().isoformat(),
        }

        for _ in range(self._max_retries):
            try:
                await self._store.create(Collections.TRACK_REQUEST_PAIRS, claim, record_id=pair_id)
                return
            except AlreadyExistsError:
                marker = await self._store.get(Collections.TRACK_REQUEST_PAIRS, pair_id)

            if marker is None:
                continue

            existing = await self._store.get(Collections.TRACK_REQUESTS, marker["request_id"])
            if existing is not None:
                current = TrackRequest.from_record(existing)
                if current.is_pending and not current.is_overdue(self._clock()):
                    raise AlreadyExistsError(
                        f"Запрос {request.from_user_id} -> {request.to_user_id} уже ожидает ответа"
                    )
                if current.is_pending:
                    await self._expire(current)
                    continue
            elif self._clock() - datetime.fromisoformat(marker["claimed_at"]) <= STALE_CLAIM_AGE:
                # Запрос ещё создаётся конкурентным вызовом
                raise AlreadyExistsError(
                    f"Запрос {request.from_user_id} -> {request.to_user_id} уже ожидает ответа"
                )

            try:
                await self._store.update(
                    Collections.TRACK_REQUEST_PAIRS,
                    pair_id,
                    claim,
                    expect={VERSION_FIELD: marker[VERSION_FIELD]},
                )
                return
            except (ConflictError, NotFoundError):
                continue

        raise AlreadyExistsError(f"Запрос {request.from_user_id} -> {request.to_user_id} уже ожидает ответа")

    async def _release_pair(self, request: TrackRequest) -> None:
        pair_id = request_pair_id(request.from_user_id, request.to_user_id)
        try:
            await self._store.delete(Collections.TRACK_REQUEST_PAIRS, pair_id, expect={"request_id": request.id})
        except ConflictError:
            await log_info(f"Маркер пары {pair_id} принадлежит другому запросу", type_msg=TypeMsg.DEBUG)
