# tests/core/test_rides_service.py
"""
Тесты для сервиса LiveRide.
"""

from __future__ import annotations

import asyncio

import pytest

from ridetrack.common.constants import Collections, NotificationType, RideStatus
from ridetrack.common.errors import (
    AlreadyActiveError,
    InvalidArgumentError,
    InvalidStateError,
    NotFoundError,
)
from ridetrack.core.geo.geomath import haversine_km, path_distance_km
from ridetrack.core.rides.models import RiderProfile
from ridetrack.core.rides.service import LiveRideManager
from ridetrack.core.store.memory import InMemoryStore

LONDON = (51.5074, -0.1278)


class TestStart:
    """Тесты старта поездки."""

    @pytest.mark.asyncio
    async def test_start_creates_active_session(
        self,
        ride_manager: LiveRideManager,
        profile: RiderProfile,
        clock,
    ) -> None:
        """Новая сессия активна, трек содержит точку старта."""
        session = await ride_manager.start("alex", profile, *LONDON)

        assert session.status == RideStatus.ACTIVE
        assert session.rider_name == "Alex"
        assert session.avatar_url == profile.avatar_url
        assert session.started_at == clock.now
        assert session.start_position == session.current_position
        assert len(session.geohash) == 6
        assert len(session.path_points) == 1
        assert session.path_points[0].time == int(clock.now.timestamp())
        assert session.total_distance_km == 0.0
        assert session.version == 1

    @pytest.mark.asyncio
    async def test_second_start_fails(self, ride_manager: LiveRideManager, profile: RiderProfile) -> None:
        """Вторая незавершённая сессия запрещена."""
        await ride_manager.start("alex", profile, *LONDON)
        with pytest.raises(AlreadyActiveError):
            await ride_manager.start("alex", profile, *LONDON)

    @pytest.mark.asyncio
    async def test_second_start_fails_while_paused(self, ride_manager: LiveRideManager, profile: RiderProfile) -> None:
        session = await ride_manager.start("alex", profile, *LONDON)
        await ride_manager.pause(session.id)
        with pytest.raises(AlreadyActiveError):
            await ride_manager.start("alex", profile, *LONDON)

    @pytest.mark.asyncio
    async def test_concurrent_starts_single_winner(self, ride_manager: LiveRideManager, profile: RiderProfile) -> None:
        """Из одновременных стартов успешен ровно один."""
        results = await asyncio.gather(
            *(ride_manager.start("alex", profile, *LONDON) for _ in range(4)),
            return_exceptions=True,
        )
        started = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, AlreadyActiveError)]
        assert len(started) == 1
        assert len(failed) == 3

    @pytest.mark.asyncio
    async def test_start_after_end(self, ride_manager: LiveRideManager, profile: RiderProfile, store: InMemoryStore) -> None:
        """После завершения слот освобождается."""
        first = await ride_manager.start("alex", profile, *LONDON)
        await ride_manager.end(first.id)
        assert await store.get(Collections.ACTIVE_RIDES, "alex") is None

        second = await ride_manager.start("alex", profile, *LONDON)
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_stale_marker_for_completed_session_is_taken_over(
        self,
        ride_manager: LiveRideManager,
        profile: RiderProfile,
        store: InMemoryStore,
        clock,
    ) -> None:
        """Маркер, указывающий на завершённую сессию, перезаписывается."""
        await store.create(Collections.LIVE_RIDES, {"status": "completed"}, record_id="old")
        await store.create(
            Collections.ACTIVE_RIDES,
            {"rider_id": "alex", "session_id": "old", "claimed_at": clock.now.isoformat()},
            record_id="alex",
        )

        session = await ride_manager.start("alex", profile, *LONDON)

        marker = await store.get(Collections.ACTIVE_RIDES, "alex")
        assert marker["session_id"] == session.id

    @pytest.mark.asyncio
    async def test_abandoned_marker_expires(
        self,
        ride_manager: LiveRideManager,
        profile: RiderProfile,
        store: InMemoryStore,
        clock,
    ) -> None:
        """Маркер без сессии живёт минуту, потом считается брошенным."""
        await store.create(
            Collections.ACTIVE_RIDES,
            {"rider_id": "alex", "session_id": "ghost", "claimed_at": clock.now.isoformat()},
            record_id="alex",
        )
        with pytest.raises(AlreadyActiveError):
            await ride_manager.start("alex", profile, *LONDON)

        clock.advance(minutes=2)
        session = await ride_manager.start("alex", profile, *LONDON)
        assert session.status == RideStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_invalid_coordinates(self, ride_manager: LiveRideManager, profile: RiderProfile, store: InMemoryStore) -> None:
        with pytest.raises(InvalidArgumentError):
            await ride_manager.start("alex", profile, 95.0, 0.0)
        assert await store.get(Collections.ACTIVE_RIDES, "alex") is None


class TestPositionUpdates:
    """Тесты записи трека."""

    @pytest.mark.asyncio
    async def test_distance_and_duration(self, ride_manager: LiveRideManager, profile: RiderProfile, clock) -> None:
        """Расстояние растёт на отрезок, длительность — по часам от старта."""
        session = await ride_manager.start("alex", profile, *LONDON)
        clock.advance(minutes=3, seconds=20)

        updated = await ride_manager.update_position(session.id, 51.5160, -0.1278)

        expected = haversine_km(51.5074, -0.1278, 51.5160, -0.1278)
        assert updated.total_distance_km == pytest.approx(expected)
        assert updated.total_distance_km == pytest.approx(0.956, abs=0.01)
        assert updated.duration_minutes == 3
        assert updated.current_position.lat == 51.5160
        assert updated.updated_at == clock.now
        assert len(updated.path_points) == 2

    @pytest.mark.asyncio
    async def test_distance_is_sum_of_segments(self, ride_manager: LiveRideManager, profile: RiderProfile, clock) -> None:
        """После N обновлений расстояние равно сумме отрезков и не убывает."""
        session = await ride_manager.start("alex", profile, 0.0, 0.0)
        distances = []
        for step in range(1, 6):
            clock.advance(seconds=30)
            session = await ride_manager.update_position(session.id, 0.0, step * 0.001 * (-1) ** step)
            distances.append(session.total_distance_km)

        assert session.total_distance_km == pytest.approx(path_distance_km(session.path_points))
        assert distances == sorted(distances)
        times = [p.time for p in session.path_points]
        assert times == sorted(times)

    @pytest.mark.asyncio
    async def test_point_time_never_decreases(self, ride_manager: LiveRideManager, profile: RiderProfile, clock) -> None:
        """Скачок часов назад не ломает порядок точек."""
        session = await ride_manager.start("alex", profile, *LONDON)
        clock.rewind(minutes=5)
        updated = await ride_manager.update_position(session.id, 51.51, -0.12)
        assert updated.path_points[1].time == updated.path_points[0].time
        assert updated.duration_minutes == 0

    @pytest.mark.asyncio
    async def test_update_on_paused_session(self, ride_manager: LiveRideManager, profile: RiderProfile) -> None:
        """Пауза: обновление отклоняется, трек не меняется."""
        session = await ride_manager.start("alex", profile, *LONDON)
        await ride_manager.pause(session.id)

        with pytest.raises(InvalidStateError):
            await ride_manager.update_position(session.id, 51.52, -0.12)

        assert len((await ride_manager.get_session(session.id)).path_points) == 1

    @pytest.mark.asyncio
    async def test_late_update_after_end_is_rejected(self, ride_manager: LiveRideManager, profile: RiderProfile) -> None:
        session = await ride_manager.start("alex", profile, *LONDON)
        await ride_manager.end(session.id)
        with pytest.raises(InvalidStateError):
            await ride_manager.update_position(session.id, 51.52, -0.12)

    @pytest.mark.asyncio
    async def test_concurrent_updates_all_recorded(self, ride_manager: LiveRideManager, profile: RiderProfile) -> None:
        session = await ride_manager.start("alex", profile, 0.0, 0.0)
        await asyncio.gather(*(
            ride_manager.update_position(session.id, 0.0, i * 0.001) for i in range(1, 4)
        ))
        stored = await ride_manager.get_session(session.id)
        assert len(stored.path_points) == 4
        assert stored.total_distance_km == pytest.approx(path_distance_km(stored.path_points))

    @pytest.mark.asyncio
    async def test_missing_session(self, ride_manager: LiveRideManager) -> None:
        with pytest.raises(NotFoundError):
            await ride_manager.update_position("nope", 0.0, 0.0)


class TestReportPosition:
    """Тесты троттлинга report_position."""

    @pytest.mark.asyncio
    async def test_throttled_within_interval(self, ride_manager: LiveRideManager, profile: RiderProfile, clock) -> None:
        """Вызовы чаще интервала отбрасываются."""
        session = await ride_manager.start("alex", profile, *LONDON)

        assert await ride_manager.report_position(session.id, 51.51, -0.12) is not None
        clock.advance(seconds=3)
        assert await ride_manager.report_position(session.id, 51.52, -0.12) is None
        clock.advance(seconds=7)
        assert await ride_manager.report_position(session.id, 51.53, -0.12) is not None

        assert len((await ride_manager.get_session(session.id)).path_points) == 3

    @pytest.mark.asyncio
    async def test_failed_write_does_not_consume_slot(
        self,
        ride_manager: LiveRideManager,
        profile: RiderProfile,
    ) -> None:
        """После ошибки записи следующий вызов не ждёт интервал."""
        session = await ride_manager.start("alex", profile, *LONDON)
        await ride_manager.pause(session.id)

        with pytest.raises(InvalidStateError):
            await ride_manager.report_position(session.id, 51.51, -0.12)

        await ride_manager.resume(session.id)
        assert await ride_manager.report_position(session.id, 51.51, -0.12) is not None


class TestLifecycle:
    """Тесты смены статусов."""

    @pytest.mark.asyncio
    async def test_pause_resume_end(self, ride_manager: LiveRideManager, profile: RiderProfile, clock) -> None:
        session = await ride_manager.start("alex", profile, *LONDON)

        paused = await ride_manager.pause(session.id)
        assert paused.status == RideStatus.PAUSED
        assert paused.path_points == session.path_points

        resumed = await ride_manager.resume(session.id)
        assert resumed.status == RideStatus.ACTIVE

        clock.advance(minutes=42)
        ended = await ride_manager.end(session.id)
        assert ended.status == RideStatus.COMPLETED
        assert ended.ended_at == clock.now
        assert ended.duration_minutes == 42

    @pytest.mark.asyncio
    async def test_invalid_transitions(self, ride_manager: LiveRideManager, profile: RiderProfile) -> None:
        session = await ride_manager.start("alex", profile, *LONDON)
        with pytest.raises(InvalidStateError):
            await ride_manager.resume(session.id)

        await ride_manager.end(session.id)
        with pytest.raises(InvalidStateError):
            await ride_manager.end(session.id)
        with pytest.raises(InvalidStateError):
            await ride_manager.pause(session.id)

    @pytest.mark.asyncio
    async def test_end_from_paused(self, ride_manager: LiveRideManager, profile: RiderProfile) -> None:
        session = await ride_manager.start("alex", profile, *LONDON)
        await ride_manager.pause(session.id)
        assert (await ride_manager.end(session.id)).is_completed

    @pytest.mark.asyncio
    async def test_end_missing(self, ride_manager: LiveRideManager) -> None:
        with pytest.raises(NotFoundError):
            await ride_manager.end("nope")


class TestViewers:
    """Тесты зрителей и флагов видимости."""

    @pytest.mark.asyncio
    async def test_start_invites_unique_viewers(
        self,
        ride_manager: LiveRideManager,
        profile: RiderProfile,
        notifications,
    ) -> None:
        """Повторы и сам райдер отбрасываются, каждый зритель приглашён один раз."""
        session = await ride_manager.start("alex", profile, *LONDON, viewers=["bob", "cat", "bob", "alex"])

        assert session.allowed_viewer_ids == ["bob", "cat"]
        invites = notifications.of_type(NotificationType.LIVERIDE_INVITE)
        assert sorted(n["user_id"] for n in invites) == ["bob", "cat"]
        assert invites[0]["data"] == {"ride_id": session.id}
        assert invites[0]["from_name"] == "Alex"

    @pytest.mark.asyncio
    async def test_set_viewers_invites_only_new(
        self,
        ride_manager: LiveRideManager,
        profile: RiderProfile,
        notifications,
    ) -> None:
        session = await ride_manager.start("alex", profile, *LONDON, viewers=["bob", "cat"])
        notifications.sent.clear()

        updated = await ride_manager.set_viewers(session.id, ["cat", "dan"])

        assert updated.allowed_viewer_ids == ["cat", "dan"]
        assert notifications.recipients(NotificationType.LIVERIDE_INVITE) == ["dan"]

    @pytest.mark.asyncio
    async def test_add_and_remove_viewer(
        self,
        ride_manager: LiveRideManager,
        profile: RiderProfile,
        notifications,
    ) -> None:
        session = await ride_manager.start("alex", profile, *LONDON, viewers=["bob"])
        notifications.sent.clear()

        again = await ride_manager.add_viewer(session.id, "bob")
        assert again.allowed_viewer_ids == ["bob"]
        assert notifications.sent == []

        added = await ride_manager.add_viewer(session.id, "cat")
        assert added.allowed_viewer_ids == ["bob", "cat"]

        removed = await ride_manager.remove_viewer(session.id, "bob")
        assert removed.allowed_viewer_ids == ["cat"]

    @pytest.mark.asyncio
    async def test_flags_are_independent(self, ride_manager: LiveRideManager, profile: RiderProfile) -> None:
        """Флаги меняются независимо друг от друга и от списка зрителей."""
        session = await ride_manager.start("alex", profile, *LONDON, viewers=["bob"], followers_only=True)

        public = await ride_manager.set_public(session.id, True)
        assert public.is_public and public.followers_only
        assert public.allowed_viewer_ids == ["bob"]

        narrowed = await ride_manager.set_followers_only(session.id, False)
        assert narrowed.is_public and not narrowed.followers_only

    @pytest.mark.asyncio
    async def test_completed_session_is_read_only(self, ride_manager: LiveRideManager, profile: RiderProfile) -> None:
        session = await ride_manager.start("alex", profile, *LONDON)
        await ride_manager.end(session.id)

        with pytest.raises(InvalidStateError):
            await ride_manager.set_public(session.id, True)
        with pytest.raises(InvalidStateError):
            await ride_manager.set_viewers(session.id, ["bob"])
        with pytest.raises(InvalidStateError):
            await ride_manager.remove_viewer(session.id, "bob")


class TestReads:
    """Тесты чтения и live-подписок."""

    @pytest.mark.asyncio
    async def test_get_session_missing(self, ride_manager: LiveRideManager) -> None:
        with pytest.raises(NotFoundError):
            await ride_manager.get_session("nope")

    @pytest.mark.asyncio
    async def test_get_active_session(self, ride_manager: LiveRideManager, profile: RiderProfile) -> None:
        assert await ride_manager.get_active_session("alex") is None

        session = await ride_manager.start("alex", profile, *LONDON)
        assert (await ride_manager.get_active_session("alex")).id == session.id

        await ride_manager.end(session.id)
        assert await ride_manager.get_active_session("alex") is None

    @pytest.mark.asyncio
    async def test_watch_session(self, ride_manager: LiveRideManager, profile: RiderProfile) -> None:
        session = await ride_manager.start("alex", profile, *LONDON)

        async with await ride_manager.watch_session(session.id) as stream:
            first = await stream.__anext__()
            assert first.status == RideStatus.ACTIVE

            await ride_manager.pause(session.id)
            second = await asyncio.wait_for(stream.__anext__(), timeout=1)
            assert second.status == RideStatus.PAUSED

    @pytest.mark.asyncio
    async def test_watch_active_session(self, ride_manager: LiveRideManager, profile: RiderProfile) -> None:
        """Подписка на свою поездку: сессия, затем None после завершения."""
        stream = await ride_manager.watch_active_session("alex")
        assert await stream.__anext__() is None

        session = await ride_manager.start("alex", profile, *LONDON)
        current = await asyncio.wait_for(stream.__anext__(), timeout=1)
        assert current.id == session.id

        await ride_manager.end(session.id)
        assert await asyncio.wait_for(stream.__anext__(), timeout=1) is None
        await stream.close()


class TestDefaults:
    """Тесты значений по умолчанию из конфигурации."""

    def test_uses_settings(self, store: InMemoryStore, notifications) -> None:
        from ridetrack.config import settings

        manager = LiveRideManager(store=store, notifications=notifications)
        assert manager._geohash_precision == settings.live_ride.GEOHASH_PRECISION
        assert manager._rate_limiter.min_interval == settings.live_ride.POSITION_UPDATE_INTERVAL
        assert manager._max_retries == settings.live_ride.OCC_MAX_RETRIES

    @pytest.mark.asyncio
    async def test_stale_claim_window(self, ride_manager: LiveRideManager, profile: RiderProfile, store: InMemoryStore, clock) -> None:
        """Граница окна: маркер ровно минутной давности ещё живой."""
        await store.create(
            Collections.ACTIVE_RIDES,
            {"rider_id": "alex", "session_id": "ghost", "claimed_at": clock.now.isoformat()},
            record_id="alex",
        )
        clock.advance(minutes=1)
        with pytest.raises(AlreadyActiveError):
            await ride_manager.start("alex", profile, *LONDON)
        clock.advance(seconds=1)
        await ride_manager.start("alex", profile, *LONDON)
