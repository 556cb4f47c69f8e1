# ridetrack/core/dependencies.py
"""
Dependency Injection.
Фабрики сервисов поверх глобальной инфраструктуры.
"""

from __future__ import annotations

from typing import Optional

from ridetrack.core.notifications.service import NotificationService
from ridetrack.core.rides.service import LiveRideManager
from ridetrack.core.social.repository import BlockRepository, FollowRepository, UserSettingsRepository
from ridetrack.core.store import Store, create_store
from ridetrack.core.tracking.publisher import LocationPublisher
from ridetrack.core.tracking.service import TrackingCoordinator
from ridetrack.core.visibility.aggregator import VisibilityAggregator
from ridetrack.infra.database import get_db
from ridetrack.infra.event_bus import get_event_bus

# Кэшированные экземпляры сервисов
_store: Optional[Store] = None
_notification_service: Optional[NotificationService] = None
_live_ride_manager: Optional[LiveRideManager] = None
_visibility_aggregator: Optional[VisibilityAggregator] = None
_tracking_coordinator: Optional[TrackingCoordinator] = None
_location_publisher: Optional[LocationPublisher] = None


def get_store() -> Store:
    """Возвращает хранилище записей (backend из STORE_BACKEND)."""
    global _store
    if _store is None:
        _store = create_store()
    return _store


def get_notification_service() -> NotificationService:
    """Возвращает сервис уведомлений."""
    global _notification_service
    if _notification_service is None:
        from ridetrack.config import settings

        _notification_service = NotificationService(
            event_bus=get_event_bus(),
            profiles=UserSettingsRepository(get_db()),
            default_language=settings.domain.DEFAULT_LANGUAGE,
        )
    return _notification_service


def get_live_ride_manager() -> LiveRideManager:
    """Возвращает сервис LiveRide."""
    global _live_ride_manager
    if _live_ride_manager is None:
        _live_ride_manager = LiveRideManager(
            store=get_store(),
            notifications=get_notification_service(),
        )
    return _live_ride_manager


def get_visibility_aggregator() -> VisibilityAggregator:
    """Возвращает агрегатор видимости."""
    global _visibility_aggregator
    if _visibility_aggregator is None:
        _visibility_aggregator = VisibilityAggregator(
            store=get_store(),
            follow_graph=FollowRepository(get_db()),
        )
    return _visibility_aggregator


def get_tracking_coordinator() -> TrackingCoordinator:
    """Возвращает сервис отслеживания."""
    global _tracking_coordinator
    if _tracking_coordinator is None:
        db = get_db()
        _tracking_coordinator = TrackingCoordinator(
            store=get_store(),
            follow_graph=FollowRepository(db),
            blocks=BlockRepository(db),
            privacy=UserSettingsRepository(db),
            notifications=get_notification_service(),
        )
    return _tracking_coordinator


def get_location_publisher() -> LocationPublisher:
    """Возвращает публикатор позиций."""
    global _location_publisher
    if _location_publisher is None:
        _location_publisher = LocationPublisher(
            store=get_store(),
            tracking=get_tracking_coordinator(),
        )
    return _location_publisher


async def close_services() -> None:
    """Закрывает live-запросы хранилища и сбрасывает кэш сервисов."""
    if _store is not None:
        await _store.close()
    reset_services()


def reset_services() -> None:
    """Сбрасывает кэшированные сервисы (для тестов)."""
    global _store, _notification_service, _live_ride_manager
    global _visibility_aggregator, _tracking_coordinator, _location_publisher

    _store = None
    _notification_service = None
    _live_ride_manager = None
    _visibility_aggregator = None
    _tracking_coordinator = None
    _location_publisher = None
