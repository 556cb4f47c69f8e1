# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("STORE_BACKEND", "memory")

from ridetrack.common.constants import NotificationType, WhoCanTrack  # noqa: E402
from ridetrack.common.rate_limiter import RateLimiter  # noqa: E402
from ridetrack.core.rides.models import RiderProfile  # noqa: E402
from ridetrack.core.rides.service import LiveRideManager  # noqa: E402
from ridetrack.core.store.memory import InMemoryStore  # noqa: E402
from ridetrack.core.tracking.publisher import LocationPublisher  # noqa: E402
from ridetrack.core.tracking.service import TrackingCoordinator  # noqa: E402
from ridetrack.core.visibility.aggregator import VisibilityAggregator  # noqa: E402


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture(scope="session")
def lang_dict_path(project_root: Path) -> Path:
    """Путь к файлу локализации."""
    return project_root / "config" / "lang_dict.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "Системные настройки",
        "PROJECT_NAME": "ridetrack_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "ENVIRONMENT": "test",
        "LOG_LEVEL": "DEBUG",
        "LOG_TO_FILE": False,
        "LOG_FILE_PATH": "logs/test.log",
        "LOG_FORMAT": "json",
        "DEFAULT_LANGUAGE": "ru",
        "SUPPORTED_LANGUAGES": ["en", "ru"],
        "DB_HOST": "localhost",
        "DB_PORT": 5432,
        "DB_NAME": "ridetrack_test",
        "DB_USER": "postgres",
        "DB_PASSWORD": "test_password",
        "DB_MIN_POOL_SIZE": 1,
        "DB_MAX_POOL_SIZE": 5,
        "DB_COMMAND_TIMEOUT": 30,
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 1,
        "REDIS_PASSWORD": "",
        "REDIS_NAMESPACE": "ridetrack_test",
        "REDIS_MAX_CONNECTIONS": 10,
        "RABBITMQ_HOST": "localhost",
        "RABBITMQ_PORT": 5672,
        "RABBITMQ_USER": "guest",
        "RABBITMQ_PASSWORD": "guest",
        "RABBITMQ_VHOST": "/",
        "RABBITMQ_EXCHANGE": "ridetrack.test",
        "RABBITMQ_PREFETCH_COUNT": 5,
        "STORE_BACKEND": "memory",
        "STORE_RETRY_ATTEMPTS": 2,
        "STORE_RETRY_DELAY": 0.01,
        "POSITION_UPDATE_INTERVAL": 5,
        "GEOHASH_PRECISION": 7,
        "OCC_MAX_RETRIES": 4,
        "FRESHNESS_WINDOW_MINUTES": 10,
        "REQUEST_TTL_HOURS": 12,
        "PUBLISH_INTERVAL": 5,
        "EXPIRY_SWEEP_INTERVAL": 60,
    }


@pytest.fixture
def mock_lang_dict() -> dict[str, dict[str, str]]:
    """Мок словаря локализации для тестов."""
    return {
        "TRACK_REQUEST": {
            "en": "{name} wants to track your location",
            "ru": "{name} хочет отслеживать ваше местоположение",
        },
        "GREETING": {
            "en": "Hello, {name}!",
            "ru": "Привет, {name}!",
        },
        "ONLY_RU": {
            "ru": "Только по-русски",
        },
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


@pytest.fixture
def temp_lang_dict_file(tmp_path: Path, mock_lang_dict: dict[str, dict[str, str]]) -> Path:
    """Создаёт временный файл локализации."""
    lang_file = tmp_path / "lang_dict.json"
    lang_file.write_text(json.dumps(mock_lang_dict, ensure_ascii=False, indent=2))
    return lang_file


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.mget = AsyncMock(return_value=[])
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.exists = AsyncMock(return_value=False)
    redis.sadd = AsyncMock(return_value=1)
    redis.srem = AsyncMock(return_value=1)
    redis.smembers = AsyncMock(return_value=set())
    redis.make_key = lambda *parts: "ridetrack:" + ":".join(str(p) for p in parts)
    return redis


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=None)
    event_bus.subscribe = AsyncMock(return_value=None)
    event_bus.is_connected = True
    return event_bus


# =============================================================================
# ДОМЕННЫЕ ФЕЙКИ
# =============================================================================

class FakeClock:
    """Управляемые часы: datetime для сервисов и monotonic для RateLimiter."""

    def __init__(self, start: datetime) -> None:
        self._start = start
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def rewind(self, **kwargs: float) -> datetime:
        self.now = self.now - timedelta(**kwargs)
        return self.now

    def monotonic(self) -> float:
        return (self.now - self._start).total_seconds()


class FakeSocial:
    """Социальный граф, блокировки, приватность и профили в памяти."""

    def __init__(self) -> None:
        self.following: dict[str, set[str]] = {}
        self.blocks: set[tuple[str, str]] = set()
        self.privacy: dict[str, WhoCanTrack] = {}
        self.names: dict[str, str] = {}
        self.languages: dict[str, str] = {}

    def follow(self, follower: str, *targets: str) -> None:
        self.following.setdefault(follower, set()).update(targets)

    def block(self, blocker: str, blocked: str) -> None:
        self.blocks.add((blocker, blocked))

    async def get_following(self, user_id: str) -> set[str]:
        return set(self.following.get(user_id, set()))

    async def get_followers(self, user_id: str) -> set[str]:
        return {u for u, targets in self.following.items() if user_id in targets}

    async def is_following(self, follower_id: str, following_id: str) -> bool:
        return following_id in self.following.get(follower_id, set())

    async def has_block_relationship(self, user_a: str, user_b: str) -> bool:
        return (user_a, user_b) in self.blocks or (user_b, user_a) in self.blocks

    async def get_who_can_track(self, user_id: str) -> WhoCanTrack:
        return self.privacy.get(user_id, WhoCanTrack.FOLLOWERS)

    async def get_display_name(self, user_id: str) -> str | None:
        return self.names.get(user_id)

    async def get_language(self, user_id: str) -> str | None:
        return self.languages.get(user_id)


class RecordingNotifications:
    """NotificationSink, запоминающий отправленные уведомления."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def notify(
        self,
        user_id: str,
        notification_type: NotificationType,
        *,
        from_user_id: str,
        from_name: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> bool:
        if user_id == from_user_id:
            return False
        self.sent.append({
            "user_id": user_id,
            "type": NotificationType(notification_type),
            "from_user_id": from_user_id,
            "from_name": from_name,
            "data": data or {},
        })
        return True

    def of_type(self, notification_type: NotificationType) -> list[dict[str, Any]]:
        return [n for n in self.sent if n["type"] == notification_type]

    def recipients(self, notification_type: NotificationType) -> list[str]:
        return [n["user_id"] for n in self.of_type(notification_type)]


@pytest.fixture
def clock() -> FakeClock:
    """Часы, стартующие с фиксированного момента."""
    return FakeClock(datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryStore:
    """Хранилище в памяти."""
    return InMemoryStore()


@pytest.fixture
def social() -> FakeSocial:
    """Фейковые социальные коллабораторы."""
    return FakeSocial()


@pytest.fixture
def notifications() -> RecordingNotifications:
    """Приёмник уведомлений."""
    return RecordingNotifications()


@pytest.fixture
def profile() -> RiderProfile:
    """Профиль райдера."""
    return RiderProfile(name="Alex", avatar_url="https://cdn.example.com/alex.png")


@pytest.fixture
def ride_manager(store: InMemoryStore, notifications: RecordingNotifications, clock: FakeClock) -> LiveRideManager:
    """LiveRideManager с управляемыми часами."""
    return LiveRideManager(
        store=store,
        notifications=notifications,
        clock=clock,
        rate_limiter=RateLimiter(10, clock=clock.monotonic),
        geohash_precision=6,
        max_retries=3,
    )


@pytest.fixture
def aggregator(store: InMemoryStore, social: FakeSocial) -> VisibilityAggregator:
    """Агрегатор видимости."""
    return VisibilityAggregator(store=store, follow_graph=social)


@pytest.fixture
def tracking(
    store: InMemoryStore,
    social: FakeSocial,
    notifications: RecordingNotifications,
    clock: FakeClock,
) -> TrackingCoordinator:
    """TrackingCoordinator с управляемыми часами."""
    return TrackingCoordinator(
        store=store,
        follow_graph=social,
        blocks=social,
        privacy=social,
        notifications=notifications,
        clock=clock,
        request_ttl=timedelta(hours=24),
        max_retries=3,
    )


@pytest.fixture
def publisher(store: InMemoryStore, tracking: TrackingCoordinator, clock: FakeClock) -> LocationPublisher:
    """LocationPublisher с управляемыми часами."""
    return LocationPublisher(
        store=store,
        tracking=tracking,
        clock=clock,
        rate_limiter=RateLimiter(10, clock=clock.monotonic),
        freshness_window=timedelta(minutes=15),
    )
