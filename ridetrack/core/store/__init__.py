# ridetrack/core/store/__init__.py
"""
Хранилище записей с live-запросами.
"""

from ridetrack.core.store.base import Contains, Eq, In, LiveQuery, Record, Store, VERSION_FIELD
from ridetrack.core.store.memory import InMemoryStore
from ridetrack.core.store.redis_store import RedisStore

__all__ = [
    "Contains",
    "Eq",
    "In",
    "LiveQuery",
    "Record",
    "Store",
    "VERSION_FIELD",
    "InMemoryStore",
    "RedisStore",
    "create_store",
]


def create_store() -> Store:
    """Создаёт хранилище по STORE_BACKEND из конфигурации."""
    from ridetrack.config import settings
    from ridetrack.infra.redis_client import get_redis

    if settings.store.STORE_BACKEND == "memory":
        return InMemoryStore()
    return RedisStore(
        get_redis(),
        retry_attempts=settings.store.RETRY_ATTEMPTS,
        retry_delay=settings.store.RETRY_DELAY,
    )
