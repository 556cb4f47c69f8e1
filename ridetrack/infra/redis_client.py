# ridetrack/infra/redis_client.py
"""
Клиент Redis.
Чтение записей, SET индексы, пайплайны и Pub/Sub для хранилища записей.
"""

from __future__ import annotations

import json

import redis.asyncio as redis
from redis.asyncio.client import Pipeline, PubSub

from ridetrack.common.logger import get_logger, log_error, log_info
from ridetrack.common.constants import TypeMsg

logger = get_logger("redis")


class RedisClient:
    """
    Асинхронный клиент Redis (Singleton).
    Все ключи и каналы автоматически получают namespace проекта.
    """

    _instance: RedisClient | None = None
    _client: redis.Redis | None = None

    def __new__(cls) -> RedisClient:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        """Инициализация (вызывается только один раз благодаря Singleton)."""
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._client = None
        self._namespace = "ridetrack"

    @property
    def client(self) -> redis.Redis:
        """Возвращает клиент Redis."""
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован. Вызовите connect() сначала.")
        return self._client

    @property
    def namespace(self) -> str:
        return self._namespace

    def make_key(self, key: str) -> str:
        """Добавляет namespace к ключу или каналу."""
        return f"{self._namespace}:{key}"

    async def connect(
        self,
        url: str | None = None,
        max_connections: int = 50,
        namespace: str | None = None,
    ) -> None:
        """
        Подключается к Redis.

        Args:
            url: URL Redis (если None, берётся из конфига)
            max_connections: Максимальное количество соединений
            namespace: Префикс ключей
        """
        if self._client is not None:
            return

        if url is None:
            from ridetrack.config import settings
            url = settings.redis.url
            max_connections = settings.redis.REDIS_MAX_CONNECTIONS
            namespace = settings.redis.REDIS_NAMESPACE

        if namespace:
            self._namespace = namespace

        await log_info("Подключение к Redis...", type_msg=TypeMsg.INFO)

        self._client = redis.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )
        await self._client.ping()

        await log_info("Подключение к Redis установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает соединение с Redis."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            await log_info("Соединение с Redis закрыто", type_msg=TypeMsg.INFO)

    # =========================================================================
    # БАЗОВЫЕ ОПЕРАЦИИ
    # =========================================================================

    async def get(self, key: str) -> str | None:
        """Получает значение по ключу."""
        return await self.client.get(self.make_key(key))

    async def mget(self, keys: list[str]) -> list[str | None]:
        """Получает значения нескольких ключей за один запрос."""
        if not keys:
            return []
        return await self.client.mget([self.make_key(k) for k in keys])

    # =========================================================================
    # JSON ОПЕРАЦИИ
    # =========================================================================

    async def get_json(self, key: str) -> dict | list | None:
        """Получает и парсит JSON."""
        data = await self.get(key)
        if data is None:
            return None

        try:
            return json.loads(data)
        except json.JSONDecodeError as e:
            await log_error(f"Повреждённый JSON по ключу {key}: {e}")
            return None

    # =========================================================================
    # SET ИНДЕКСЫ
    # =========================================================================

    async def smembers(self, key: str) -> set[str]:
        """Возвращает все элементы множества."""
        return await self.client.smembers(self.make_key(key))

    # =========================================================================
    # ПАЙПЛАЙНЫ И PUB/SUB
    # =========================================================================

    def pipeline(self, transaction: bool = True) -> Pipeline:
        """Создаёт пайплайн (используется для WATCH/MULTI/EXEC)."""
        return self.client.pipeline(transaction=transaction)

    def pubsub(self) -> PubSub:
        """Создаёт объект Pub/Sub на текущем соединении."""
        return self.client.pubsub()


def get_redis() -> RedisClient:
    """Возвращает глобальный экземпляр RedisClient."""
    return RedisClient()


async def init_redis() -> None:
    """Инициализирует подключение к Redis по настройкам из конфигурации."""
    from ridetrack.config import settings

    redis_client = get_redis()
    await redis_client.connect(
        url=settings.redis.url,
        max_connections=settings.redis.REDIS_MAX_CONNECTIONS,
        namespace=settings.redis.REDIS_NAMESPACE,
    )
    await log_info(
        f"Redis подключён: {settings.redis.REDIS_HOST}:{settings.redis.REDIS_PORT}/{settings.redis.REDIS_DB}",
        type_msg=TypeMsg.INFO,
    )


async def close_redis() -> None:
    """Закрывает подключение к Redis."""
    redis_client = get_redis()
    await redis_client.disconnect()
    await log_info("Redis отключён", type_msg=TypeMsg.INFO)
