# ridetrack/core/store/redis_store.py
"""
Хранилище записей на Redis.

Раскладка ключей (с namespace RedisClient):
- rec:{collection}:{id}  — JSON записи
- idx:{collection}       — SET идентификаторов коллекции
- changes:{collection}   — канал Pub/Sub с уведомлениями об изменениях

Запись выполняется транзакцией WATCH/MULTI/EXEC; при конкурентной записи
транзакция повторяется с перечитыванием записи и проверкой предусловий.
Live-запросы слушают канал изменений коллекции и пересчитывают результат.
"""

from __future__ import annotations

import asyncio
import json
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar
from uuid import uuid4

from redis.asyncio.client import PubSub
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, WatchError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ridetrack.common.constants import TypeMsg
from ridetrack.common.errors import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    TransientFailureError,
)
from ridetrack.common.logger import log_error, log_info
from ridetrack.core.store.base import (
    VERSION_FIELD,
    Eq,
    LiveQuery,
    Predicate,
    Record,
    Store,
    check_expectations,
    matches_all,
    sort_records,
)
from ridetrack.infra.redis_client import RedisClient

T = TypeVar("T")

# Сколько раз повторять транзакцию при WatchError
WATCH_RETRIES = 5

# Маркер удаления записи в _transact
_DELETE = object()


def retry_on_redis_error(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """
    Декоратор ретрая при сетевых ошибках Redis.
    После исчерпания попыток выбрасывает TransientFailureError.
    """
    @wraps(func)
    async def wrapper(self: RedisStore, *args: Any, **kwargs: Any) -> T:
        last_error: Exception | None = None

        for attempt in range(1, self._retry_attempts + 1):
            try:
                return await func(self, *args, **kwargs)
            except (RedisConnectionError, RedisTimeoutError) as e:
                last_error = e
                if attempt < self._retry_attempts:
                    await log_info(
                        f"Ошибка Redis в {func.__name__} (попытка {attempt}/{self._retry_attempts}): {e}",
                        type_msg=TypeMsg.WARNING,
                    )
                    await asyncio.sleep(self._retry_delay * attempt)

        await log_error(f"Redis недоступен, {func.__name__} не выполнен: {last_error}")
        raise TransientFailureError(f"Хранилище недоступно: {last_error}") from last_error

    return wrapper


class RedisStore(Store):
    """Store поверх RedisClient."""

    def __init__(
        self,
        redis_client: RedisClient,
        retry_attempts: int = 3,
        retry_delay: float = 0.2,
    ) -> None:
        """
        Args:
            redis_client: Подключённый RedisClient
            retry_attempts: Попытки при сетевых ошибках
            retry_delay: Базовая задержка между попытками (секунды)
        """
        self._redis = redis_client
        self._retry_attempts = max(1, retry_attempts)
        self._retry_delay = retry_delay
        self._live_queries: set[LiveQuery] = set()

    # =========================================================================
    # КЛЮЧИ
    # =========================================================================

    @staticmethod
    def _record_key(collection: str, record_id: str) -> str:
        return f"rec:{collection}:{record_id}"

    @staticmethod
    def _index_key(collection: str) -> str:
        return f"idx:{collection}"

    @staticmethod
    def _channel(collection: str) -> str:
        return f"changes:{collection}"

    # =========================================================================
    # ТРАНЗАКЦИИ
    # =========================================================================

    async def _transact(
        self,
        collection: str,
        record_id: str,
        mutate: Callable[[Record | None], Any],
    ) -> Any:
        """
        Читает запись под WATCH, вычисляет новое значение и записывает его.

        mutate получает текущую запись (или None) и возвращает новую запись
        либо _DELETE; доменные исключения из mutate пробрасываются как есть.
        """
        key = self._redis.make_key(self._record_key(collection, record_id))
        index_key = self._redis.make_key(self._index_key(collection))
        channel = self._redis.make_key(self._channel(collection))

        for _ in range(WATCH_RETRIES):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    current = json.loads(raw) if raw is not None else None

                    result = mutate(current)

                    pipe.multi()
                    if result is _DELETE:
                        pipe.delete(key)
                        pipe.srem(index_key, record_id)
                    else:
                        result["id"] = record_id
                        result[VERSION_FIELD] = (current or {}).get(VERSION_FIELD, 0) + 1
                        pipe.set(key, json.dumps(result, ensure_ascii=False))
                        pipe.sadd(index_key, record_id)
                    pipe.publish(channel, json.dumps({"id": record_id}))
                    await pipe.execute()
                    return result
                except WatchError:
                    continue

        raise ConflictError(f"{collection}/{record_id}: слишком много конкурентных записей")

    @staticmethod
    def _require(collection: str, record_id: str, current: Record | None, expect: Record | None) -> Record:
        if current is None:
            raise NotFoundError(f"{collection}/{record_id} не найдена")
        if not check_expectations(current, expect):
            raise ConflictError(f"{collection}/{record_id}: предусловие не выполнено")
        return dict(current)

    # =========================================================================
    # ОПЕРАЦИИ STORE
    # =========================================================================

    @retry_on_redis_error
    async def create(self, collection: str, data: Record, record_id: str | None = None) -> Record:
        record_id = record_id or str(uuid4())

        def mutate(current: Record | None) -> Record:
            if current is not None:
                raise AlreadyExistsError(f"{collection}/{record_id} уже существует")
            return dict(data)

        return await self._transact(collection, record_id, mutate)

    @retry_on_redis_error
    async def get(self, collection: str, record_id: str) -> Record | None:
        return await self._redis.get_json(self._record_key(collection, record_id))

    @retry_on_redis_error
    async def put(self, collection: str, record_id: str, data: Record) -> Record:
        return await self._transact(collection, record_id, lambda current: dict(data))

    @retry_on_redis_error
    async def update(
        self,
        collection: str,
        record_id: str,
        fields: Record,
        expect: Record | None = None,
    ) -> Record:
        def mutate(current: Record | None) -> Record:
            record = self._require(collection, record_id, current, expect)
            record.update(fields)
            return record

        return await self._transact(collection, record_id, mutate)

    @retry_on_redis_error
    async def append_to_array(
        self,
        collection: str,
        record_id: str,
        field: str,
        element: Any,
        updates: Record | None = None,
        expect: Record | None = None,
    ) -> Record:
        def mutate(current: Record | None) -> Record:
            record = self._require(collection, record_id, current, expect)
            record[field] = list(record.get(field) or []) + [element]
            record.update(updates or {})
            return record

        return await self._transact(collection, record_id, mutate)

    @retry_on_redis_error
    async def delete(self, collection: str, record_id: str, expect: Record | None = None) -> bool:
        existed = False

        def mutate(current: Record | None) -> Any:
            nonlocal existed
            existed = current is not None
            if current is not None and not check_expectations(current, expect):
                raise ConflictError(f"{collection}/{record_id}: предусловие не выполнено")
            return _DELETE

        await self._transact(collection, record_id, mutate)
        return existed

    @retry_on_redis_error
    async def query(self, collection: str, *predicates: Predicate) -> list[Record]:
        id_filter = next((p for p in predicates if isinstance(p, Eq) and p.field == "id"), None)
        if id_filter is not None:
            ids = [str(id_filter.value)]
        else:
            ids = sorted(await self._redis.smembers(self._index_key(collection)))

        raws = await self._redis.mget([self._record_key(collection, i) for i in ids])
        records = (json.loads(raw) for raw in raws if raw is not None)
        return sort_records(r for r in records if matches_all(r, predicates))

    # =========================================================================
    # LIVE-ЗАПРОСЫ
    # =========================================================================

    @retry_on_redis_error
    async def watch(self, collection: str, *predicates: Predicate) -> LiveQuery:
        pubsub = self._redis.pubsub()
        # Подписка до первого запроса: изменения между ними не теряются
        await pubsub.subscribe(self._redis.make_key(self._channel(collection)))

        task: asyncio.Task | None = None

        async def stop() -> None:
            self._live_queries.discard(live)
            if task is not None:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            await pubsub.unsubscribe()
            await pubsub.aclose()

        live = LiveQuery(on_close=stop)
        self._live_queries.add(live)
        task = asyncio.create_task(self._listen(collection, predicates, pubsub, live))
        return live

    async def _listen(
        self,
        collection: str,
        predicates: tuple[Predicate, ...],
        pubsub: PubSub,
        live: LiveQuery,
    ) -> None:
        """Пересчитывает запрос на каждое сообщение канала изменений."""
        try:
            live.push(await self.query(collection, *predicates))
            while not live.closed:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None:
                    continue
                live.push(await self.query(collection, *predicates))
        except (TransientFailureError, RedisError) as e:
            await log_error(f"Live-запрос по {collection} прерван: {e}")
            live.fail(TransientFailureError(f"Live-запрос прерван: {e}"))

    async def close(self) -> None:
        """Закрывает все открытые live-запросы."""
        for live in list(self._live_queries):
            await live.close()
