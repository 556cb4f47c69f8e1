# ridetrack/core/store/base.py
"""
Абстракция хранилища записей с live-запросами.

Запись — JSON-совместимый словарь с обязательными служебными полями:
- id: идентификатор записи в коллекции
- _version: целое, увеличивается при каждой записи (токен оптимистичной блокировки)
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

VERSION_FIELD = "_version"

Record = dict[str, Any]


# =============================================================================
# ПРЕДИКАТЫ
# =============================================================================

@dataclass(frozen=True)
class Eq:
    """field == value"""
    field: str
    value: Any

    def matches(self, record: Record) -> bool:
        return record.get(self.field) == self.value


@dataclass(frozen=True)
class In:
    """field ∈ values"""
    field: str
    values: tuple[Any, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", tuple(self.values))

    def matches(self, record: Record) -> bool:
        return record.get(self.field) in self.values


@dataclass(frozen=True)
class Contains:
    """value ∈ record[field] (поле-массив)"""
    field: str
    value: Any

    def matches(self, record: Record) -> bool:
        items = record.get(self.field)
        return isinstance(items, list) and self.value in items


Predicate = Eq | In | Contains


def matches_all(record: Record, predicates: Iterable[Predicate]) -> bool:
    """Проверяет, что запись удовлетворяет всем предикатам."""
    return all(p.matches(record) for p in predicates)


def check_expectations(record: Record, expect: dict[str, Any] | None) -> bool:
    """Проверяет предусловия условного обновления."""
    if not expect:
        return True
    return all(record.get(key) == value for key, value in expect.items())


def sort_records(records: Iterable[Record]) -> list[Record]:
    """Детерминированный порядок результатов запроса."""
    return sorted(records, key=lambda r: str(r.get("id")))


# =============================================================================
# LIVE QUERY
# =============================================================================

class LiveQuery:
    """
    Непрерывно обновляемый результат запроса.

    Асинхронный итератор: первое значение — текущий набор записей,
    далее — каждый изменившийся набор. Медленный потребитель получает
    только последний снимок. close() освобождает подписку.

    Example:
        async with store.watch("live_rides", Eq("is_public", True)) as live:
            async for records in live:
                ...
    """

    def __init__(self, on_close: Callable[[], Awaitable[None]] | None = None) -> None:
        self._latest: list[Record] | None = None
        self._last_pushed: list[Record] | None = None
        self._error: BaseException | None = None
        self._event = asyncio.Event()
        self._closed = False
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, records: list[Record]) -> None:
        """Публикует новый снимок (одинаковые подряд снимки отбрасываются)."""
        if self._closed or records == self._last_pushed:
            return
        self._last_pushed = records
        self._latest = records
        self._event.set()

    def fail(self, error: BaseException) -> None:
        """Завершает поток с ошибкой; она будет выброшена потребителю."""
        if self._closed:
            return
        self._error = error
        self._event.set()

    async def close(self) -> None:
        """Закрывает live-запрос (повторный вызов безопасен)."""
        if self._closed:
            return
        self._closed = True
        self._event.set()
        if self._on_close is not None:
            on_close, self._on_close = self._on_close, None
            await on_close()

    def __aiter__(self) -> LiveQuery:
        return self

    async def __anext__(self) -> list[Record]:
        while True:
            if self._closed:
                raise StopAsyncIteration
            if self._latest is not None:
                snapshot, self._latest = self._latest, None
                self._event.clear()
                return snapshot
            if self._error is not None:
                raise self._error
            self._event.clear()
            await self._event.wait()

    async def __aenter__(self) -> LiveQuery:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


# =============================================================================
# ХРАНИЛИЩЕ
# =============================================================================

class Store(ABC):
    """
    Хранилище записей по коллекциям.

    Все операции — точки приостановки. Условные обновления принимают
    expect: словарь {поле: ожидаемое значение}; при несовпадении
    выбрасывается ConflictError и запись не изменяется.
    """

    @abstractmethod
    async def create(self, collection: str, data: Record, record_id: str | None = None) -> Record:
        """
        Создаёт запись, если её нет.

        Raises:
            AlreadyExistsError: запись с таким id уже существует
        """

    @abstractmethod
    async def get(self, collection: str, record_id: str) -> Record | None:
        """Возвращает запись или None."""

    @abstractmethod
    async def put(self, collection: str, record_id: str, data: Record) -> Record:
        """Создаёт или полностью заменяет запись."""

    @abstractmethod
    async def update(
        self,
        collection: str,
        record_id: str,
        fields: Record,
        expect: Record | None = None,
    ) -> Record:
        """
        Обновляет указанные поля.

        Raises:
            NotFoundError: записи нет
            ConflictError: не выполнено предусловие
        """

    @abstractmethod
    async def append_to_array(
        self,
        collection: str,
        record_id: str,
        field: str,
        element: Any,
        updates: Record | None = None,
        expect: Record | None = None,
    ) -> Record:
        """
        Атомарно добавляет элемент в поле-массив и применяет updates.

        Raises:
            NotFoundError: записи нет
            ConflictError: не выполнено предусловие
        """

    @abstractmethod
    async def delete(self, collection: str, record_id: str, expect: Record | None = None) -> bool:
        """Удаляет запись. Возвращает False, если её не было."""

    @abstractmethod
    async def query(self, collection: str, *predicates: Predicate) -> list[Record]:
        """Возвращает записи, удовлетворяющие всем предикатам (порядок по id)."""

    @abstractmethod
    async def watch(self, collection: str, *predicates: Predicate) -> LiveQuery:
        """Запускает live-запрос по предикатам."""

    async def watch_record(self, collection: str, record_id: str) -> LiveQuery:
        """Live-запрос одной записи: снимки вида [record] или []."""
        return await self.watch(collection, Eq("id", record_id))

    async def close(self) -> None:
        """Освобождает ресурсы хранилища."""
