# ridetrack/core/store/memory.py
"""
Хранилище в памяти процесса.
Используется в тестах и при STORE_BACKEND=memory.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from ridetrack.common.errors import AlreadyExistsError, ConflictError, NotFoundError
from ridetrack.core.store.base import (
    VERSION_FIELD,
    LiveQuery,
    Predicate,
    Record,
    Store,
    check_expectations,
    matches_all,
    sort_records,
)


@dataclass
class _Watcher:
    collection: str
    predicates: tuple[Predicate, ...]
    live: LiveQuery


class InMemoryStore(Store):
    """Хранилище записей в словарях; live-запросы пересчитываются после каждой записи."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Record]] = {}
        self._watchers: list[_Watcher] = []

    def _records(self, collection: str) -> dict[str, Record]:
        return self._collections.setdefault(collection, {})

    async def _io(self) -> None:
        # Каждая операция является точкой приостановки, как у сетевого хранилища
        await asyncio.sleep(0)

    def _write(self, collection: str, record_id: str, record: Record) -> Record:
        previous = self._records(collection).get(record_id)
        record["id"] = record_id
        record[VERSION_FIELD] = (previous or {}).get(VERSION_FIELD, 0) + 1
        self._records(collection)[record_id] = record
        self._notify(collection)
        return copy.deepcopy(record)

    def _query_sync(self, collection: str, predicates: tuple[Predicate, ...]) -> list[Record]:
        return sort_records(
            copy.deepcopy(record)
            for record in self._records(collection).values()
            if matches_all(record, predicates)
        )

    def _notify(self, collection: str) -> None:
        for watcher in list(self._watchers):
            if watcher.collection == collection:
                watcher.live.push(self._query_sync(collection, watcher.predicates))

    def _require(self, collection: str, record_id: str, expect: Record | None) -> Record:
        current = self._records(collection).get(record_id)
        if current is None:
            raise NotFoundError(f"{collection}/{record_id} не найдена")
        if not check_expectations(current, expect):
            raise ConflictError(f"{collection}/{record_id}: предусловие не выполнено")
        return copy.deepcopy(current)

    async def create(self, collection: str, data: Record, record_id: str | None = None) -> Record:
        await self._io()
        record_id = record_id or str(uuid4())
        if record_id in self._records(collection):
            raise AlreadyExistsError(f"{collection}/{record_id} уже существует")
        return self._write(collection, record_id, copy.deepcopy(data))

    async def get(self, collection: str, record_id: str) -> Record | None:
        await self._io()
        record = self._records(collection).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def put(self, collection: str, record_id: str, data: Record) -> Record:
        await self._io()
        return self._write(collection, record_id, copy.deepcopy(data))

    async def update(
        self,
        collection: str,
        record_id: str,
        fields: Record,
        expect: Record | None = None,
    ) -> Record:
        await self._io()
        record = self._require(collection, record_id, expect)
        record.update(copy.deepcopy(fields))
        return self._write(collection, record_id, record)

    async def append_to_array(
        self,
        collection: str,
        record_id: str,
        field: str,
        element: Any,
        updates: Record | None = None,
        expect: Record | None = None,
    ) -> Record:
        await self._io()
        record = self._require(collection, record_id, expect)
        record.setdefault(field, []).append(copy.deepcopy(element))
        record.update(copy.deepcopy(updates or {}))
        return self._write(collection, record_id, record)

    async def delete(self, collection: str, record_id: str, expect: Record | None = None) -> bool:
        await self._io()
        current = self._records(collection).get(record_id)
        if current is None:
            return False
        if not check_expectations(current, expect):
            raise ConflictError(f"{collection}/{record_id}: предусловие не выполнено")
        del self._records(collection)[record_id]
        self._notify(collection)
        return True

    async def query(self, collection: str, *predicates: Predicate) -> list[Record]:
        await self._io()
        return self._query_sync(collection, predicates)

    async def watch(self, collection: str, *predicates: Predicate) -> LiveQuery:
        await self._io()

        async def unregister() -> None:
            self._watchers = [w for w in self._watchers if w.live is not live]

        live = LiveQuery(on_close=unregister)
        self._watchers.append(_Watcher(collection, predicates, live))
        live.push(self._query_sync(collection, predicates))
        return live

    @property
    def watcher_count(self) -> int:
        """Количество открытых live-запросов."""
        return len(self._watchers)

    async def close(self) -> None:
        for watcher in list(self._watchers):
            await watcher.live.close()
