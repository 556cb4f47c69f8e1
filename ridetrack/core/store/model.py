# ridetrack/core/store/model.py
"""
Связка pydantic моделей с записями Store.
"""

from __future__ import annotations

from typing import Any, Callable, Generic, TypeVar

from pydantic import BaseModel, Field

from ridetrack.common.errors import ConflictError, NotFoundError, TransientFailureError
from ridetrack.core.store.base import VERSION_FIELD, LiveQuery, Record, Store

M = TypeVar("M", bound="StoredModel")
T = TypeVar("T")


class StoredModel(BaseModel):
    """Модель, хранящаяся как запись Store."""

    id: str = Field(..., description="Идентификатор записи")
    version: int = Field(0, description="Токен версии записи в хранилище")

    class Config:
        from_attributes = True

    @classmethod
    def from_record(cls: type[M], record: Record) -> M:
        """Создаёт модель из записи хранилища."""
        data = dict(record)
        data["version"] = data.pop(VERSION_FIELD, 0)
        return cls.model_validate(data)

    def to_record(self) -> Record:
        """JSON-совместимое представление для хранилища (без версии)."""
        return self.model_dump(mode="json", exclude={"version"})

    def record_fields(self, *names: str) -> Record:
        """Сериализованные значения только указанных полей."""
        return self.model_dump(mode="json", include=set(names))


class ModelStream(Generic[T]):
    """
    Обёртка над LiveQuery, отдающая снимки, преобразованные mapper'ом.

    Example:
        stream = ModelStream(live, lambda records: [Track.from_record(r) for r in records])
        async for tracks in stream:
            ...
    """

    def __init__(self, live: LiveQuery, mapper: Callable[[list[Record]], T]) -> None:
        self._live = live
        self._mapper = mapper

    @property
    def closed(self) -> bool:
        return self._live.closed

    async def close(self) -> None:
        await self._live.close()

    def __aiter__(self) -> ModelStream[T]:
        return self

    async def __anext__(self) -> T:
        records = await self._live.__anext__()
        return self._mapper(records)

    async def __aenter__(self) -> ModelStream[T]:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


async def update_model(
    store: Store,
    collection: str,
    model_cls: type[M],
    record_id: str,
    mutate: Callable[[M], dict[str, Any]],
    max_retries: int = 3,
) -> M:
    """
    Читает запись как модель, вычисляет изменения через mutate и
    записывает их условно по токену версии.

    mutate может выбросить исключение, чтобы отменить операцию.
    При конкурентной записи цикл повторяется с перечитыванием.

    Raises:
        NotFoundError: записи нет
        TransientFailureError: исчерпаны попытки записи
    """
    for _ in range(max_retries):
        record = await store.get(collection, record_id)
        if record is None:
            raise NotFoundError(f"{collection}/{record_id} не найдена")

        current = model_cls.from_record(record)
        changes = mutate(current)
        updated = current.model_copy(update=changes)
        try:
            record = await store.update(
                collection,
                record_id,
                updated.record_fields(*changes),
                expect={VERSION_FIELD: current.version},
            )
        except ConflictError:
            continue
        return model_cls.from_record(record)

    raise TransientFailureError(f"{collection}/{record_id}: не удалось применить изменение")
