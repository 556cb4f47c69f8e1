# ridetrack/core/visibility/aggregator.py
"""
Агрегатор видимых зрителю LiveRide.

Видимое множество — объединение трёх независимых live-запросов:
1. зритель в allowed_viewer_ids;
2. is_public = true;
3. followers_only = true и райдер среди подписок зрителя.
Из результата исключаются поездки самого зрителя и завершённые.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from ridetrack.common.constants import Collections, RideStatus, TypeMsg
from ridetrack.common.logger import log_error, log_info
from ridetrack.core.rides.models import LiveRideSession
from ridetrack.core.social.interfaces import FollowGraph
from ridetrack.core.store.base import Contains, Eq, In, LiveQuery, Predicate, Record, Store

# На паузе поездка из ленты пропадает до resume()
ACTIVE_ONLY = Eq("status", RideStatus.ACTIVE.value)


@dataclass(frozen=True)
class VisibilityUpdate:
    """Снимок видимых поездок и изменения относительно предыдущего снимка."""
    rides: list[LiveRideSession]
    appeared: frozenset[str] = field(default_factory=frozenset)
    disappeared: frozenset[str] = field(default_factory=frozenset)

    @property
    def ride_ids(self) -> list[str]:
        return [ride.id for ride in self.rides]


def source_predicates(viewer_id: str, following_ids: Iterable[str]) -> list[tuple[Predicate, ...]]:
    """Предикаты трёх источников видимости."""
    return [
        (Contains("allowed_viewer_ids", viewer_id), ACTIVE_ONLY),
        (Eq("is_public", True), ACTIVE_ONLY),
        (Eq("followers_only", True), In("rider_id", tuple(sorted(set(following_ids)))), ACTIVE_ONLY),
    ]


def combine_visible(
    viewer_id: str,
    following_ids: Iterable[str],
    sources: Iterable[list[Record]],
) -> list[LiveRideSession]:
    """
    Объединяет результаты источников в детерминированный список.

    Дубликаты схлопываются по id; при расхождении копий выбирается
    более свежая (updated_at, затем версия). Порядок: started_at, затем id.
    """
    following = set(following_ids)
    best: dict[str, LiveRideSession] = {}

    for records in sources:
        for record in records:
            session = LiveRideSession.from_record(record)
            if not session.is_visible_to(viewer_id, following):
                continue
            current = best.get(session.id)
            if current is None or (session.updated_at, session.version) > (current.updated_at, current.version):
                best[session.id] = session

    return sorted(best.values(), key=lambda s: (s.started_at, s.id))


class VisibilitySubscription:
    """
    Live-подписка зрителя (combine-latest по трём источникам).

    Первое обновление выдаётся, когда каждый источник отдал первый снимок;
    далее — при каждом изменении видимого списка. Медленный потребитель
    получает только последнее состояние.

    Example:
        async with await aggregator.subscribe(viewer_id) as subscription:
            async for update in subscription:
                render(update.rides)
    """

    def __init__(self, viewer_id: str, following_ids: Iterable[str], sources: list[LiveQuery]) -> None:
        self._viewer_id = viewer_id
        self._following_ids = frozenset(following_ids)
        self._sources = sources
        self._latest: list[Optional[list[Record]]] = [None] * len(sources)
        self._dirty = False
        self._event = asyncio.Event()
        self._error: Optional[BaseException] = None
        self._closed = False
        self._tasks: list[asyncio.Task] = []
        self._last_rides: Optional[list[LiveRideSession]] = None
        self._visible_ids: set[str] = set()

    @property
    def viewer_id(self) -> str:
        return self._viewer_id

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Запускает чтение источников."""
        self._tasks = [
            asyncio.create_task(self._pump(index, live), name=f"visibility:{self._viewer_id}:{index}")
            for index, live in enumerate(self._sources)
        ]

    async def _pump(self, index: int, live: LiveQuery) -> None:
        try:
            async for records in live:
                self._latest[index] = records
                self._dirty = True
                self._event.set()
        except Exception as e:
            await log_error(f"Источник видимости {index} зрителя {self._viewer_id} завершился с ошибкой: {e}")
            self._error = e
            self._event.set()

    def _compute(self) -> Optional[VisibilityUpdate]:
        rides = combine_visible(self._viewer_id, self._following_ids, self._latest)
        if self._last_rides is not None and rides == self._last_rides:
            return None

        ids = {ride.id for ride in rides}
        update = VisibilityUpdate(
            rides=rides,
            appeared=frozenset(ids - self._visible_ids),
            disappeared=frozenset(self._visible_ids - ids),
        )
        self._last_rides = rides
        self._visible_ids = ids
        return update

    def __aiter__(self) -> VisibilitySubscription:
        return self

    async def __anext__(self) -> VisibilityUpdate:
        while True:
            if self._closed:
                raise StopAsyncIteration
            if self._error is not None:
                raise self._error
            if self._dirty and all(snapshot is not None for snapshot in self._latest):
                self._dirty = False
                update = self._compute()
                if update is not None:
                    return update
                continue
            self._event.clear()
            await self._event.wait()

    async def close(self) -> None:
        """Закрывает все три live-запроса (повторный вызов безопасен)."""
        if self._closed:
            return
        self._closed = True
        self._event.set()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        await asyncio.gather(*(live.close() for live in self._sources))

        await log_info(f"Подписка видимости зрителя {self._viewer_id} закрыта", type_msg=TypeMsg.DEBUG)

    async def __aenter__(self) -> VisibilitySubscription:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


class VisibilityAggregator:
    """Сервис видимых зрителю LiveRide."""

    def __init__(self, store: Store, follow_graph: FollowGraph) -> None:
        """
        Args:
            store: Хранилище записей
            follow_graph: Граф подписок (если following_ids не переданы)
        """
        self._store = store
        self._follow_graph = follow_graph

    async def _resolve_following(self, viewer_id: str, following_ids: Optional[Iterable[str]]) -> set[str]:
        if following_ids is not None:
            return set(following_ids)
        return set(await self._follow_graph.get_following(viewer_id))

    async def subscribe(
        self,
        viewer_id: str,
        following_ids: Optional[Iterable[str]] = None,
    ) -> VisibilitySubscription:
        """
        Открывает live-подписку зрителя.

        Args:
            viewer_id: ID зрителя
            following_ids: Подписки зрителя (по умолчанию из FollowGraph)

        Returns:
            Запущенная подписка; закрывается через close()
        """
        following = await self._resolve_following(viewer_id, following_ids)
        predicates = source_predicates(viewer_id, following)

        results = await asyncio.gather(
            *(self._store.watch(Collections.LIVE_RIDES, *p) for p in predicates),
            return_exceptions=True,
        )
        sources = [r for r in results if isinstance(r, LiveQuery)]
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            await asyncio.gather(*(live.close() for live in sources))
            raise errors[0]

        subscription = VisibilitySubscription(viewer_id, following, sources)
        subscription.start()

        await log_info(
            f"Подписка видимости зрителя {viewer_id} открыта (подписок: {len(following)})",
            type_msg=TypeMsg.DEBUG,
        )
        return subscription

    async def snapshot(
        self,
        viewer_id: str,
        following_ids: Optional[Iterable[str]] = None,
    ) -> list[LiveRideSession]:
        """Разовый расчёт видимых поездок по тому же правилу."""
        following = await self._resolve_following(viewer_id, following_ids)
        sources = await asyncio.gather(
            *(self._store.query(Collections.LIVE_RIDES, *p) for p in source_predicates(viewer_id, following))
        )
        return combine_visible(viewer_id, following, sources)
