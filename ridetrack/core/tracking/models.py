# ridetrack/core/tracking/models.py
"""
Модели данных отслеживания.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, Field

from ridetrack.common.constants import TrackRequestStatus
from ridetrack.core.store.model import StoredModel

DEFAULT_FRESHNESS_WINDOW = timedelta(minutes=15)


def track_id_for(tracker_id: str, tracked_id: str) -> str:
    """Детерминированный ID связи отслеживания."""
    return f"{tracker_id}_{tracked_id}"


def request_pair_id(from_user_id: str, to_user_id: str) -> str:
    """Ключ упорядоченной пары для маркера ожидающего запроса."""
    return f"{from_user_id}_{to_user_id}"


class TrackRequest(StoredModel):
    """Запрос на отслеживание."""

    from_user_id: str = Field(..., description="Кто запрашивает")
    to_user_id: str = Field(..., description="Кого запрашивают")
    from_name: Optional[str] = Field(None, description="Имя запрашивающего")
    status: TrackRequestStatus = Field(TrackRequestStatus.PENDING, description="Статус запроса")
    created_at: datetime = Field(..., description="Время создания")
    expires_at: datetime = Field(..., description="Срок действия")
    responded_at: Optional[datetime] = Field(None, description="Время ответа")

    @property
    def is_pending(self) -> bool:
        return self.status == TrackRequestStatus.PENDING

    def is_overdue(self, now: datetime) -> bool:
        """Ожидающий запрос с истёкшим сроком."""
        return self.is_pending and now >= self.expires_at


class ActiveTrack(StoredModel):
    """
    Связь «трекер видит позицию отслеживаемого».
    Взаимность не хранится, а вычисляется (TrackingCoordinator.is_mutual).
    """

    tracker_id: str = Field(..., description="Кто отслеживает")
    tracked_id: str = Field(..., description="Кого отслеживают")
    request_id: Optional[str] = Field(None, description="Одобренный запрос")
    created_at: datetime = Field(..., description="Время создания")
    updated_at: datetime = Field(..., description="Время последнего изменения")
    is_active: bool = Field(True, description="Связь активна")

    def involves(self, user_id: str) -> bool:
        return user_id in (self.tracker_id, self.tracked_id)


class TrackedLocation(StoredModel):
    """Последняя позиция отслеживаемого пользователя (ID записи = ID пользователя)."""

    user_id: str = Field(..., description="ID пользователя")
    lat: float = Field(..., ge=-90.0, le=90.0, description="Широта")
    lng: float = Field(..., ge=-180.0, le=180.0, description="Долгота")
    timestamp: datetime = Field(..., description="Время фиксации")
    heading: float = Field(0.0, description="Курс, градусы")
    speed: float = Field(0.0, ge=0.0, description="Скорость")
    name: Optional[str] = Field(None, description="Отображаемое имя")
    avatar_url: Optional[str] = Field(None, description="URL аватара")
    sharing: bool = Field(True, description="Пользователь не отключил трансляцию")

    def is_online(self, now: datetime, window: timedelta = DEFAULT_FRESHNESS_WINDOW) -> bool:
        """Онлайн, если трансляция включена и позиция свежее окна."""
        return self.sharing and now - self.timestamp < window


class TrackedRider(BaseModel):
    """Позиция отслеживаемого с вычисленным статусом для отображения на карте."""

    location: TrackedLocation
    is_online: bool

    class Config:
        from_attributes = True
