# ridetrack/core/rides/models.py
"""
Модели данных LiveRide.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from pydantic import BaseModel, Field, field_validator

from ridetrack.common.constants import RideStatus
from ridetrack.core.store.model import StoredModel


class GeoPosition(BaseModel):
    """Координаты точки."""

    lat: float = Field(..., ge=-90.0, le=90.0, description="Широта")
    lng: float = Field(..., ge=-180.0, le=180.0, description="Долгота")


class PathPoint(BaseModel):
    """Точка трека поездки."""

    lat: float = Field(..., ge=-90.0, le=90.0, description="Широта")
    lng: float = Field(..., ge=-180.0, le=180.0, description="Долгота")
    time: int = Field(..., ge=0, description="Unix-время фиксации (секунды)")


class RiderProfile(BaseModel):
    """Отображаемые данные райдера на момент старта поездки."""

    name: str = Field("Rider", description="Отображаемое имя")
    avatar_url: Optional[str] = Field(None, description="URL аватара")


class LiveRideSession(StoredModel):
    """Сессия LiveRide."""

    rider_id: str = Field(..., description="ID райдера-владельца")
    rider_name: str = Field("Rider", description="Имя райдера")
    avatar_url: Optional[str] = Field(None, description="URL аватара райдера")

    status: RideStatus = Field(RideStatus.ACTIVE, description="Статус сессии")
    started_at: datetime = Field(..., description="Время старта")
    ended_at: Optional[datetime] = Field(None, description="Время завершения")
    updated_at: datetime = Field(..., description="Время последнего обновления позиции")

    start_position: GeoPosition = Field(..., description="Точка старта")
    current_position: GeoPosition = Field(..., description="Текущая позиция")
    geohash: str = Field(..., description="Geohash текущей позиции")
    path_points: list[PathPoint] = Field(default_factory=list, description="Трек по времени")

    allowed_viewer_ids: list[str] = Field(default_factory=list, description="Явно приглашённые зрители")
    is_public: bool = Field(False, description="Видна всем")
    followers_only: bool = Field(False, description="Видна подписчикам райдера")

    total_distance_km: float = Field(0.0, ge=0.0, description="Пройденное расстояние")
    duration_minutes: int = Field(0, ge=0, description="Длительность в минутах")

    @field_validator("allowed_viewer_ids")
    @classmethod
    def unique_viewers(cls, v: list[str]) -> list[str]:
        """Множество зрителей хранится списком без повторов."""
        return unique_ids(v)

    @property
    def is_completed(self) -> bool:
        return self.status == RideStatus.COMPLETED

    @property
    def last_point(self) -> PathPoint | None:
        return self.path_points[-1] if self.path_points else None

    def is_visible_to(self, viewer_id: str, following_ids: Iterable[str]) -> bool:
        """
        Правило видимости: приглашён, или публичная, или только для
        подписчиков и зритель подписан на райдера. Видны только активные
        поездки; свою поездку райдер в ленте зрителя не видит.
        """
        if self.rider_id == viewer_id or self.status != RideStatus.ACTIVE:
            return False
        if viewer_id in self.allowed_viewer_ids or self.is_public:
            return True
        return self.followers_only and self.rider_id in set(following_ids)


def unique_ids(ids: Iterable[str]) -> list[str]:
    """Убирает повторы, сохраняя порядок."""
    return list(dict.fromkeys(ids))
