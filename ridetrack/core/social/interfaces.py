# ridetrack/core/social/interfaces.py
"""
Интерфейсы внешних коллабораторов: социальный граф, блокировки,
настройки приватности, профили и доставка уведомлений.
"""

from __future__ import annotations

from typing import Any, Protocol

from ridetrack.common.constants import NotificationType, WhoCanTrack


class FollowGraph(Protocol):
    """Граф подписок."""

    async def get_following(self, user_id: str) -> set[str]:
        """ID пользователей, на которых подписан user_id."""
        ...

    async def get_followers(self, user_id: str) -> set[str]:
        """ID подписчиков user_id."""
        ...

    async def is_following(self, follower_id: str, following_id: str) -> bool:
        """Строгая проверка подписки: ошибка чтения не маскируется."""
        ...


class BlockRelationships(Protocol):
    """Блокировки между пользователями."""

    async def has_block_relationship(self, user_a: str, user_b: str) -> bool:
        """True, если хотя бы один из пользователей заблокировал другого."""
        ...


class PrivacyPreferences(Protocol):
    """Настройки приватности пользователя."""

    async def get_who_can_track(self, user_id: str) -> WhoCanTrack:
        """Кто может запрашивать отслеживание (по умолчанию followers)."""
        ...


class ProfileDirectory(Protocol):
    """Отображаемые данные пользователя для текстов уведомлений."""

    async def get_display_name(self, user_id: str) -> str | None:
        ...

    async def get_language(self, user_id: str) -> str | None:
        ...


class NotificationSink(Protocol):
    """
    Приёмник уведомлений (fire-and-forget).
    Не выбрасывает исключений: результат доставки возвращается как bool.
    """

    async def notify(
        self,
        user_id: str,
        notification_type: NotificationType,
        *,
        from_user_id: str,
        from_name: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> bool:
        ...
