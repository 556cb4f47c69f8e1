# ridetrack/core/notifications/service.py
"""
Сервис уведомлений.
Публикует события notification.send в шину событий; доставку выполняет
транспортный слой.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from ridetrack.common.constants import NotificationType, TypeMsg
from ridetrack.common.localization import FALLBACK_LANGUAGE, get_text
from ridetrack.common.logger import log_error, log_info
from ridetrack.core.social.interfaces import ProfileDirectory
from ridetrack.infra.event_bus import DomainEvent, EventBus, EventTypes

DEFAULT_SENDER_NAME = "Rider"


@dataclass
class NotificationData:
    """Данные для уведомления."""
    user_id: str
    notification_type: NotificationType
    from_user_id: str
    message_key: str  # Ключ из lang_dict
    language: str = FALLBACK_LANGUAGE
    kwargs: dict[str, Any] | None = None  # Параметры для форматирования
    data: dict[str, Any] | None = None  # Данные для клиента (ID запроса, поездки)


class NotificationService:
    """
    Сервис уведомлений.

    Реализует NotificationSink: никогда не выбрасывает исключений,
    ошибка доставки логируется и возвращается как False.
    """

    def __init__(
        self,
        event_bus: EventBus,
        profiles: Optional[ProfileDirectory] = None,
        default_language: str = FALLBACK_LANGUAGE,
    ) -> None:
        """
        Args:
            event_bus: Шина событий
            profiles: Источник имени и языка пользователей
            default_language: Язык, если у получателя он не задан
        """
        self._event_bus = event_bus
        self._profiles = profiles
        self._default_language = default_language

    async def send_notification(self, data: NotificationData) -> bool:
        """
        Публикует уведомление.

        Returns:
            True если событие опубликовано
        """
        try:
            text = get_text(data.message_key, data.language, **(data.kwargs or {}))

            await self._event_bus.publish(DomainEvent(
                event_type=EventTypes.NOTIFICATION_SEND,
                payload={
                    "user_id": data.user_id,
                    "type": str(data.notification_type),
                    "from_user_id": data.from_user_id,
                    "text": text,
                    "data": data.data or {},
                },
            ))

            await log_info(
                f"Уведомление поставлено в очередь: user={data.user_id}, key={data.message_key}",
                type_msg=TypeMsg.DEBUG,
            )
            return True
        except Exception as e:
            await log_error(f"Ошибка отправки уведомления {data.message_key} пользователю {data.user_id}: {e}")
            return False

    async def notify(
        self,
        user_id: str,
        notification_type: NotificationType,
        *,
        from_user_id: str,
        from_name: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> bool:
        """
        Уведомляет пользователя о доменном событии.
        Уведомление самому себе не отправляется.
        """
        if user_id == from_user_id:
            return False

        try:
            name = from_name or await self._display_name(from_user_id)
            language = await self._language(user_id)
        except Exception as e:
            await log_error(f"Ошибка подготовки уведомления {notification_type} для {user_id}: {e}")
            return False

        return await self.send_notification(NotificationData(
            user_id=user_id,
            notification_type=NotificationType(notification_type),
            from_user_id=from_user_id,
            message_key=str(notification_type).upper(),
            language=language,
            kwargs={"name": name},
            data=data,
        ))

    async def _display_name(self, user_id: str) -> str:
        if self._profiles is None:
            return DEFAULT_SENDER_NAME
        return await self._profiles.get_display_name(user_id) or DEFAULT_SENDER_NAME

    async def _language(self, user_id: str) -> str:
        if self._profiles is None:
            return self._default_language
        return await self._profiles.get_language(user_id) or self._default_language
