# ridetrack/core/social/repository.py
"""
Репозитории внешних коллабораторов в PostgreSQL.
Граф подписок, блокировки и пользовательские настройки только читаются;
их CRUD принадлежит социальному слою.
"""

from __future__ import annotations

from typing import Optional

from ridetrack.common.constants import TypeMsg, WhoCanTrack
from ridetrack.common.errors import TransientFailureError
from ridetrack.common.logger import log_error, log_info
from ridetrack.infra.database import DatabaseManager


class FollowRepository:
    """Граф подписок (таблица follows)."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def get_following(self, user_id: str) -> set[str]:
        """
        На кого подписан пользователь.

        При ошибке БД возвращает пустое множество: видимость сужается,
        а не расширяется.
        """
        try:
            rows = await self._db.fetch(
                "SELECT following_id FROM follows WHERE follower_id = $1",
                user_id,
            )
            return {row["following_id"] for row in rows}
        except Exception as e:
            await log_error(f"Ошибка получения подписок {user_id}: {e}")
            return set()

    async def get_followers(self, user_id: str) -> set[str]:
        """Подписчики пользователя."""
        try:
            rows = await self._db.fetch(
                "SELECT follower_id FROM follows WHERE following_id = $1",
                user_id,
            )
            return {row["follower_id"] for row in rows}
        except Exception as e:
            await log_error(f"Ошибка получения подписчиков {user_id}: {e}")
            return set()

    async def is_following(self, follower_id: str, following_id: str) -> bool:
        """
        Подписан ли follower_id на following_id.

        Используется для решения о доступе, поэтому ошибку не скрывает.

        Raises:
            TransientFailureError: БД недоступна
        """
        try:
            found = await self._db.fetchval(
                "SELECT EXISTS (SELECT 1 FROM follows WHERE follower_id = $1 AND following_id = $2)",
                follower_id,
                following_id,
            )
        except Exception as e:
            await log_error(f"Ошибка проверки подписки {follower_id}->{following_id}: {e}")
            raise TransientFailureError("Не удалось проверить подписку") from e
        return bool(found)


class BlockRepository:
    """Блокировки (таблица blocks)."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def has_block_relationship(self, user_a: str, user_b: str) -> bool:
        """
        Есть ли блокировка в любом направлении.

        Raises:
            TransientFailureError: БД недоступна (решение о доступе не принимается вслепую)
        """
        try:
            found = await self._db.fetchval(
                """
                SELECT EXISTS (
                    SELECT 1 FROM blocks
                    WHERE (blocker_id = $1 AND blocked_id = $2)
                       OR (blocker_id = $2 AND blocked_id = $1)
                )
                """,
                user_a,
                user_b,
            )
        except Exception as e:
            await log_error(f"Ошибка проверки блокировки {user_a}/{user_b}: {e}")
            raise TransientFailureError("Не удалось проверить блокировки") from e
        return bool(found)


class UserSettingsRepository:
    """
    Настройки пользователя (таблица user_privacy):
    приватность отслеживания, язык и отображаемое имя.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get_who_can_track(self, user_id: str) -> WhoCanTrack:
        """
        Кто может запрашивать отслеживание. Без записи — followers.

        Raises:
            TransientFailureError: БД недоступна
        """
        try:
            value = await self._db.fetchval(
                "SELECT who_can_track FROM user_privacy WHERE user_id = $1",
                user_id,
            )
        except Exception as e:
            await log_error(f"Ошибка получения настроек приватности {user_id}: {e}")
            raise TransientFailureError("Не удалось получить настройки приватности") from e

        if value is None:
            return WhoCanTrack.FOLLOWERS
        return WhoCanTrack(value)

    async def set_who_can_track(self, user_id: str, value: WhoCanTrack) -> bool:
        """Сохраняет настройку приватности отслеживания."""
        try:
            await self._db.execute(
                """
                INSERT INTO user_privacy (user_id, who_can_track, updated_at)
                VALUES ($1, $2, NOW())
                ON CONFLICT (user_id)
                DO UPDATE SET who_can_track = EXCLUDED.who_can_track, updated_at = NOW()
                """,
                user_id,
                WhoCanTrack(value).value,
            )
            await log_info(f"Приватность {user_id}: who_can_track={value}", type_msg=TypeMsg.INFO)
            return True
        except Exception as e:
            await log_error(f"Ошибка сохранения настроек приватности {user_id}: {e}")
            return False

    async def get_display_name(self, user_id: str) -> Optional[str]:
        try:
            return await self._db.fetchval(
                "SELECT display_name FROM user_privacy WHERE user_id = $1",
                user_id,
            )
        except Exception as e:
            await log_error(f"Ошибка получения имени {user_id}: {e}")
            return None

    async def get_language(self, user_id: str) -> Optional[str]:
        try:
            return await self._db.fetchval(
                "SELECT language FROM user_privacy WHERE user_id = $1",
                user_id,
            )
        except Exception as e:
            await log_error(f"Ошибка получения языка {user_id}: {e}")
            return None
