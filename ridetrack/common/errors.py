# ridetrack/common/errors.py
"""
Иерархия доменных исключений.

Каждая мутирующая операция либо завершается успешно, либо выбрасывает
одно из исключений ниже, не оставляя частичных изменений в хранилище.
"""


class RideTrackError(Exception):
    """Базовое исключение домена."""


class NotFoundError(RideTrackError):
    """Сессия, запрос или трек не найдены."""


class PermissionDeniedError(RideTrackError):
    """Действие запрещено: не та сторона, блокировка или настройки приватности."""


class AlreadyExistsError(RideTrackError):
    """Дубликат: ожидающий запрос или активный трек для пары уже существует."""


class AlreadyActiveError(RideTrackError):
    """У райдера уже есть незавершённая LiveRide сессия."""


class InvalidStateError(RideTrackError):
    """Операция недопустима в текущем статусе записи."""


class InvalidArgumentError(RideTrackError):
    """Некорректные аргументы (например, запрос самому себе)."""


class TransientFailureError(RideTrackError):
    """Временный сбой хранилища или сети, операцию можно повторить."""


class ConflictError(RideTrackError):
    """Не выполнено предусловие условного обновления в хранилище."""
