#!/usr/bin/env python3
# main.py
"""
Главная точка входа RideTrack.
Поднимает инфраструктуру, собирает сервисы и запускает фоновое обслуживание.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from ridetrack.config import settings
from ridetrack.common.logger import setup_logging, log_info, log_error
from ridetrack.common.constants import TypeMsg
from ridetrack.core.dependencies import close_services, get_store, get_tracking_coordinator
from ridetrack.infra.database import init_db, close_db
from ridetrack.infra.redis_client import init_redis, close_redis
from ridetrack.infra.event_bus import init_event_bus, close_event_bus
from ridetrack.worker.maintenance import RequestExpiryWorker


# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        """Обработчик сигналов SIGINT и SIGTERM."""
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def init_infrastructure() -> None:
    """Инициализирует все подключения к инфраструктуре."""
    await log_info("Инициализация инфраструктуры...", type_msg=TypeMsg.INFO)

    await init_db()
    await log_info("PostgreSQL подключён", type_msg=TypeMsg.DEBUG)

    if settings.store.STORE_BACKEND == "redis":
        await init_redis()
        await log_info("Redis подключён", type_msg=TypeMsg.DEBUG)

    await init_event_bus()
    await log_info("RabbitMQ подключён", type_msg=TypeMsg.DEBUG)

    await log_info("Инфраструктура инициализирована", type_msg=TypeMsg.INFO)


async def close_infrastructure() -> None:
    """Закрывает все подключения."""
    await log_info("Закрытие подключений...", type_msg=TypeMsg.INFO)

    await close_services()
    await close_event_bus()
    if settings.store.STORE_BACKEND == "redis":
        await close_redis()
    await close_db()

    await log_info("Подключения закрыты", type_msg=TypeMsg.INFO)


async def main() -> None:
    """Главная функция запуска."""
    setup_logging()
    setup_signal_handlers()

    await log_info(
        f"RideTrack v{settings.system.VERSION} — запуск (store={settings.store.STORE_BACKEND})",
        type_msg=TypeMsg.INFO,
    )

    worker: RequestExpiryWorker | None = None
    try:
        await init_infrastructure()

        get_store()
        worker = RequestExpiryWorker(get_tracking_coordinator())
        await worker.start()

        if _shutdown_event:
            await _shutdown_event.wait()
        else:
            await asyncio.Event().wait()

    except asyncio.CancelledError:
        await log_info("Задача отменена, выполняется graceful shutdown", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Критическая ошибка: {e}")
        raise
    finally:
        if worker is not None:
            await worker.stop()

        await log_info("Завершение работы, закрытие подключений...", type_msg=TypeMsg.INFO)
        try:
            await close_infrastructure()
        except Exception as e:
            await log_error(f"Ошибка при закрытии подключений: {e}")
        await log_info("Приложение остановлено", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    """Выводит справку по использованию."""
    print("""
RideTrack — LiveRide и отслеживание райдеров

Использование:
    python main.py

Процесс подключается к PostgreSQL, Redis и RabbitMQ по config/config.json
(переопределения через переменные окружения и .env) и запускает
периодическую очистку просроченных запросов отслеживания.
    """)


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1].lower() in ("--help", "-h"):
        print_usage()
        sys.exit(0)

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
