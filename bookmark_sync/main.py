"""
Модуль main.py
Точка входа командной строки: синхронизация локальных закладок Chrome
с удаленным документом и запуск обогащения.
"""

import argparse
import asyncio
import sys
import time
from typing import List, Optional

from .config import Config, ConfigManager
from .driver import EnrichmentDriver
from .engine import SyncEngine
from .errors import ConfigurationMissing, RateLimited, RemoteConflict, SyncError
from .logger import (
    get_logger,
    log_error_with_context,
    log_function_call,
    log_performance,
    set_log_level,
    setup_logging,
)
from .models import EnrichmentResult
from .parser import ChromeBookmarksSource
from .pipeline import EnrichmentPipeline
from .state import StateStore
from .trigger import EnrichTriggerClient

logger = get_logger(__name__)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Парсит аргументы командной строки.

    Возвращает:
        argparse.Namespace: Объект с аргументами командной строки
    """
    parser = argparse.ArgumentParser(
        description="Синхронизация и обогащение закладок браузера",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Примеры использования:
  bookmark-sync upload
  bookmark-sync upload --force
  bookmark-sync download --config ./prod.env
  bookmark-sync enrich --local --verbose
  bookmark-sync serve --port 8080
        """,
    )
    parser.add_argument("--config", dest="config_path", help="Путь к .env файлу (по умолчанию: .env)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Подробное логирование (DEBUG уровень)")

    commands = parser.add_subparsers(dest="command", required=True)

    upload = commands.add_parser("upload", help="Выгрузить локальные закладки")
    upload.add_argument("--force", action="store_true", help="Перезаписать удаленный документ при конфликте")

    commands.add_parser("download", help="Заменить локальные закладки удаленными")
    commands.add_parser("clear", help="Удалить все локальные закладки")
    commands.add_parser("status", help="Показать состояние синхронизации")

    enrich = commands.add_parser("enrich", help="Обогатить закладки до завершения")
    enrich.add_argument("--local", action="store_true", help="Запускать конвейер локально, без сервиса")

    serve = commands.add_parser("serve", help="Запустить HTTP-сервис обогащения")
    serve.add_argument("--host", default="127.0.0.1", help="Адрес (по умолчанию: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Порт (по умолчанию: 8000)")

    args = parser.parse_args(argv)
    logger.debug(f"Аргументы командной строки разобраны: {vars(args)}")
    return args


def create_engine(config: Config) -> SyncEngine:
    config.require("bookmarks_file")
    return SyncEngine(config, ChromeBookmarksSource(config.bookmarks_file), StateStore(config.state_file))


def create_driver(config: Config, local: bool) -> EnrichmentDriver:
    """
    Собирает цикл опроса обогащения: через подписанный вызов сервиса
    или напрямую через локальный конвейер.
    """
    if local:
        async def poll() -> EnrichmentResult:
            return await EnrichmentPipeline(config).run()
    else:
        config.require("web_url", "api_secret")

        async def poll() -> EnrichmentResult:
            async with EnrichTriggerClient(config) as client:
                return await client.poll()

    def report(result: EnrichmentResult) -> None:
        logger.info(f"Обогащено: {result.processed}, осталось: {result.remaining}")

    return EnrichmentDriver(
        poll,
        poll_interval=config.enrich_poll_interval,
        max_no_progress=config.enrich_max_no_progress,
        max_consecutive_errors=config.enrich_max_errors,
        on_progress=report,
    )


async def run_command(args: argparse.Namespace, config: Config) -> int:
    """
    Выполняет подкоманду.

    Возвращает:
        int: Код выхода процесса
    """
    log_function_call("run_command", (args.command,))

    if args.command == "enrich":
        result = await create_driver(config, args.local).run_until_done()
        logger.info(
            f"Обогащение завершено: обработано {result.processed}, осталось {result.remaining}, "
            f"completed={result.completed}, timedOut={result.timed_out}"
        )
        return 0 if result.success else 1

    engine = create_engine(config)

    if args.command == "upload":
        try:
            document = await engine.upload(force=args.force)
        except RemoteConflict as e:
            logger.error(
                f"Удаленный документ изменен другим клиентом (закладок: {e.remote_count}). "
                f"Выполните download или повторите upload --force"
            )
            return 2
        logger.info(f"Выгрузка завершена, updatedAt={document.updated_at}")
    elif args.command == "download":
        document = await engine.download()
        logger.info(f"Загрузка завершена, updatedAt={document.updated_at}")
    elif args.command == "clear":
        removed = await engine.clear()
        logger.info(f"Удалено элементов верхнего уровня: {removed}")
    elif args.command == "status":
        diverged = await engine.check_remote()
        local_count = await engine.update_local_count()
        state = await engine.state_store.load()
        logger.info(f"Локальных закладок: {local_count}, удаленных: {state.remote_count}")
        logger.info(
            f"Базовая метка: {state.base_remote_updated_at}, удаленная метка: {state.remote_updated_at}"
        )
        if diverged:
            logger.info("Удаленный документ изменился после последней синхронизации")
    return 0


def serve(config: Config, host: str, port: int) -> None:
    import uvicorn

    from .server import create_app

    logger.info(f"Запуск сервиса обогащения на {host}:{port}")
    uvicorn.run(create_app(config), host=host, port=port, log_config=None)


def main(argv: Optional[List[str]] = None) -> None:
    """
    Главная функция приложения.
    """
    start_time = time.time()

    try:
        args = parse_arguments(argv)

        config_manager = ConfigManager(args.config_path)
        config = config_manager.get()

        setup_logging(config)
        if args.verbose:
            set_log_level("DEBUG")
        logger.debug(f"Файл лога: {config.log_file}")

        if args.command == "serve":
            serve(config, args.host, args.port)
            return

        exit_code = asyncio.run(run_command(args, config))
        log_performance("main", time.time() - start_time, f"command={args.command}")
        if exit_code:
            sys.exit(exit_code)

    except KeyboardInterrupt:
        logger.info("Программа прервана пользователем")
        sys.exit(1)
    except RateLimited as e:
        logger.error(f"Превышен лимит запросов хранилища, повторите через {e.wait_minutes} мин.")
        sys.exit(1)
    except ConfigurationMissing as e:
        logger.error(str(e))
        sys.exit(1)
    except SyncError as e:
        log_error_with_context(e, {"operation": "main"})
        logger.error(f"Ошибка: {e}")
        sys.exit(1)
    except ValueError as e:
        logger.error(f"Критическая ошибка: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
