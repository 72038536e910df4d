"""
Модуль logger.py
Централизованная настройка логирования для синхронизации и обогащения закладок.
Все модули получают логгер через get_logger(__name__).
"""
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .config import Config


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class LoggerManager:
    """
    Менеджер логирования приложения.

    Один экземпляр на процесс: настраивает корневой логгер (консоль + файл с ротацией)
    и кеширует логгеры модулей.
    """

    _instance: Optional['LoggerManager'] = None
    _initialized: bool = False

    def __new__(cls) -> 'LoggerManager':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if not self._initialized:
            self._loggers: Dict[str, logging.Logger] = {}
            self._root_logger: Optional[logging.Logger] = None
            LoggerManager._initialized = True

    def setup_logging(self, config: 'Config') -> None:
        """
        Настраивает корневой логгер по конфигурации.

        Аргументы:
            config: Объект конфигурации приложения
        """
        self._root_logger = logging.getLogger()
        self._root_logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
        self._root_logger.handlers.clear()

        formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        self._root_logger.addHandler(console_handler)

        if config.log_file:
            file_handler = self._create_file_handler(config.log_file)
            file_handler.setFormatter(formatter)
            self._root_logger.addHandler(file_handler)

        logger = self.get_logger(__name__)
        logger.info(f"Логирование настроено с уровнем: {config.log_level}")
        logger.debug(f"Файл лога: {config.log_file or '-'}")

    def _create_file_handler(self, log_file: str) -> logging.Handler:
        """
        Создает файловый обработчик с ротацией по размеру.

        Аргументы:
            log_file: Путь к файлу лога

        Возвращает:
            logging.Handler: Обработчик с ротацией (10 МБ, 5 резервных копий)
        """
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        return logging.handlers.RotatingFileHandler(
            filename=log_path,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding='utf-8'
        )

    def get_logger(self, name: str) -> logging.Logger:
        if name not in self._loggers:
            self._loggers[name] = logging.getLogger(name)
        return self._loggers[name]

    def set_level(self, level: str) -> None:
        """
        Меняет уровень логирования корневого логгера.

        Аргументы:
            level: Новый уровень (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        """
        if self._root_logger:
            self._root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
            self.get_logger(__name__).info(f"Уровень логирования изменен на: {level}")


_logger_manager: Optional[LoggerManager] = None


def _manager() -> LoggerManager:
    global _logger_manager

    if _logger_manager is None:
        _logger_manager = LoggerManager()
    return _logger_manager


def get_logger(name: str) -> logging.Logger:
    """
    Возвращает логгер для модуля.

    Аргументы:
        name: Имя модуля (обычно __name__)

    Возвращает:
        logging.Logger: Логгер модуля

    Пример:
        >>> from bookmark_sync.logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Синхронизация начата")
    """
    return _manager().get_logger(name)


def setup_logging(config: 'Config') -> None:
    """
    Настраивает логирование приложения. Вызывается один раз при запуске.

    Аргументы:
        config: Объект конфигурации приложения
    """
    _manager().setup_logging(config)


def set_log_level(level: str) -> None:
    """
    Меняет уровень логирования всего приложения.

    Аргументы:
        level: Новый уровень логирования
    """
    if _logger_manager is not None:
        _logger_manager.set_level(level)


def log_function_call(func_name: str, args: tuple = (), kwargs: Optional[dict] = None) -> None:
    """
    Пишет в DEBUG вызов функции с аргументами.

    Аргументы:
        func_name: Имя функции
        args: Позиционные аргументы
        kwargs: Именованные аргументы
    """
    logger = get_logger(__name__)

    if logger.isEnabledFor(logging.DEBUG):
        parts = [str(arg) for arg in args]
        parts.extend(f"{k}={v}" for k, v in (kwargs or {}).items())
        logger.debug(f"Вызов функции: {func_name}({', '.join(parts)})")


def log_performance(func_name: str, duration: float, details: str = "") -> None:
    """
    Пишет длительность операции.

    Аргументы:
        func_name: Имя операции
        duration: Длительность в секундах
        details: Дополнительные детали

    Пример:
        >>> log_performance("GistClient.fetch", 0.42, "gist_id=abc")
    """
    details_str = f" ({details})" if details else ""
    get_logger(__name__).info(f"Производительность: {func_name} выполнена за {duration:.2f}с{details_str}")


def log_error_with_context(error: Exception, context: Dict[str, Any]) -> None:
    """
    Пишет ошибку вместе с контекстом операции.

    Аргументы:
        error: Исключение
        context: Контекст (операция, URL, идентификатор документа и т.д.)

    Пример:
        >>> try:
        ...     await client.update(gist_id, document)
        ... except RemoteUnavailable as e:
        ...     log_error_with_context(e, {"operation": "upload", "gist_id": gist_id})
        ...     raise
    """
    context_str = ", ".join(f"{k}={v}" for k, v in context.items())
    get_logger(__name__).error(f"Ошибка: {type(error).__name__}: {error} | Контекст: {context_str}")
