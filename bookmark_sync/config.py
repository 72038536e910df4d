"""
Модуль config.py
Управляет конфигурацией приложения через .env-файл.
Обеспечивает валидацию параметров и проверку обязательных учетных данных.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationMissing
from .logger import get_logger

logger = get_logger(__name__)

# Соответствие полей конфигурации переменным окружения (для сообщений об ошибках)
ENV_NAMES = {
    "github_token": "GITHUB_TOKEN",
    "gist_id": "GIST_ID",
    "bookmarks_file": "BOOKMARKS_FILE",
    "llm_api_key": "LLM_API_KEY",
    "web_url": "WEB_URL",
    "api_secret": "API_SECRET",
}


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Config:
    """
    Конфигурация приложения.
    Все поля загружаются из .env-файла или переменных окружения.
    """

    # Хранилище документа (GitHub Gist)
    github_token: str
    gist_id: str
    gist_raw_url: str
    gist_filename: str
    github_api_url: str
    gist_timeout: float
    gist_update_timeout: float
    gist_description: str
    origin_client: str

    # Локальное дерево и состояние
    bookmarks_file: str
    state_file: str
    auto_sync: bool
    sync_delay: float

    # LLM API
    llm_api_key: str
    llm_base_url: str
    llm_model: str
    llm_max_tokens: int
    llm_temperature: float
    llm_timeout: float
    llm_rate_limit: int
    prompt_file: str

    # Загрузка контента
    reader_base_url: str
    reader_api_key: str
    fetch_timeout: float
    reader_timeout: float
    content_max_chars: int
    favicon_url_template: str

    # Конвейер обогащения
    enrich_batch_size: int
    enrich_concurrency: int
    enrich_time_budget: float
    enrich_max_attempts: int
    enrich_poll_interval: float
    enrich_max_no_progress: int
    enrich_max_errors: int

    # Сервис обогащения
    web_url: str
    api_secret: str
    signature_max_age: int

    # Логирование
    log_level: str
    log_file: str

    def require(self, *names: str) -> None:
        """
        Проверяет, что обязательные параметры заданы.

        Аргументы:
            names: Имена полей конфигурации

        Raises:
            ConfigurationMissing: Если хотя бы один параметр пуст
        """
        missing = [ENV_NAMES.get(name, name.upper()) for name in names if not getattr(self, name)]
        if missing:
            logger.error(f"Не заданы обязательные параметры: {missing}")
            raise ConfigurationMissing(missing)

    @property
    def gist_handle(self) -> Optional[str]:
        """
        Идентификатор gist из GIST_ID или, если он не задан, из GIST_RAW_URL.
        """
        if self.gist_id:
            return self.gist_id
        if self.gist_raw_url:
            from .remote import extract_gist_id, normalize_gist_raw_url

            return extract_gist_id(normalize_gist_raw_url(self.gist_raw_url)) or None
        return None


class ConfigManager:
    """
    Менеджер конфигурации приложения.
    Загружает параметры из .env-файла и валидирует их.
    """

    def __init__(self, env_path: Optional[str] = None):
        """
        Аргументы:
            env_path: Путь к .env-файлу (по умолчанию .env в текущей директории)
        """
        logger.debug(f"Инициализация ConfigManager с env_path: {env_path}")

        load_dotenv(env_path or ".env", override=True)
        self.config = self._load_config()
        self._validate_config()

        logger.info("ConfigManager успешно инициализирован")

    def _load_config(self) -> Config:
        """
        Загружает конфигурацию из переменных окружения.

        Возвращает:
            Config: Объект с загруженной конфигурацией

        Raises:
            ValueError: Если числовой параметр не удалось разобрать
        """
        try:
            config = Config(
                github_token=os.getenv("GITHUB_TOKEN", ""),
                gist_id=os.getenv("GIST_ID", ""),
                gist_raw_url=os.getenv("GIST_RAW_URL", ""),
                gist_filename=os.getenv("GIST_FILENAME", "bookmarks.json"),
                github_api_url=os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/"),
                gist_timeout=float(os.getenv("GIST_TIMEOUT", "15")),
                gist_update_timeout=float(os.getenv("GIST_UPDATE_TIMEOUT", "50")),
                gist_description=os.getenv("GIST_DESCRIPTION", "Re:Mark Bookmarks"),
                origin_client=os.getenv("ORIGIN_CLIENT", "bookmark-sync/0.1.0"),
                bookmarks_file=os.getenv("BOOKMARKS_FILE", ""),
                state_file=os.getenv("STATE_FILE", "./.bookmark_sync_state.json"),
                auto_sync=_env_bool("AUTO_SYNC", "false"),
                sync_delay=float(os.getenv("SYNC_DELAY", "5")),
                llm_api_key=os.getenv("LLM_API_KEY", ""),
                llm_base_url=os.getenv("LLM_BASE_URL", "https://api.deepseek.com/v1"),
                llm_model=os.getenv("LLM_MODEL", "deepseek-chat"),
                llm_max_tokens=int(os.getenv("LLM_MAX_TOKENS", "150")),
                llm_temperature=float(os.getenv("LLM_TEMPERATURE", "0.3")),
                llm_timeout=float(os.getenv("LLM_TIMEOUT", "40")),
                llm_rate_limit=int(os.getenv("LLM_RATE_LIMIT", "0")),
                prompt_file=os.getenv("PROMPT_FILE", ""),
                reader_base_url=os.getenv("READER_BASE_URL", "https://r.jina.ai").rstrip("/"),
                reader_api_key=os.getenv("READER_API_KEY", ""),
                fetch_timeout=float(os.getenv("FETCH_TIMEOUT", "5")),
                reader_timeout=float(os.getenv("READER_TIMEOUT", "6")),
                content_max_chars=int(os.getenv("CONTENT_MAX_CHARS", "2000")),
                favicon_url_template=os.getenv(
                    "FAVICON_URL_TEMPLATE",
                    "https://www.google.com/s2/favicons?domain={domain}&sz=64",
                ),
                enrich_batch_size=int(os.getenv("ENRICH_BATCH_SIZE", "5")),
                enrich_concurrency=int(os.getenv("ENRICH_CONCURRENCY", "10")),
                enrich_time_budget=float(os.getenv("ENRICH_TIME_BUDGET", "4.5")),
                enrich_max_attempts=int(os.getenv("ENRICH_MAX_ATTEMPTS", "2")),
                enrich_poll_interval=float(os.getenv("ENRICH_POLL_INTERVAL", "2.0")),
                enrich_max_no_progress=int(os.getenv("ENRICH_MAX_NO_PROGRESS", "3")),
                enrich_max_errors=int(os.getenv("ENRICH_MAX_ERRORS", "3")),
                web_url=os.getenv("WEB_URL", "").rstrip("/"),
                api_secret=os.getenv("API_SECRET", ""),
                signature_max_age=int(os.getenv("SIGNATURE_MAX_AGE", "300")),
                log_level=os.getenv("LOG_LEVEL", "INFO"),
                log_file=os.getenv("LOG_FILE", "./bookmark_sync.log"),
            )

            logger.debug("Конфигурация успешно загружена из переменных окружения")
            return config

        except ValueError as e:
            logger.error(f"Ошибка при загрузке конфигурации: {e}")
            raise

    def _validate_config(self) -> None:
        """
        Валидирует диапазоны параметров.
        Учетные данные здесь не проверяются: их проверяет Config.require
        непосредственно перед операцией.

        Raises:
            ValueError: Если параметры некорректны
        """
        validation_errors = []
        config = self.config

        positive = {
            "GIST_TIMEOUT": config.gist_timeout,
            "GIST_UPDATE_TIMEOUT": config.gist_update_timeout,
            "LLM_MAX_TOKENS": config.llm_max_tokens,
            "LLM_TIMEOUT": config.llm_timeout,
            "FETCH_TIMEOUT": config.fetch_timeout,
            "READER_TIMEOUT": config.reader_timeout,
            "CONTENT_MAX_CHARS": config.content_max_chars,
            "ENRICH_BATCH_SIZE": config.enrich_batch_size,
            "ENRICH_CONCURRENCY": config.enrich_concurrency,
            "ENRICH_TIME_BUDGET": config.enrich_time_budget,
            "ENRICH_MAX_ATTEMPTS": config.enrich_max_attempts,
            "ENRICH_MAX_NO_PROGRESS": config.enrich_max_no_progress,
            "ENRICH_MAX_ERRORS": config.enrich_max_errors,
            "SIGNATURE_MAX_AGE": config.signature_max_age,
        }
        for name, value in positive.items():
            if value <= 0:
                error_msg = f"{name} должен быть положительным числом: {value}"
                validation_errors.append(error_msg)
                logger.error(error_msg)

        non_negative = {
            "SYNC_DELAY": config.sync_delay,
            "LLM_RATE_LIMIT": config.llm_rate_limit,
            "ENRICH_POLL_INTERVAL": config.enrich_poll_interval,
        }
        for name, value in non_negative.items():
            if value < 0:
                error_msg = f"{name} должен быть неотрицательным числом: {value}"
                validation_errors.append(error_msg)
                logger.error(error_msg)

        if config.prompt_file and not os.path.exists(config.prompt_file):
            error_msg = f"Файл промпта не найден: {config.prompt_file}"
            validation_errors.append(error_msg)
            logger.error(error_msg)

        if "{domain}" not in config.favicon_url_template:
            error_msg = "FAVICON_URL_TEMPLATE должен содержать {domain}"
            validation_errors.append(error_msg)
            logger.error(error_msg)

        if validation_errors:
            raise ValueError(
                f"Ошибки валидации конфигурации: {'; '.join(validation_errors)}"
            )

        logger.info("Валидация конфигурации успешно пройдена")

    def get(self) -> Config:
        return self.config
