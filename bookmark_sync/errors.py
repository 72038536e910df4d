"""
Модуль errors.py
Иерархия ошибок синхронизации и обогащения закладок.
"""
import math
import time
from typing import Iterable, Optional

# Причина, записываемая в aiFailed, когда не удалось получить текст страницы.
# Это данные элемента, а не исключение.
CONTENT_UNAVAILABLE_REASON = "No content"

DEFAULT_RATE_LIMIT_WAIT_MINUTES = 10


class SyncError(Exception):
    """Базовая ошибка движка синхронизации."""


class ConfigurationMissing(SyncError):
    """
    Не задан обязательный параметр конфигурации.
    Возникает до любого сетевого вызова.
    """

    def __init__(self, names: Iterable[str]):
        self.names = list(names)
        super().__init__(f"Не заданы обязательные параметры: {', '.join(self.names)}")


class RemoteUnavailable(SyncError):
    """
    Хранилище документа ответило не-2xx статусом или недоступно.

    Атрибуты:
        status: HTTP-статус (None для сетевых ошибок)
    """

    def __init__(self, status: Optional[int], message: str = ""):
        self.status = status
        super().__init__(message or f"Хранилище недоступно: HTTP {status}")


class RateLimited(RemoteUnavailable):
    """
    Хранилище ограничило частоту запросов (403/429).

    Атрибуты:
        wait_minutes: Оценка времени ожидания до сброса лимита
    """

    def __init__(self, status: int, wait_minutes: int, message: str = ""):
        self.wait_minutes = wait_minutes
        super().__init__(
            status,
            message or f"Превышен лимит запросов, повторите через {wait_minutes} мин.",
        )

    @staticmethod
    def wait_from_reset(reset_header: Optional[str], now: Optional[float] = None) -> int:
        """
        Вычисляет время ожидания в минутах по заголовку x-ratelimit-reset.

        Аргументы:
            reset_header: Значение заголовка (Unix-время в секундах) или None
            now: Текущее время в секундах (по умолчанию time.time())

        Возвращает:
            int: Минуты до сброса лимита, не меньше 0
        """
        if not reset_header:
            return DEFAULT_RATE_LIMIT_WAIT_MINUTES
        try:
            reset_ms = int(reset_header) * 1000
        except ValueError:
            return DEFAULT_RATE_LIMIT_WAIT_MINUTES
        now_ms = (time.time() if now is None else now) * 1000
        return max(0, math.ceil((reset_ms - now_ms) / 60000))


class RemoteConflict(SyncError):
    """
    Удаленный документ изменился после последней синхронизации этого клиента.

    Атрибуты:
        remote_updated_at: Метка версии удаленного документа
        remote_count: Количество закладок в удаленном документе
    """

    def __init__(self, remote_updated_at: int, remote_count: int):
        self.remote_updated_at = remote_updated_at
        self.remote_count = remote_count
        super().__init__(
            f"Удаленный документ изменен (updatedAt={remote_updated_at}, "
            f"закладок: {remote_count}); используйте принудительную выгрузку"
        )


class RemoteDocumentMissing(SyncError):
    """В хранилище нет документа или в нем нет элементов."""


class ContentParseError(SyncError):
    """Ответ внешнего сервиса не соответствует ожидаемой схеме."""


class EnrichmentTransportError(SyncError):
    """
    Ошибка транспорта при вызове обогащения.

    Атрибуты:
        status: HTTP-статус (None для сетевых ошибок)
    """

    def __init__(self, status: Optional[int], message: str = ""):
        self.status = status
        super().__init__(message or f"Ошибка вызова обогащения: HTTP {status}")


class SyncInProgress(SyncError):
    """Операция синхронизации уже выполняется."""


class SignatureError(SyncError):
    """
    Запрос на обогащение отклонен проверкой подписи.

    Атрибуты:
        reason: Короткий код причины (missing_headers, expired, invalid_signature, replayed_nonce)
    """

    def __init__(self, reason: str, message: str = ""):
        self.reason = reason
        super().__init__(message or reason)
