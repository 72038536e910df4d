"""
Модуль trigger.py
Подписанный вызов обогащения: подпись тела запроса HMAC-SHA256,
проверка подписи, метки времени и одноразового nonce на стороне сервиса,
HTTP-клиент для опроса POST /api/enrich.
"""
import hashlib
import hmac
import time
import uuid
from typing import Dict, Mapping, Optional

import httpx
from pydantic import ValidationError

from .config import Config
from .errors import EnrichmentTransportError, SignatureError
from .logger import get_logger, log_function_call
from .models import EnrichmentResult

logger = get_logger(__name__)

SIGNATURE_HEADER = "x-signature"
TIMESTAMP_HEADER = "x-timestamp"
NONCE_HEADER = "x-nonce"
EMPTY_BODY = b"{}"


def sign(body: bytes, secret: str) -> str:
    """
    Вычисляет подпись тела запроса.

    Аргументы:
        body: Сырые байты тела
        secret: Общий секрет API_SECRET

    Возвращает:
        str: HMAC-SHA256 в hex
    """
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def build_headers(body: bytes, secret: str, timestamp_ms: Optional[int] = None, nonce: Optional[str] = None) -> Dict[str, str]:
    """Заголовки подписанного запроса: подпись, метка времени в мс и nonce."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: sign(body, secret),
        TIMESTAMP_HEADER: str(timestamp_ms),
        NONCE_HEADER: nonce or str(uuid.uuid4()),
    }


class NonceCache:
    """
    Память использованных nonce на время окна допустимого возраста подписи.

    Аргументы:
        ttl_seconds: Время хранения nonce
    """

    def __init__(self, ttl_seconds: float):
        self.ttl_seconds = ttl_seconds
        self._seen: Dict[str, float] = {}

    def check_and_add(self, nonce: str, now: float) -> bool:
        """
        Запоминает nonce.

        Возвращает:
            bool: False, если nonce уже использовался в пределах окна
        """
        self._seen = {n: t for n, t in self._seen.items() if now - t <= self.ttl_seconds}
        if nonce in self._seen:
            return False
        self._seen[nonce] = now
        return True

    def __len__(self) -> int:
        return len(self._seen)


def verify_request(
    body: bytes,
    headers: Mapping[str, str],
    secret: str,
    max_age: float,
    now: Optional[float] = None,
    nonces: Optional[NonceCache] = None,
) -> None:
    """
    Проверяет подписанный запрос обогащения.

    Аргументы:
        body: Сырые байты тела
        headers: Заголовки запроса (регистр имен учитывается как в Mapping)
        secret: Общий секрет API_SECRET
        max_age: Допустимый возраст метки времени в секундах
        now: Текущее время в секундах (по умолчанию time.time())
        nonces: Кэш nonce для защиты от повтора

    Raises:
        SignatureError: missing_headers, expired, invalid_signature или replayed_nonce
    """
    signature = headers.get(SIGNATURE_HEADER)
    timestamp = headers.get(TIMESTAMP_HEADER)
    nonce = headers.get(NONCE_HEADER)
    if not signature or not timestamp or not nonce:
        raise SignatureError("missing_headers", "Отсутствуют заголовки подписи")

    now = time.time() if now is None else now
    try:
        timestamp_s = int(timestamp) / 1000
    except ValueError:
        raise SignatureError("expired", f"Некорректная метка времени: {timestamp}") from None
    if abs(now - timestamp_s) > max_age:
        raise SignatureError("expired", "Запрос устарел")

    if not hmac.compare_digest(sign(body, secret).encode("ascii"), signature.encode("utf-8")):
        raise SignatureError("invalid_signature", "Неверная подпись")

    if nonces is not None and not nonces.check_and_add(nonce, now):
        raise SignatureError("replayed_nonce", "Повторное использование nonce")


class EnrichTriggerClient:
    """
    Клиент сервиса обогащения.

    Аргументы:
        config: Объект конфигурации приложения
        client: Готовый httpx.AsyncClient (по умолчанию создается в __aenter__)
    """

    def __init__(self, config: Config, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.session = client
        self._owns_session = client is None

    async def __aenter__(self):
        if self.session is None:
            # Один вызов обогащения укладывается в бюджет сервиса, запас на сеть
            self.session = httpx.AsyncClient(timeout=httpx.Timeout(self.config.enrich_time_budget + 30))
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session is not None and self._owns_session:
            await self.session.aclose()
            self.session = None

    async def poll(self) -> EnrichmentResult:
        """
        Выполняет один подписанный вызов POST /api/enrich.

        Возвращает:
            EnrichmentResult: Ответ сервиса

        Raises:
            ConfigurationMissing: Если не заданы WEB_URL или API_SECRET
            EnrichmentTransportError: При сетевой ошибке, не-2xx ответе или некорректном теле
        """
        log_function_call("EnrichTriggerClient.poll")
        self.config.require("web_url", "api_secret")
        if self.session is None:
            raise RuntimeError("Используйте async with EnrichTriggerClient(config) as client:")

        url = f"{self.config.web_url}/api/enrich"
        try:
            response = await self.session.post(
                url, content=EMPTY_BODY, headers=build_headers(EMPTY_BODY, self.config.api_secret)
            )
        except httpx.HTTPError as e:
            raise EnrichmentTransportError(None, f"{url}: {type(e).__name__}: {e}") from e

        if not response.is_success:
            raise EnrichmentTransportError(response.status_code, f"{url}: HTTP {response.status_code}")

        try:
            return EnrichmentResult.model_validate_json(response.content)
        except ValidationError as e:
            raise EnrichmentTransportError(response.status_code, f"Некорректный ответ сервиса: {e.error_count()} ошибок") from e
