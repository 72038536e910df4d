"""
Модуль remote.py
Клиент удаленного хранилища документа синхронизации (GitHub Gist API).
Поддерживает чтение с переходом по raw_url для усеченного содержимого,
создание приватного документа и полную перезапись.
"""
import json
import re
import time
from typing import Any, Dict, Optional
from urllib.parse import urlparse, urlunparse

import httpx
from pydantic import ValidationError

from .config import Config
from .errors import ContentParseError, RateLimited, RemoteUnavailable
from .logger import get_logger, log_error_with_context, log_function_call, log_performance
from .models import SCHEMA_VERSION, SyncDocument
from .tree import now_ms

logger = get_logger(__name__)

GITHUB_API_VERSION = "2022-11-28"
RATE_LIMIT_STATUSES = (403, 429)
GIST_HOSTS = ("gist.githubusercontent.com", "gist.github.com")
GIST_ID_PATTERN = re.compile(r"^[0-9a-f]{16,40}$", re.IGNORECASE)


def normalize_gist_raw_url(raw_url: str) -> str:
    """
    Убирает из raw-URL gist сегмент ревизии, чтобы ссылка указывала на последнюю версию.

    Пример:
        https://gist.githubusercontent.com/u/abc/raw/<sha>/bookmarks.json
        -> https://gist.githubusercontent.com/u/abc/raw/bookmarks.json
    """
    try:
        parsed = urlparse(raw_url)
    except ValueError:
        logger.warning(f"Не удалось разобрать GIST_RAW_URL: {raw_url}")
        return raw_url
    if parsed.hostname not in GIST_HOSTS:
        return raw_url

    segments = [s for s in parsed.path.split("/") if s]
    if "raw" not in segments:
        return raw_url
    raw_index = segments.index("raw")
    after_raw = segments[raw_index + 1:]
    if len(after_raw) >= 2:
        after_raw = after_raw[1:]
    path = "/" + "/".join(segments[:raw_index + 1] + after_raw)
    return urlunparse(parsed._replace(path=path))


def extract_gist_id(raw_url: str) -> str:
    """
    Находит идентификатор gist (16-40 hex-символов) в пути URL.

    Возвращает:
        str: Идентификатор или пустая строка
    """
    try:
        segments = [s for s in urlparse(raw_url).path.split("/") if s]
    except ValueError:
        return ""
    for segment in segments:
        if GIST_ID_PATTERN.match(segment):
            return segment
    return ""


def parse_document(text: str, label: str) -> SyncDocument:
    """
    Разбирает JSON документа синхронизации со строгой проверкой схемы.

    Аргументы:
        text: JSON-текст
        label: Источник текста для сообщения об ошибке

    Raises:
        ContentParseError: Если текст не JSON или не соответствует схеме
    """
    try:
        return SyncDocument.model_validate_json(text)
    except ValidationError as e:
        snippet = text[:200] if text else "[empty]"
        raise ContentParseError(f"Некорректный документ ({label}): {e.error_count()} ошибок. Фрагмент: {snippet}") from e


class GistClient:
    """
    Клиент хранилища документа синхронизации.

    Аргументы:
        config: Объект конфигурации приложения
        client: Готовый httpx.AsyncClient (по умолчанию создается в __aenter__)
    """

    def __init__(self, config: Config, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.api_url = config.github_api_url
        self.filename = config.gist_filename
        self.session = client
        self._owns_session = client is None

    async def __aenter__(self):
        if self.session is None:
            self.session = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.gist_timeout),
                headers={"User-Agent": self.config.origin_client},
            )
            logger.debug("HTTP сессия создана для GistClient")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session is not None and self._owns_session:
            await self.session.aclose()
            self.session = None
            logger.debug("HTTP сессия закрыта для GistClient")

    def _headers(self, with_body: bool = False) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
            "Cache-Control": "no-store",
        }
        if self.config.github_token:
            headers["Authorization"] = f"Bearer {self.config.github_token}"
        if with_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Выполняет запрос и превращает ошибки в RemoteUnavailable / RateLimited.
        """
        if self.session is None:
            raise RuntimeError("Используйте async with GistClient(config) as client:")
        try:
            response = await self.session.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteUnavailable(None, f"Хранилище недоступно: {type(e).__name__}: {e}") from e

        if response.is_success:
            return response

        if response.status_code in RATE_LIMIT_STATUSES:
            reset = response.headers.get("x-ratelimit-reset")
            wait_minutes = RateLimited.wait_from_reset(reset)
            logger.error(
                f"Лимит запросов хранилища: status={response.status_code}, "
                f"remaining={response.headers.get('x-ratelimit-remaining')}, reset={reset}"
            )
            raise RateLimited(response.status_code, wait_minutes)

        raise RemoteUnavailable(response.status_code, f"{method} {url}: HTTP {response.status_code}")

    async def fetch(self, gist_id: str) -> Optional[SyncDocument]:
        """
        Загружает документ из gist.

        Аргументы:
            gist_id: Идентификатор gist

        Возвращает:
            SyncDocument или None, если в gist нет файла документа

        Raises:
            RemoteUnavailable: При не-2xx ответе или сетевой ошибке
            ContentParseError: Если содержимое не соответствует схеме
        """
        start_time = time.time()
        log_function_call("GistClient.fetch", (gist_id,))

        response = await self._request("GET", f"{self.api_url}/gists/{gist_id}", headers=self._headers())
        try:
            files = response.json().get("files") or {}
        except (ValueError, AttributeError) as e:
            raise ContentParseError(f"Некорректный ответ хранилища для gist {gist_id}") from e

        file = files.get(self.filename)
        if not file:
            logger.warning(f"В gist {gist_id} нет файла {self.filename}")
            return None

        if file.get("truncated"):
            raw_url = file.get("raw_url")
            if not raw_url:
                raise ContentParseError(f"Усеченный файл {self.filename} без raw_url")
            logger.info(f"Содержимое {self.filename} усечено, загрузка по raw_url")
            raw_response = await self._request("GET", raw_url)
            document = parse_document(raw_response.text, "raw_url")
        else:
            document = parse_document(file.get("content") or "", "file.content")

        log_performance("GistClient.fetch", time.time() - start_time, f"items={len(document.items)}")
        return document

    async def fetch_public(self, raw_url: str) -> SyncDocument:
        """
        Загружает документ напрямую по raw-URL без авторизации.

        Аргументы:
            raw_url: Ссылка на содержимое файла
        """
        response = await self._request("GET", normalize_gist_raw_url(raw_url))
        return parse_document(response.text, "raw_url")

    async def create(self) -> str:
        """
        Создает приватный gist с пустым документом.

        Возвращает:
            str: Идентификатор созданного gist
        """
        log_function_call("GistClient.create")

        empty = SyncDocument(
            version=SCHEMA_VERSION,
            updated_at=now_ms(),
            origin_client=self.config.origin_client,
            items=[],
        )
        body = {
            "description": self.config.gist_description,
            "public": False,
            "files": {self.filename: {"content": self._serialize(empty)}},
        }
        response = await self._request(
            "POST", f"{self.api_url}/gists", headers=self._headers(with_body=True), json=body
        )
        try:
            gist_id = response.json()["id"]
        except (ValueError, KeyError, TypeError) as e:
            raise ContentParseError("Ответ на создание gist не содержит id") from e

        logger.info(f"Создан новый gist: {gist_id}")
        return gist_id

    async def update(self, gist_id: str, document: SyncDocument) -> None:
        """
        Полностью перезаписывает документ в gist.

        Аргументы:
            gist_id: Идентификатор gist
            document: Новый документ
        """
        start_time = time.time()
        log_function_call("GistClient.update", (gist_id,), {"items": len(document.items)})

        body = {"files": {self.filename: {"content": self._serialize(document)}}}
        try:
            await self._request(
                "PATCH",
                f"{self.api_url}/gists/{gist_id}",
                headers=self._headers(with_body=True),
                json=body,
                timeout=self.config.gist_update_timeout,
            )
        except RemoteUnavailable as e:
            log_error_with_context(e, {"operation": "GistClient.update", "gist_id": gist_id})
            raise

        log_performance("GistClient.update", time.time() - start_time, f"items={len(document.items)}")

    @staticmethod
    def _serialize(document: SyncDocument) -> str:
        return json.dumps(document.to_wire(), indent=2, ensure_ascii=False)
