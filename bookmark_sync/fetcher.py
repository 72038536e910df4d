"""
Модуль fetcher.py
Получение текста страницы для обогащения закладки.

Стратегии по порядку:
1. Прямой GET страницы, удаление скриптов и разметки, обрезка до CONTENT_MAX_CHARS.
2. Прокси-читатель (READER_BASE_URL/<url>): сначала с ключом, затем без него;
   сначала полный URL, затем корень сайта.
Ошибки стратегий не выбрасываются: пустая строка означает "контента нет".
"""
import re
import time
from typing import List, Literal, Optional, Union
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from .config import Config
from .logger import get_logger, log_function_call, log_performance

logger = get_logger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; BookmarkSyncBot/1.0)"
HTML_CONTENT_TYPES = ("text/html", "application/xhtml")
MIN_DIRECT_LENGTH = 100
MIN_READER_LENGTH = 50
STRIPPED_TAGS = ["script", "style", "noscript", "template"]


def resolve_favicon(url: str, template: str) -> Union[str, Literal[False]]:
    """
    Строит URL иконки сайта через сервис иконок.

    Аргументы:
        url: Адрес закладки
        template: Шаблон URL сервиса с подстановкой {domain}

    Возвращает:
        str или False, если домен определить не удалось
    """
    try:
        domain = urlparse(url).hostname
    except ValueError:
        domain = None
    if not domain:
        logger.debug(f"Не удалось определить домен для иконки: {url}")
        return False
    return template.format(domain=domain)


class ContentFetcher:
    """
    Загрузчик текста веб-страниц.

    Аргументы:
        config: Объект конфигурации приложения
        client: Готовый httpx.AsyncClient (по умолчанию создается в __aenter__)
    """

    def __init__(self, config: Config, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.max_chars = config.content_max_chars
        self.session = client
        self._owns_session = client is None

    async def __aenter__(self):
        if self.session is None:
            limits = httpx.Limits(max_keepalive_connections=20, max_connections=100)
            self.session = httpx.AsyncClient(limits=limits, follow_redirects=True)
            logger.debug("HTTP сессия создана для ContentFetcher")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.session is not None and self._owns_session:
            await self.session.aclose()
            self.session = None

    async def fetch_content(self, url: str) -> str:
        """
        Получает текст страницы, перебирая стратегии.

        Аргументы:
            url: Адрес страницы

        Возвращает:
            str: Текст не длиннее CONTENT_MAX_CHARS или пустая строка
        """
        start_time = time.time()
        log_function_call("fetch_content", (url,))

        if not self._validate_url(url):
            logger.warning(f"Некорректный URL: {url}")
            return ""
        if self.session is None:
            raise RuntimeError("Используйте async with ContentFetcher(config) as fetcher:")

        text = await self._fetch_direct(url)
        if not text:
            for target in self._reader_targets(url):
                if self.config.reader_api_key:
                    text = await self._fetch_reader(target, use_auth=True)
                    if text:
                        break
                text = await self._fetch_reader(target, use_auth=False)
                if text:
                    break

        log_performance("fetch_content", time.time() - start_time, f"url={url}, success={bool(text)}")
        if not text:
            logger.warning(f"Все стратегии получения контента не сработали: {url}")
        return text

    async def _fetch_direct(self, url: str) -> str:
        try:
            response = await self.session.get(
                url,
                headers={
                    "User-Agent": USER_AGENT,
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                    "Accept-Language": "en-US,en;q=0.9,ru;q=0.8",
                },
                timeout=self.config.fetch_timeout,
            )
        except httpx.HTTPError as e:
            logger.debug(f"Прямая загрузка не удалась: {url}, {type(e).__name__}: {e}")
            return ""

        content_type = response.headers.get("content-type", "")
        if not response.is_success or not any(t in content_type for t in HTML_CONTENT_TYPES):
            logger.debug(f"Прямая загрузка не подошла: {url}, status={response.status_code}, type={content_type}")
            return ""

        text = self.extract_text(response.text)
        if len(text) <= MIN_DIRECT_LENGTH:
            logger.debug(f"Недостаточно текста при прямой загрузке: {url} ({len(text)} символов)")
            return ""
        return text[:self.max_chars]

    async def _fetch_reader(self, target: str, use_auth: bool) -> str:
        headers = {"Accept": "text/plain"}
        if use_auth:
            headers["Authorization"] = f"Bearer {self.config.reader_api_key}"
        mode = "auth" if use_auth else "free"

        try:
            response = await self.session.get(
                f"{self.config.reader_base_url}/{target}",
                headers=headers,
                timeout=self.config.reader_timeout,
            )
        except httpx.HTTPError as e:
            logger.debug(f"Прокси-читатель ({mode}) не ответил: {target}, {type(e).__name__}: {e}")
            return ""

        if not response.is_success:
            logger.debug(f"Прокси-читатель ({mode}) вернул {response.status_code}: {target}")
            return ""
        text = response.text
        if len(text) <= MIN_READER_LENGTH:
            return ""
        logger.debug(f"Прокси-читатель ({mode}) вернул {len(text)} символов: {target}")
        return text[:self.max_chars]

    @staticmethod
    def _reader_targets(url: str) -> List[str]:
        """Полный URL и, если у него есть путь, корень сайта."""
        targets = [url]
        parsed = urlparse(url)
        if parsed.path and parsed.path != "/":
            targets.append(f"{parsed.scheme}://{parsed.hostname}")
        return targets

    def extract_text(self, html: str) -> str:
        """
        Извлекает текст из HTML без скриптов, стилей и разметки.

        Аргументы:
            html: HTML-контент

        Возвращает:
            str: Текст с нормализованными пробелами
        """
        if not html:
            return ""

        soup = BeautifulSoup(html, "html.parser")
        for tag in STRIPPED_TAGS:
            for element in soup.find_all(tag):
                element.decompose()

        return re.sub(r"\s+", " ", soup.get_text(separator=" ")).strip()

    def _validate_url(self, url: str) -> bool:
        try:
            result = urlparse(url)
        except ValueError:
            return False
        return result.scheme in ("http", "https") and bool(result.netloc)
