"""
Модуль summarizer.py
Взаимодействует с LLM API для получения заголовка, описания и тегов страницы.
Поддерживает любые провайдеры с OpenAI-совместимым API (DeepSeek, OpenAI, OpenRouter и др.).
"""
import asyncio
import json
import re
import time
from typing import List

from openai import AsyncOpenAI
from pydantic import ValidationError

from .config import Config
from .errors import ContentParseError
from .logger import get_logger, log_error_with_context, log_function_call, log_performance
from .models import SummaryResponse

logger = get_logger(__name__)

# Плейсхолдеры {url}, {title}, {content}; фигурные скобки JSON экранированы удвоением
DEFAULT_PROMPT = """Analyze this web page and return a JSON object.

URL: {url}
Original title: {title}
Content: {content}

Rewrite the title as brand plus topic, for example "Python Docs: asyncio". For dashboard, console or admin pages keep the product and page name.
Give about 3 short lowercase tags.

Respond with JSON only, no markdown:
{{"title": "short clear title", "summary": "one or two sentences about the page", "tags": ["tag1", "tag2", "tag3"]}}
"""

FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class ContentSummarizer:
    """
    Генератор метаданных закладки на основе LLM.

    Аргументы:
        config: Объект конфигурации приложения
        client: Готовый AsyncOpenAI-клиент (по умолчанию создается из конфигурации)
    """

    def __init__(self, config: Config, client: AsyncOpenAI = None):
        log_function_call("ContentSummarizer.__init__", (), {"model": config.llm_model})

        self.config = config
        self.client = client or AsyncOpenAI(
            api_key=config.llm_api_key,
            base_url=config.llm_base_url,
            timeout=config.llm_timeout,
        )
        self.prompt_template = self._load_prompt_template()
        self.requests_times: List[float] = []
        self.rate_limit_delay = 60 / config.llm_rate_limit if config.llm_rate_limit > 0 else 0

        logger.info(
            f"ContentSummarizer инициализирован: model={config.llm_model}, "
            f"max_tokens={config.llm_max_tokens}, rate_limit={config.llm_rate_limit}/min"
        )
        logger.debug(f"Base URL: {config.llm_base_url}")

    def _load_prompt_template(self) -> str:
        """
        Загружает шаблон промпта из PROMPT_FILE или возвращает встроенный.

        Возвращает:
            str: Шаблон с плейсхолдерами {url}, {title}, {content}
        """
        if not self.config.prompt_file:
            return DEFAULT_PROMPT

        try:
            with open(self.config.prompt_file, "r", encoding="utf-8") as f:
                template = f.read()
        except OSError as e:
            log_error_with_context(e, {"prompt_file": self.config.prompt_file, "operation": "_load_prompt_template"})
            raise

        logger.debug(f"Промпт загружен из файла: {self.config.prompt_file} ({len(template)} символов)")
        return template

    def _prepare_prompt(self, url: str, title: str, content: str) -> str:
        return self.prompt_template.format(url=url, title=title, content=content)

    async def _rate_limit(self) -> None:
        """
        Ограничивает частоту запросов к LLM API скользящим окном в 60 секунд.
        """
        if self.rate_limit_delay <= 0:
            return

        current_time = time.time()
        self.requests_times = [t for t in self.requests_times if current_time - t < 60]

        if len(self.requests_times) >= self.config.llm_rate_limit:
            sleep_time = 60 - (current_time - self.requests_times[0])
            if sleep_time > 0:
                logger.debug(
                    f"Ожидание {sleep_time:.2f} секунд из-за LLM rate limiting "
                    f"({len(self.requests_times)}/{self.config.llm_rate_limit})"
                )
                await asyncio.sleep(sleep_time)
                current_time = time.time()
                self.requests_times = [t for t in self.requests_times if current_time - t < 60]

        self.requests_times.append(current_time)

    @staticmethod
    def parse_response(raw: str) -> SummaryResponse:
        """
        Разбирает ответ модели: снимает markdown-ограждение и проверяет схему.

        Аргументы:
            raw: Текст ответа модели

        Возвращает:
            SummaryResponse: Проверенный ответ

        Raises:
            ContentParseError: Если ответ не JSON или не соответствует схеме
        """
        text = FENCE_PATTERN.sub("", raw.strip()).strip()
        try:
            data = json.loads(text)
        except ValueError as e:
            raise ContentParseError(f"Ответ модели не является JSON: {text[:200]}") from e
        if not isinstance(data, dict):
            raise ContentParseError(f"Ответ модели не является объектом: {text[:200]}")
        try:
            return SummaryResponse.model_validate(data)
        except ValidationError as e:
            raise ContentParseError(f"Ответ модели не соответствует схеме: {e.error_count()} ошибок") from e

    async def summarize(self, url: str, title: str, content: str) -> SummaryResponse:
        """
        Получает заголовок, описание и теги страницы.

        Аргументы:
            url: Адрес страницы
            title: Исходный заголовок закладки
            content: Текст страницы

        Возвращает:
            SummaryResponse: Ответ модели; пустой заголовок заменяется исходным

        Raises:
            ContentParseError: Если модель вернула пустой или некорректный ответ
            openai.APIError: При ошибке API
        """
        start_time = time.time()
        log_function_call("summarize", (url,), {"content_length": len(content)})

        await self._rate_limit()
        prompt = self._prepare_prompt(url, title, content)

        response = await self.client.chat.completions.create(
            model=self.config.llm_model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=self.config.llm_max_tokens,
            temperature=self.config.llm_temperature,
        )

        raw = response.choices[0].message.content if response.choices else None
        if not raw:
            log_performance("summarize", time.time() - start_time, f"url={url}, success=False")
            raise ContentParseError(f"Модель вернула пустой ответ для {url}")

        summary = self.parse_response(raw)
        if summary.title is None:
            summary.title = title or None

        log_performance("summarize", time.time() - start_time, f"url={url}, success=True")
        logger.info(f"Получено описание для {url}: {len(summary.tags)} тегов")
        return summary
