"""
Модуль pipeline.py
Один вызов конвейера обогащения удаленного документа.

Цикл: загрузка документа -> выбор пакета -> обработка пакета -> запись при
изменениях -> (следующий пакет | остановка). Остановка, когда не осталось
подходящих элементов или исчерпан бюджет времени вызова. Ошибка отдельной
закладки записывается в ее aiFailed и не прерывает пакет.
"""
import asyncio
import time
from typing import Callable, List, Optional, Tuple

from .config import Config
from .errors import CONTENT_UNAVAILABLE_REASON, ConfigurationMissing, RemoteDocumentMissing
from .fetcher import ContentFetcher, resolve_favicon
from .logger import get_logger, log_error_with_context, log_function_call, log_performance
from .models import AiFailure, AiMetadata, BookmarkItem, EnrichmentResult, SyncDocument
from .remote import GistClient
from .summarizer import ContentSummarizer
from .tree import now_ms

logger = get_logger(__name__)


def select_eligible(document: SyncDocument, max_attempts: int) -> List[BookmarkItem]:
    """
    Возвращает элементы документа, которые еще нужно обогатить, в порядке документа.

    Аргументы:
        document: Документ синхронизации
        max_attempts: Предел неудачных попыток
    """
    return [item for item in document.items if item.is_eligible(max_attempts)]


class EnrichmentPipeline:
    """
    Конвейер обогащения закладок.

    Аргументы:
        config: Объект конфигурации приложения
        client_factory: Фабрика клиента хранилища (по умолчанию GistClient)
        fetcher: Загрузчик контента (по умолчанию ContentFetcher)
        summarizer: Генератор метаданных (по умолчанию ContentSummarizer)
        clock: Монотонные часы в секундах для бюджета времени
        now: Текущее время в мс с эпохи для меток enrichedAt/failedAt
    """

    def __init__(
        self,
        config: Config,
        client_factory: Optional[Callable[[], GistClient]] = None,
        fetcher: Optional[ContentFetcher] = None,
        summarizer: Optional[ContentSummarizer] = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], int] = now_ms,
    ):
        self.config = config
        self.client_factory = client_factory or (lambda: GistClient(config))
        self.fetcher = fetcher
        self.summarizer = summarizer
        self.clock = clock
        self.now = now
        self.batch_size = config.enrich_batch_size
        self.concurrency = config.enrich_concurrency
        self.time_budget = config.enrich_time_budget
        self.max_attempts = config.enrich_max_attempts

    async def run(self) -> EnrichmentResult:
        """
        Обрабатывает пакеты, пока остаются подходящие элементы и не исчерпан бюджет.

        Возвращает:
            EnrichmentResult: processed, remaining, completed, batches, timedOut

        Raises:
            ConfigurationMissing: Если не заданы учетные данные или идентификатор gist
            RemoteDocumentMissing: Если в gist нет документа
            RemoteUnavailable: При ошибке хранилища
        """
        start = self.clock()
        log_function_call("EnrichmentPipeline.run")
        self.config.require("github_token", "llm_api_key")
        gist_id = self.config.gist_handle
        if not gist_id:
            raise ConfigurationMissing(["GIST_ID"])

        if self.summarizer is None:
            self.summarizer = ContentSummarizer(self.config)
        fetcher = self.fetcher or ContentFetcher(self.config)

        result = EnrichmentResult()
        async with self.client_factory() as client, fetcher:
            document = await client.fetch(gist_id)
            if document is None:
                raise RemoteDocumentMissing(f"В gist {gist_id} нет документа")

            eligible = select_eligible(document, self.max_attempts)
            result.remaining = len(eligible)
            logger.info(f"Подходящих для обогащения закладок: {result.remaining}")

            while eligible:
                batch = eligible[:self.batch_size]
                batch_start = time.time()
                succeeded, changed = await self.process_batch(batch, fetcher)

                if changed:
                    await client.update(gist_id, document)
                result.processed += succeeded
                result.batches += 1
                log_performance(
                    "EnrichmentPipeline.batch",
                    time.time() - batch_start,
                    f"batch={result.batches}, size={len(batch)}, succeeded={succeeded}",
                )

                eligible = select_eligible(document, self.max_attempts)
                result.remaining = len(eligible)
                if self.clock() - start > self.time_budget:
                    result.timed_out = True
                    logger.info(f"Бюджет времени исчерпан, осталось: {result.remaining}")
                    break

        result.completed = result.remaining == 0 and not result.timed_out
        log_performance(
            "EnrichmentPipeline.run",
            self.clock() - start,
            f"processed={result.processed}, remaining={result.remaining}, batches={result.batches}",
        )
        return result

    async def process_batch(self, batch: List[BookmarkItem], fetcher: ContentFetcher) -> Tuple[int, bool]:
        """
        Обрабатывает пакет под-пакетами по ENRICH_CONCURRENCY элементов параллельно.

        Возвращает:
            tuple: (число успешно обогащенных, был ли изменен хоть один элемент)
        """
        succeeded = 0
        for i in range(0, len(batch), self.concurrency):
            chunk = batch[i:i + self.concurrency]
            outcomes = await asyncio.gather(*(self.process_item(item, fetcher) for item in chunk))
            succeeded += sum(1 for ok in outcomes if ok)
        return succeeded, bool(batch)

    async def process_item(self, item: BookmarkItem, fetcher: ContentFetcher) -> bool:
        """
        Обогащает одну закладку: контент -> описание -> иконка.
        Любая ошибка превращается в запись aiFailed с увеличенным счетчиком попыток.

        Возвращает:
            bool: True при успешном обогащении
        """
        try:
            content = await fetcher.fetch_content(item.url)
            if not content:
                self._record_failure(item, CONTENT_UNAVAILABLE_REASON)
                return False

            summary = await self.summarizer.summarize(item.url, item.title, content)
            cover = resolve_favicon(item.url, self.config.favicon_url_template)

            item.ai = AiMetadata(
                title=summary.title,
                summary=summary.summary,
                tags=summary.tags,
                cover=cover,
                enriched_at=self.now(),
            )
            item.ai_failed = None
            logger.debug(f"Закладка обогащена: {item.id} {item.url}")
            return True
        except Exception as e:
            log_error_with_context(e, {"operation": "process_item", "id": item.id, "url": item.url})
            self._record_failure(item, str(e) or type(e).__name__)
            return False

    def _record_failure(self, item: BookmarkItem, reason: str) -> None:
        attempts = item.ai_failed.attempts if item.ai_failed is not None else 0
        item.ai_failed = AiFailure(reason=reason, attempts=attempts + 1, failed_at=self.now())
        logger.info(f"Не удалось обогатить {item.url}: {reason} (попытка {attempts + 1})")
