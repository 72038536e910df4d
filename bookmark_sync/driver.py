"""
Модуль driver.py
Долгоживущий цикл опроса конвейера обогащения.

Цикл повторно вызывает короткий запрос обогащения с фиксированной паузой, пока:
- конвейер не сообщит о завершении (remaining == 0);
- remaining не меняется ENRICH_MAX_NO_PROGRESS опросов подряд (зависание);
- не произойдет ENRICH_MAX_ERRORS транспортных ошибок подряд (ошибка пробрасывается).

Если в одном опросе срабатывает и бюджет времени, и детектор зависания,
итог формирует детектор зависания: success=False, timedOut=True, completed=False.
"""
import asyncio
from typing import Awaitable, Callable, Optional

from .errors import EnrichmentTransportError, RemoteUnavailable
from .logger import get_logger, log_error_with_context
from .models import EnrichmentResult

logger = get_logger(__name__)

TRANSPORT_ERRORS = (EnrichmentTransportError, RemoteUnavailable)


class EnrichmentDriver:
    """
    Конечный автомат опроса обогащения с внедряемой задержкой.

    Аргументы:
        poll: Один вызов обогащения, возвращающий EnrichmentResult
        sleep: Асинхронная задержка между опросами
        poll_interval: Пауза между опросами в секундах
        max_no_progress: Число опросов без изменения remaining до остановки
        max_consecutive_errors: Число транспортных ошибок подряд до прерывания
        on_progress: Обратный вызов с результатом каждого успешного опроса
    """

    def __init__(
        self,
        poll: Callable[[], Awaitable[EnrichmentResult]],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        poll_interval: float = 2.0,
        max_no_progress: int = 3,
        max_consecutive_errors: int = 3,
        on_progress: Optional[Callable[[EnrichmentResult], None]] = None,
    ):
        self.poll = poll
        self.sleep = sleep
        self.poll_interval = poll_interval
        self.max_no_progress = max_no_progress
        self.max_consecutive_errors = max_consecutive_errors
        self.on_progress = on_progress

    async def run_until_done(self) -> EnrichmentResult:
        """
        Опрашивает конвейер до завершения, зависания или предела ошибок.

        Возвращает:
            EnrichmentResult: Накопленный итог (processed и batches суммируются по опросам)

        Raises:
            EnrichmentTransportError, RemoteUnavailable: После max_consecutive_errors ошибок подряд
        """
        total = EnrichmentResult()
        last_remaining: Optional[int] = None
        no_progress = 0
        errors = 0
        polls = 0

        while True:
            polls += 1
            try:
                result = await self.poll()
            except TRANSPORT_ERRORS as e:
                errors += 1
                log_error_with_context(e, {"operation": "enrich_poll", "poll": polls, "consecutive_errors": errors})
                if errors >= self.max_consecutive_errors:
                    logger.error(f"Обогащение прервано после {errors} ошибок подряд")
                    raise
                await self.sleep(self.poll_interval)
                continue

            errors = 0
            total.processed += result.processed
            total.batches += result.batches
            total.remaining = result.remaining
            total.timed_out = result.timed_out
            total.success = result.success
            if self.on_progress is not None:
                self.on_progress(result)
            logger.info(
                f"Опрос {polls}: обработано {result.processed}, осталось {result.remaining}, "
                f"всего обработано {total.processed}"
            )

            if result.completed or result.remaining == 0:
                total.completed = True
                total.timed_out = False
                return total

            if last_remaining is not None and result.remaining == last_remaining:
                no_progress += 1
            else:
                no_progress = 0
            last_remaining = result.remaining

            if no_progress >= self.max_no_progress:
                logger.warning(
                    f"Обогащение остановлено: remaining={result.remaining} не меняется "
                    f"{no_progress} опросов подряд"
                )
                total.success = False
                total.timed_out = True
                total.completed = False
                return total

            await self.sleep(self.poll_interval)
