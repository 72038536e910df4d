"""
Модуль engine.py
Движок синхронизации: выгрузка, загрузка и очистка закладок, проверка
удаленного документа и реакция на изменения локального дерева.

Операции выполняются под маркером SyncLock. Пока маркер занят, события
изменения дерева не запускают автосинхронизацию. Маркер и индикатор занятости
освобождаются на любом пути выхода из операции.
"""
import asyncio
import time
from contextlib import contextmanager
from typing import Awaitable, Callable, Iterator, Optional, Protocol

from .codec import clear as clear_tree
from .codec import flatten, rebuild
from .config import Config
from .conflict import ConflictDetector, merge_enrichment
from .errors import (
    ConfigurationMissing,
    ContentParseError,
    RemoteConflict,
    RemoteDocumentMissing,
    SyncError,
    SyncInProgress,
)
from .logger import get_logger, log_error_with_context, log_function_call, log_performance
from .models import SCHEMA_VERSION, SyncDocument, SyncState
from .remote import GistClient
from .state import StateStore
from .tree import BookmarkTree, now_ms

logger = get_logger(__name__)


class BookmarksSource(Protocol):
    """Источник локального дерева закладок."""

    def load(self) -> BookmarkTree: ...

    def save(self, tree: BookmarkTree) -> None: ...


class BusyIndicator(Protocol):
    """Индикатор состояния для интерфейса пользователя."""

    def set_busy(self, operation: str) -> None: ...

    def set_idle(self) -> None: ...

    def mark_dirty(self) -> None: ...


class LoggingIndicator:
    """Индикатор, который только пишет состояние в лог."""

    def set_busy(self, operation: str) -> None:
        logger.info(f"Операция выполняется: {operation}")

    def set_idle(self) -> None:
        logger.debug("Индикатор занятости сброшен")

    def mark_dirty(self) -> None:
        logger.info("Локальные закладки изменены и не синхронизированы")


class SyncLock:
    """
    Маркер взаимного исключения операций движка.
    Одна операция за раз; повторный захват вызывает SyncInProgress.
    """

    def __init__(self) -> None:
        self._holder: Optional[str] = None

    @property
    def locked(self) -> bool:
        return self._holder is not None

    @property
    def holder(self) -> Optional[str]:
        return self._holder

    @contextmanager
    def hold(self, operation: str) -> Iterator[None]:
        if self._holder is not None:
            raise SyncInProgress(f"Уже выполняется операция: {self._holder}")
        self._holder = operation
        try:
            yield
        finally:
            self._holder = None


class SyncEngine:
    """
    Движок синхронизации локального дерева с удаленным документом.

    Аргументы:
        config: Объект конфигурации приложения
        source: Источник локального дерева
        state_store: Хранилище локального состояния
        client_factory: Фабрика клиента хранилища (по умолчанию GistClient)
        lock: Маркер взаимного исключения
        indicator: Индикатор занятости
        clock: Текущее время в мс с эпохи
        sleep: Асинхронная задержка (для отложенной автосинхронизации)
    """

    def __init__(
        self,
        config: Config,
        source: BookmarksSource,
        state_store: StateStore,
        client_factory: Optional[Callable[[], GistClient]] = None,
        lock: Optional[SyncLock] = None,
        indicator: Optional[BusyIndicator] = None,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.source = source
        self.state_store = state_store
        self.client_factory = client_factory or (lambda: GistClient(config))
        self.lock = lock or SyncLock()
        self.indicator = indicator or LoggingIndicator()
        self.detector = ConflictDetector()
        self.clock = clock
        self.sleep = sleep
        self._auto_sync_task: Optional[asyncio.Task] = None

    @property
    def auto_sync_task(self) -> Optional[asyncio.Task]:
        return self._auto_sync_task

    def _gist_handle(self, state: SyncState) -> Optional[str]:
        return self.config.gist_handle or state.gist_id

    @contextmanager
    def _operation(self, name: str) -> Iterator[None]:
        with self.lock.hold(name):
            self.indicator.set_busy(name)
            try:
                yield
            finally:
                self.indicator.set_idle()

    async def upload(self, force: bool = False) -> SyncDocument:
        """
        Выгружает локальное дерево в удаленный документ.

        Аргументы:
            force: Перезаписать удаленный документ даже при конфликте или поврежденной схеме

        Возвращает:
            SyncDocument: Записанный документ

        Raises:
            ConfigurationMissing: Если не задан GITHUB_TOKEN
            RemoteConflict: Если удаленный документ изменился, а force не задан
            RemoteUnavailable: При ошибке хранилища
            ContentParseError: Если удаленный документ поврежден, а force не задан
        """
        start_time = time.time()
        log_function_call("SyncEngine.upload", (), {"force": force})
        self.config.require("github_token")

        try:
            with self._operation("upload"):
                document = await self._upload(force)
        except SyncError as e:
            if not isinstance(e, RemoteConflict):
                log_error_with_context(e, {"operation": "upload", "force": force})
            raise
        finally:
            await self._refresh_local_count()

        log_performance("SyncEngine.upload", time.time() - start_time, f"items={len(document.items)}")
        logger.info(f"Выгружено закладок: {document.leaf_count()}")
        return document

    async def _upload(self, force: bool) -> SyncDocument:
        state = await self.state_store.load()
        tree = self.source.load()

        async with self.client_factory() as client:
            gist_id = self._gist_handle(state)
            if not gist_id:
                gist_id = await client.create()
                state.gist_id = gist_id
                await self.state_store.save(state)

            items = flatten(tree)
            try:
                remote = await client.fetch(gist_id)
            except ContentParseError as e:
                if not force:
                    raise
                # Поврежденный документ перезаписывается целиком, метаданные обогащения теряются
                logger.warning(f"Удаленный документ не прошел проверку схемы, принудительная перезапись: {e}")
                remote = None
            if remote is not None:
                state.remote_updated_at = remote.updated_at
                state.remote_count = remote.leaf_count()

            try:
                self.detector.ensure_can_upload(state.base_remote_updated_at, remote, force)
            except RemoteConflict:
                await self.state_store.save(state)
                raise

            merge_enrichment(items, remote)

            updated_at = self.clock()
            if remote is not None and updated_at <= remote.updated_at:
                updated_at = remote.updated_at + 1

            document = SyncDocument(
                version=SCHEMA_VERSION,
                updated_at=updated_at,
                origin_client=self.config.origin_client,
                items=items,
            )
            await client.update(gist_id, document)

        state.base_remote_updated_at = document.updated_at
        state.remote_updated_at = document.updated_at
        state.remote_count = document.leaf_count()
        await self.state_store.save(state)
        return document

    async def download(self) -> SyncDocument:
        """
        Заменяет локальное дерево содержимым удаленного документа.

        Возвращает:
            SyncDocument: Загруженный документ

        Raises:
            ConfigurationMissing: Если не заданы GITHUB_TOKEN или идентификатор gist
            RemoteDocumentMissing: Если документа нет или он пуст
            RemoteUnavailable: При ошибке хранилища
        """
        start_time = time.time()
        log_function_call("SyncEngine.download")
        self.config.require("github_token")
        state = await self.state_store.load()
        gist_id = self._gist_handle(state)
        if not gist_id:
            raise ConfigurationMissing(["GIST_ID"])

        try:
            with self._operation("download"):
                async with self.client_factory() as client:
                    document = await client.fetch(gist_id)
                if document is None or not document.items:
                    raise RemoteDocumentMissing(f"В gist {gist_id} нет закладок")

                tree = self.source.load()
                clear_tree(tree)
                rebuild(tree, document.items)
                self.source.save(tree)

                state.base_remote_updated_at = document.updated_at
                state.remote_updated_at = document.updated_at
                state.remote_count = document.leaf_count()
                await self.state_store.save(state)
        except SyncError as e:
            log_error_with_context(e, {"operation": "download", "gist_id": gist_id})
            raise
        finally:
            await self._refresh_local_count()

        log_performance("SyncEngine.download", time.time() - start_time, f"items={len(document.items)}")
        logger.info(f"Восстановлено закладок: {document.leaf_count()}")
        return document

    async def clear(self) -> int:
        """
        Удаляет все локальные закладки, оставляя канонические контейнеры.

        Возвращает:
            int: Количество удаленных поддеревьев
        """
        log_function_call("SyncEngine.clear")
        try:
            with self._operation("clear"):
                tree = self.source.load()
                removed = clear_tree(tree)
                self.source.save(tree)
        finally:
            await self._refresh_local_count()
        return removed

    async def check_remote(self) -> bool:
        """
        Запоминает метку версии и число закладок удаленного документа,
        не меняя базовую метку.

        Возвращает:
            bool: True, если удаленный документ отличается от последней синхронизации
        """
        self.config.require("github_token")
        state = await self.state_store.load()
        gist_id = self._gist_handle(state)
        if not gist_id:
            raise ConfigurationMissing(["GIST_ID"])

        async with self.client_factory() as client:
            remote = await client.fetch(gist_id)

        if remote is None:
            logger.info("Удаленный документ отсутствует")
            return False

        state.remote_updated_at = remote.updated_at
        state.remote_count = remote.leaf_count()
        await self.state_store.save(state)
        return remote.updated_at != state.base_remote_updated_at

    async def update_local_count(self) -> int:
        """
        Пересчитывает число локальных закладок и сохраняет его в состоянии.

        Возвращает:
            int: Число закладок
        """
        count = self.source.load().count_bookmarks()
        state = await self.state_store.load()
        state.local_count = count
        await self.state_store.save(state)
        return count

    async def _refresh_local_count(self) -> None:
        try:
            await self.update_local_count()
        except (OSError, ValueError) as e:
            log_error_with_context(e, {"operation": "update_local_count"})

    async def on_bookmarks_changed(self) -> bool:
        """
        Обрабатывает событие изменения локального дерева.

        Возвращает:
            bool: False, если событие проигнорировано из-за идущей синхронизации
        """
        if self.lock.locked:
            logger.debug(f"Изменение дерева во время операции {self.lock.holder} проигнорировано")
            return False

        self.indicator.mark_dirty()
        await self.update_local_count()

        if self.config.auto_sync:
            self._schedule_auto_sync()
        return True

    def _schedule_auto_sync(self) -> None:
        if self._auto_sync_task is not None and not self._auto_sync_task.done():
            self._auto_sync_task.cancel()
        delay = self.config.sync_delay * 60
        logger.info(f"Автосинхронизация запланирована через {self.config.sync_delay} мин.")
        self._auto_sync_task = asyncio.create_task(self._delayed_upload(delay))

    async def _delayed_upload(self, delay: float) -> None:
        await self.sleep(delay)
        try:
            await self.upload()
        except SyncError as e:
            log_error_with_context(e, {"operation": "auto_sync"})
