"""
Тесты для модуля engine.py
"""
import asyncio
import json
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from bookmark_sync.codec import flatten
from bookmark_sync.engine import SyncEngine, SyncLock
from bookmark_sync.errors import (
    ConfigurationMissing,
    ContentParseError,
    RemoteConflict,
    RemoteDocumentMissing,
    RemoteUnavailable,
    SyncInProgress,
)
from bookmark_sync.models import AiMetadata, SyncState
from bookmark_sync.state import StateStore
from bookmark_sync.tree import BAR_ID, BookmarkTree
from tests.conftest import (
    GIST_ID,
    FakeGistServer,
    MemoryBookmarksSource,
    find_item,
    make_document,
    make_item,
    with_config,
)

NOW = 1_700_000_000_000


@pytest.fixture
def state_store(temp_dir):
    return StateStore(str(temp_dir / "state.json"))


@pytest.fixture
def indicator():
    return Mock()


def make_engine(config, server, tree, state_store, indicator, **kwargs):
    return SyncEngine(
        config,
        MemoryBookmarksSource(tree),
        state_store,
        client_factory=server.client_factory(config),
        indicator=indicator,
        clock=lambda: NOW,
        **kwargs,
    )


def remote_leaves(count, updated_at=100):
    return make_document(
        [make_item(f"r{i}", i, url=f"https://remote{i}.example.com") for i in range(count)],
        updated_at=updated_at,
    )


class CorruptGistServer(FakeGistServer):
    """Хранилище, в котором документ не проходит проверку схемы."""

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET" and not self.updates:
            self.requests.append(request)
            content = json.dumps({"updatedAt": 100, "items": [{"id": "x", "title": "No order"}]})
            files = {self.filename: {"filename": self.filename, "truncated": False, "content": content}}
            return httpx.Response(200, json={"id": GIST_ID, "files": files})
        return super().handler(request)


class TestUpload:
    """Тесты выгрузки"""

    @pytest.mark.asyncio
    async def test_upload_with_matching_base(self, config, bar_tree, state_store, indicator):
        """Удаленный документ с updatedAt=100 и base=100: выгрузка проходит, base становится новой меткой"""
        server = FakeGistServer(remote_leaves(5, updated_at=100))
        await state_store.save(SyncState(base_remote_updated_at=100))
        engine = make_engine(config, server, bar_tree, state_store, indicator)

        document = await engine.upload()

        assert document.updated_at == NOW
        assert server.document.updated_at == NOW
        assert server.document.origin_client == "bookmark-sync-tests"
        assert [i.id for i in server.document.items] == [i.id for i in flatten(bar_tree)]
        state = await state_store.load()
        assert state.base_remote_updated_at == NOW
        assert state.remote_updated_at == NOW
        assert state.remote_count == 2
        assert state.local_count == 2

    @pytest.mark.asyncio
    async def test_upload_conflict(self, config, bar_tree, state_store, indicator):
        server = FakeGistServer(remote_leaves(3, updated_at=200))
        await state_store.save(SyncState(base_remote_updated_at=100))
        engine = make_engine(config, server, bar_tree, state_store, indicator)

        with pytest.raises(RemoteConflict) as exc_info:
            await engine.upload()

        assert exc_info.value.remote_updated_at == 200
        assert exc_info.value.remote_count == 3
        assert server.updates == []
        state = await state_store.load()
        assert state.base_remote_updated_at == 100
        assert state.remote_updated_at == 200
        assert not engine.lock.locked
        indicator.set_idle.assert_called_once()

    @pytest.mark.asyncio
    async def test_first_upload_over_foreign_document(self, config, bar_tree, state_store, indicator):
        server = FakeGistServer(remote_leaves(3))
        engine = make_engine(config, server, bar_tree, state_store, indicator)

        with pytest.raises(RemoteConflict):
            await engine.upload()

    @pytest.mark.asyncio
    async def test_forced_upload(self, config, bar_tree, state_store, indicator):
        server = FakeGistServer(remote_leaves(3, updated_at=200))
        await state_store.save(SyncState(base_remote_updated_at=100))
        engine = make_engine(config, server, bar_tree, state_store, indicator)

        document = await engine.upload(force=True)

        assert len(server.updates) == 1
        assert (await state_store.load()).base_remote_updated_at == document.updated_at

    @pytest.mark.asyncio
    async def test_forced_upload_overwrites_corrupt_document(self, config, bar_tree, state_store, indicator):
        server = CorruptGistServer()
        await state_store.save(SyncState(base_remote_updated_at=100))
        engine = make_engine(config, server, bar_tree, state_store, indicator)

        document = await engine.upload(force=True)

        assert document.updated_at == NOW
        assert len(server.updates) == 1
        assert [i.id for i in server.document.items] == [i.id for i in flatten(bar_tree)]
        assert (await state_store.load()).base_remote_updated_at == NOW

    @pytest.mark.asyncio
    async def test_corrupt_document_blocks_plain_upload(self, config, bar_tree, state_store, indicator):
        server = CorruptGistServer()
        await state_store.save(SyncState(base_remote_updated_at=100))
        engine = make_engine(config, server, bar_tree, state_store, indicator)

        with pytest.raises(ContentParseError):
            await engine.upload()

        assert server.updates == []
        assert not engine.lock.locked

    @pytest.mark.asyncio
    async def test_updated_at_strictly_increases(self, config, bar_tree, state_store, indicator):
        """Метка версии растет даже если часы клиента отстают"""
        future = NOW + 10_000
        server = FakeGistServer(remote_leaves(0, updated_at=future))
        await state_store.save(SyncState(base_remote_updated_at=future))
        engine = make_engine(config, server, bar_tree, state_store, indicator)

        document = await engine.upload()

        assert document.updated_at == future + 1

    @pytest.mark.asyncio
    async def test_upload_keeps_remote_enrichment(self, config, bar_tree, state_store, indicator):
        local_items = flatten(bar_tree)
        first = next(i for i in local_items if i.title == "First")
        remote_first = first.model_copy(update={"ai": AiMetadata(summary="First page", tags=["x"], enriched_at=1)})
        server = FakeGistServer(make_document([remote_first], updated_at=100))
        await state_store.save(SyncState(base_remote_updated_at=100))
        engine = make_engine(config, server, bar_tree, state_store, indicator)

        await engine.upload()

        uploaded = find_item(server.document, first.id)
        assert uploaded.ai.summary == "First page"

    @pytest.mark.asyncio
    async def test_creates_gist_once(self, config, bar_tree, state_store, indicator):
        config = with_config(config, gist_id="", gist_raw_url="")
        server = FakeGistServer(None)
        engine = make_engine(config, server, bar_tree, state_store, indicator)

        await engine.upload()
        await engine.upload()

        assert server.created == 1
        assert (await state_store.load()).gist_id == GIST_ID
        assert len(server.updates) == 2

    @pytest.mark.asyncio
    async def test_missing_token_fails_before_network(self, config, bar_tree, state_store, indicator):
        config = with_config(config, github_token="")
        server = FakeGistServer(remote_leaves(1))
        engine = make_engine(config, server, bar_tree, state_store, indicator)

        with pytest.raises(ConfigurationMissing):
            await engine.upload()

        assert server.requests == []

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self, config, bar_tree, state_store, indicator):
        server = FakeGistServer(remote_leaves(1))
        server.fail_status = 502
        engine = make_engine(config, server, bar_tree, state_store, indicator)

        with pytest.raises(RemoteUnavailable):
            await engine.upload()

        assert not engine.lock.locked
        indicator.set_busy.assert_called_once_with("upload")
        indicator.set_idle.assert_called_once()


class TestDownloadAndClear:
    """Тесты загрузки и очистки"""

    @pytest.mark.asyncio
    async def test_download_replaces_tree(self, config, bar_tree, nested_tree, state_store, indicator):
        server = FakeGistServer(make_document(flatten(bar_tree), updated_at=300))
        source_tree = nested_tree
        engine = make_engine(config, server, source_tree, state_store, indicator)

        document = await engine.download()

        assert document.updated_at == 300
        [folder] = source_tree.children(BAR_ID)
        assert folder.title == "Bar"
        assert source_tree.count_bookmarks() == 2
        state = await state_store.load()
        assert state.base_remote_updated_at == 300
        assert state.local_count == 2
        assert state.remote_count == 2

    @pytest.mark.asyncio
    async def test_download_empty_document(self, config, state_store, indicator):
        server = FakeGistServer(make_document([]))
        tree = BookmarkTree()
        engine = make_engine(config, server, tree, state_store, indicator)

        with pytest.raises(RemoteDocumentMissing):
            await engine.download()

        assert not engine.lock.locked

    @pytest.mark.asyncio
    async def test_download_without_handle(self, config, state_store, indicator):
        config = with_config(config, gist_id="", gist_raw_url="")
        engine = make_engine(config, FakeGistServer(None), BookmarkTree(), state_store, indicator)

        with pytest.raises(ConfigurationMissing):
            await engine.download()

    @pytest.mark.asyncio
    async def test_clear(self, config, nested_tree, state_store, indicator):
        engine = make_engine(config, FakeGistServer(None), nested_tree, state_store, indicator)

        removed = await engine.clear()

        assert removed == 3
        assert (await state_store.load()).local_count == 0

    @pytest.mark.asyncio
    async def test_operations_are_exclusive(self, config, nested_tree, state_store, indicator):
        lock = SyncLock()
        engine = make_engine(config, FakeGistServer(None), nested_tree, state_store, indicator, lock=lock)

        with lock.hold("download"):
            with pytest.raises(SyncInProgress):
                await engine.clear()

        assert nested_tree.count_bookmarks() == 5


class TestCheckRemote:
    """Тесты проверки удаленного документа"""

    @pytest.mark.asyncio
    async def test_records_remote_marker_only(self, config, state_store, indicator):
        server = FakeGistServer(remote_leaves(4, updated_at=500))
        await state_store.save(SyncState(base_remote_updated_at=100))
        engine = make_engine(config, server, BookmarkTree(), state_store, indicator)

        diverged = await engine.check_remote()

        assert diverged is True
        state = await state_store.load()
        assert state.base_remote_updated_at == 100
        assert state.remote_updated_at == 500
        assert state.remote_count == 4


class TestChangeEvents:
    """Тесты реакции на изменения локального дерева"""

    @pytest.mark.asyncio
    async def test_event_ignored_while_syncing(self, config, bar_tree, state_store, indicator):
        engine = make_engine(config, FakeGistServer(None), bar_tree, state_store, indicator)

        with engine.lock.hold("download"):
            handled = await engine.on_bookmarks_changed()

        assert handled is False
        indicator.mark_dirty.assert_not_called()

    @pytest.mark.asyncio
    async def test_event_marks_dirty(self, config, bar_tree, state_store, indicator):
        engine = make_engine(config, FakeGistServer(None), bar_tree, state_store, indicator)

        handled = await engine.on_bookmarks_changed()

        assert handled is True
        indicator.mark_dirty.assert_called_once()
        assert (await state_store.load()).local_count == 2
        assert engine.auto_sync_task is None

    @pytest.mark.asyncio
    async def test_auto_sync_debounced(self, config, bar_tree, state_store, indicator):
        """Новое событие отменяет отложенную выгрузку, выполняется только последняя"""
        config = with_config(config, auto_sync=True, sync_delay=1)
        server = FakeGistServer(make_document([], updated_at=100))
        await state_store.save(SyncState(base_remote_updated_at=100))
        sleep = AsyncMock()
        engine = make_engine(config, server, bar_tree, state_store, indicator, sleep=sleep)

        await engine.on_bookmarks_changed()
        first_task = engine.auto_sync_task
        await engine.on_bookmarks_changed()
        second_task = engine.auto_sync_task
        await asyncio.gather(first_task, second_task, return_exceptions=True)

        assert first_task.cancelled()
        assert len(server.updates) == 1
        sleep.assert_awaited_with(60)
