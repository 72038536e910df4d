"""
Общие фикстуры тестов.
Содержит конфигурацию, тестовые деревья закладок и поддельные внешние сервисы.
"""
import dataclasses
import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

import httpx
import pytest

from bookmark_sync.config import ConfigManager
from bookmark_sync.models import BookmarkItem, SyncDocument
from bookmark_sync.remote import GistClient
from bookmark_sync.tree import BAR_ID, OTHER_ID, BookmarkTree

GIST_ID = "aa5a315d61ae9438b18d"


@pytest.fixture(autouse=True)
def restore_environ():
    """load_dotenv(override=True) пишет в os.environ: восстанавливаем окружение после теста."""
    saved = dict(os.environ)
    yield
    os.environ.clear()
    os.environ.update(saved)


@pytest.fixture
def temp_dir():
    """Создает временную директорию для тестов."""
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir)


@pytest.fixture
def sample_env(temp_dir):
    """Создает тестовый .env-файл."""
    config_file = temp_dir / ".env"
    with open(config_file, 'w', encoding='utf-8') as f:
        f.write(f"""
GITHUB_TOKEN=ghp_test
GIST_ID={GIST_ID}
GIST_RAW_URL=
GIST_FILENAME=bookmarks.json
GITHUB_API_URL=https://api.github.test
ORIGIN_CLIENT=bookmark-sync-tests
BOOKMARKS_FILE={temp_dir}/Bookmarks
STATE_FILE={temp_dir}/state.json
AUTO_SYNC=false
SYNC_DELAY=5
LLM_API_KEY=test_key
LLM_BASE_URL=https://llm.test/v1
LLM_MODEL=test-model
LLM_RATE_LIMIT=0
PROMPT_FILE=
READER_BASE_URL=https://reader.test
READER_API_KEY=reader_key
CONTENT_MAX_CHARS=2000
ENRICH_BATCH_SIZE=5
ENRICH_CONCURRENCY=10
ENRICH_TIME_BUDGET=4.5
ENRICH_MAX_ATTEMPTS=2
WEB_URL=https://enrich.test
API_SECRET=test_secret
SIGNATURE_MAX_AGE=300
LOG_LEVEL=INFO
LOG_FILE=
""")
    return str(config_file)


@pytest.fixture
def config(sample_env):
    """Возвращает объект конфигурации."""
    return ConfigManager(sample_env).get()


def with_config(config, **overrides):
    """Копия конфигурации с переопределенными полями."""
    return dataclasses.replace(config, **overrides)


def make_item(
    item_id: str,
    order: int,
    url: Optional[str] = None,
    parent_id: Optional[str] = None,
    title: str = "",
    **extra,
) -> BookmarkItem:
    """Создает элемент плоского списка."""
    return BookmarkItem(
        id=item_id,
        order=order,
        url=url,
        parent_id=parent_id,
        title=title or item_id,
        **extra,
    )


def make_document(items: List[BookmarkItem], updated_at: int = 100) -> SyncDocument:
    return SyncDocument(updated_at=updated_at, origin_client="tests", items=items)


def find_item(document: SyncDocument, item_id: str) -> Optional[BookmarkItem]:
    return next((item for item in document.items if item.id == item_id), None)


def gist_payload(document: Optional[SyncDocument], filename: str = "bookmarks.json") -> dict:
    """Ответ GET /gists/{id} с документом в файле."""
    files = {}
    if document is not None:
        files[filename] = {
            "filename": filename,
            "truncated": False,
            "content": json.dumps(document.to_wire()),
        }
    return {"id": GIST_ID, "files": files}


class FakeGistServer:
    """
    Поддельный GitHub Gist API поверх httpx.MockTransport.
    Хранит один документ и записывает все запросы.
    """

    def __init__(self, document: Optional[SyncDocument] = None, filename: str = "bookmarks.json"):
        self.document = document
        self.filename = filename
        self.requests: List[httpx.Request] = []
        self.updates: List[dict] = []
        self.created = 0
        self.fail_status: Optional[int] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"message": "fail"})

        if request.method == "GET":
            return httpx.Response(200, json=gist_payload(self.document, self.filename))
        if request.method == "POST":
            self.created += 1
            body = json.loads(request.content)
            self.document = SyncDocument.model_validate_json(body["files"][self.filename]["content"])
            return httpx.Response(201, json={"id": GIST_ID})
        if request.method == "PATCH":
            body = json.loads(request.content)
            self.updates.append(body)
            self.document = SyncDocument.model_validate_json(body["files"][self.filename]["content"])
            return httpx.Response(200, json={"id": GIST_ID})
        return httpx.Response(405)

    def client_factory(self, config):
        def factory():
            return GistClient(config, client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)))
        return factory


class MemoryBookmarksSource:
    """Источник дерева, хранящий его в памяти."""

    def __init__(self, tree: Optional[BookmarkTree] = None):
        self.tree = tree or BookmarkTree()
        self.saves = 0

    def load(self) -> BookmarkTree:
        return self.tree

    def save(self, tree: BookmarkTree) -> None:
        self.tree = tree
        self.saves += 1


@pytest.fixture
def bar_tree():
    """Дерево: панель закладок -> папка Bar -> две закладки."""
    tree = BookmarkTree()
    folder = tree.create(BAR_ID, "Bar", date_added=1000)
    tree.create(folder.id, "First", url="https://first.example.com", date_added=1001)
    tree.create(folder.id, "Second", url="https://second.example.com", date_added=1002)
    return tree


@pytest.fixture
def nested_tree():
    """Дерево с вложенными папками во всех контейнерах."""
    tree = BookmarkTree()
    dev = tree.create(BAR_ID, "Dev", date_added=10)
    py = tree.create(dev.id, "Python", date_added=11)
    tree.create(py.id, "Docs", url="https://docs.python.org", date_added=12)
    tree.create(py.id, "PyPI", url="https://pypi.org", date_added=13)
    tree.create(dev.id, "GitHub", url="https://github.com", date_added=14)
    tree.create(BAR_ID, "News", url="https://news.ycombinator.com", date_added=15)
    tree.create(OTHER_ID, "Recipes", url="https://recipes.example.com", date_added=16)
    return tree


@pytest.fixture
def chrome_bookmarks_data():
    """Содержимое файла Bookmarks Chrome."""
    return {
        "checksum": "test_checksum",
        "roots": {
            "bookmark_bar": {
                "children": [
                    {
                        "children": [
                            {
                                "date_added": "13267383115384687",
                                "id": "6",
                                "name": "Test Bookmark 1",
                                "type": "url",
                                "url": "https://example1.com",
                            }
                        ],
                        "date_added": "13267383115384000",
                        "id": "5",
                        "name": "Folder 1",
                        "type": "folder",
                    },
                    {
                        "date_added": "13267383115384688",
                        "id": "7",
                        "name": "Test Bookmark 2",
                        "type": "url",
                        "url": "https://example2.com",
                    },
                ],
                "date_added": "13267383115000000",
                "id": "1",
                "name": "Панель закладок",
                "type": "folder",
            },
            "other": {
                "children": [],
                "date_added": "13267383115000000",
                "id": "2",
                "name": "Другие закладки",
                "type": "folder",
            },
            "synced": {
                "children": [],
                "date_added": "13267383115000000",
                "id": "3",
                "name": "Мобильные закладки",
                "type": "folder",
            },
        },
        "version": 1,
    }


@pytest.fixture
def chrome_bookmarks_file(temp_dir, chrome_bookmarks_data):
    """Создает тестовый файл Bookmarks."""
    bookmarks_file = temp_dir / "Bookmarks"
    with open(bookmarks_file, 'w', encoding='utf-8') as f:
        json.dump(chrome_bookmarks_data, f)
    return str(bookmarks_file)
