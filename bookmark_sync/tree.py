"""
Модуль tree.py
Локальное дерево закладок в виде арены узлов.

Узлы хранятся в словаре по идентификатору, связи задаются явными картами
parent -> children и child -> parent. Невидимый корень "0" содержит ровно три
канонических контейнера: панель закладок, другие закладки и мобильные закладки.
"""
import time
import uuid
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

ROOT_ID = "0"
BAR_ID = "1"
OTHER_ID = "2"
MOBILE_ID = "3"
CANONICAL_ROOTS = (BAR_ID, OTHER_ID, MOBILE_ID)

DEFAULT_ROOT_TITLES = {
    BAR_ID: "Bookmarks bar",
    OTHER_ID: "Other bookmarks",
    MOBILE_ID: "Mobile bookmarks",
}


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class BookmarkNode:
    """
    Узел локального дерева.

    Атрибуты:
        id: Локальный идентификатор узла
        title: Заголовок
        url: URL закладки или None для папки
        date_added: Время создания (мс с эпохи)
        parent_id: Идентификатор родителя (None только у невидимого корня)
        guid: Глобальный идентификатор узла в профиле браузера
    """
    id: str
    title: str
    url: Optional[str]
    date_added: int
    parent_id: Optional[str]
    guid: Optional[str] = None

    @property
    def is_folder(self) -> bool:
        return not self.url


class BookmarkTree:
    """
    Арена узлов дерева закладок.

    Аргументы:
        root_titles: Заголовки канонических контейнеров
        root_date_added: Время создания канонических контейнеров
    """

    def __init__(
        self,
        root_titles: Optional[Dict[str, str]] = None,
        root_date_added: int = 0,
    ):
        self._nodes: Dict[str, BookmarkNode] = {}
        self._children: Dict[str, List[str]] = {}
        self._next_id = len(CANONICAL_ROOTS) + 1

        self._insert(BookmarkNode(ROOT_ID, "", None, root_date_added, None))
        titles = {**DEFAULT_ROOT_TITLES, **(root_titles or {})}
        for root_id in CANONICAL_ROOTS:
            self._insert(BookmarkNode(root_id, titles[root_id], None, root_date_added, ROOT_ID))

    def _insert(self, node: BookmarkNode) -> None:
        self._nodes[node.id] = node
        self._children[node.id] = []
        if node.parent_id is not None:
            self._children[node.parent_id].append(node.id)

    def _allocate_id(self) -> str:
        while str(self._next_id) in self._nodes:
            self._next_id += 1
        node_id = str(self._next_id)
        self._next_id += 1
        return node_id

    def get(self, node_id: str) -> BookmarkNode:
        """
        Возвращает узел по идентификатору.

        Raises:
            KeyError: Если узла нет
        """
        return self._nodes[node_id]

    def children(self, node_id: str) -> List[BookmarkNode]:
        """Дочерние узлы в порядке следования."""
        return [self._nodes[child_id] for child_id in self._children[node_id]]

    def create(
        self,
        parent_id: str,
        title: str,
        url: Optional[str] = None,
        date_added: Optional[int] = None,
        node_id: Optional[str] = None,
        guid: Optional[str] = None,
    ) -> BookmarkNode:
        """
        Создает узел в конце списка детей родителя.

        Аргументы:
            parent_id: Идентификатор родительской папки
            title: Заголовок
            url: URL закладки или None для папки
            date_added: Время создания (по умолчанию текущее)
            node_id: Явный локальный идентификатор (при загрузке из файла)
            guid: Глобальный идентификатор (по умолчанию генерируется)

        Возвращает:
            BookmarkNode: Созданный узел

        Raises:
            KeyError: Если родителя нет
            ValueError: Если родитель не папка, родитель - невидимый корень
                        или идентификатор уже занят
        """
        parent = self._nodes[parent_id]
        if not parent.is_folder:
            raise ValueError(f"Узел {parent_id} не является папкой")
        if parent_id == ROOT_ID:
            raise ValueError("В невидимый корень можно добавлять только канонические контейнеры")
        if node_id is None:
            node_id = self._allocate_id()
        elif node_id in self._nodes:
            raise ValueError(f"Идентификатор узла уже занят: {node_id}")

        node = BookmarkNode(
            id=node_id,
            title=title,
            url=url or None,
            date_added=now_ms() if date_added is None else date_added,
            parent_id=parent_id,
            guid=guid or str(uuid.uuid4()),
        )
        self._insert(node)
        return node

    def remove_tree(self, node_id: str) -> None:
        """
        Удаляет узел вместе со всеми потомками.

        Raises:
            KeyError: Если узла нет
            ValueError: При попытке удалить корень или канонический контейнер
        """
        if node_id == ROOT_ID or node_id in CANONICAL_ROOTS:
            raise ValueError(f"Канонический контейнер нельзя удалить: {node_id}")
        node = self._nodes[node_id]

        for child_id in list(self._children[node_id]):
            self.remove_tree(child_id)

        self._children[node.parent_id].remove(node_id)
        del self._children[node_id]
        del self._nodes[node_id]

    def walk(self, node_id: str = ROOT_ID) -> Iterator[BookmarkNode]:
        """Прямой обход потомков узла (сам узел не включается)."""
        for child in self.children(node_id):
            yield child
            yield from self.walk(child.id)

    def count_bookmarks(self) -> int:
        return sum(1 for node in self.walk() if not node.is_folder)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)
