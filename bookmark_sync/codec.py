"""
Модуль codec.py
Преобразование между деревом закладок и плоским упорядоченным списком элементов.

flatten: прямой обход без невидимого корня, сквозной счетчик order на весь обход.
rebuild: восстановление дерева из списка; корневые папки сопоставляются
с каноническими контейнерами по заголовку.
"""
import time
from collections import defaultdict
from typing import Dict, List, Optional, Set

from .identity import resolve
from .logger import get_logger, log_error_with_context, log_performance
from .models import BookmarkItem
from .tree import BAR_ID, CANONICAL_ROOTS, MOBILE_ID, OTHER_ID, ROOT_ID, BookmarkTree

logger = get_logger(__name__)

# Заголовки корневых папок (в нижнем регистре) и их локализованные варианты
ROOT_TITLE_ALIASES = {
    "bookmarks bar": BAR_ID,
    "bookmark bar": BAR_ID,
    "bookmarks toolbar": BAR_ID,
    "bookmark toolbar": BAR_ID,
    "favorites bar": BAR_ID,
    "панель закладок": BAR_ID,
    "书签栏": BAR_ID,
    "other bookmarks": OTHER_ID,
    "other favorites": OTHER_ID,
    "другие закладки": OTHER_ID,
    "其他书签": OTHER_ID,
    "mobile bookmarks": MOBILE_ID,
    "мобильные закладки": MOBILE_ID,
    "移动书签": MOBILE_ID,
}


def resolve_root_id(title: str) -> Optional[str]:
    """
    Сопоставляет заголовок корневой папки каноническому контейнеру.

    Аргументы:
        title: Заголовок (регистр и пробелы по краям не важны)

    Возвращает:
        str: Идентификатор контейнера или None для неизвестного заголовка
    """
    return ROOT_TITLE_ALIASES.get(title.strip().lower())


def flatten(tree: BookmarkTree) -> List[BookmarkItem]:
    """
    Преобразует дерево в плоский список элементов.

    Аргументы:
        tree: Локальное дерево закладок

    Возвращает:
        List[BookmarkItem]: Элементы в порядке прямого обхода
    """
    items: List[BookmarkItem] = []
    order = 0

    def traverse(node_id: str, parent_item_id: Optional[str]) -> None:
        nonlocal order
        for node in tree.children(node_id):
            item_id = resolve(node.title, node.url, node.date_added)
            items.append(BookmarkItem(
                id=item_id,
                parent_id=parent_item_id,
                title=node.title,
                url=node.url,
                order=order,
                created_at=node.date_added,
            ))
            order += 1
            if node.is_folder:
                traverse(node.id, item_id)

    traverse(ROOT_ID, None)
    logger.debug(f"Дерево преобразовано в список: {len(items)} элементов")
    return items


def rebuild(tree: BookmarkTree, items: List[BookmarkItem]) -> int:
    """
    Восстанавливает узлы дерева из плоского списка.

    Корневые элементы (без parentId) сопоставляются контейнерам по заголовку:
    дети корневой папки создаются прямо в контейнере, неизвестные корневые папки
    сливаются в "другие закладки". Если узел создать не удалось, он пропускается
    вместе со своими потомками, остальная часть дерева восстанавливается.

    Аргументы:
        tree: Дерево, в которое добавляются узлы
        items: Плоский список элементов

    Возвращает:
        int: Количество созданных узлов
    """
    start_time = time.time()

    children_by_parent: Dict[Optional[str], List[BookmarkItem]] = defaultdict(list)
    for item in items:
        children_by_parent[item.parent_id].append(item)
    for siblings in children_by_parent.values():
        siblings.sort(key=lambda i: i.order)

    expanded: Set[str] = set()
    created = 0

    def create_children(parent_node_id: str, parent_item_id: str) -> None:
        # Элемент с повторяющимся идентификатором разворачивается один раз
        if parent_item_id in expanded:
            return
        expanded.add(parent_item_id)
        for child in children_by_parent.get(parent_item_id, []):
            create_node(child, parent_node_id)

    def create_node(item: BookmarkItem, parent_node_id: str) -> None:
        nonlocal created
        try:
            node = tree.create(
                parent_node_id,
                item.title,
                url=item.url,
                date_added=item.created_at,
            )
        except (KeyError, ValueError) as e:
            log_error_with_context(e, {"operation": "rebuild", "item_id": item.id, "title": item.title})
            return
        created += 1
        if node.is_folder:
            create_children(node.id, item.id)

    for item in children_by_parent.get(None, []):
        target_root = resolve_root_id(item.title)
        if target_root is None:
            logger.debug(f"Неизвестная корневая папка '{item.title}', используется 'другие закладки'")
            target_root = OTHER_ID
        if item.is_leaf:
            create_node(item, target_root)
        else:
            create_children(target_root, item.id)

    known_ids = {i.id for i in items}
    orphans = [p for p in children_by_parent if p is not None and p not in known_ids]
    if orphans:
        logger.warning(f"Элементы с отсутствующими родителями пропущены: {len(orphans)} групп")

    log_performance("rebuild", time.time() - start_time, f"created={created}, items={len(items)}")
    return created


def clear(tree: BookmarkTree) -> int:
    """
    Удаляет всех детей канонических контейнеров. Сами контейнеры остаются.

    Аргументы:
        tree: Локальное дерево

    Возвращает:
        int: Количество удаленных поддеревьев
    """
    removed = 0
    for root_id in CANONICAL_ROOTS:
        for node in tree.children(root_id):
            try:
                tree.remove_tree(node.id)
                removed += 1
            except (KeyError, ValueError) as e:
                log_error_with_context(e, {"operation": "clear", "node_id": node.id})
    logger.info(f"Дерево очищено: удалено {removed} поддеревьев")
    return removed
