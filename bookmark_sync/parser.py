"""
Модуль parser.py
Чтение и запись JSON-файла закладок Chrome (Bookmarks).
Загружает разделы roots.bookmark_bar / other / synced в арену BookmarkTree
и сохраняет дерево обратно атомарной заменой файла.
"""
import json
from pathlib import Path
from typing import Any, Dict, Optional

from .logger import get_logger, log_error_with_context, log_function_call
from .tree import BAR_ID, MOBILE_ID, OTHER_ID, BookmarkTree

logger = get_logger(__name__)

# Разница между эпохой Chrome (1601-01-01) и Unix (1970-01-01) в микросекундах
CHROME_EPOCH_OFFSET_US = 11644473600000000

ROOT_SECTIONS = (
    ("bookmark_bar", BAR_ID),
    ("other", OTHER_ID),
    ("synced", MOBILE_ID),
)


def chrome_to_epoch_ms(value: Any) -> int:
    """
    Преобразует временную метку Chrome (микросекунды с 1601 года) в мс с эпохи Unix.

    Возвращает:
        int: Миллисекунды с эпохи или 0 для пустой/некорректной метки
    """
    try:
        chrome_us = int(value)
    except (TypeError, ValueError):
        return 0
    if chrome_us <= 0:
        return 0
    return max(0, (chrome_us - CHROME_EPOCH_OFFSET_US) // 1000)


def epoch_ms_to_chrome(value: int) -> str:
    if value <= 0:
        return "0"
    return str(value * 1000 + CHROME_EPOCH_OFFSET_US)


class BookmarkParser:
    """
    Класс для разбора и сериализации JSON-файла закладок Chrome.
    """

    def load_json(self, file_path: str) -> dict:
        """
        Загружает и валидирует JSON-файл закладок.

        Аргументы:
            file_path: Путь к JSON-файлу закладок

        Возвращает:
            dict: Словарь с данными закладок

        Raises:
            FileNotFoundError: Если файл не найден
            json.JSONDecodeError: Если файл содержит некорректный JSON
            ValueError: Если структура JSON некорректна
        """
        log_function_call("load_json", (file_path,))

        try:
            with open(file_path, 'r', encoding='utf-8') as file:
                data = json.load(file)
        except FileNotFoundError as e:
            log_error_with_context(e, {"file_path": file_path, "operation": "load_json"})
            raise
        except json.JSONDecodeError as e:
            log_error_with_context(
                e,
                {"file_path": file_path, "operation": "json_parse", "error_line": e.lineno}
            )
            raise

        if not isinstance(data, dict):
            raise ValueError(f"Некорректная структура JSON в файле {file_path}: ожидался объект")
        if not isinstance(data.get('roots'), dict):
            raise ValueError(f"Некорректная структура JSON в файле {file_path}: нет словаря 'roots'")

        logger.info(f"Файл закладок загружен: {file_path}")
        return data

    def parse_bookmarks(self, data: dict) -> BookmarkTree:
        """
        Строит арену узлов из данных файла закладок.

        Аргументы:
            data: Словарь с данными закладок (результат load_json)

        Возвращает:
            BookmarkTree: Дерево с тремя каноническими контейнерами
        """
        roots = data.get("roots", {})
        titles = {
            root_id: roots[section]["name"]
            for section, root_id in ROOT_SECTIONS
            if isinstance(roots.get(section), dict) and roots[section].get("name")
        }
        tree = BookmarkTree(root_titles=titles)

        for section, root_id in ROOT_SECTIONS:
            section_data = roots.get(section)
            if not isinstance(section_data, dict):
                logger.debug(f"Раздел '{section}' отсутствует, используется пустой контейнер")
                continue
            root = tree.get(root_id)
            root.date_added = chrome_to_epoch_ms(section_data.get("date_added"))
            root.guid = section_data.get("guid")
            for child in section_data.get("children", []):
                self._traverse_node(tree, child, root_id)

        logger.info(f"Разбор закладок завершен: {tree.count_bookmarks()} закладок, {len(tree)} узлов")
        return tree

    def _traverse_node(self, tree: BookmarkTree, node: Dict[str, Any], parent_id: str) -> None:
        """
        Рекурсивно добавляет узел файла и его потомков в арену.

        Аргументы:
            tree: Заполняемое дерево
            node: Узел из JSON-файла
            parent_id: Идентификатор родителя в арене
        """
        node_type = node.get("type", "").lower()
        title = node.get("name", "")

        if node_type not in ("folder", "url"):
            logger.warning(f"Неизвестный тип узла закладки: {node_type}, заголовок: {title}")
            return
        if node_type == "url" and not node.get("url"):
            logger.warning(f"Найдена закладка без URL: {title}")
            return

        file_id = str(node.get("id", ""))
        created = tree.create(
            parent_id,
            title,
            url=node.get("url") if node_type == "url" else None,
            date_added=chrome_to_epoch_ms(node.get("date_added")),
            node_id=file_id if file_id and file_id not in tree else None,
            guid=node.get("guid"),
        )

        if node_type == "folder":
            for child in node.get("children", []):
                self._traverse_node(tree, child, created.id)

    def dump_bookmarks(self, tree: BookmarkTree, template: Optional[dict] = None) -> dict:
        """
        Сериализует дерево в формат файла закладок Chrome.
        Контрольная сумма не записывается: браузер пересчитывает ее сам.

        Аргументы:
            tree: Дерево закладок
            template: Исходные данные файла, чьи служебные поля сохраняются

        Возвращает:
            dict: Данные для записи в файл
        """
        data = {k: v for k, v in (template or {}).items() if k not in ("roots", "checksum")}
        data.setdefault("version", 1)
        template_roots = (template or {}).get("roots", {})

        roots: Dict[str, Any] = {
            k: v for k, v in template_roots.items() if k not in dict(ROOT_SECTIONS)
        }
        for section, root_id in ROOT_SECTIONS:
            roots[section] = self._dump_node(tree, root_id)
        data["roots"] = roots
        return data

    def _dump_node(self, tree: BookmarkTree, node_id: str) -> Dict[str, Any]:
        node = tree.get(node_id)
        result: Dict[str, Any] = {
            "date_added": epoch_ms_to_chrome(node.date_added),
            "id": node.id,
            "name": node.title,
        }
        if node.guid:
            result["guid"] = node.guid
        if node.is_folder:
            result["type"] = "folder"
            result["children"] = [self._dump_node(tree, child.id) for child in tree.children(node_id)]
        else:
            result["type"] = "url"
            result["url"] = node.url
        return result

    def save_json(self, tree: BookmarkTree, file_path: str, template: Optional[dict] = None) -> None:
        """
        Атомарно записывает дерево в файл закладок через временный файл.

        Аргументы:
            tree: Дерево закладок
            file_path: Путь к файлу
            template: Исходные данные файла
        """
        log_function_call("save_json", (file_path,))

        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = path.with_suffix(path.suffix + ".tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(self.dump_bookmarks(tree, template), f, indent=3, ensure_ascii=False)
        temp_file.replace(path)

        logger.info(f"Файл закладок сохранен: {file_path} ({tree.count_bookmarks()} закладок)")


class ChromeBookmarksSource:
    """
    Источник локального дерева на основе файла Bookmarks профиля Chrome.

    Аргументы:
        file_path: Путь к файлу закладок
    """

    def __init__(self, file_path: str):
        self.file_path = file_path
        self.parser = BookmarkParser()
        self._template: Optional[dict] = None

    def load(self) -> BookmarkTree:
        """Загружает дерево; отсутствующий файл дает пустое дерево."""
        if not Path(self.file_path).exists():
            logger.warning(f"Файл закладок не найден, используется пустое дерево: {self.file_path}")
            self._template = None
            return BookmarkTree()
        self._template = self.parser.load_json(self.file_path)
        return self.parser.parse_bookmarks(self._template)

    def save(self, tree: BookmarkTree) -> None:
        self.parser.save_json(tree, self.file_path, self._template)
