"""
Модуль identity.py
Стабильные идентификаторы узлов дерева закладок.

Идентификатор вычисляется из содержимого узла: SHA-256 от строки
"<title>::<url или folder>::<createdAt>", усеченный до 16 hex-символов (64 бита).
Повторное создание узла с тем же содержимым дает тот же идентификатор,
поэтому результаты обогащения переживают удаление и восстановление закладки.

Коллизии 64-битного префикса считаются пренебрежимо маловероятными, но возможными:
это принятый риск, два узла с одинаковым идентификатором при восстановлении
дерева разворачиваются один раз.
"""
import hashlib
from typing import Optional

ID_LENGTH = 16
FOLDER_MARKER = "folder"


def resolve(title: str, url: Optional[str], created_at: Optional[int]) -> str:
    """
    Вычисляет идентификатор узла.

    Аргументы:
        title: Заголовок узла
        url: URL закладки или None для папки
        created_at: Время создания (мс с эпохи); None считается нулем

    Возвращает:
        str: 16 hex-символов
    """
    content = f"{title}::{url or FOLDER_MARKER}::{created_at or 0}"
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:ID_LENGTH]
