"""
Модуль models.py
Модели данных синхронизации: элемент плоского списка закладок, удаленный документ,
локальное состояние синхронизации и результат обогащения.

Сериализация в JSON использует camelCase-имена полей формата документа
(parentId, createdAt, updatedAt, aiFailed и т.д.).
"""
from typing import List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

SCHEMA_VERSION = "1.0.0"

# Значение url, оставшееся в старых документах от сериализации undefined
LEGACY_EMPTY_URL = "undefined"


class WireModel(BaseModel):
    """Базовая модель с camelCase-алиасами и заполнением по имени поля."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        """Возвращает словарь в формате документа (алиасы, без пустых полей)."""
        return self.model_dump(by_alias=True, exclude_none=True)


class AiMetadata(WireModel):
    """
    Результат обогащения закладки.

    Атрибуты:
        title: Заголовок, предложенный моделью
        summary: Краткое описание страницы
        tags: Упорядоченный набор тегов без повторов
        cover: URL иконки сайта или False, если иконку получить не удалось
        enriched_at: Время обогащения (мс с эпохи)
    """

    title: Optional[str] = None
    summary: str
    tags: List[str] = Field(default_factory=list)
    cover: Union[Literal[False], str] = False
    enriched_at: Optional[int] = Field(default=None, alias="enrichedAt")


class AiFailure(WireModel):
    """Запись о неудачной попытке обогащения."""

    reason: str
    attempts: int = Field(default=0, ge=0)
    failed_at: int = Field(alias="failedAt")


class BookmarkItem(WireModel):
    """
    Один узел дерева закладок в плоском представлении.

    Атрибуты:
        id: Стабильный идентификатор, производный от содержимого узла
        parent_id: Идентификатор родительской папки (None для корневых узлов)
        title: Заголовок
        url: Адрес страницы (None для папок)
        order: Позиция в сквозном прямом обходе дерева
        created_at: Время создания узла (мс с эпохи)
        ai: Результат обогащения
        ai_failed: Запись о неудачах обогащения
    """

    id: str = Field(min_length=1)
    parent_id: Optional[str] = Field(default=None, alias="parentId")
    title: str = ""
    url: Optional[str] = None
    order: int
    created_at: int = Field(default=0, alias="createdAt")
    ai: Optional[AiMetadata] = None
    ai_failed: Optional[AiFailure] = Field(default=None, alias="aiFailed")

    @field_validator("url", "parent_id")
    @classmethod
    def _empty_to_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @property
    def is_leaf(self) -> bool:
        """True для закладки (узла с непустым URL), False для папки."""
        return bool(self.url)

    def is_eligible(self, max_attempts: int) -> bool:
        """
        Проверяет, нужно ли обогащать элемент.

        Аргументы:
            max_attempts: Предел неудачных попыток

        Возвращает:
            bool: True, если у закладки есть URL, она еще не обогащена
                  и не достигла предела неудачных попыток
        """
        if not self.url or self.url == LEGACY_EMPTY_URL:
            return False
        if self.ai is not None and self.ai.enriched_at:
            return False
        if self.ai_failed is not None and self.ai_failed.attempts >= max_attempts:
            return False
        return True


class SyncDocument(WireModel):
    """
    Документ, хранящийся удаленно.

    Атрибуты:
        version: Версия схемы
        updated_at: Метка версии документа (мс с эпохи)
        origin_client: Описание клиента, записавшего документ
        items: Упорядоченный список элементов
    """

    version: str = SCHEMA_VERSION
    updated_at: int = Field(alias="updatedAt")
    origin_client: str = Field(
        default="",
        validation_alias=AliasChoices("originClient", "browser", "origin_client"),
        serialization_alias="originClient",
    )
    items: List[BookmarkItem] = Field(default_factory=list)

    def leaf_count(self) -> int:
        return count_bookmarks(self.items)


class SyncState(WireModel):
    """
    Локальное состояние синхронизации.

    Атрибуты:
        base_remote_updated_at: Последняя согласованная метка версии
        remote_updated_at: Последняя наблюдавшаяся метка версии удаленного документа
        local_count: Число локальных закладок
        remote_count: Число закладок в удаленном документе
        gist_id: Идентификатор созданного документа
    """

    base_remote_updated_at: Optional[int] = Field(default=None, alias="baseRemoteUpdatedAt")
    remote_updated_at: Optional[int] = Field(default=None, alias="remoteUpdatedAt")
    local_count: int = Field(default=0, alias="localCount")
    remote_count: int = Field(default=0, alias="remoteCount")
    gist_id: Optional[str] = Field(default=None, alias="gistId")


class EnrichmentResult(WireModel):
    """Итог одного вызова конвейера обогащения (или всего цикла опроса)."""

    success: bool = True
    processed: int = 0
    remaining: int = 0
    completed: bool = False
    batches: int = 0
    timed_out: bool = Field(default=False, alias="timedOut")


class SummaryResponse(BaseModel):
    """
    Строгая схема ответа модели суммаризации.
    Требует непустое описание и хотя бы один тег.
    """

    title: Optional[str] = None
    summary: str
    tags: List[str]

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None

    @field_validator("summary")
    @classmethod
    def _require_summary(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("summary не может быть пустым")
        return value

    @field_validator("tags")
    @classmethod
    def _require_tags(cls, value: List[str]) -> List[str]:
        tags: List[str] = []
        for tag in value:
            tag = tag.strip()
            if tag and tag not in tags:
                tags.append(tag)
        if not tags:
            raise ValueError("требуется хотя бы один тег")
        return tags


def count_bookmarks(items: List[BookmarkItem]) -> int:
    """
    Считает закладки (элементы с URL) в плоском списке.

    Аргументы:
        items: Плоский список элементов

    Возвращает:
        int: Количество закладок
    """
    return sum(1 for item in items if item.is_leaf)
