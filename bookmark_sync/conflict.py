"""
Модуль conflict.py
Оптимистичная проверка конфликтов перед выгрузкой и перенос результатов
обогащения из удаленной копии в выгружаемый список.
"""
from typing import Dict, List, Optional

from .errors import RemoteConflict
from .logger import get_logger
from .models import AiFailure, AiMetadata, BookmarkItem, SyncDocument

logger = get_logger(__name__)


class ConflictDetector:
    """
    Сравнивает базовую метку версии клиента с меткой удаленного документа.
    """

    def detect(self, base_updated_at: Optional[int], remote: Optional[SyncDocument]) -> bool:
        """
        Определяет, перезапишет ли выгрузка невиданные изменения.

        Аргументы:
            base_updated_at: Последняя согласованная метка версии (None, если клиент
                             еще не синхронизировался)
            remote: Текущий удаленный документ (None, если документа нет)

        Возвращает:
            bool: True при конфликте
        """
        if remote is None:
            return False
        if base_updated_at is not None:
            return remote.updated_at != base_updated_at
        # Непустой документ неизвестного происхождения требует подтверждения
        return remote.leaf_count() > 0

    def ensure_can_upload(
        self,
        base_updated_at: Optional[int],
        remote: Optional[SyncDocument],
        force: bool = False,
    ) -> None:
        """
        Прерывает выгрузку при конфликте, если она не принудительная.

        Raises:
            RemoteConflict: С меткой версии и числом закладок удаленного документа
        """
        if not self.detect(base_updated_at, remote):
            return
        if force:
            logger.warning(
                f"Конфликт проигнорирован принудительной выгрузкой: base={base_updated_at}, "
                f"remote={remote.updated_at}"
            )
            return
        logger.warning(f"Обнаружен конфликт: base={base_updated_at}, remote={remote.updated_at}")
        raise RemoteConflict(remote.updated_at, remote.leaf_count())


def merge_enrichment(items: List[BookmarkItem], remote: Optional[SyncDocument]) -> int:
    """
    Переносит ai и aiFailed из удаленной копии в локальные элементы.
    Сопоставление по id, а если id разошелся - по url.

    Аргументы:
        items: Выгружаемые элементы (изменяются на месте)
        remote: Удаленный документ

    Возвращает:
        int: Количество элементов, получивших метаданные
    """
    if remote is None or not remote.items:
        return 0

    ai_by_id: Dict[str, AiMetadata] = {}
    ai_by_url: Dict[str, AiMetadata] = {}
    failed_by_id: Dict[str, AiFailure] = {}
    failed_by_url: Dict[str, AiFailure] = {}

    for remote_item in remote.items:
        if remote_item.ai is not None:
            ai_by_id[remote_item.id] = remote_item.ai
            if remote_item.url:
                ai_by_url.setdefault(remote_item.url, remote_item.ai)
        if remote_item.ai_failed is not None:
            failed_by_id[remote_item.id] = remote_item.ai_failed
            if remote_item.url:
                failed_by_url.setdefault(remote_item.url, remote_item.ai_failed)

    merged = 0
    for item in items:
        ai = ai_by_id.get(item.id) or (ai_by_url.get(item.url) if item.url else None)
        if ai is not None:
            item.ai = ai.model_copy(deep=True)
            merged += 1
            continue
        failure = failed_by_id.get(item.id) or (failed_by_url.get(item.url) if item.url else None)
        if failure is not None:
            item.ai_failed = failure.model_copy()
            merged += 1

    logger.debug(f"Метаданные обогащения перенесены для {merged} элементов")
    return merged
