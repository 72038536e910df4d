"""
Модуль state.py
Хранение локального состояния синхронизации в JSON-файле.
Ключи независимы: отсутствующий или испорченный ключ заменяется значением
по умолчанию, остальные загружаются как есть.
"""
import json
from pathlib import Path

import aiofiles
from pydantic import ValidationError

from .logger import get_logger, log_error_with_context
from .models import SyncState

logger = get_logger(__name__)


class StateStore:
    """
    Файловое хранилище SyncState.

    Аргументы:
        state_file: Путь к JSON-файлу состояния
    """

    def __init__(self, state_file: str):
        self.state_file = Path(state_file)

    async def load(self) -> SyncState:
        """
        Загружает состояние; при первом запуске возвращает значения по умолчанию.

        Возвращает:
            SyncState: Локальное состояние
        """
        if not self.state_file.exists():
            logger.debug(f"Файл состояния не найден, используются значения по умолчанию: {self.state_file}")
            return SyncState()

        try:
            async with aiofiles.open(self.state_file, "r", encoding="utf-8") as f:
                data = json.loads(await f.read())
        except (OSError, ValueError) as e:
            log_error_with_context(e, {"state_file": str(self.state_file), "operation": "load_state"})
            return SyncState()

        if not isinstance(data, dict):
            logger.warning("Файл состояния содержит не объект, используются значения по умолчанию")
            return SyncState()

        state = SyncState()
        for key, value in data.items():
            try:
                state = SyncState.model_validate({**state.to_wire(), key: value})
            except ValidationError:
                logger.warning(f"Пропущено некорректное значение состояния: {key}={value!r}")
        return state

    async def save(self, state: SyncState) -> None:
        """
        Атомарно сохраняет состояние через временный файл.

        Аргументы:
            state: Состояние для сохранения
        """
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.state_file.with_suffix(self.state_file.suffix + ".tmp")

        async with aiofiles.open(temp_file, "w", encoding="utf-8") as f:
            await f.write(json.dumps(state.to_wire(), indent=2, ensure_ascii=False))
        temp_file.replace(self.state_file)

        logger.debug(
            f"Состояние сохранено: base={state.base_remote_updated_at}, "
            f"remote={state.remote_updated_at}, local={state.local_count}, remote_count={state.remote_count}"
        )
