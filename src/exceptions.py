"""Кастомные исключения импортёра."""
from typing import Any


class SyncError(Exception):
    """Общая ошибка импорта."""


class PayloadError(SyncError):
    """Ответ API не удалось разобрать: невалидный JSON или неизвестная форма."""

    def __init__(self, message: str, response_keys: list[str] | None = None, raw: str = "") -> None:
        self.response_keys = response_keys or []
        self.raw = raw
        super().__init__(message)


class MappingError(SyncError):
    """Ошибка маппинга одной записи."""


class MissingUniqueIdError(MappingError):
    """У записи нет внешнего идентификатора, она пропускается."""


class TransformError(MappingError):
    """Невалидный или упавший шаг трансформации."""


class TaskNotFoundError(SyncError):
    """Задача импорта не найдена."""

    def __init__(self, task_id: Any) -> None:
        self.task_id = task_id
        super().__init__(f"Import task {task_id} not found")


class TaskNotActiveError(SyncError):
    """Задача не в статусе active, запуск запрещён."""

    def __init__(self, task_id: Any, status: str) -> None:
        self.task_id = task_id
        self.status = status
        super().__init__(f"Import task {task_id} is {status}, not active")


class TaskValidationError(SyncError):
    """Конфигурация задачи невалидна."""
