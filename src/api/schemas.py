"""Pydantic-схемы admin API импортёра."""
from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Ответ healthcheck."""

    status: str
    import_running: bool
    scheduled_tasks: int


class TaskListResponse(BaseModel):
    """Страница списка задач."""

    tasks: list[dict[str, Any]]
    limit: int
    offset: int


class RunStartedResponse(BaseModel):
    """Ответ на POST /api/tasks/{id}/run."""

    task_id: str
    status: str  # "started"


class ConnectionTestResponse(BaseModel):
    """Результат тестового запроса задачи."""

    success: bool
    total: int | None = None
    fetched: int = 0
    sample: list[dict[str, Any]] = Field(default_factory=list)
    available_fields: list[str] = Field(default_factory=list)
    response_keys: list[str] = Field(default_factory=list)
    error: str | None = None


class CancelResponse(BaseModel):
    run_id: str
    cancel_requested: bool


class LogStatsResponse(BaseModel):
    """Сводка по журналу."""

    log_entries: int
    errors_24h: int
    runs: int


class CacheClearResponse(BaseModel):
    cleared: int


class ScheduledJob(BaseModel):
    id: str
    task_id: str | None = None
    next_run_at: str | None = None
