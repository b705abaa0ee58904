"""Модели запусков импорта и записей лога."""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel

TriggerType = Literal["manual", "cron", "scheduler", "initial"]
RunStatus = Literal["running", "completed", "completed_with_errors", "failed", "cancelled"]
LogLevel = Literal["trace", "debug", "info", "warning", "error"]


@dataclass
class RunCounts:
    """Счётчики одного запуска."""

    fetched: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "fetched": self.fetched,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "errors": self.errors,
        }


@dataclass
class RunSummary:
    """Итог запуска для end_run и статистики задачи."""

    status: RunStatus
    counts: RunCounts
    error_message: str | None = None


class ImportRun(BaseModel):
    """Строка таблицы import_runs."""

    id: str
    task_id: str | None = None
    trigger_type: TriggerType
    status: RunStatus
    started_at: datetime
    completed_at: datetime | None = None
    total_fetched: int = 0
    total_created: int = 0
    total_updated: int = 0
    total_deleted: int = 0
    total_skipped: int = 0
    error_count: int = 0
    error_message: str | None = None
    cancel_requested: bool = False


class LogEntry(BaseModel):
    """Строка таблицы import_logs."""

    id: int | None = None
    import_id: str = "system"
    log_level: LogLevel
    component: str = "system"
    message: str
    context: dict[str, Any] | None = None
    created_at: datetime | None = None
