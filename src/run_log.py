"""Журнал запусков импорта (import_runs) и логов (import_logs)."""
import csv
import io
import json
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from loguru import logger
from supabase import Client

from src.database import first_row, run_in_thread, sanitize_error
from src.models.run import ImportRun, LogEntry, RunSummary, TriggerType

RUNS_TABLE = "import_runs"
LOGS_TABLE = "import_logs"
DELETE_CHUNK = 500

CSV_HEADER = ["ID", "Import ID", "Level", "Component", "Message", "Context", "Created At"]

# Символы, с которых spreadsheet-приложения начинают формулу
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _sanitize_cell(value: object) -> object:
    """Экранировать ячейку от CSV formula injection."""
    if isinstance(value, str) and value and value[0] in _FORMULA_PREFIXES:
        return f"'{value}"
    return value


class RunLog:
    """Запись и чтение истории запусков."""

    def __init__(self, db: Client) -> None:
        self.db = db

    async def start_run(self, trigger: TriggerType, task_id: str | None = None) -> str:
        """Создать запись running, вернуть UUID запуска."""
        run_id = str(uuid.uuid4())
        await run_in_thread(
            self.db.table(RUNS_TABLE).insert({
                "id": run_id,
                "task_id": task_id,
                "trigger_type": trigger,
                "status": "running",
                "started_at": datetime.now(UTC).isoformat(),
            }).execute
        )
        logger.bind(import_id=run_id, component="core").info(
            f"Import run started (trigger={trigger}, task={task_id})"
        )
        return run_id

    async def end_run(self, run_id: str, summary: RunSummary) -> bool:
        """Финализировать запуск. Повторная финализация игнорируется."""
        counts = summary.counts
        result = await run_in_thread(
            self.db.table(RUNS_TABLE).update({
                "status": summary.status,
                "completed_at": datetime.now(UTC).isoformat(),
                "total_fetched": counts.fetched,
                "total_created": counts.created,
                "total_updated": counts.updated,
                "total_deleted": counts.deleted,
                "total_skipped": counts.skipped,
                "error_count": counts.errors,
                "error_message": sanitize_error(summary.error_message) if summary.error_message else None,
            })
            .eq("id", run_id)
            .eq("status", "running")
            .execute
        )
        return bool(result.data)

    async def request_cancel(self, run_id: str) -> bool:
        """Выставить флаг отмены; работает только для running."""
        result = await run_in_thread(
            self.db.table(RUNS_TABLE)
            .update({"cancel_requested": True})
            .eq("id", run_id)
            .eq("status", "running")
            .execute
        )
        if result.data:
            logger.bind(import_id=run_id, component="core").warning("Cancellation requested")
        return bool(result.data)

    async def is_cancelled(self, run_id: str) -> bool:
        result = await run_in_thread(
            self.db.table(RUNS_TABLE)
            .select("cancel_requested")
            .eq("id", run_id)
            .limit(1)
            .execute
        )
        row = first_row(result.data)
        return bool(row and row.get("cancel_requested"))

    async def get_run(self, run_id: str) -> ImportRun | None:
        result = await run_in_thread(
            self.db.table(RUNS_TABLE).select("*").eq("id", run_id).limit(1).execute
        )
        row = first_row(result.data)
        return ImportRun.model_validate(row) if row else None

    async def list_runs(self, limit: int = 20, task_id: str | None = None) -> list[ImportRun]:
        query = self.db.table(RUNS_TABLE).select("*")
        if task_id:
            query = query.eq("task_id", task_id)
        result = await run_in_thread(
            query.order("started_at", desc=True).limit(limit).execute
        )
        return [ImportRun.model_validate(row) for row in result.data or []]

    async def get_logs(self, import_id: str, limit: int = 500) -> list[LogEntry]:
        """Логи одного запуска в хронологическом порядке."""
        result = await run_in_thread(
            self.db.table(LOGS_TABLE)
            .select("*")
            .eq("import_id", import_id)
            .order("created_at", desc=False)
            .limit(limit)
            .execute
        )
        return [LogEntry.model_validate(row) for row in result.data or []]

    async def recent_logs(
        self,
        limit: int = 100,
        level: str | None = None,
        component: str | None = None,
    ) -> list[LogEntry]:
        query = self.db.table(LOGS_TABLE).select("*")
        if level:
            query = query.eq("log_level", level)
        if component:
            query = query.eq("component", component)
        result = await run_in_thread(
            query.order("created_at", desc=True).limit(limit).execute
        )
        return [LogEntry.model_validate(row) for row in result.data or []]

    async def stats(self) -> dict[str, int]:
        """Число записей лога, ошибок за сутки и запусков."""
        since = (datetime.now(UTC) - timedelta(days=1)).isoformat()
        logs = await run_in_thread(
            self.db.table(LOGS_TABLE).select("id", count="exact").limit(1).execute
        )
        errors = await run_in_thread(
            self.db.table(LOGS_TABLE)
            .select("id", count="exact")
            .eq("log_level", "error")
            .gte("created_at", since)
            .limit(1)
            .execute
        )
        runs = await run_in_thread(
            self.db.table(RUNS_TABLE).select("id", count="exact").limit(1).execute
        )
        return {
            "log_entries": logs.count or 0,
            "errors_24h": errors.count or 0,
            "runs": runs.count or 0,
        }

    async def cleanup(self, retention_days: int = 30, max_entries: int = 10000) -> dict[str, int]:
        """Удалить логи старше окна, затем самые старые сверх лимита, и старые запуски."""
        threshold = (datetime.now(UTC) - timedelta(days=retention_days)).isoformat()

        old = await run_in_thread(
            self.db.table(LOGS_TABLE).delete().lt("created_at", threshold).execute
        )
        logs_deleted = len(old.data or [])

        remaining = await run_in_thread(
            self.db.table(LOGS_TABLE).select("id", count="exact").limit(1).execute
        )
        overflow = (remaining.count or 0) - max_entries
        if overflow > 0:
            oldest = await run_in_thread(
                self.db.table(LOGS_TABLE)
                .select("id")
                .order("created_at", desc=False)
                .limit(overflow)
                .execute
            )
            ids = [row["id"] for row in oldest.data or []]
            for start in range(0, len(ids), DELETE_CHUNK):
                chunk = ids[start:start + DELETE_CHUNK]
                await run_in_thread(
                    self.db.table(LOGS_TABLE).delete().in_("id", chunk).execute
                )
            logs_deleted += len(ids)

        runs = await run_in_thread(
            self.db.table(RUNS_TABLE)
            .delete()
            .lt("started_at", threshold)
            .neq("status", "running")
            .execute
        )
        runs_deleted = len(runs.data or [])

        logger.bind(component="system").info(
            f"Log cleanup: {logs_deleted} log entries, {runs_deleted} runs removed"
        )
        return {"logs_deleted": logs_deleted, "runs_deleted": runs_deleted}

    async def export_csv(self, import_id: str | None = None, limit: int = 10000) -> str:
        """Выгрузить логи в CSV (все или одного запуска)."""
        query = self.db.table(LOGS_TABLE).select("*")
        if import_id:
            query = query.eq("import_id", import_id)
        result = await run_in_thread(
            query.order("created_at", desc=False).limit(limit).execute
        )

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(CSV_HEADER)
        for row in result.data or []:
            context: Any = row.get("context")
            if context is not None and not isinstance(context, str):
                context = json.dumps(context, ensure_ascii=False, sort_keys=True)
            writer.writerow([
                _sanitize_cell(v) for v in (
                    row.get("id"),
                    row.get("import_id"),
                    row.get("log_level"),
                    row.get("component"),
                    row.get("message"),
                    context or "",
                    row.get("created_at"),
                )
            ])
        return buffer.getvalue()
