"""CRUD задач импорта (import_tasks) и тестовый запрос к API."""
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError
from supabase import Client

from src.config import Settings
from src.database import first_row, run_in_thread
from src.exceptions import TaskNotFoundError, TaskValidationError, TransformError
from src.mapping.defaults import DEFAULT_PARAMS
from src.mapping.paths import flatten_keys
from src.mapping.transforms import compile_transforms
from src.models.fetch import ConnectionTestResult
from src.models.run import RunSummary
from src.models.task import ImportTask
from src.upstream.client import ApiClient
from src.upstream.shapes import extract_items, extract_total

TASKS_TABLE = "import_tasks"
DEFAULT_TASK_ID = "default"
SORTABLE_COLUMNS = ("created_at", "updated_at", "name", "status", "last_run_at")

SavedListener = Callable[[ImportTask], Awaitable[None]]
DeletedListener = Callable[[str], Awaitable[None]]


def build_default_task(settings: Settings) -> ImportTask:
    """Импорт из глобальных настроек как неявная задача 'default'."""
    params: dict[str, Any] = dict(DEFAULT_PARAMS)
    if settings.api_ukprn:
        params["Ukprn"] = settings.api_ukprn
    return ImportTask(
        id=DEFAULT_TASK_ID,
        name="Default sync",
        status="active",
        api_base_url=settings.api_base_url,
        api_endpoint=settings.api_endpoint,
        api_params=params,
        api_auth_value=settings.api_subscription_key,
        page_size=settings.batch_size,
        post_status=settings.post_status,
        update_policy="if_changed",
        delete_expired=settings.delete_expired,
        expire_after_days=settings.expire_after_days,
        schedule_enabled=settings.sync_enabled,
        schedule_frequency=settings.sync_frequency,
        schedule_time=settings.sync_time,
    )


def validate_task(task: ImportTask) -> None:
    """Проверки, которые не выразить в pydantic-модели."""
    if task.transforms_enabled:
        try:
            compile_transforms(task.transforms_code)
        except TransformError as e:
            raise TaskValidationError(f"transforms_code: {e}") from e
    if not task.field_mappings:
        raise TaskValidationError("field_mappings must not be empty")


class TaskStore:
    """Задачи импорта в Supabase + уведомления о сохранении/удалении."""

    def __init__(
        self,
        db: Client,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.db = db
        self.settings = settings
        self.transport = transport
        self.saved_listeners: list[SavedListener] = []
        self.deleted_listeners: list[DeletedListener] = []

    def on_saved(self, listener: SavedListener) -> None:
        self.saved_listeners.append(listener)

    def on_deleted(self, listener: DeletedListener) -> None:
        self.deleted_listeners.append(listener)

    async def _notify(self, listeners: list, payload: Any) -> None:
        for listener in listeners:
            try:
                await listener(payload)
            except Exception as e:
                logger.bind(component="scheduler").error(f"Task listener failed: {e}")

    @staticmethod
    def _build(data: dict[str, Any]) -> ImportTask:
        try:
            task = ImportTask.model_validate(data)
        except ValidationError as e:
            raise TaskValidationError(str(e)) from e
        validate_task(task)
        return task

    async def create(self, data: dict[str, Any]) -> ImportTask:
        """Создать задачу: дефолты модели + переданные поля."""
        task = self._build(data)
        result = await run_in_thread(
            self.db.table(TASKS_TABLE).insert(task.to_row()).execute
        )
        row = first_row(result.data)
        if not row:
            raise TaskValidationError("Insert returned no row")
        created = ImportTask.model_validate(row)
        logger.bind(component="core").info(f"Import task created: {created.id} ({created.name})")
        await self._notify(self.saved_listeners, created)
        return created

    async def update(self, task_id: str, data: dict[str, Any]) -> ImportTask:
        current = await self.get(task_id)
        merged = {**current.model_dump(), **data}
        task = self._build(merged)
        row = {**task.to_row(), "updated_at": datetime.now(UTC).isoformat()}
        result = await run_in_thread(
            self.db.table(TASKS_TABLE).update(row).eq("id", task_id).execute
        )
        saved = first_row(result.data)
        updated = ImportTask.model_validate(saved) if saved else task.model_copy(update={"id": task_id})
        logger.bind(component="core").info(f"Import task updated: {task_id}")
        await self._notify(self.saved_listeners, updated)
        return updated

    async def get(self, task_id: str) -> ImportTask:
        result = await run_in_thread(
            self.db.table(TASKS_TABLE).select("*").eq("id", task_id).limit(1).execute
        )
        row = first_row(result.data)
        if not row:
            raise TaskNotFoundError(task_id)
        return ImportTask.model_validate(row)

    async def list_tasks(
        self,
        status: str | None = None,
        order_by: str = "created_at",
        desc: bool = True,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ImportTask]:
        if order_by not in SORTABLE_COLUMNS:
            order_by = "created_at"
        query = self.db.table(TASKS_TABLE).select("*")
        if status:
            query = query.eq("status", status)
        result = await run_in_thread(
            query.order(order_by, desc=desc).range(offset, offset + limit - 1).execute
        )
        return [ImportTask.model_validate(row) for row in result.data or []]

    async def list_schedulable(self) -> list[ImportTask]:
        """Active задачи с включённым расписанием."""
        result = await run_in_thread(
            self.db.table(TASKS_TABLE)
            .select("*")
            .eq("status", "active")
            .eq("schedule_enabled", True)
            .execute
        )
        return [ImportTask.model_validate(row) for row in result.data or []]

    async def delete(self, task_id: str) -> bool:
        result = await run_in_thread(
            self.db.table(TASKS_TABLE).delete().eq("id", task_id).execute
        )
        if not result.data:
            return False
        logger.bind(component="core").info(f"Import task deleted: {task_id}")
        await self._notify(self.deleted_listeners, task_id)
        return True

    async def record_run(self, task: ImportTask, summary: RunSummary) -> None:
        """Обновить статистику задачи после запуска (без уведомлений)."""
        if task.id is None or task.id == DEFAULT_TASK_ID:
            return
        counts = summary.counts
        await run_in_thread(
            self.db.table(TASKS_TABLE).update({
                "last_run_at": datetime.now(UTC).isoformat(),
                "last_run_status": summary.status,
                "last_run_fetched": counts.fetched,
                "last_run_created": counts.created,
                "last_run_updated": counts.updated,
                "last_run_errors": counts.errors,
                "total_runs": task.total_runs + 1,
            }).eq("id", task.id).execute
        )

    async def execute_api_request(
        self,
        task: ImportTask,
        limit: int = 10,
        test_mode: bool = True,
    ) -> ConnectionTestResult:
        """Один ограниченный запрос первой страницы. Записи не сохраняются."""
        page_size = max(1, min(limit, task.page_size))
        params: dict[str, Any] = {**task.api_params, task.page_param: 1}
        if task.page_size_param:
            params[task.page_size_param] = page_size

        timeout = self.settings.lookup_timeout if test_mode else None
        async with ApiClient.for_task(task, self.settings, transport=self.transport, timeout=timeout) as client:
            if task.api_method == "POST":
                response = await client.post(task.api_endpoint, body=params)
            else:
                response = await client.get(task.api_endpoint, params, use_cache=not test_mode)

        if not response.success:
            return ConnectionTestResult(success=False, error=response.error, raw=response.raw)

        data = response.data
        response_keys = sorted(data.keys()) if isinstance(data, dict) else []
        extraction = extract_items(data, task.data_path)
        if extraction.shape == "unknown":
            return ConnectionTestResult(
                success=False,
                error=f"Data path '{task.data_path}' not found or not an array",
                response_keys=response_keys,
                raw=response.raw,
            )

        items = extraction.items
        total = extract_total(data, task.total_path)
        return ConnectionTestResult(
            success=True,
            total=total if total is not None else len(items),
            fetched=len(items),
            sample=items[:limit],
            available_fields=flatten_keys(items[0]) if items else [],
            response_keys=response_keys,
        )

    async def test_connection(self, task_id: str, limit: int = 10) -> ConnectionTestResult:
        task = await self.get(task_id)
        result = await self.execute_api_request(task, limit=limit, test_mode=True)
        log = logger.bind(component="api")
        if result.success:
            log.info(f"Connection test for task {task_id}: {result.fetched} items, total={result.total}")
        else:
            log.warning(f"Connection test for task {task_id} failed: {result.error}")
        return result
