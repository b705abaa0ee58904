"""FastAPI-приложение для администрирования импорта."""
import hmac
import time
from collections import defaultdict
from dataclasses import asdict
from typing import Any

from fastapi import BackgroundTasks, Body, Depends, FastAPI, HTTPException, Path, Query, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger

from src.api.schemas import (
    CacheClearResponse,
    CancelResponse,
    ConnectionTestResponse,
    HealthResponse,
    LogStatsResponse,
    RunStartedResponse,
    ScheduledJob,
    TaskListResponse,
)
from src.config import Settings
from src.exceptions import TaskNotFoundError, TaskValidationError
from src.models.run import ImportRun, LogEntry, LogLevel
from src.models.task import STAT_FIELDS, ImportTask
from src.run_log import RunLog
from src.task_store import TaskStore
from src.upstream.cache import ResponseCache
from src.worker.guard import RunGuard
from src.worker.scheduler import TaskScheduler

security = HTTPBearer(auto_error=False)

# Rate limiting: sliding window per IP
RATE_LIMIT_MAX_REQUESTS = 60
RATE_LIMIT_WINDOW_SECONDS = 60
_rate_limit_store: dict[str, list[float]] = defaultdict(list)

# Поля, которые нельзя менять через API
READONLY_TASK_FIELDS = frozenset({"id", "created_at", "updated_at", *STAT_FIELDS})


def _task_payload(task: ImportTask) -> dict[str, Any]:
    """Задача для ответа API (секрет замаскирован)."""
    return task.model_dump(mode="json")


def _writable(body: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in body.items() if k not in READONLY_TASK_FIELDS}


def create_app(
    task_store: TaskStore,
    run_log: RunLog,
    task_scheduler: TaskScheduler,
    guard: RunGuard,
    cache: ResponseCache,
    settings: Settings,
) -> FastAPI:
    """Создать FastAPI-приложение с зависимостями."""
    app = FastAPI(title="Vacancy Sync Admin API", version="0.1.0")

    app.state.task_store = task_store
    app.state.run_log = run_log
    app.state.task_scheduler = task_scheduler
    app.state.settings = settings

    async def check_rate_limit(request: Request) -> None:
        """Простой in-memory rate limiter: sliding window per IP."""
        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        window_start = now - RATE_LIMIT_WINDOW_SECONDS

        timestamps = _rate_limit_store[client_ip]
        _rate_limit_store[client_ip] = [t for t in timestamps if t > window_start]

        if len(_rate_limit_store[client_ip]) >= RATE_LIMIT_MAX_REQUESTS:
            raise HTTPException(status_code=429, detail="Rate limit exceeded")

        _rate_limit_store[client_ip].append(now)

    async def verify_api_key(
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
    ) -> None:
        """Проверка API-ключа."""
        expected = settings.admin_api_key.get_secret_value()
        if credentials is None or not hmac.compare_digest(
            credentials.credentials, expected
        ):
            raise HTTPException(status_code=401, detail="Invalid API key")

    protected = [Depends(check_rate_limit), Depends(verify_api_key)]

    async def load_task(task_id: str) -> ImportTask:
        try:
            return await task_store.get(task_id)
        except TaskNotFoundError:
            raise HTTPException(status_code=404, detail="Task not found") from None

    @app.get("/api/health", response_model=HealthResponse)
    async def health(response: Response) -> HealthResponse:
        """Healthcheck без авторизации."""
        scheduled = len(task_scheduler.scheduled_jobs())
        try:
            running = await guard.is_held()
        except Exception:
            response.status_code = 503
            return HealthResponse(status="degraded", import_running=False, scheduled_tasks=scheduled)
        return HealthResponse(status="ok", import_running=running, scheduled_tasks=scheduled)

    @app.get("/api/tasks", response_model=TaskListResponse, dependencies=protected)
    async def list_tasks(
        status: str | None = None,
        limit: int = Query(default=20, ge=1, le=100),
        offset: int = Query(default=0, ge=0),
    ) -> dict:
        """Список задач импорта."""
        tasks = await task_store.list_tasks(status=status, limit=limit, offset=offset)
        return {"tasks": [_task_payload(t) for t in tasks], "limit": limit, "offset": offset}

    @app.post("/api/tasks", status_code=201, dependencies=protected)
    async def create_task(body: dict[str, Any] = Body(...)) -> dict:
        """Создать задачу (недостающие поля берутся из дефолтов)."""
        try:
            task = await task_store.create(_writable(body))
        except TaskValidationError as e:
            raise HTTPException(status_code=422, detail=str(e)) from None
        return _task_payload(task)

    @app.get("/api/tasks/{task_id}", dependencies=protected)
    async def get_task(task_id: str = Path(description="ID задачи")) -> dict:
        return _task_payload(await load_task(task_id))

    @app.patch("/api/tasks/{task_id}", dependencies=protected)
    async def update_task(task_id: str, body: dict[str, Any] = Body(...)) -> dict:
        try:
            task = await task_store.update(task_id, _writable(body))
        except TaskNotFoundError:
            raise HTTPException(status_code=404, detail="Task not found") from None
        except TaskValidationError as e:
            raise HTTPException(status_code=422, detail=str(e)) from None
        return _task_payload(task)

    @app.delete("/api/tasks/{task_id}", status_code=204, dependencies=protected)
    async def delete_task(task_id: str) -> Response:
        if not await task_store.delete(task_id):
            raise HTTPException(status_code=404, detail="Task not found")
        return Response(status_code=204)

    @app.post(
        "/api/tasks/{task_id}/run", status_code=202,
        response_model=RunStartedResponse, dependencies=protected,
    )
    async def run_task(task_id: str, background: BackgroundTasks) -> dict:
        """Запустить импорт вне расписания (в фоне)."""
        try:
            task = await task_scheduler.resolve_task(task_id)
        except TaskNotFoundError:
            raise HTTPException(status_code=404, detail="Task not found") from None
        if task.status != "active":
            raise HTTPException(status_code=409, detail=f"Task status is '{task.status}', expected 'active'")
        if await guard.is_held():
            raise HTTPException(status_code=409, detail="Import already running")
        background.add_task(task_scheduler.execute_scheduled_task, task_id, "manual")
        logger.bind(component="api").info(f"Manual run of task {task_id} requested")
        return {"task_id": task_id, "status": "started"}

    @app.post("/api/tasks/{task_id}/test", response_model=ConnectionTestResponse, dependencies=protected)
    async def check_connection(task_id: str, limit: int = Query(default=10, ge=1, le=100)) -> dict:
        """Тестовый запрос: первая страница, без записи."""
        try:
            result = await task_store.test_connection(task_id, limit=limit)
        except TaskNotFoundError:
            raise HTTPException(status_code=404, detail="Task not found") from None
        payload = asdict(result)
        payload.pop("raw", None)
        return payload

    @app.get("/api/runs", response_model=list[ImportRun], dependencies=protected)
    async def list_runs(
        task_id: str | None = None,
        limit: int = Query(default=20, ge=1, le=100),
    ) -> list[ImportRun]:
        return await run_log.list_runs(limit=limit, task_id=task_id)

    @app.get("/api/runs/{run_id}/logs", response_model=list[LogEntry], dependencies=protected)
    async def run_logs(run_id: str, limit: int = Query(default=500, ge=1, le=5000)) -> list[LogEntry]:
        return await run_log.get_logs(run_id, limit=limit)

    @app.post("/api/runs/{run_id}/cancel", response_model=CancelResponse, dependencies=protected)
    async def cancel_run(run_id: str) -> dict:
        """Запросить кооперативную отмену запуска."""
        if not await run_log.request_cancel(run_id):
            raise HTTPException(status_code=409, detail="Run is not running")
        return {"run_id": run_id, "cancel_requested": True}

    @app.get("/api/logs", response_model=list[LogEntry], dependencies=protected)
    async def recent_logs(
        level: LogLevel | None = None,
        component: str | None = None,
        limit: int = Query(default=100, ge=1, le=1000),
    ) -> list[LogEntry]:
        """Последние записи лога с фильтрами."""
        return await run_log.recent_logs(limit=limit, level=level, component=component)

    @app.get("/api/logs/stats", response_model=LogStatsResponse, dependencies=protected)
    async def log_stats() -> dict:
        return await run_log.stats()

    @app.get("/api/logs/export", dependencies=protected)
    async def export_logs(import_id: str | None = None) -> Response:
        """Выгрузка логов в CSV."""
        content = await run_log.export_csv(import_id=import_id)
        filename = f"import-logs-{import_id or 'all'}.csv"
        return Response(
            content=content,
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.post("/api/cache/clear", response_model=CacheClearResponse, dependencies=protected)
    async def clear_cache() -> dict:
        return {"cleared": cache.clear()}

    @app.get("/api/schedule", response_model=list[ScheduledJob], dependencies=protected)
    async def schedule() -> list[dict]:
        return task_scheduler.scheduled_jobs()

    return app
