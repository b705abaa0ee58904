"""Один запуск импорта: guard → fetch → reconcile → итог."""
import uuid
from typing import Any

import httpx
from loguru import logger

from src.config import Settings
from src.database import sanitize_error
from src.exceptions import TaskNotActiveError
from src.models.run import RunCounts, RunStatus, RunSummary, TriggerType
from src.models.task import ImportTask
from src.records import Enricher, RecordStore
from src.run_log import RunLog
from src.task_store import TaskStore
from src.upstream.cache import ResponseCache
from src.upstream.client import ApiClient
from src.worker.guard import RunGuard
from src.worker.reconciler import Reconciler


class ImportRunner:
    """Оркестрация запуска с учётом run guard."""

    def __init__(
        self,
        settings: Settings,
        task_store: TaskStore,
        run_log: RunLog,
        guard: RunGuard,
        record_store: RecordStore,
        cache: ResponseCache | None = None,
        enricher: Enricher | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.task_store = task_store
        self.run_log = run_log
        self.guard = guard
        self.record_store = record_store
        self.cache = cache
        self.enricher = enricher
        self.transport = transport

    async def run(self, task: ImportTask, trigger: TriggerType) -> RunSummary | None:
        """Запустить импорт. None, если другой запуск держит guard."""
        if task.status != "active":
            raise TaskNotActiveError(task.id, task.status)

        holder = f"{task.id}:{uuid.uuid4()}"
        if not await self.guard.acquire(holder):
            logger.bind(component="scheduler").warning(
                f"Import already running, skipping {trigger} run of task {task.id}"
            )
            return None
        try:
            return await self.execute(task, trigger)
        finally:
            await self.guard.release(holder)

    async def execute(self, task: ImportTask, trigger: TriggerType) -> RunSummary:
        """Выполнить запуск без проверки guard. Исключения превращаются в failed."""
        run_id = await self.run_log.start_run(trigger, task.id)
        log = logger.bind(import_id=run_id, component="core")
        counts = RunCounts()
        status: RunStatus = "failed"
        error: str | None = None

        def on_progress(progress: dict[str, Any]) -> None:
            log.info(
                f"Progress {progress['processed']}/{progress['total']}: "
                f"created={progress['created']} updated={progress['updated']} "
                f"skipped={progress['skipped']} errors={progress['errors']}"
            )

        async def is_cancelled() -> bool:
            return await self.run_log.is_cancelled(run_id)

        try:
            reconciler = Reconciler(
                self.record_store,
                task,
                enricher=self.enricher,
                import_id=run_id,
                progress_every=self.settings.progress_every,
                on_progress=on_progress,
                is_cancelled=is_cancelled,
            )
            counts = reconciler.counts

            async with ApiClient.for_task(
                task, self.settings, cache=self.cache, transport=self.transport, import_id=run_id,
            ) as client:
                fetch = await client.fetch_all_pages(
                    task.api_endpoint,
                    task.api_params,
                    page_param=task.page_param,
                    page_size_param=task.page_size_param,
                    page_size=task.page_size,
                    data_path=task.data_path,
                    total_path=task.total_path,
                    total_pages_path=task.total_pages_path,
                    max_pages=self.settings.max_pages,
                    method=task.api_method,
                    on_page=lambda p: log.debug(
                        f"Page {p['page']}/{p['total_pages'] or '?'}: "
                        f"{p['items_count']} items ({p['total_so_far']} so far)"
                    ),
                )
                log.debug(f"HTTP stats: {client.stats()}")

            counts.fetched = len(fetch.items)
            await reconciler.process_items(fetch.items)

            if not fetch.success:
                error = fetch.error
                log.warning(
                    f"Fetch incomplete after {fetch.pages_fetched} pages, "
                    f"expired records are not deleted: {error}"
                )
            elif reconciler.cancelled:
                status = "cancelled"
            else:
                if task.delete_expired:
                    await reconciler.delete_expired(task.expire_after_days)
                status = "completed_with_errors" if counts.errors else "completed"
        except Exception as e:
            error = sanitize_error(str(e))
            log.error(f"Import run failed: {error}")

        summary = RunSummary(status=status, counts=counts, error_message=error)
        await self.run_log.end_run(run_id, summary)
        await self.task_store.record_run(task, summary)
        log.info(
            f"Import run {status}: fetched={counts.fetched} created={counts.created} "
            f"updated={counts.updated} deleted={counts.deleted} "
            f"skipped={counts.skipped} errors={counts.errors}"
        )
        return summary
