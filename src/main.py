"""Точка входа импортёра: инициализация и запуск admin API + планировщика."""
import asyncio
import signal
import sys

import uvicorn
from loguru import logger
from supabase import create_client

from src.api.app import create_app
from src.config import load_settings
from src.log_sink import create_supabase_sink
from src.records import SupabaseRecordStore
from src.run_log import RunLog
from src.task_store import TaskStore
from src.upstream.cache import ResponseCache
from src.worker.guard import RunGuard
from src.worker.runner import ImportRunner
from src.worker.scheduler import TaskScheduler, create_scheduler


async def main() -> None:
    """Инициализация и запуск API + планировщика импорта."""
    settings = load_settings()

    # Логирование
    logger.remove()
    logger.configure(extra={"import_id": "system", "component": "system"})
    logger.add(sys.stderr, level=settings.log_level)
    if settings.log_level == "DEBUG":
        logger.add("logs/import.log", rotation="100 MB", retention="7 days")

    logger.info("Starting vacancy sync")

    # Supabase
    db = create_client(settings.supabase_url, settings.supabase_service_key.get_secret_value())

    # Персистить логи импорта в Supabase (TRACE+ в debug_mode)
    logger.add(
        create_supabase_sink(db),
        level=settings.persist_log_level,
        enqueue=True,
        serialize=False,
    )

    cache = ResponseCache(ttl_seconds=settings.cache_ttl_seconds)
    task_store = TaskStore(db, settings)
    run_log = RunLog(db)
    guard = RunGuard(db, ttl_seconds=settings.run_lock_ttl_seconds)
    runner = ImportRunner(
        settings,
        task_store,
        run_log,
        guard,
        SupabaseRecordStore(db),
        cache=cache,
    )

    scheduler = create_scheduler()
    task_scheduler = TaskScheduler(scheduler, task_store, runner, run_log, settings)
    task_scheduler.register_listeners()

    # FastAPI
    app = create_app(task_store, run_log, task_scheduler, guard, cache, settings)
    config = uvicorn.Config(app, host="0.0.0.0", port=settings.admin_port, log_level="warning")
    server = uvicorn.Server(config)

    # Graceful shutdown
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    scheduler.start()
    task_scheduler.schedule_default_sync()
    task_scheduler.schedule_cleanup()
    await task_scheduler.load_all()
    if settings.initial_sync:
        task_scheduler.schedule_initial_sync()
    logger.info("Scheduler started")

    logger.info(f"Admin API starting on port {settings.admin_port}")

    async def serve() -> None:
        await server.serve()
        shutdown_event.set()

    async def stop_on_signal() -> None:
        await shutdown_event.wait()
        server.should_exit = True

    try:
        await asyncio.gather(serve(), stop_on_signal())
    finally:
        scheduler.shutdown(wait=False)
        logger.info("Vacancy sync stopped gracefully")


if __name__ == "__main__":
    asyncio.run(main())
