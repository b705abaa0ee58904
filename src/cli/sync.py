"""
Разовый запуск импорта из консоли (без API и планировщика).

Использование:
    uv run python -m src.cli.sync                    # задача default из .env
    uv run python -m src.cli.sync --task 42          # задача из import_tasks
    uv run python -m src.cli.sync --task 42 --test   # тестовый запрос, без записи
"""
import argparse
import asyncio
import json
import sys
from dataclasses import asdict

from loguru import logger
from supabase import create_client

from src.config import load_settings
from src.records import SupabaseRecordStore
from src.run_log import RunLog
from src.task_store import DEFAULT_TASK_ID, TaskStore, build_default_task
from src.upstream.cache import ResponseCache
from src.worker.guard import RunGuard
from src.worker.runner import ImportRunner


async def sync(task_id: str, test: bool = False, limit: int = 10) -> int:
    """Выполнить импорт или тестовый запрос. Возвращает exit code."""
    settings = load_settings()
    db = create_client(settings.supabase_url, settings.supabase_service_key.get_secret_value())
    task_store = TaskStore(db, settings)

    if task_id == DEFAULT_TASK_ID:
        task = build_default_task(settings)
    else:
        task = await task_store.get(task_id)

    if test:
        result = await task_store.execute_api_request(task, limit=limit, test_mode=True)
        print(json.dumps(asdict(result), ensure_ascii=False, indent=2, default=str))
        return 0 if result.success else 1

    runner = ImportRunner(
        settings,
        task_store,
        RunLog(db),
        RunGuard(db, ttl_seconds=settings.run_lock_ttl_seconds),
        SupabaseRecordStore(db),
        cache=ResponseCache(ttl_seconds=settings.cache_ttl_seconds),
    )
    summary = await runner.run(task, "manual")
    if summary is None:
        logger.warning("Другой импорт уже выполняется, выход")
        return 2
    logger.info(f"Итог: {summary.status}, {summary.counts.as_dict()}")
    return 0 if summary.status in ("completed", "completed_with_errors") else 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Разовый запуск импорта")
    parser.add_argument("--task", default=DEFAULT_TASK_ID, help="ID задачи (по умолчанию default)")
    parser.add_argument("--test", action="store_true", help="Только тестовый запрос первой страницы")
    parser.add_argument("--limit", type=int, default=10, help="Размер выборки для --test")
    args = parser.parse_args()

    logger.remove()
    logger.configure(extra={"import_id": "system", "component": "system"})
    logger.add(sys.stderr, level="INFO")

    sys.exit(asyncio.run(sync(args.task, test=args.test, limit=args.limit)))


if __name__ == "__main__":
    main()
