"""Общие фикстуры и хелперы для тестов API."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.upstream.cache import ResponseCache
from tests.conftest import make_settings


@pytest.fixture(autouse=True)
def _reset_rate_limit():
    """Rate limiter хранит окна на уровне модуля, сбрасываем между тестами."""
    from src.api.app import _rate_limit_store

    _rate_limit_store.clear()
    yield
    _rate_limit_store.clear()


def make_task_store():
    """Мок TaskStore с async-методами."""
    store = MagicMock()
    store.list_tasks = AsyncMock(return_value=[])
    store.get = AsyncMock()
    store.create = AsyncMock()
    store.update = AsyncMock()
    store.delete = AsyncMock(return_value=True)
    store.test_connection = AsyncMock()
    return store


def make_run_log():
    run_log = MagicMock()
    run_log.list_runs = AsyncMock(return_value=[])
    run_log.get_logs = AsyncMock(return_value=[])
    run_log.request_cancel = AsyncMock(return_value=True)
    run_log.export_csv = AsyncMock(return_value="ID\n")
    run_log.recent_logs = AsyncMock(return_value=[])
    run_log.stats = AsyncMock(return_value={"log_entries": 0, "errors_24h": 0, "runs": 0})
    return run_log


def make_task_scheduler():
    scheduler = MagicMock()
    scheduler.scheduled_jobs.return_value = []
    scheduler.resolve_task = AsyncMock()
    scheduler.execute_scheduled_task = AsyncMock()
    return scheduler


def make_guard(held: bool = False):
    guard = MagicMock()
    guard.is_held = AsyncMock(return_value=held)
    return guard


def make_app(task_store=None, run_log=None, task_scheduler=None, guard=None, cache=None, settings=None):
    """Создать FastAPI app с моками."""
    from src.api.app import create_app

    return create_app(
        task_store=task_store or make_task_store(),
        run_log=run_log or make_run_log(),
        task_scheduler=task_scheduler or make_task_scheduler(),
        guard=guard or make_guard(),
        cache=cache if cache is not None else ResponseCache(),
        settings=settings or make_settings(),
    )


# Общий заголовок авторизации
AUTH_HEADERS = {"Authorization": "Bearer sk-test-key"}
