"""Общие хелперы для работы с Supabase."""
import asyncio
import re
from typing import Any

# Параметры и заголовки, значения которых нельзя писать в логи
SENSITIVE_KEYS = (
    "Ocp-Apim-Subscription-Key",
    "api_key",
    "apikey",
    "token",
    "secret",
    "password",
    "authorization",
)

_SENSITIVE_QUERY_RE = re.compile(
    r"(?i)((?:" + "|".join(re.escape(k) for k in SENSITIVE_KEYS) + r")[^=&\s]*=)[^&\s]+"
)


async def run_in_thread(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Выполнить синхронный вызов Supabase в отдельном потоке."""
    return await asyncio.to_thread(func, *args, **kwargs)


def sanitize_error(error: str) -> str:
    """Убрать потенциальные креденшалы из сообщения об ошибке."""
    error = re.sub(r"://[^@\s]+@", "://***:***@", error)
    return _SENSITIVE_QUERY_RE.sub(r"\1***", error)


def mask_url(url: str) -> str:
    """Замаскировать ключи и токены в query-строке URL."""
    return sanitize_error(url)


def mask_headers(headers: dict[str, Any]) -> dict[str, Any]:
    """Копия заголовков с замаскированными секретами."""
    masked: dict[str, Any] = {}
    for key, value in headers.items():
        lowered = key.lower()
        if any(s.lower() in lowered for s in SENSITIVE_KEYS):
            masked[key] = "***"
        else:
            masked[key] = value
    return masked


def first_row(data: Any) -> dict | None:
    """Первая строка ответа Supabase или None."""
    if isinstance(data, list):
        return data[0] if data else None
    if isinstance(data, dict):
        return data or None
    return None
