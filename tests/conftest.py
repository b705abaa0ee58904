"""Общие хелперы тестов."""
from typing import Any

from src.config import Settings


def make_settings(**overrides: Any) -> Settings:
    """Settings без .env: без ретраев, пауз и кэша, если не переопределено."""
    values: dict[str, Any] = {
        "supabase_url": "https://db.test",
        "supabase_service_key": "service-key",
        "admin_api_key": "sk-test-key",
        "api_subscription_key": "sub-key",
        "retry_max": 0,
        "rate_limit_delay_ms": 0,
        "cache_enabled": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)
