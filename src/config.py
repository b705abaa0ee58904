"""Конфигурация импортёра из переменных окружения."""
from functools import cached_property

from pydantic import AliasChoices, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SYNC_FREQUENCIES = ("hourly", "twicedaily", "daily", "weekly")


class Settings(BaseSettings):
    """Настройки импортёра, парсятся из env или .env файла."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Supabase
    supabase_url: str
    supabase_service_key: SecretStr

    # Admin API
    admin_api_key: SecretStr
    admin_port: int = Field(
        default=8001,
        validation_alias=AliasChoices("ADMIN_PORT", "PORT"),
    )

    # Upstream API для задачи "default"
    api_base_url: str = "https://api.apprenticeships.education.gov.uk/vacancies"
    api_endpoint: str = "/vacancy"
    api_subscription_key: SecretStr = SecretStr("")
    api_ukprn: str = ""           # Фильтр по провайдеру (param Ukprn)
    batch_size: int = Field(default=100, gt=0)
    post_status: str = "publish"

    # Синхронизация
    sync_enabled: bool = True
    sync_frequency: str = "daily"
    sync_time: str = "03:00"
    initial_sync: bool = False
    delete_expired: bool = True
    expire_after_days: int = Field(default=7, ge=0)

    # HTTP
    request_timeout: float = 60.0
    lookup_timeout: float = 10.0  # Таймаут для вспомогательных сервисов (геокодинг)
    retry_max: int = Field(default=3, ge=0)
    retry_delay_ms: int = 1000
    retry_multiplier: float = 2.0
    rate_limit_delay_ms: int = 200
    cache_enabled: bool = True
    cache_ttl_seconds: int = 300
    max_pages: int = Field(default=500, gt=0)

    # Запуски
    run_lock_ttl_seconds: int = 3600
    progress_every: int = Field(default=10, gt=0)

    # Логи
    log_level: str = "INFO"
    debug_mode: bool = False      # Персистить TRACE/DEBUG в import_logs
    log_retention_days: int = 30
    log_max_entries: int = 10000

    @field_validator("sync_frequency")
    @classmethod
    def normalize_frequency(cls, v: str) -> str:
        """'twice-daily' → 'twicedaily', проверка допустимых значений."""
        value = v.strip().lower().replace("-", "").replace("_", "")
        if value not in SYNC_FREQUENCIES:
            raise ValueError(f"sync_frequency must be one of {SYNC_FREQUENCIES}")
        return value

    @field_validator("sync_time")
    @classmethod
    def check_sync_time(cls, v: str) -> str:
        """Формат HH:MM."""
        parse_time_of_day(v)
        return v

    @cached_property
    def persist_log_level(self) -> str:
        """Минимальный уровень логов, который пишется в import_logs."""
        return "TRACE" if self.debug_mode else "INFO"


def parse_time_of_day(value: str) -> tuple[int, int]:
    """'03:00' или '03:00:00' → (3, 0)."""
    parts = value.strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid time of day: {value!r}")
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError:
        raise ValueError(f"Invalid time of day: {value!r}") from None
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Invalid time of day: {value!r}")
    return hour, minute


def load_settings() -> Settings:
    """Создать Settings из переменных окружения (.env файла).

    Фабричная функция: обходит ограничение pyright, который не знает,
    что pydantic-settings заполняет обязательные поля из окружения.
    """
    return Settings.model_validate({})
