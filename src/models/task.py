"""Pydantic-модель задачи импорта."""
import json
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, SecretStr, field_validator

from src.config import parse_time_of_day
from src.mapping.defaults import (
    DEFAULT_AUTH_HEADER,
    DEFAULT_ENTITY,
    DEFAULT_FIELD_MAPPING,
    DEFAULT_HEADERS,
    DEFAULT_PARAMS,
    DEFAULT_UNIQUE_ID_FIELD,
)

TaskStatus = Literal["draft", "active", "inactive"]
Frequency = Literal["hourly", "twicedaily", "daily", "weekly"]
UpdatePolicy = Literal["always", "if_changed"]

# Поля, которые в таблице хранятся как JSON-текст
JSON_FIELDS = ("api_headers", "api_params", "field_mappings")

STAT_FIELDS = (
    "last_run_at",
    "last_run_status",
    "last_run_fetched",
    "last_run_created",
    "last_run_updated",
    "last_run_errors",
    "total_runs",
)


def _decode_json(value: Any) -> Any:
    """JSON-текст → dict; уже декодированные значения пропускаются как есть."""
    if value is None or value == "":
        return {}
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            raise ValueError(f"Invalid JSON: {value[:100]}") from None
    return value


class ImportTask(BaseModel):
    """Задача из таблицы import_tasks."""

    id: str | None = None
    name: str = ""
    description: str = ""
    status: TaskStatus = "draft"
    provider_id: str = "uk-gov-apprenticeships"

    # Запрос
    api_base_url: str = "https://api.apprenticeships.education.gov.uk/vacancies"
    api_endpoint: str = "/vacancy"
    api_method: Literal["GET", "POST"] = "GET"
    api_headers: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_HEADERS))
    api_params: dict[str, Any] = Field(default_factory=lambda: dict(DEFAULT_PARAMS))
    api_auth_type: Literal["header_key", "none"] = "header_key"
    api_auth_key: str = DEFAULT_AUTH_HEADER
    api_auth_value: SecretStr = SecretStr("")

    # Ответ и пагинация
    data_path: str = "vacancies"
    total_path: str = "total"
    total_pages_path: str = "totalPages"
    page_param: str = "PageNumber"
    page_size_param: str = "PageSize"
    page_size: int = Field(default=100, gt=0)

    # Маппинг
    field_mappings: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_FIELD_MAPPING))
    unique_id_field: str = Field(default=DEFAULT_UNIQUE_ID_FIELD, min_length=1)
    target_entity: str = DEFAULT_ENTITY
    post_status: str = "publish"
    transforms_enabled: bool = False
    transforms_code: str = ""

    # Сверка
    update_policy: UpdatePolicy = "always"
    delete_expired: bool = False
    expire_after_days: int = Field(default=7, ge=0)

    # Расписание
    schedule_enabled: bool = False
    schedule_frequency: Frequency = "daily"
    schedule_time: str = "03:00"

    # Статистика
    last_run_at: datetime | None = None
    last_run_status: str | None = None
    last_run_fetched: int = 0
    last_run_created: int = 0
    last_run_updated: int = 0
    last_run_errors: int = 0
    total_runs: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str | None:
        """В Supabase id может быть bigint."""
        return None if v is None else str(v)

    @field_validator(*JSON_FIELDS, mode="before")
    @classmethod
    def decode_json_fields(cls, v: Any) -> Any:
        return _decode_json(v)

    @field_validator("schedule_frequency", mode="before")
    @classmethod
    def normalize_frequency(cls, v: Any) -> Any:
        """'twice-daily' → 'twicedaily'."""
        if isinstance(v, str):
            return v.strip().lower().replace("-", "").replace("_", "")
        return v

    @field_validator("schedule_time")
    @classmethod
    def check_schedule_time(cls, v: str) -> str:
        hour, minute = parse_time_of_day(v)
        return f"{hour:02d}:{minute:02d}"

    @property
    def is_schedulable(self) -> bool:
        """Планировать можно только active задачи с включённым расписанием."""
        return self.status == "active" and self.schedule_enabled

    def auth_headers(self) -> dict[str, str]:
        """Заголовки запроса вместе с ключом авторизации."""
        headers = dict(self.api_headers)
        secret = self.api_auth_value.get_secret_value()
        if self.api_auth_type == "header_key" and self.api_auth_key and secret:
            headers[self.api_auth_key] = secret
        return headers

    def to_row(self) -> dict[str, Any]:
        """Строка для Supabase: JSON-поля кодируются в текст, секрет раскрывается."""
        row = self.model_dump(
            mode="json",
            exclude={"id", "created_at", "updated_at", *STAT_FIELDS},
        )
        row["api_auth_value"] = self.api_auth_value.get_secret_value()
        for name in JSON_FIELDS:
            row[name] = json.dumps(row[name], ensure_ascii=False)
        return row
