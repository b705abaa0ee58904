"""Результаты HTTP-запросов и маппинга (не персистятся)."""
from dataclasses import dataclass, field
from typing import Any, Literal

ErrorKind = Literal["transport", "rate_limit", "server", "client", "payload"]


@dataclass
class ApiResponse:
    """Один логический запрос к API (после ретраев)."""

    success: bool
    data: Any = None
    status_code: int | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    cached: bool = False
    response_keys: list[str] = field(default_factory=list)
    raw: str = ""


@dataclass
class FetchResult:
    """Итог постраничной выборки, частичный при ошибке."""

    success: bool
    items: list[dict[str, Any]] = field(default_factory=list)
    total: int | None = None
    pages_fetched: int = 0
    cached_pages: int = 0
    error: str | None = None


@dataclass
class NormalizedRecord:
    """Запись после трансформаций, маппинга и санитизации."""

    unique_id: str
    fields: dict[str, Any]
    classification: dict[str, str] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class ConnectionTestResult:
    """Ответ тестового запроса задачи (записи не пишутся)."""

    success: bool
    total: int | None = None
    fetched: int = 0
    sample: list[dict[str, Any]] = field(default_factory=list)
    available_fields: list[str] = field(default_factory=list)
    response_keys: list[str] = field(default_factory=list)
    error: str | None = None
    raw: str = ""
