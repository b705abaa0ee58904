"""HTTP-клиент внешнего API: rate limiting, retry с backoff, кэш, пагинация."""
import asyncio
import inspect
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode

import httpx
from loguru import logger

from src.config import Settings
from src.database import mask_headers, mask_url
from src.exceptions import PayloadError
from src.models.fetch import ApiResponse, ErrorKind, FetchResult
from src.models.task import ImportTask
from src.upstream.cache import ResponseCache, make_cache_key
from src.upstream.shapes import (
    RAW_SNIPPET_LENGTH,
    extract_total,
    extract_total_pages,
    require_items,
)

ERROR_MESSAGE_KEYS = ("message", "error", "error_message", "detail", "title")
MAX_RAW_ERROR_LENGTH = 200
EMPTY_PAGES_LIMIT = 2

PageCallback = Callable[[dict[str, Any]], Any]


def extract_error_message(response: httpx.Response) -> str:
    """Человекочитаемая ошибка из тела ответа."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        for key in ERROR_MESSAGE_KEYS:
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            return "; ".join(
                e.get("message", str(e)) if isinstance(e, dict) else str(e)
                for e in errors[:3]
            )
        if isinstance(errors, dict) and errors:
            return "; ".join(f"{k}: {v}" for k, v in list(errors.items())[:3])

    text = response.text.strip()
    if text and len(text) < MAX_RAW_ERROR_LENGTH:
        return text
    return f"HTTP {response.status_code} error"


def parse_retry_after(response: httpx.Response) -> float | None:
    """Числовой Retry-After в секундах (HTTP-date не поддерживается)."""
    value = response.headers.get("Retry-After", "").strip()
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class ApiClient:
    """Клиент одного базового URL. Один экземпляр на запуск импорта."""

    def __init__(
        self,
        base_url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float = 60.0,
        retry_max: int = 3,
        retry_delay_ms: int = 1000,
        retry_multiplier: float = 2.0,
        rate_limit_ms: int = 200,
        cache: ResponseCache | None = None,
        cache_ttl: int = 300,
        transport: httpx.AsyncBaseTransport | None = None,
        import_id: str = "system",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.retry_max = retry_max
        self.retry_delay_ms = retry_delay_ms
        self.retry_multiplier = retry_multiplier
        self.rate_limit_ms = rate_limit_ms
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.requests = 0
        self.cache_hits = 0
        self._last_request_at: float | None = None
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Accept": "application/json", **(headers or {})},
            timeout=timeout,
            transport=transport,
        )
        self._log = logger.bind(import_id=import_id, component="api")

    @classmethod
    def for_task(
        cls,
        task: ImportTask,
        settings: Settings,
        cache: ResponseCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        import_id: str = "system",
        timeout: float | None = None,
    ) -> "ApiClient":
        """Клиент с настройками задачи и глобальными политиками ретраев."""
        return cls(
            task.api_base_url,
            headers=task.auth_headers(),
            timeout=timeout if timeout is not None else settings.request_timeout,
            retry_max=settings.retry_max,
            retry_delay_ms=settings.retry_delay_ms,
            retry_multiplier=settings.retry_multiplier,
            rate_limit_ms=settings.rate_limit_delay_ms,
            cache=cache if settings.cache_enabled else None,
            cache_ttl=settings.cache_ttl_seconds,
            transport=transport,
            import_id=import_id,
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def set_import_id(self, import_id: str) -> None:
        """Привязать логи клиента к запуску импорта."""
        self._log = logger.bind(import_id=import_id, component="api")

    def stats(self) -> dict[str, int]:
        return {"requests": self.requests, "cache_hits": self.cache_hits}

    def clear_cache(self) -> int:
        return self.cache.clear() if self.cache is not None else 0

    async def get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        use_cache: bool = True,
    ) -> ApiResponse:
        return await self.request("GET", endpoint, params=params, headers=headers, use_cache=use_cache)

    async def post(
        self,
        endpoint: str,
        body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> ApiResponse:
        return await self.request("POST", endpoint, params=params, body=body, headers=headers)

    def _masked_url(self, endpoint: str, params: dict[str, Any] | None) -> str:
        query = f"?{urlencode(params, doseq=True)}" if params else ""
        return mask_url(f"{self.base_url}{endpoint}{query}")

    async def _throttle(self) -> None:
        """Выдержать минимальный интервал между запросами этого клиента."""
        now = time.monotonic()
        if self._last_request_at is not None and self.rate_limit_ms > 0:
            elapsed_ms = (now - self._last_request_at) * 1000
            if elapsed_ms < self.rate_limit_ms:
                await asyncio.sleep((self.rate_limit_ms - elapsed_ms) / 1000)
        self._last_request_at = time.monotonic()

    def _backoff_seconds(self, attempt: int) -> float:
        """attempt 1 → base, 2 → base*m, 3 → base*m²."""
        return self.retry_delay_ms * (self.retry_multiplier ** (attempt - 1)) / 1000

    async def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        use_cache: bool = True,
    ) -> ApiResponse:
        """Один логический запрос: кэш, затем попытки с rate limit и backoff."""
        method = method.upper()
        masked = self._masked_url(endpoint, params)
        cache_key = None
        if method == "GET" and use_cache and self.cache is not None:
            cache_key = make_cache_key(method, f"{self.base_url}{endpoint}", params)
            cached = self.cache.get(cache_key)
            if cached is not None:
                self.cache_hits += 1
                self._log.debug(f"Cache hit: {masked}")
                return ApiResponse(success=True, data=cached, status_code=200, cached=True)

        self._log.debug(f"{method} {masked} headers={mask_headers(headers or {})}")

        failure = ApiResponse(success=False, error="No attempts made", error_kind="transport")
        for attempt in range(1, self.retry_max + 2):
            retry_after: float | None = None
            await self._throttle()
            self.requests += 1
            started = time.monotonic()
            try:
                response = await self._client.request(
                    method, endpoint, params=params, json=body, headers=headers,
                )
            except httpx.TransportError as e:
                failure = ApiResponse(
                    success=False,
                    error=f"Network error: {type(e).__name__}: {mask_url(str(e))}",
                    error_kind="transport",
                )
            else:
                elapsed = time.monotonic() - started
                status = response.status_code
                self._log.trace(f"{method} {masked} → {status} in {elapsed:.2f}s")

                if status == 429 or status >= 500:
                    kind: ErrorKind = "rate_limit" if status == 429 else "server"
                    failure = ApiResponse(
                        success=False,
                        status_code=status,
                        error=extract_error_message(response),
                        error_kind=kind,
                    )
                    retry_after = parse_retry_after(response)
                elif status >= 400:
                    message = extract_error_message(response)
                    self._log.error(f"{method} {masked} failed: HTTP {status}: {message}")
                    return ApiResponse(
                        success=False, status_code=status, error=message, error_kind="client",
                    )
                else:
                    return self._parse_success(response, masked, cache_key)

            if attempt > self.retry_max:
                break
            delay = retry_after if retry_after is not None else self._backoff_seconds(attempt)
            self._log.warning(
                f"{method} {masked} attempt {attempt}/{self.retry_max + 1} failed "
                f"({failure.error}), retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)

        self._log.error(
            f"{method} {masked} failed after {self.retry_max + 1} attempts: {failure.error}"
        )
        return failure

    def _parse_success(self, response: httpx.Response, masked: str, cache_key: str | None) -> ApiResponse:
        if not response.content:
            return ApiResponse(success=True, data=None, status_code=response.status_code)
        try:
            data = response.json()
        except ValueError as e:
            raw = response.text[:RAW_SNIPPET_LENGTH]
            self._log.error(f"Invalid JSON from {masked}: {e}")
            return ApiResponse(
                success=False,
                status_code=response.status_code,
                error=f"Invalid JSON response: {e}",
                error_kind="payload",
                raw=raw,
            )
        if cache_key is not None and self.cache is not None:
            self.cache.set(cache_key, data, self.cache_ttl)
        return ApiResponse(
            success=True,
            data=data,
            status_code=response.status_code,
            response_keys=sorted(data.keys()) if isinstance(data, dict) else [],
            raw=response.text[:RAW_SNIPPET_LENGTH],
        )

    async def fetch_all_pages(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        *,
        page_param: str = "PageNumber",
        page_size_param: str | None = "PageSize",
        page_size: int = 100,
        data_path: str | None = "vacancies",
        total_path: str | None = "total",
        total_pages_path: str | None = "totalPages",
        max_pages: int = 500,
        method: str = "GET",
        on_page: PageCallback | None = None,
    ) -> FetchResult:
        """Последовательно выбрать все страницы.

        Остановка: номер страницы больше total_pages, достигнут max_pages,
        или две пустые страницы подряд. Если API не сообщает ни total_pages,
        ни total, идём, пока страница полная. При ошибке возвращаются уже
        собранные записи и текст ошибки.
        """
        items: list[dict[str, Any]] = []
        total: int | None = None
        total_pages: int | None = None
        pages_fetched = 0
        cached_pages = 0
        empty_streak = 0
        page = 1

        while page <= max_pages:
            page_params = {**(params or {}), page_param: page}
            if page_size_param:
                page_params[page_size_param] = page_size

            if method.upper() == "POST":
                response = await self.post(endpoint, body=page_params)
            else:
                response = await self.get(endpoint, page_params)

            if not response.success:
                self._log.error(
                    f"Pagination stopped at page {page}: {response.error} "
                    f"({len(items)} items collected)"
                )
                return FetchResult(
                    success=False,
                    items=items,
                    total=total,
                    pages_fetched=pages_fetched,
                    cached_pages=cached_pages,
                    error=response.error,
                )

            try:
                page_items = require_items(response.data, data_path, response.raw)
            except PayloadError as e:
                self._log.error(f"Page {page}: {e} (keys={e.response_keys})")
                return FetchResult(
                    success=False,
                    items=items,
                    total=total,
                    pages_fetched=pages_fetched,
                    cached_pages=cached_pages,
                    error=f"{e}; response keys: {', '.join(e.response_keys) or '-'}",
                )

            pages_fetched += 1
            if response.cached:
                cached_pages += 1
            if total is None:
                total = extract_total(response.data, total_path)
            if total_pages is None:
                total_pages = extract_total_pages(response.data, total_pages_path, total, page_size)

            items.extend(page_items)
            if on_page is not None:
                result = on_page({
                    "page": page,
                    "total_pages": total_pages,
                    "items_count": len(page_items),
                    "total_so_far": len(items),
                    "cached": response.cached,
                })
                if inspect.isawaitable(result):
                    await result

            if page_items:
                empty_streak = 0
            else:
                empty_streak += 1
                if empty_streak >= EMPTY_PAGES_LIMIT:
                    self._log.info(f"Two consecutive empty pages at page {page}, stopping")
                    break

            if total_pages is not None:
                if page >= total_pages:
                    break
            elif len(page_items) < page_size:
                break
            page += 1
        else:
            self._log.warning(f"Reached max_pages={max_pages}, stopping pagination")

        self._log.info(
            f"Fetched {len(items)} items from {pages_fetched} pages "
            f"(total={total}, cached_pages={cached_pages})"
        )
        return FetchResult(
            success=True,
            items=items,
            total=total if total is not None else len(items),
            pages_fetched=pages_fetched,
            cached_pages=cached_pages,
        )
