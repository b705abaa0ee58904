"""In-memory кэш GET-ответов внешнего API с TTL."""
import hashlib
import time
from typing import Any
from urllib.parse import urlencode


def make_cache_key(method: str, endpoint: str, params: dict[str, Any] | None) -> str:
    """Ключ кэша: 'api_' + md5(method + endpoint + отсортированный query)[:16]."""
    query = urlencode(sorted((params or {}).items()), doseq=True)
    digest = hashlib.md5(f"{method.upper()}{endpoint}{query}".encode()).hexdigest()
    return f"api_{digest[:16]}"


class ResponseCache:
    """Процессный кэш, общий для всех клиентов API."""

    def __init__(self, ttl_seconds: int = 300, clock=time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return value

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return
        self._entries[key] = (self._clock() + ttl, value)

    def clear(self) -> int:
        """Очистить кэш, вернуть число удалённых записей."""
        count = len(self._entries)
        self._entries.clear()
        return count

    def __len__(self) -> int:
        return len(self._entries)
