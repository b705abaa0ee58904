"""Advisory-блокировка запусков импорта с TTL (таблица import_locks).

Read-then-write без транзакции: гарантия рассчитана на один процесс
с кооперативной многозадачностью, TTL снимает зависший флаг после падения.
"""
from datetime import UTC, datetime, timedelta

from loguru import logger
from supabase import Client

from src.database import first_row, run_in_thread
from src.records import parse_datetime

LOCKS_TABLE = "import_locks"
DEFAULT_LOCK_NAME = "import_running"


class RunGuard:
    """Флаг «импорт уже идёт»."""

    def __init__(self, db: Client, ttl_seconds: int = 3600, name: str = DEFAULT_LOCK_NAME) -> None:
        self.db = db
        self.ttl_seconds = ttl_seconds
        self.name = name

    async def _current_until(self) -> datetime | None:
        result = await run_in_thread(
            self.db.table(LOCKS_TABLE)
            .select("locked_until")
            .eq("name", self.name)
            .limit(1)
            .execute
        )
        row = first_row(result.data)
        return parse_datetime(row.get("locked_until")) if row else None

    async def is_held(self) -> bool:
        locked_until = await self._current_until()
        return locked_until is not None and locked_until > datetime.now(UTC)

    async def acquire(self, holder: str) -> bool:
        """Захватить флаг; False, если он уже держится и TTL не истёк."""
        now = datetime.now(UTC)
        locked_until = await self._current_until()
        if locked_until is not None and locked_until > now:
            return False
        if locked_until is not None:
            logger.bind(component="scheduler").warning(
                f"Run guard '{self.name}' expired at {locked_until.isoformat()}, taking over"
            )
        await run_in_thread(
            self.db.table(LOCKS_TABLE).upsert({
                "name": self.name,
                "holder": holder,
                "acquired_at": now.isoformat(),
                "locked_until": (now + timedelta(seconds=self.ttl_seconds)).isoformat(),
            }, on_conflict="name").execute
        )
        return True

    async def release(self, holder: str) -> None:
        """Снять флаг, если он принадлежит holder."""
        await run_in_thread(
            self.db.table(LOCKS_TABLE)
            .delete()
            .eq("name", self.name)
            .eq("holder", holder)
            .execute
        )
