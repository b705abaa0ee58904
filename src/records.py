"""Хранилище записей: интерфейс и реализация на таблице vacancies."""
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any, Protocol

from loguru import logger
from supabase import Client

from src.database import first_row, run_in_thread
from src.models.fetch import NormalizedRecord

RECORDS_TABLE = "vacancies"
LIST_CHUNK = 1000


def parse_date(value: Any) -> date | None:
    """ISO-дата или datetime → date; мусор → None."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        return None


def parse_datetime(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass
class ExistingRecord:
    """Уже сохранённая запись."""

    id: str
    unique_id: str
    fields: dict[str, Any] = field(default_factory=dict)
    closing_date: date | None = None
    modified_at: datetime | None = None
    task_id: str | None = None


class RecordStore(Protocol):
    """Хранилище, в которое импорт пишет записи."""

    async def find_by_unique_id(self, entity_type: str, unique_id: str) -> ExistingRecord | None:
        ...

    async def list_existing(self, entity_type: str, task_id: str | None) -> list[ExistingRecord]:
        """Записи сущности, созданные задачей task_id."""
        ...

    async def create(self, payload: dict[str, Any]) -> str:
        ...

    async def update(self, record_id: str, payload: dict[str, Any]) -> bool:
        ...

    async def delete(self, record_id: str) -> bool:
        ...

    async def set_classification(self, record_id: str, classification: dict[str, str]) -> None:
        ...


class Enricher(Protocol):
    """Опциональное обогащение (например, геокодинг по postcode)."""

    async def enrich(self, record: NormalizedRecord) -> NormalizedRecord:
        ...


def _row_to_record(row: dict[str, Any]) -> ExistingRecord:
    return ExistingRecord(
        id=str(row["id"]),
        unique_id=str(row["unique_id"]),
        fields=row.get("fields") or {},
        closing_date=parse_date(row.get("closing_date")),
        modified_at=parse_datetime(row.get("modified_at")),
        task_id=str(row["task_id"]) if row.get("task_id") is not None else None,
    )


class SupabaseRecordStore:
    """RecordStore поверх Supabase-таблицы vacancies."""

    def __init__(self, db: Client, table: str = RECORDS_TABLE) -> None:
        self.db = db
        self.table = table

    async def find_by_unique_id(self, entity_type: str, unique_id: str) -> ExistingRecord | None:
        result = await run_in_thread(
            self.db.table(self.table)
            .select("id, unique_id, fields, closing_date, modified_at")
            .eq("entity_type", entity_type)
            .eq("unique_id", unique_id)
            .limit(1)
            .execute
        )
        row = first_row(result.data)
        return _row_to_record(row) if row else None

    async def list_existing(self, entity_type: str, task_id: str | None) -> list[ExistingRecord]:
        records: list[ExistingRecord] = []
        offset = 0
        while True:
            result = await run_in_thread(
                self.db.table(self.table)
                .select("id, unique_id, fields, closing_date, modified_at, task_id")
                .eq("entity_type", entity_type)
                .eq("task_id", task_id)
                .order("id")
                .range(offset, offset + LIST_CHUNK - 1)
                .execute
            )
            rows = result.data or []
            records.extend(_row_to_record(row) for row in rows)
            if len(rows) < LIST_CHUNK:
                return records
            offset += LIST_CHUNK

    async def create(self, payload: dict[str, Any]) -> str:
        now = datetime.now(UTC).isoformat()
        result = await run_in_thread(
            self.db.table(self.table).insert({
                **payload,
                "created_at": now,
                "modified_at": now,
            }).execute
        )
        row = first_row(result.data)
        if not row:
            raise RuntimeError(f"Insert into {self.table} returned no row")
        return str(row["id"])

    async def update(self, record_id: str, payload: dict[str, Any]) -> bool:
        result = await run_in_thread(
            self.db.table(self.table).update({
                **payload,
                "modified_at": datetime.now(UTC).isoformat(),
            }).eq("id", record_id).execute
        )
        return bool(result.data)

    async def delete(self, record_id: str) -> bool:
        result = await run_in_thread(
            self.db.table(self.table).delete().eq("id", record_id).execute
        )
        return bool(result.data)

    async def set_classification(self, record_id: str, classification: dict[str, str]) -> None:
        await run_in_thread(
            self.db.table(self.table)
            .update({"classification": classification})
            .eq("id", record_id)
            .execute
        )
        logger.bind(component="core").trace(f"Record {record_id} classified as {classification}")
