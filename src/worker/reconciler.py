"""Сверка выбранных записей с хранилищем: create / update / skip / delete."""
import inspect
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, time, timedelta
from typing import Any

from loguru import logger

from src.database import sanitize_error
from src.exceptions import MissingUniqueIdError
from src.mapping.defaults import COMPARISON_FIELDS
from src.mapping.mapper import build_record
from src.mapping.transforms import compile_transforms
from src.models.fetch import NormalizedRecord
from src.models.run import RunCounts
from src.models.task import ImportTask
from src.records import Enricher, ExistingRecord, RecordStore, parse_date

ProgressCallback = Callable[[dict[str, Any]], Any]
CancelCheck = Callable[[], Awaitable[bool]]


def _comparable(value: Any) -> str:
    """Нестрогое сравнение: 3 == '3', None == ''."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def has_changed(existing: ExistingRecord, record: NormalizedRecord) -> bool:
    """Изменилось ли хоть одно из ключевых полей."""
    return any(
        _comparable(existing.fields.get(name)) != _comparable(record.fields.get(name))
        for name in COMPARISON_FIELDS
    )


def needs_enrichment(record: NormalizedRecord) -> bool:
    """Есть postcode, но нет координат."""
    fields = record.fields
    return bool(fields.get("postcode")) and (
        fields.get("latitude") in (None, "") or fields.get("longitude") in (None, "")
    )


def is_expired(record: ExistingRecord, now: datetime, grace_days: int) -> bool:
    """closing_date + grace прошла; без closing_date по modified_at + grace."""
    grace = timedelta(days=grace_days)
    if record.closing_date is not None:
        return datetime.combine(record.closing_date, time.min, UTC) + grace < now
    if record.modified_at is not None:
        return record.modified_at + grace < now
    return False


class Reconciler:
    """Применяет один запуск импорта к хранилищу записей."""

    def __init__(
        self,
        store: RecordStore,
        task: ImportTask,
        *,
        enricher: Enricher | None = None,
        import_id: str = "system",
        progress_every: int = 10,
        on_progress: ProgressCallback | None = None,
        is_cancelled: CancelCheck | None = None,
    ) -> None:
        self.store = store
        self.task = task
        self.enricher = enricher
        self.progress_every = max(1, progress_every)
        self.on_progress = on_progress
        self.is_cancelled = is_cancelled
        self.counts = RunCounts()
        self.seen_ids: set[str] = set()
        self.cancelled = False
        self.steps = compile_transforms(task.transforms_code) if task.transforms_enabled else []
        self._log = logger.bind(import_id=import_id, component="core")

    async def process_items(self, items: list[dict[str, Any]]) -> RunCounts:
        """Обработать записи по порядку; ошибка записи не прерывает запуск."""
        total = len(items)
        for index, item in enumerate(items, start=1):
            try:
                await self.process_item(item)
            except MissingUniqueIdError as e:
                self.counts.skipped += 1
                self._log.warning(f"Item {index}/{total} skipped: {e}")
            except Exception as e:
                self.counts.errors += 1
                self._log.bind(context={"index": index}).error(
                    f"Item {index}/{total} failed: {sanitize_error(str(e))}"
                )

            if index % self.progress_every == 0 or index == total:
                await self._report_progress(index, total)
                if index < total and await self._check_cancelled():
                    self._log.warning(f"Run cancelled after {index}/{total} items")
                    break
        return self.counts

    async def process_item(self, item: dict[str, Any]) -> str:
        """Создать, обновить или пропустить одну запись. Возвращает действие."""
        record = build_record(item, self.task, self.steps)
        self.seen_ids.add(record.unique_id)
        entity = self.task.target_entity

        existing = await self.store.find_by_unique_id(entity, record.unique_id)
        if existing is not None and self.task.update_policy == "if_changed":
            if not has_changed(existing, record):
                self.counts.skipped += 1
                self._log.trace(f"{record.unique_id}: unchanged, skipped")
                return "skipped"

        record = await self._enrich(record)
        payload = self._payload(record)

        if existing is None:
            record_id = await self.store.create(payload)
            action = "created"
        else:
            record_id = existing.id
            await self.store.update(record_id, payload)
            action = "updated"

        if record.classification:
            await self.store.set_classification(record_id, record.classification)

        if action == "created":
            self.counts.created += 1
        else:
            self.counts.updated += 1
        self._log.debug(f"{record.unique_id}: {action} (id={record_id})")
        return action

    async def _enrich(self, record: NormalizedRecord) -> NormalizedRecord:
        if self.enricher is None or not needs_enrichment(record):
            return record
        try:
            return await self.enricher.enrich(record)
        except Exception as e:
            self._log.warning(f"{record.unique_id}: enrichment failed: {e}")
            return record

    def _payload(self, record: NormalizedRecord) -> dict[str, Any]:
        closing = parse_date(record.fields.get("closing_date"))
        return {
            "entity_type": self.task.target_entity,
            "unique_id": record.unique_id,
            "status": self.task.post_status,
            "task_id": self.task.id,
            "fields": record.fields,
            "closing_date": closing.isoformat() if closing else None,
        }

    async def _report_progress(self, processed: int, total: int) -> None:
        if self.on_progress is None:
            return
        result = self.on_progress({
            "processed": processed,
            "total": total,
            **self.counts.as_dict(),
        })
        if inspect.isawaitable(result):
            await result

    async def _check_cancelled(self) -> bool:
        if self.is_cancelled is None:
            return False
        self.cancelled = await self.is_cancelled()
        return self.cancelled

    async def delete_expired(self, grace_days: int, now: datetime | None = None) -> int:
        """Удалить записи, которых нет в выборке и срок которых истёк."""
        now = now or datetime.now(UTC)
        existing = await self.store.list_existing(self.task.target_entity, self.task.id)
        deleted = 0
        for record in existing:
            if record.unique_id in self.seen_ids or not is_expired(record, now, grace_days):
                continue
            try:
                if await self.store.delete(record.id):
                    deleted += 1
                    self._log.debug(f"{record.unique_id}: expired, deleted")
            except Exception as e:
                self.counts.errors += 1
                self._log.error(f"Failed to delete expired {record.unique_id}: {e}")
        self.counts.deleted += deleted
        if deleted:
            self._log.info(f"Deleted {deleted} expired records (grace {grace_days}d)")
        return deleted
