"""Тесты сверки записей: create / update / skip / delete."""
from datetime import UTC, date, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest

from src.models.fetch import NormalizedRecord
from src.models.task import ImportTask
from src.records import ExistingRecord
from src.worker.reconciler import Reconciler, has_changed, is_expired, needs_enrichment

NOW = datetime(2026, 6, 15, 12, 0, tzinfo=UTC)


class FakeStore:
    """RecordStore в памяти."""

    def __init__(self) -> None:
        self.records: dict[str, ExistingRecord] = {}
        self.payloads: dict[str, dict[str, Any]] = {}
        self.classifications: dict[str, dict[str, str]] = {}
        self.fail_on: set[str] = set()
        self._next_id = 1

    def add(self, unique_id: str, fields: dict | None = None, closing_date: date | None = None,
            modified_at: datetime | None = None, task_id: str = "7") -> ExistingRecord:
        record = ExistingRecord(
            id=str(self._next_id),
            unique_id=unique_id,
            fields=fields or {},
            closing_date=closing_date,
            modified_at=modified_at,
            task_id=task_id,
        )
        self._next_id += 1
        self.records[unique_id] = record
        return record

    async def find_by_unique_id(self, entity_type: str, unique_id: str) -> ExistingRecord | None:
        return self.records.get(unique_id)

    async def list_existing(self, entity_type: str, task_id: str | None) -> list[ExistingRecord]:
        return [r for r in self.records.values() if r.task_id == task_id]

    async def create(self, payload: dict[str, Any]) -> str:
        if payload["unique_id"] in self.fail_on:
            raise RuntimeError("insert failed")
        record = self.add(
            payload["unique_id"], dict(payload["fields"]), modified_at=NOW, task_id=payload["task_id"]
        )
        self.payloads[record.id] = payload
        return record.id

    async def update(self, record_id: str, payload: dict[str, Any]) -> bool:
        record = self.records[payload["unique_id"]]
        record.fields = dict(payload["fields"])
        self.payloads[record_id] = payload
        return True

    async def delete(self, record_id: str) -> bool:
        for unique_id, record in list(self.records.items()):
            if record.id == record_id:
                del self.records[unique_id]
                return True
        return False

    async def set_classification(self, record_id: str, classification: dict[str, str]) -> None:
        self.classifications[record_id] = classification


def vacancy(ref: str, **overrides: Any) -> dict[str, Any]:
    item = {
        "vacancyReference": ref,
        "title": f"Apprentice {ref}",
        "shortDescription": "Short",
        "closingDate": "2026-07-01",
        "numberOfPositions": 1,
        "employerName": "Acme Ltd",
        "apprenticeshipLevel": "Intermediate",
    }
    item.update(overrides)
    return item


def make_task(**overrides: Any) -> ImportTask:
    return ImportTask(**{"id": "7", "status": "active", **overrides})


class TestReconcile:
    async def test_create_then_update(self) -> None:
        store = FakeStore()
        reconciler = Reconciler(store, make_task())
        counts = await reconciler.process_items([vacancy("VAC1"), vacancy("VAC2")])

        assert counts.created == 2
        assert counts.updated == 0
        assert len(store.records) == 2

        again = Reconciler(store, make_task())
        counts = await again.process_items([vacancy("VAC1", title="Renamed")])
        assert counts.updated == 1
        assert store.records["VAC1"].fields["title"] == "Renamed"
        assert len(store.records) == 2

    async def test_payload_shape(self) -> None:
        store = FakeStore()
        await Reconciler(store, make_task(post_status="draft")).process_items([vacancy("VAC1")])

        payload = next(iter(store.payloads.values()))
        assert payload["unique_id"] == "VAC1"
        assert payload["entity_type"] == "vacancy"
        assert payload["status"] == "draft"
        assert payload["task_id"] == "7"
        assert payload["closing_date"] == "2026-07-01"

    async def test_classification_saved(self) -> None:
        store = FakeStore()
        await Reconciler(store, make_task()).process_items([vacancy("VAC1")])
        assert store.classifications["1"] == {"level": "Intermediate", "employer": "Acme Ltd"}

    async def test_if_changed_second_run_is_all_skipped(self) -> None:
        store = FakeStore()
        items = [vacancy("VAC1"), vacancy("VAC2")]
        await Reconciler(store, make_task(update_policy="if_changed")).process_items(items)

        counts = await Reconciler(store, make_task(update_policy="if_changed")).process_items(items)
        assert counts.created == 0
        assert counts.updated == 0
        assert counts.skipped == 2

    async def test_if_changed_detects_change(self) -> None:
        store = FakeStore()
        await Reconciler(store, make_task(update_policy="if_changed")).process_items([vacancy("VAC1")])

        counts = await Reconciler(store, make_task(update_policy="if_changed")).process_items(
            [vacancy("VAC1", numberOfPositions=3)]
        )
        assert counts.updated == 1

    async def test_always_policy_updates_unchanged(self) -> None:
        store = FakeStore()
        await Reconciler(store, make_task()).process_items([vacancy("VAC1")])
        counts = await Reconciler(store, make_task()).process_items([vacancy("VAC1")])
        assert counts.updated == 1
        assert counts.skipped == 0

    async def test_missing_unique_id_is_skipped(self) -> None:
        store = FakeStore()
        item = vacancy("VAC1")
        del item["vacancyReference"]
        counts = await Reconciler(store, make_task()).process_items([item, vacancy("VAC2")])

        assert counts.skipped == 1
        assert counts.created == 1
        assert counts.errors == 0

    async def test_item_error_does_not_stop_run(self) -> None:
        store = FakeStore()
        store.fail_on = {"VAC2"}
        counts = await Reconciler(store, make_task()).process_items(
            [vacancy("VAC1"), vacancy("VAC2"), vacancy("VAC3")]
        )
        assert counts.created == 2
        assert counts.errors == 1

    async def test_transforms_applied_before_mapping(self) -> None:
        store = FakeStore()
        task = make_task(transforms_enabled=True, transforms_code='upper(title); prefix(vacancyReference, "X-")')
        await Reconciler(store, task).process_items([vacancy("VAC1")])
        assert store.records["X-VAC1"].fields["title"] == "APPRENTICE VAC1"

    async def test_seen_ids_tracked(self) -> None:
        reconciler = Reconciler(FakeStore(), make_task())
        await reconciler.process_items([vacancy("A"), vacancy("B")])
        assert reconciler.seen_ids == {"A", "B"}


class TestProgressAndCancel:
    async def test_progress_every_n_and_at_end(self) -> None:
        progress: list[dict] = []
        reconciler = Reconciler(FakeStore(), make_task(), progress_every=2, on_progress=progress.append)
        await reconciler.process_items([vacancy(f"V{i}") for i in range(5)])

        assert [p["processed"] for p in progress] == [2, 4, 5]
        assert progress[-1]["created"] == 5
        assert progress[-1]["total"] == 5

    async def test_cancel_stops_between_items(self) -> None:
        store = FakeStore()
        is_cancelled = AsyncMock(return_value=True)
        reconciler = Reconciler(store, make_task(), progress_every=2, is_cancelled=is_cancelled)
        counts = await reconciler.process_items([vacancy(f"V{i}") for i in range(6)])

        assert reconciler.cancelled is True
        assert counts.created == 2
        assert len(store.records) == 2

    async def test_not_cancelled_processes_all(self) -> None:
        is_cancelled = AsyncMock(return_value=False)
        reconciler = Reconciler(FakeStore(), make_task(), progress_every=2, is_cancelled=is_cancelled)
        counts = await reconciler.process_items([vacancy(f"V{i}") for i in range(5)])
        assert counts.created == 5
        assert reconciler.cancelled is False


class TestEnrichment:
    async def test_enricher_called_for_postcode_without_coords(self) -> None:
        enricher = AsyncMock()
        enricher.enrich.side_effect = lambda record: NormalizedRecord(
            unique_id=record.unique_id,
            fields={**record.fields, "latitude": 51.5, "longitude": -0.1},
        )
        store = FakeStore()
        item = vacancy("VAC1", addresses=[{"postcode": "SW1A 1AA"}])
        await Reconciler(store, make_task(), enricher=enricher).process_items([item])

        enricher.enrich.assert_awaited_once()
        assert store.records["VAC1"].fields["latitude"] == 51.5

    async def test_enrichment_failure_is_not_fatal(self) -> None:
        enricher = AsyncMock()
        enricher.enrich.side_effect = RuntimeError("geocoder down")
        store = FakeStore()
        item = vacancy("VAC1", addresses=[{"postcode": "SW1A 1AA"}])
        counts = await Reconciler(store, make_task(), enricher=enricher).process_items([item])

        assert counts.created == 1
        assert counts.errors == 0
        assert "latitude" not in store.records["VAC1"].fields

    async def test_enricher_skipped_when_coords_present(self) -> None:
        enricher = AsyncMock()
        item = vacancy("VAC1", addresses=[{"postcode": "SW1A 1AA", "latitude": 51.5, "longitude": -0.1}])
        await Reconciler(FakeStore(), make_task(), enricher=enricher).process_items([item])
        enricher.enrich.assert_not_called()


class TestExpiration:
    """Удаление записей, пропавших из выборки."""

    async def test_expired_absent_record_deleted(self) -> None:
        store = FakeStore()
        store.add("OLD", closing_date=NOW.date() - timedelta(days=10))
        reconciler = Reconciler(store, make_task())
        await reconciler.process_items([vacancy("VAC1")])

        deleted = await reconciler.delete_expired(7, now=NOW)
        assert deleted == 1
        assert "OLD" not in store.records
        assert reconciler.counts.deleted == 1

    async def test_within_grace_kept(self) -> None:
        store = FakeStore()
        store.add("OLD", closing_date=NOW.date() - timedelta(days=10))
        reconciler = Reconciler(store, make_task())
        assert await reconciler.delete_expired(14, now=NOW) == 0
        assert "OLD" in store.records

    async def test_seen_record_never_deleted(self) -> None:
        store = FakeStore()
        store.add("VAC1", closing_date=NOW.date() - timedelta(days=30))
        reconciler = Reconciler(store, make_task())
        await reconciler.process_items([vacancy("VAC1")])
        assert await reconciler.delete_expired(7, now=NOW) == 0

    async def test_modified_at_fallback(self) -> None:
        store = FakeStore()
        store.add("STALE", modified_at=NOW - timedelta(days=8))
        store.add("FRESH", modified_at=NOW - timedelta(days=3))
        store.add("UNKNOWN")
        reconciler = Reconciler(store, make_task())

        assert await reconciler.delete_expired(7, now=NOW) == 1
        assert set(store.records) == {"FRESH", "UNKNOWN"}

    async def test_other_task_records_untouched(self) -> None:
        store = FakeStore()
        store.add("B-1", modified_at=NOW - timedelta(days=30), task_id="B")
        store.add("A-1", modified_at=NOW - timedelta(days=30), task_id="A")
        reconciler = Reconciler(store, make_task(id="A"))

        assert await reconciler.delete_expired(7, now=NOW) == 1
        assert set(store.records) == {"B-1"}

    async def test_closing_date_boundary_deleted_from_start_of_day(self) -> None:
        store = FakeStore()
        store.add("EDGE", closing_date=NOW.date() - timedelta(days=7))
        reconciler = Reconciler(store, make_task())

        assert await reconciler.delete_expired(7, now=NOW.replace(hour=0, minute=0, second=1)) == 1


class TestHelpers:
    def test_has_changed_loose_comparison(self) -> None:
        existing = ExistingRecord(id="1", unique_id="A", fields={"title": "T", "positions_available": "3"})
        same = NormalizedRecord(unique_id="A", fields={"title": "T ", "positions_available": 3.0})
        assert has_changed(existing, same) is False

        other = NormalizedRecord(unique_id="A", fields={"title": "T2", "positions_available": 3})
        assert has_changed(existing, other) is True

    def test_needs_enrichment(self) -> None:
        assert needs_enrichment(NormalizedRecord("A", {"postcode": "SW1A"}))
        assert not needs_enrichment(NormalizedRecord("A", {}))
        assert not needs_enrichment(NormalizedRecord("A", {"postcode": "SW1A", "latitude": 1, "longitude": 2}))

    @pytest.mark.parametrize("days_ago,grace,expected", [
        (10, 7, True),
        (10, 14, False),
        (7, 7, True),
        (6, 7, False),
    ])
    def test_is_expired_by_closing_date(self, days_ago, grace, expected) -> None:
        record = ExistingRecord(id="1", unique_id="A", closing_date=NOW.date() - timedelta(days=days_ago))
        assert is_expired(record, NOW, grace) is expected
