"""Тесты определения формы ответа."""
import pytest

from src.exceptions import PayloadError
from src.upstream.shapes import extract_items, extract_total, extract_total_pages, require_items


class TestExtractItems:
    """Приоритет: data_path → альтернативные ключи → корневой список."""

    def test_configured_path(self) -> None:
        result = extract_items({"vacancies": [{"a": 1}], "items": [{"b": 2}]}, "vacancies")
        assert result.shape == "data_path"
        assert result.items == [{"a": 1}]

    def test_nested_configured_path(self) -> None:
        result = extract_items({"data": {"rows": [{"a": 1}]}}, "data.rows")
        assert result.items == [{"a": 1}]

    @pytest.mark.parametrize("key", ["results", "data", "items", "records"])
    def test_alternate_keys(self, key) -> None:
        result = extract_items({key: [{"a": 1}]}, "vacancies")
        assert result.shape == "alternate_key"
        assert result.key == key

    def test_root_list(self) -> None:
        result = extract_items([{"a": 1}, {"a": 2}], "vacancies")
        assert result.shape == "root_list"
        assert len(result.items) == 2

    def test_empty_list_is_valid_page(self) -> None:
        result = extract_items({"vacancies": []}, "vacancies")
        assert result.shape == "data_path"
        assert result.items == []

    def test_unknown_shape(self) -> None:
        assert extract_items({"message": "ok"}, "vacancies").shape == "unknown"
        assert extract_items("text", "vacancies").shape == "unknown"
        assert extract_items({"vacancies": "nope"}, "vacancies").shape == "unknown"

    def test_require_items_raises_with_keys(self) -> None:
        with pytest.raises(PayloadError) as exc_info:
            require_items({"total": 0, "message": "x"}, "vacancies", raw="x" * 1000)
        assert exc_info.value.response_keys == ["message", "total"]
        assert len(exc_info.value.raw) == 500


class TestTotals:
    def test_total(self) -> None:
        assert extract_total({"total": 250}, "total") == 250
        assert extract_total({"total": "250"}, "total") == 250
        assert extract_total({"total": None}, "total") is None
        assert extract_total([1], "total") is None

    def test_total_pages_explicit(self) -> None:
        assert extract_total_pages({"totalPages": 7}, "totalPages", 250, 100) == 7

    def test_total_pages_from_total(self) -> None:
        assert extract_total_pages({}, "totalPages", 250, 100) == 3
        assert extract_total_pages({}, "totalPages", 0, 100) == 0

    def test_total_pages_unknown(self) -> None:
        assert extract_total_pages({}, "totalPages", None, 100) is None
