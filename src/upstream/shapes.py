"""Определение формы ответа API: где лежит список записей."""
import math
from dataclasses import dataclass, field
from typing import Any, Literal

from src.exceptions import PayloadError
from src.mapping.paths import resolve

ALTERNATE_ITEM_KEYS = ("results", "data", "items", "records")
RAW_SNIPPET_LENGTH = 500

Shape = Literal["data_path", "alternate_key", "root_list", "unknown"]


@dataclass
class ItemsExtraction:
    """Результат разбора страницы."""

    shape: Shape
    items: list[dict[str, Any]] = field(default_factory=list)
    key: str | None = None


def _is_item_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, dict) for v in value)


def extract_items(data: Any, data_path: str | None) -> ItemsExtraction:
    """Найти список записей по приоритету известных форм."""
    if isinstance(data, dict):
        if data_path:
            value = resolve(data, data_path)
            if _is_item_list(value):
                return ItemsExtraction("data_path", value, data_path)
        for key in ALTERNATE_ITEM_KEYS:
            value = data.get(key)
            if _is_item_list(value):
                return ItemsExtraction("alternate_key", value, key)
        return ItemsExtraction("unknown")
    if _is_item_list(data):
        return ItemsExtraction("root_list", data)
    return ItemsExtraction("unknown")


def require_items(data: Any, data_path: str | None, raw: str = "") -> list[dict[str, Any]]:
    """extract_items, но неизвестная форма → PayloadError с ключами ответа."""
    extraction = extract_items(data, data_path)
    if extraction.shape == "unknown":
        keys = sorted(data.keys()) if isinstance(data, dict) else []
        raise PayloadError(
            f"Could not find items at '{data_path}' in response",
            response_keys=keys,
            raw=raw[:RAW_SNIPPET_LENGTH],
        )
    return extraction.items


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def extract_total(data: Any, total_path: str | None) -> int | None:
    """Общее число записей, если API его сообщает."""
    if not isinstance(data, dict) or not total_path:
        return None
    return _as_int(resolve(data, total_path))


def extract_total_pages(
    data: Any,
    total_pages_path: str | None,
    total: int | None,
    page_size: int,
) -> int | None:
    """Число страниц: явное поле, иначе ceil(total / page_size)."""
    if isinstance(data, dict) and total_pages_path:
        pages = _as_int(resolve(data, total_pages_path))
        if pages is not None:
            return pages
    if total is not None and page_size > 0:
        return math.ceil(total / page_size)
    return None
