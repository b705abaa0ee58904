"""Dot-path навигация по вложенным JSON-записям."""
import re
from typing import Any

_INDEX_RE = re.compile(r"\[(\d+)\]")


def split_path(path: str) -> list[str]:
    """'addresses[0].postcode' → ['addresses', '0', 'postcode']."""
    if not path:
        return []
    normalized = _INDEX_RE.sub(r".\1", path)
    return [segment for segment in normalized.split(".") if segment != ""]


def resolve(record: Any, path: str) -> Any:
    """Значение по dot-path или None, если путь не разрешается."""
    segments = split_path(path)
    if not segments:
        return None
    current = record
    for segment in segments:
        if isinstance(current, dict):
            if segment not in current:
                return None
            current = current[segment]
        elif isinstance(current, list):
            if not segment.isdigit():
                return None
            index = int(segment)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return current


def assign(record: dict[str, Any], path: str, value: Any) -> None:
    """Записать значение по dot-path, создавая промежуточные dict."""
    segments = split_path(path)
    if not segments:
        return
    current: Any = record
    for segment in segments[:-1]:
        if isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
            continue
        if not isinstance(current, dict):
            return
        child = current.get(segment)
        if not isinstance(child, (dict, list)):
            child = {}
            current[segment] = child
        current = child
    last = segments[-1]
    if isinstance(current, dict):
        current[last] = value
    elif isinstance(current, list) and last.isdigit() and int(last) < len(current):
        current[int(last)] = value


def remove(record: dict[str, Any], path: str) -> None:
    """Удалить ключ по dot-path, если он есть."""
    segments = split_path(path)
    if not segments:
        return
    parent = resolve(record, ".".join(segments[:-1])) if len(segments) > 1 else record
    if isinstance(parent, dict):
        parent.pop(segments[-1], None)


def flatten_keys(record: dict[str, Any], prefix: str = "") -> list[str]:
    """Все листовые пути записи.

    Списки выводятся как 'field[]'; если первый элемент является объектом,
    его ключи раскрываются на один уровень как 'field[0].x'.
    """
    keys: list[str] = []
    for key, value in record.items():
        full_key = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, list):
            keys.append(f"{full_key}[]")
            if value and isinstance(value[0], dict):
                keys.extend(flatten_keys(value[0], f"{full_key}[0]"))
        elif isinstance(value, dict):
            keys.extend(flatten_keys(value, full_key))
        else:
            keys.append(full_key)
    return keys
