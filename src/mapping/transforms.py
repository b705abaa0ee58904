"""Декларативные трансформации записей перед маппингом.

Программа: список шагов через ';' или перевод строки:

    trim(title); default(wageUnit, "Year")
    date(closingDate)
    copy(addresses[0].postcode, postcode)

Аргументы разбираются как CSV, поэтому запятые внутри кавычек допустимы.
Набор функций фиксирован, произвольный код не выполняется.
"""
import copy as _copy
import csv
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from src.exceptions import TransformError
from src.mapping.paths import assign, remove, resolve

_STEP_RE = re.compile(r"^([a-z_]+)\s*\((.*)\)$", re.DOTALL)
_QUOTED_RE = re.compile(r'"((?:[^"]|"")*)"')


def _map_string(record: dict, path: str, func: Callable[[str], str]) -> None:
    value = resolve(record, path)
    if isinstance(value, str):
        assign(record, path, func(value))


def _op_trim(record: dict, path: str) -> None:
    _map_string(record, path, str.strip)


def _op_lower(record: dict, path: str) -> None:
    _map_string(record, path, str.lower)


def _op_upper(record: dict, path: str) -> None:
    _map_string(record, path, str.upper)


def _op_default(record: dict, path: str, value: str) -> None:
    if resolve(record, path) in (None, ""):
        assign(record, path, value)


def _op_copy(record: dict, source: str, target: str) -> None:
    value = resolve(record, source)
    if value is not None:
        assign(record, target, _copy.deepcopy(value))


def _op_prefix(record: dict, path: str, text: str) -> None:
    value = resolve(record, path)
    if isinstance(value, str) and value and not value.startswith(text):
        assign(record, path, text + value)


def _op_replace(record: dict, path: str, old: str, new: str) -> None:
    _map_string(record, path, lambda v: v.replace(old, new))


def _op_join(record: dict, path: str, separator: str) -> None:
    value = resolve(record, path)
    if isinstance(value, list):
        assign(record, path, separator.join(str(v) for v in value if v is not None))


def _op_date(record: dict, path: str) -> None:
    value = resolve(record, path)
    if value in (None, ""):
        return
    if not isinstance(value, str):
        raise TransformError(f"date({path}): expected string, got {type(value).__name__}")
    text = value.strip()
    try:
        parsed: date = datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        raise TransformError(f"date({path}): cannot parse {text!r}") from None
    assign(record, path, parsed.isoformat())


def _op_drop(record: dict, path: str) -> None:
    remove(record, path)


# Имя → (функция, число аргументов)
OPERATIONS: dict[str, tuple[Callable[..., None], int]] = {
    "trim": (_op_trim, 1),
    "lower": (_op_lower, 1),
    "upper": (_op_upper, 1),
    "default": (_op_default, 2),
    "copy": (_op_copy, 2),
    "prefix": (_op_prefix, 2),
    "replace": (_op_replace, 3),
    "join": (_op_join, 2),
    "date": (_op_date, 1),
    "drop": (_op_drop, 1),
}


@dataclass(frozen=True)
class TransformStep:
    """Один скомпилированный шаг."""

    name: str
    args: tuple[str, ...]

    def apply(self, record: dict[str, Any]) -> None:
        func, _ = OPERATIONS[self.name]
        func(record, *self.args)


def _split_steps(code: str) -> list[str]:
    """Разбить программу на шаги по ';' и '\\n' вне кавычек."""
    steps: list[str] = []
    current: list[str] = []
    quote: str | None = None
    for char in code:
        if quote:
            current.append(char)
            if char == quote:
                quote = None
            continue
        if char == '"':
            quote = char
            current.append(char)
        elif char in ";\n":
            steps.append("".join(current))
            current = []
        else:
            current.append(char)
    if quote:
        raise TransformError("Unterminated quote in transforms")
    steps.append("".join(current))
    return [s.strip() for s in steps if s.strip() and not s.strip().startswith("#")]


def _parse_args(raw: str) -> tuple[str, ...]:
    raw = raw.strip()
    if not raw:
        return ()
    row = next(csv.reader([raw], skipinitialspace=True))
    # Пробелы значимы только внутри кавычек: ', ' → ", "
    quoted = {m.group(1).replace('""', '"') for m in _QUOTED_RE.finditer(raw)}
    return tuple(arg if arg in quoted else arg.strip() for arg in row)


def compile_transforms(code: str) -> list[TransformStep]:
    """Скомпилировать программу. Ошибка синтаксиса/арности → TransformError."""
    steps: list[TransformStep] = []
    for source in _split_steps(code or ""):
        match = _STEP_RE.match(source)
        if not match:
            raise TransformError(f"Invalid transform step: {source!r}")
        name, raw_args = match.group(1), match.group(2)
        if name not in OPERATIONS:
            raise TransformError(f"Unknown transform '{name}'")
        args = _parse_args(raw_args)
        _, arity = OPERATIONS[name]
        if len(args) != arity:
            raise TransformError(f"{name}() takes {arity} argument(s), got {len(args)}")
        if not args[0]:
            raise TransformError(f"{name}(): empty path")
        steps.append(TransformStep(name, args))
    return steps


def apply_transforms(item: dict[str, Any], steps: list[TransformStep]) -> dict[str, Any]:
    """Применить шаги к копии записи. Падение шага → TransformError."""
    record = _copy.deepcopy(item)
    for step in steps:
        try:
            step.apply(record)
        except TransformError:
            raise
        except Exception as e:
            raise TransformError(f"{step.name}({', '.join(step.args)}) failed: {e}") from e
    return record
