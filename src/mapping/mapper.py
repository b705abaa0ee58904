"""Маппинг сырой записи API в NormalizedRecord."""
from typing import Any

from src.exceptions import MissingUniqueIdError
from src.mapping.defaults import STRUCTURED_BLOCKS
from src.mapping.paths import resolve
from src.mapping.sanitize import sanitize_text, sanitize_value
from src.mapping.transforms import TransformStep, apply_transforms
from src.models.fetch import NormalizedRecord
from src.models.task import ImportTask


def resolve_unique_id(item: dict[str, Any], unique_id_field: str) -> str:
    """Внешний идентификатор записи; пустой → MissingUniqueIdError."""
    value = resolve(item, unique_id_field)
    if value is None or isinstance(value, (dict, list, bool)):
        raise MissingUniqueIdError(f"missing unique id at '{unique_id_field}'")
    unique_id = str(value).strip()
    if not unique_id:
        raise MissingUniqueIdError(f"missing unique id at '{unique_id_field}'")
    return unique_id


def resolve_classification(item: dict[str, Any]) -> dict[str, str]:
    """Уровень, направление и работодатель для таксономий хранилища."""
    classification: dict[str, str] = {}

    level = item.get("apprenticeshipLevel")
    if not level:
        course_level = resolve(item, "course.level")
        if course_level not in (None, ""):
            level = f"Level {course_level}"
    if level:
        classification["level"] = sanitize_text(str(level))

    route = resolve(item, "course.route")
    if route:
        classification["route"] = sanitize_text(str(route))

    employer = item.get("employerName")
    if employer and not item.get("isEmployerAnonymous"):
        classification["employer"] = sanitize_text(str(employer))

    return classification


def map_fields(item: dict[str, Any], field_mappings: dict[str, str]) -> dict[str, Any]:
    """Применить маппинг target → dot-path с санитизацией значений."""
    fields: dict[str, Any] = {}
    for target, source in field_mappings.items():
        value = resolve(item, source)
        if value is None:
            continue
        fields[target] = sanitize_value(target, value)
    return fields


def build_record(
    item: dict[str, Any],
    task: ImportTask,
    steps: list[TransformStep] | None = None,
) -> NormalizedRecord:
    """Трансформации → unique id → маппинг → классификация."""
    source = apply_transforms(item, steps) if steps else item
    unique_id = resolve_unique_id(source, task.unique_id_field)

    fields = map_fields(source, task.field_mappings)
    for block in STRUCTURED_BLOCKS:
        value = source.get(block)
        if isinstance(value, (dict, list)) and value:
            fields.setdefault(f"{block}_data", sanitize_value(block, value))

    return NormalizedRecord(
        unique_id=unique_id,
        fields=fields,
        classification=resolve_classification(source),
        raw=source,
    )
