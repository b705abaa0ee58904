"""Loguru sink для записи логов импорта в Supabase (import_logs)."""
import json

from supabase import Client

from src.database import sanitize_error

# loguru level → уровень в import_logs
LEVEL_MAP = {
    "TRACE": "trace",
    "DEBUG": "debug",
    "INFO": "info",
    "SUCCESS": "info",
    "WARNING": "warning",
    "ERROR": "error",
    "CRITICAL": "error",
}


def create_supabase_sink(db: Client):
    """Фабрика: вернуть sink-функцию, привязанную к db-клиенту."""

    def sink(message) -> None:
        record = message.record
        extra = record["extra"]
        context = extra.get("context")
        try:
            db.table("import_logs").insert({
                "import_id": extra.get("import_id", "system"),
                "log_level": LEVEL_MAP.get(record["level"].name, "info"),
                "component": extra.get("component", "system"),
                "message": sanitize_error(str(record["message"])),
                "context": json.loads(json.dumps(context, default=str)) if context else None,
                "created_at": record["time"].isoformat(),
            }).execute()
        except Exception:
            pass  # Ошибка логирования не должна ронять приложение

    return sink
