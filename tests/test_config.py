"""Тесты конфигурации импортёра."""
import pytest
from pydantic import ValidationError

from src.config import parse_time_of_day


class TestParseTimeOfDay:
    """Тесты парсера времени HH:MM."""

    def test_hh_mm(self) -> None:
        assert parse_time_of_day("03:00") == (3, 0)

    def test_with_seconds(self) -> None:
        assert parse_time_of_day("23:59:00") == (23, 59)

    def test_whitespace(self) -> None:
        assert parse_time_of_day(" 7:05 ") == (7, 5)

    @pytest.mark.parametrize("value", ["", "3", "24:00", "12:60", "ab:cd"])
    def test_invalid(self, value) -> None:
        with pytest.raises(ValueError):
            parse_time_of_day(value)


class TestSettings:
    """Тесты парсинга Settings из env."""

    @pytest.fixture(autouse=True)
    def _required_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SUPABASE_URL", "https://test.supabase.co")
        monkeypatch.setenv("SUPABASE_SERVICE_KEY", "test-key")
        monkeypatch.setenv("ADMIN_API_KEY", "admin-key")
        monkeypatch.delenv("PORT", raising=False)
        monkeypatch.delenv("ADMIN_PORT", raising=False)

    def test_minimal_settings(self) -> None:
        """Минимальный набор обязательных переменных."""
        from src.config import Settings

        s = Settings(_env_file=None)
        assert s.supabase_url == "https://test.supabase.co"
        assert s.admin_api_key.get_secret_value() == "admin-key"
        assert s.admin_port == 8001
        assert s.api_endpoint == "/vacancy"
        assert s.batch_size == 100
        assert s.sync_frequency == "daily"
        assert s.delete_expired is True
        assert s.expire_after_days == 7
        assert s.retry_max == 3
        assert s.cache_ttl_seconds == 300

    def test_missing_required(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("ADMIN_API_KEY")
        from src.config import Settings

        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_port_alias(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """PORT (Railway) работает как ADMIN_PORT."""
        monkeypatch.setenv("PORT", "9000")
        from src.config import Settings

        assert Settings(_env_file=None).admin_port == 9000

    def test_twice_daily_normalized(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SYNC_FREQUENCY", "twice-daily")
        from src.config import Settings

        assert Settings(_env_file=None).sync_frequency == "twicedaily"

    def test_unknown_frequency(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SYNC_FREQUENCY", "monthly")
        from src.config import Settings

        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_invalid_sync_time(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SYNC_TIME", "25:00")
        from src.config import Settings

        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_batch_size_must_be_positive(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BATCH_SIZE", "0")
        from src.config import Settings

        with pytest.raises(ValidationError):
            Settings(_env_file=None)

    def test_persist_log_level(self, monkeypatch: pytest.MonkeyPatch) -> None:
        from src.config import Settings

        assert Settings(_env_file=None).persist_log_level == "INFO"
        monkeypatch.setenv("DEBUG_MODE", "true")
        assert Settings(_env_file=None).persist_log_level == "TRACE"
