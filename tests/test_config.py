from __future__ import annotations

from pathlib import Path

from salestrack.config import Settings, TrackingConfig, parse_days, parse_limit


def test_parse_limit_falls_back_and_caps() -> None:
    assert parse_limit(None) == 20
    assert parse_limit("abc") == 20
    assert parse_limit("0") == 20
    assert parse_limit("-3") == 20
    assert parse_limit("inf") == 20
    assert parse_limit("7.9") == 7
    assert parse_limit("500") == 200


def test_parse_days_rejects_negative_and_non_finite() -> None:
    assert parse_days("-1", 2) == 2
    assert parse_days("nan", 4) == 4
    assert parse_days("soon", 4) == 4
    assert parse_days("0", 2) == 0
    assert parse_days("10", 2) == 10


def test_tracking_config_reads_env(monkeypatch) -> None:  # noqa: ANN001
    monkeypatch.setenv("TRACK17_API_KEY", "  key-1  ")
    monkeypatch.setenv("TRACK17_BASE_URL", "https://example.test/track/")
    monkeypatch.setenv("TRACK17_SYNC_LIMIT", "1000")
    monkeypatch.setenv("TRACK17_FIRST_CHECK_DAYS", "-5")
    monkeypatch.setenv("TRACK17_RECHECK_DAYS", "6")

    config = TrackingConfig.from_env()

    assert config.api_key == "key-1"
    assert config.base_url == "https://example.test/track"
    assert config.sync_limit == 200
    assert config.first_check_days == 2
    assert config.recheck_days == 6


def test_settings_load_uses_home_and_defaults(monkeypatch, tmp_path: Path) -> None:  # noqa: ANN001
    for name in [
        "SALESTRACK_DATA_DIR",
        "SALESTRACK_DB_PATH",
        "SALESTRACK_LOG_DIR",
        "SALESTRACK_EXPORT_DIR",
        "SALESTRACK_EMAIL_ENABLED",
        "SALESTRACK_CNY_RATE",
        "SALESTRACK_SALE_FEE",
        "TRACK17_API_KEY",
    ]:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SALESTRACK_HOME", str(tmp_path))

    settings = Settings.load(base_dir=tmp_path)
    settings.ensure_directories()

    assert settings.db_path == (tmp_path / "data" / "salestrack.sqlite3").resolve()
    assert settings.logs_dir.exists()
    assert settings.email_enabled is False
    assert settings.cny_rate == 80.0
    assert settings.sale_fee == 0.05
    assert settings.tracking.api_key is None


def test_settings_email_flag(monkeypatch, tmp_path: Path) -> None:  # noqa: ANN001
    monkeypatch.setenv("SALESTRACK_HOME", str(tmp_path))
    monkeypatch.setenv("SALESTRACK_EMAIL_ENABLED", "true")

    settings = Settings.load(base_dir=tmp_path)

    assert settings.email_enabled is True
