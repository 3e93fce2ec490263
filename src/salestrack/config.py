from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_TRACK17_BASE_URL = "https://api.17track.net/track/v2.4"
DEFAULT_SYNC_LIMIT = 20
MAX_SYNC_LIMIT = 200
DEFAULT_FIRST_CHECK_DAYS = 2
DEFAULT_RECHECK_DAYS = 4


def _env_str(name: str) -> str | None:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _env_flag(name: str, default: bool = False) -> bool:
    value = _env_str(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, fallback: float) -> float:
    try:
        value = float(os.getenv(name, str(fallback)))
    except ValueError:
        return fallback
    return value if value > 0 else fallback


def parse_limit(raw: str | None, fallback: int = DEFAULT_SYNC_LIMIT, cap: int = MAX_SYNC_LIMIT) -> int:
    try:
        value = float(raw) if raw is not None else float(fallback)
    except ValueError:
        return fallback
    if not math.isfinite(value) or value <= 0:
        return fallback
    return min(cap, int(value))


def parse_days(raw: str | None, fallback: int) -> int:
    try:
        value = float(raw) if raw is not None else float(fallback)
    except ValueError:
        return fallback
    if not math.isfinite(value) or value < 0:
        return fallback
    return int(value)


@dataclass(slots=True)
class TrackingConfig:
    api_key: str | None = None
    base_url: str = DEFAULT_TRACK17_BASE_URL
    sync_limit: int = DEFAULT_SYNC_LIMIT
    first_check_days: int = DEFAULT_FIRST_CHECK_DAYS
    recheck_days: int = DEFAULT_RECHECK_DAYS

    @classmethod
    def from_env(cls) -> TrackingConfig:
        return cls(
            api_key=_env_str("TRACK17_API_KEY"),
            base_url=(_env_str("TRACK17_BASE_URL") or DEFAULT_TRACK17_BASE_URL).rstrip("/"),
            sync_limit=parse_limit(os.getenv("TRACK17_SYNC_LIMIT")),
            first_check_days=parse_days(os.getenv("TRACK17_FIRST_CHECK_DAYS"), DEFAULT_FIRST_CHECK_DAYS),
            recheck_days=parse_days(os.getenv("TRACK17_RECHECK_DAYS"), DEFAULT_RECHECK_DAYS),
        )


@dataclass(slots=True)
class Settings:
    root_dir: Path
    data_dir: Path
    db_path: Path
    logs_dir: Path
    exports_dir: Path
    telegram_bot_token: str | None = None
    telegram_webhook_secret: str | None = None
    resend_api_key: str | None = None
    resend_from: str | None = None
    email_enabled: bool = False
    manual_secret: str | None = None
    cron_secret: str | None = None
    http_timeout_sec: float = 15.0
    cny_rate: float = 80.0
    sale_fee: float = 0.05
    tracking: TrackingConfig = field(default_factory=TrackingConfig)

    @classmethod
    def load(cls, base_dir: Path | None = None) -> Settings:
        load_dotenv(override=False)

        root_env = os.getenv("SALESTRACK_HOME")
        root_dir = Path(root_env).expanduser().resolve() if root_env else (base_dir or Path.cwd()).resolve()

        data_dir = Path(os.getenv("SALESTRACK_DATA_DIR", root_dir / "data")).expanduser().resolve()
        db_path = Path(os.getenv("SALESTRACK_DB_PATH", data_dir / "salestrack.sqlite3")).expanduser().resolve()
        logs_dir = Path(os.getenv("SALESTRACK_LOG_DIR", root_dir / "logs")).expanduser().resolve()
        exports_dir = Path(os.getenv("SALESTRACK_EXPORT_DIR", root_dir / "exports")).expanduser().resolve()

        return cls(
            root_dir=root_dir,
            data_dir=data_dir,
            db_path=db_path,
            logs_dir=logs_dir,
            exports_dir=exports_dir,
            telegram_bot_token=_env_str("TELEGRAM_BOT_TOKEN"),
            telegram_webhook_secret=_env_str("TELEGRAM_WEBHOOK_SECRET"),
            resend_api_key=_env_str("RESEND_API_KEY"),
            resend_from=_env_str("RESEND_FROM"),
            # Email рассылка отключена по умолчанию для всей системы.
            email_enabled=_env_flag("SALESTRACK_EMAIL_ENABLED"),
            manual_secret=_env_str("NOTIFY_MANUAL_SECRET"),
            cron_secret=_env_str("CRON_SECRET"),
            http_timeout_sec=_env_float("SALESTRACK_HTTP_TIMEOUT_SEC", 15.0),
            cny_rate=_env_float("SALESTRACK_CNY_RATE", 80.0),
            # Комиссия площадки, вычитается из маржи.
            sale_fee=_env_float("SALESTRACK_SALE_FEE", 0.05),
            tracking=TrackingConfig.from_env(),
        )

    def ensure_directories(self) -> None:
        for path in [self.root_dir, self.data_dir, self.logs_dir, self.exports_dir]:
            path.mkdir(parents=True, exist_ok=True)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
