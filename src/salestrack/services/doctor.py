from __future__ import annotations

import platform
import sys

from salestrack.config import Settings
from salestrack.core.db import connect_db
from salestrack.core.db.migrations import MIGRATIONS_DIR, changed_migrations, pending_migrations


def _check(name: str, ok: bool, detail: str) -> dict[str, str]:
    return {"check": name, "status": "ok" if ok else "warn", "detail": detail}


def run_doctor_checks(settings: Settings) -> list[dict[str, str]]:
    checks: list[dict[str, str]] = []

    checks.append(_check("python_version", sys.version_info >= (3, 11), platform.python_version()))
    checks.append(_check("db_parent", settings.db_path.parent.exists(), str(settings.db_path.parent)))

    if settings.db_path.exists():
        try:
            connection = connect_db(settings.db_path)
            try:
                pending = pending_migrations(connection, MIGRATIONS_DIR)
                changed = changed_migrations(connection, MIGRATIONS_DIR)
            finally:
                connection.close()
            problems = []
            if pending:
                problems.append(f"не применены: {', '.join(p.name for p in pending)}")
            if changed:
                problems.append(f"изменены после применения: {', '.join(changed)}")
            checks.append(_check("db_migrations", not problems, "; ".join(problems) or "актуальна"))
        except Exception as exc:  # noqa: BLE001
            checks.append({"check": "db_migrations", "status": "error", "detail": str(exc)})
    else:
        checks.append(_check("db_migrations", False, "база не создана, выполните init"))

    checks.append(
        _check(
            "telegram_bot_token",
            bool(settings.telegram_bot_token),
            "задан" if settings.telegram_bot_token else "TELEGRAM_BOT_TOKEN не задан",
        )
    )
    checks.append(
        _check(
            "telegram_webhook_secret",
            bool(settings.telegram_webhook_secret),
            "задан" if settings.telegram_webhook_secret else "вебхук принимает запросы без секрета",
        )
    )
    checks.append(
        _check(
            "track17_api_key",
            bool(settings.tracking.api_key),
            (
                f"limit={settings.tracking.sync_limit}, first={settings.tracking.first_check_days}d, "
                f"recheck={settings.tracking.recheck_days}d"
            )
            if settings.tracking.api_key
            else "TRACK17_API_KEY не задан, синхронизация треков отключена",
        )
    )
    if settings.email_enabled:
        email_ready = bool(settings.resend_api_key and settings.resend_from)
        checks.append(
            _check("email_channel", email_ready, "настроен" if email_ready else "нет RESEND_API_KEY/RESEND_FROM")
        )
    else:
        checks.append({"check": "email_channel", "status": "ok", "detail": "отключен"})

    if not (settings.cron_secret or settings.manual_secret):
        checks.append(
            {"check": "trigger_secrets", "status": "warn", "detail": "CRON_SECRET и NOTIFY_MANUAL_SECRET не заданы"}
        )

    return checks
