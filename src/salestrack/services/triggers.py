from __future__ import annotations

import hmac
from collections.abc import Mapping
from typing import Any

from salestrack.config import Settings

from .telegram_bot import TelegramBotService


def _same(expected: str | None, provided: str | None) -> bool:
    if not expected or provided is None:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def authorize_trigger(settings: Settings, authorization: str | None = None, secret: str | None = None) -> bool:
    """Запуск по cron (Bearer CRON_SECRET) или вручную (?secret=NOTIFY_MANUAL_SECRET)."""
    has_cron_auth = bool(settings.cron_secret) and _same(f"Bearer {settings.cron_secret}", authorization)
    has_manual_auth = _same(settings.manual_secret, secret)
    return has_cron_auth or has_manual_auth


def authorize_cli_trigger(settings: Settings, authorization: str | None = None, secret: str | None = None) -> bool:
    """Запуск из shell без учетных данных разрешен; переданные учетные данные обязаны совпасть."""
    if authorization is None and secret is None:
        return True
    return authorize_trigger(settings, authorization=authorization, secret=secret)


def authorize_webhook(settings: Settings, secret: str | None) -> bool:
    if not settings.telegram_webhook_secret:
        return True
    return _same(settings.telegram_webhook_secret, secret)


def handle_webhook(
    settings: Settings,
    bot: TelegramBotService,
    update: Any,
    secret: str | None = None,
) -> tuple[int, dict[str, Any]]:
    if not authorize_webhook(settings, secret):
        return 403, {"ok": False, "message": "forbidden"}

    if not isinstance(update, Mapping):
        update = {}
    bot.handle_update(update)
    return 200, {"ok": True}
