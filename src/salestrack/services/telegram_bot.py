from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from salestrack.core.db import SalestrackRepository
from salestrack.sources import TelegramSender

HELP_TEXT = "\n".join(
    [
        "Команды бота:",
        "/start [логин] - подключить уведомления",
        "/status - проверить подключение и открытые карточки",
        "/stop - пауза telegram-уведомлений",
        "/resume - включить telegram-уведомления",
    ]
)


def parse_command(text: str) -> tuple[str, str]:
    parts = text.strip().split()
    command = parts[0].lower() if parts else ""
    # /start@MyBot в групповых чатах
    command = command.split("@", 1)[0]
    arg = parts[1].strip().lower() if len(parts) > 1 else ""
    return command, arg


class TelegramBotService:
    def __init__(
        self,
        repository: SalestrackRepository,
        telegram: TelegramSender,
        logger: logging.Logger | logging.LoggerAdapter,
    ):
        self.repository = repository
        self.telegram = telegram
        self.logger = logger

    def _reply(self, chat_id: str, text: str, command: str) -> dict[str, Any]:
        outcome = self.telegram.send(chat_id, text)
        if not outcome.ok:
            self.logger.warning("Bot reply to %s failed: %s", chat_id, outcome.reason)
        return {"ok": True, "command": command, "chat_id": chat_id, "reply": text}

    def _handle_start(self, chat_id: str, arg: str, username: str | None, first_name: str) -> str:
        existing = self.repository.get_recipient_by_chat_id(chat_id)
        existing_user_id = existing["user_id"] if existing else None
        linked_user = self.repository.find_user_by_login(arg) if arg else None

        if existing_user_id and linked_user and linked_user["id"] != existing_user_id:
            self.logger.warning("Refused to relink chat %s to another user", chat_id)
            return "Этот Telegram-чат уже привязан к другому пользователю и не может быть перепривязан."

        user_id = linked_user["id"] if linked_user else existing_user_id
        self.repository.upsert_telegram_recipient(chat_id, user_id=user_id, username=username)

        if linked_user:
            link_message = f"Аккаунт привязан: {linked_user['username'] or linked_user['email'] or 'user'}"
        else:
            link_message = "Для привязки к аккаунту отправьте: /start ваш_логин"
        return "\n".join(
            [
                f"Привет, {first_name}!",
                "Вы подключили уведомления Salestrack.",
                link_message,
                "Команды: /help, /status, /stop, /resume",
            ]
        )

    def handle_update(self, update: Mapping[str, Any]) -> dict[str, Any]:
        message = update.get("message") if isinstance(update, Mapping) else None
        if not isinstance(message, Mapping):
            return {"ok": True, "command": None}

        chat = message.get("chat") or {}
        sender = message.get("from") or {}
        chat_id_raw = chat.get("id") if isinstance(chat, Mapping) else None
        if chat_id_raw is None or str(chat_id_raw) == "":
            return {"ok": True, "command": None}

        chat_id = str(chat_id_raw)
        username = sender.get("username") if isinstance(sender, Mapping) else None
        first_name = (sender.get("first_name") if isinstance(sender, Mapping) else None) or "Пользователь"
        command, arg = parse_command(str(message.get("text") or ""))
        self.logger.info("Bot command %r from chat %s", command, chat_id)

        if command in {"/start", "start"}:
            return self._reply(chat_id, self._handle_start(chat_id, arg, username, first_name), command)

        existing = self.repository.get_recipient_by_chat_id(chat_id)
        if existing is None:
            return self._reply(chat_id, "Сначала выполните /start", command)

        if command == "/help":
            return self._reply(chat_id, HELP_TEXT, command)

        if command == "/stop":
            self.repository.set_telegram_enabled(chat_id, False)
            return self._reply(chat_id, "Telegram-уведомления приостановлены. Для возврата: /resume", command)

        if command == "/resume":
            self.repository.set_telegram_enabled(chat_id, True, activate=True)
            return self._reply(chat_id, "Telegram-уведомления снова включены.", command)

        if command == "/status":
            user_id = existing["user_id"]
            open_count = self.repository.count_sales(status="TODO", user_id=user_id) if user_id else None
            text = "\n".join(
                [
                    f"Статус подключения: {'включено' if existing['telegram_enabled'] else 'выключено'}",
                    f"Открытых карточек (Доделать): {open_count if open_count is not None else '-'}",
                ]
            )
            return self._reply(chat_id, text, command)

        return self._reply(chat_id, "Команда не распознана. Используйте /help", command)
