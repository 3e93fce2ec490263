from __future__ import annotations

import requests

from .models import DeliveryResult

TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramSender:
    channel = "telegram"

    def __init__(
        self,
        bot_token: str | None,
        timeout_sec: float = 15.0,
        session: requests.Session | None = None,
        api_url: str = TELEGRAM_API_URL,
    ):
        self.bot_token = bot_token
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()
        self.api_url = api_url.rstrip("/")

    @property
    def configured(self) -> bool:
        return bool(self.bot_token)

    def send(self, chat_id: str, text: str) -> DeliveryResult:
        if not self.bot_token:
            return DeliveryResult.failure(self.channel, "TELEGRAM_BOT_TOKEN missing")

        try:
            response = self.session.post(
                f"{self.api_url}/bot{self.bot_token}/sendMessage",
                json={"chat_id": chat_id, "text": text},
                timeout=self.timeout_sec,
            )
        except requests.RequestException as exc:
            return DeliveryResult.failure(self.channel, f"telegram request failed: {exc.__class__.__name__}")

        if not response.ok:
            return DeliveryResult.failure(self.channel, f"telegram {response.status_code}: {response.text[:500]}")
        return DeliveryResult.success(self.channel)
