from __future__ import annotations

import requests

from .models import DeliveryResult

RESEND_API_URL = "https://api.resend.com/emails"


class EmailSender:
    """Отправка писем через HTTP API Resend."""

    channel = "email"

    def __init__(
        self,
        api_key: str | None,
        from_address: str | None,
        timeout_sec: float = 15.0,
        session: requests.Session | None = None,
        api_url: str = RESEND_API_URL,
    ):
        self.api_key = api_key
        self.from_address = from_address
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()
        self.api_url = api_url

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.from_address)

    def send(self, email: str, subject: str, text: str) -> DeliveryResult:
        if not self.configured:
            return DeliveryResult.failure(self.channel, "RESEND_API_KEY/RESEND_FROM missing")

        try:
            response = self.session.post(
                self.api_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={"from": self.from_address, "to": [email], "subject": subject, "text": text},
                timeout=self.timeout_sec,
            )
        except requests.RequestException as exc:
            return DeliveryResult.failure(self.channel, f"email request failed: {exc}")

        if not response.ok:
            return DeliveryResult.failure(self.channel, f"email {response.status_code}: {response.text[:500]}")
        return DeliveryResult.success(self.channel)
