from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class DeliveryResult:
    ok: bool
    channel: str
    reason: str | None = None

    @classmethod
    def success(cls, channel: str) -> DeliveryResult:
        return cls(ok=True, channel=channel)

    @classmethod
    def failure(cls, channel: str, reason: str) -> DeliveryResult:
        return cls(ok=False, channel=channel, reason=reason)
