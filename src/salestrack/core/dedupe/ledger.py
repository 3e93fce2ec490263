from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from salestrack.core.db import SalestrackRepository


class NotificationKind(str, Enum):
    PENDING_3H = "PENDING_3H"
    IN_TRANSIT_10D = "IN_TRANSIT_10D"


class NotificationLedger:
    def __init__(self, repository: SalestrackRepository):
        self.repository = repository

    def was_sent(self, kind: NotificationKind, window_key: str, sale_id: str, recipient_id: str) -> bool:
        return self.repository.notification_exists(kind.value, window_key, sale_id, recipient_id)

    def record_sent(
        self,
        kind: NotificationKind,
        window_key: str,
        sale_id: str,
        recipient_id: str,
        sent_at: datetime | None = None,
    ) -> bool:
        """Повторная запись того же ключа ничего не делает и возвращает False."""
        return self.repository.insert_notification_log(
            kind.value,
            window_key,
            sale_id,
            recipient_id,
            sent_at or datetime.now(timezone.utc),
        )
