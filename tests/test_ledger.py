from __future__ import annotations

from datetime import datetime, timezone

from salestrack.core.dedupe import NotificationKind, NotificationLedger


def test_ledger_records_each_key_once(repository, make_sale) -> None:  # noqa: ANN001
    sale_id = make_sale(datetime(2025, 1, 15, tzinfo=timezone.utc))
    recipient_id = repository.create_recipient(telegram_chat_id="100", telegram_enabled=True)
    ledger = NotificationLedger(repository)

    assert not ledger.was_sent(NotificationKind.PENDING_3H, "2025-01-15-h3", sale_id, recipient_id)
    assert ledger.record_sent(NotificationKind.PENDING_3H, "2025-01-15-h3", sale_id, recipient_id) is True
    assert ledger.record_sent(NotificationKind.PENDING_3H, "2025-01-15-h3", sale_id, recipient_id) is False
    assert ledger.was_sent(NotificationKind.PENDING_3H, "2025-01-15-h3", sale_id, recipient_id)
    assert not ledger.was_sent(NotificationKind.IN_TRANSIT_10D, "2025-01-15-h3", sale_id, recipient_id)

    count = repository.connection.execute("SELECT COUNT(*) AS cnt FROM notification_logs").fetchone()["cnt"]
    assert count == 1
