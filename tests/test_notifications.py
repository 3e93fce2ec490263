from __future__ import annotations

from datetime import datetime

import pytest

from salestrack.core.dedupe import BUSINESS_TZ
from salestrack.services.notifications import (
    NotificationDispatcher,
    NotificationService,
    WeeklySummary,
    format_money,
)


def _local(*args: int) -> datetime:
    return datetime(*args, tzinfo=BUSINESS_TZ)


@pytest.fixture()
def service(settings, repository, test_logger, fake_telegram):  # noqa: ANN001
    return NotificationService(
        settings=settings,
        repository=repository,
        logger=test_logger,
        dispatcher=NotificationDispatcher(telegram=fake_telegram),
    )


def _ledger_rows(repository, kind: str) -> list:  # noqa: ANN001
    return repository.connection.execute(
        "SELECT * FROM notification_logs WHERE kind = ? ORDER BY sale_id", (kind,)
    ).fetchall()


def test_pending_reminder_sent_once_per_block(service, repository, make_sale, fake_telegram):  # noqa: ANN001
    repository.create_recipient(telegram_chat_id="100", telegram_enabled=True)
    make_sale(_local(2025, 1, 15, 9, 0))

    first = service.run(now=_local(2025, 1, 15, 10, 0))
    second = service.run(now=_local(2025, 1, 15, 11, 30))
    third = service.run(now=_local(2025, 1, 15, 12, 5))

    assert (first.sent, first.skipped) == (1, 0)
    assert (second.sent, second.skipped) == (0, 1)
    assert (third.sent, third.skipped) == (1, 0)
    assert len(fake_telegram.sent) == 2
    assert {row["window_key"] for row in _ledger_rows(repository, "PENDING_3H")} == {
        "2025-01-15-h3",
        "2025-01-15-h4",
    }


def test_closed_sales_are_not_reminded(service, repository, make_sale, fake_telegram):  # noqa: ANN001
    repository.create_recipient(telegram_chat_id="100", telegram_enabled=True)
    make_sale(_local(2025, 1, 15, 9, 0), status="DONE")
    make_sale(_local(2025, 1, 15, 9, 0), status="WAITING")

    result = service.run(now=_local(2025, 1, 15, 10, 0))

    assert result.sales == 1
    assert result.sent == 1
    assert "Ожидание" in fake_telegram.sent[0][1]


def test_in_transit_reminder_window_bounds(service, repository, make_sale):  # noqa: ANN001
    repository.create_recipient(telegram_chat_id="100", telegram_enabled=True)
    nine_days = make_sale(_local(2025, 1, 6, 12, 0))
    ten_days = make_sale(_local(2025, 1, 5, 12, 0))
    thirteen_days = make_sale(_local(2025, 1, 2, 12, 0))
    fourteen_days = make_sale(_local(2025, 1, 1, 12, 0))

    result = service.run(now=_local(2025, 1, 15, 10, 0))

    in_transit = {row["sale_id"] for row in _ledger_rows(repository, "IN_TRANSIT_10D")}
    assert in_transit == {ten_days, thirteen_days}
    assert nine_days not in in_transit
    assert fourteen_days not in in_transit
    assert result.sent == 6
    assert {row["window_key"] for row in _ledger_rows(repository, "IN_TRANSIT_10D")} == {"2025-01-15"}


def test_in_transit_reminder_once_per_day(service, repository, make_sale):  # noqa: ANN001
    repository.create_recipient(telegram_chat_id="100", telegram_enabled=True)
    make_sale(_local(2025, 1, 5, 12, 0))

    service.run(now=_local(2025, 1, 15, 10, 0))
    service.run(now=_local(2025, 1, 15, 13, 0))
    service.run(now=_local(2025, 1, 16, 10, 0))

    keys = [row["window_key"] for row in _ledger_rows(repository, "IN_TRANSIT_10D")]
    assert sorted(keys) == ["2025-01-15", "2025-01-16"]


def test_failed_delivery_is_not_recorded(service, repository, make_sale, fake_telegram):  # noqa: ANN001
    repository.create_recipient(telegram_chat_id="100", telegram_enabled=True)
    make_sale(_local(2025, 1, 15, 9, 0))
    fake_telegram.fail_chats.add("100")

    failed = service.run(now=_local(2025, 1, 15, 10, 0))

    assert (failed.sent, failed.skipped) == (0, 1)
    assert failed.failures
    assert _ledger_rows(repository, "PENDING_3H") == []

    fake_telegram.fail_chats.clear()
    retried = service.run(now=_local(2025, 1, 15, 10, 30))

    assert retried.sent == 1
    assert len(_ledger_rows(repository, "PENDING_3H")) == 1


def test_no_recipients_short_circuits(service, make_sale, fake_telegram):  # noqa: ANN001
    make_sale(_local(2025, 1, 15, 9, 0))

    result = service.run(now=_local(2025, 1, 15, 10, 0))

    assert result.reason == "no recipients"
    assert result.sent == 0
    assert fake_telegram.sent == []


def test_paused_recipient_receives_nothing(service, repository, make_sale, fake_telegram):  # noqa: ANN001
    repository.create_recipient(telegram_chat_id="100", telegram_enabled=True)
    repository.create_recipient(telegram_chat_id="200", telegram_enabled=False)
    make_sale(_local(2025, 1, 15, 9, 0))

    result = service.run(now=_local(2025, 1, 15, 10, 0))

    assert result.recipients == 1
    assert [chat_id for chat_id, _ in fake_telegram.sent] == ["100"]


def test_forced_weekly_summary_is_not_deduplicated(service, repository, make_sale, fake_telegram):  # noqa: ANN001
    repository.create_recipient(telegram_chat_id="100", telegram_enabled=True)
    make_sale(_local(2025, 1, 14, 12, 0), margin=1000)
    make_sale(_local(2025, 1, 14, 15, 0), margin=500, status="DONE")
    make_sale(_local(2025, 1, 12, 12, 0), margin=300)

    first = service.run(now=_local(2025, 1, 15, 10, 0), force_weekly=True)
    second = service.run(now=_local(2025, 1, 15, 10, 0), force_weekly=True)

    weekly_messages = [text for _, text in fake_telegram.sent if text.startswith("Итоги недели")]
    assert len(weekly_messages) == 2
    assert first.weekly.key == second.weekly.key == "2025-W03"
    assert first.weekly.total_margin == second.weekly.total_margin == 1500
    assert first.weekly.sales_count == 2
    assert first.weekly.shares == (600.0, 900.0)


def test_forced_weekly_on_early_monday_sums_closed_week(service, repository, make_sale, fake_telegram):  # noqa: ANN001
    repository.create_recipient(telegram_chat_id="100", telegram_enabled=True)
    make_sale(_local(2025, 1, 15, 12, 0), margin=1000)

    result = service.run(now=_local(2025, 1, 20, 3, 0), force_weekly=True)

    assert result.weekly.key == "2025-W03"
    assert result.weekly.total_margin == 1000


def test_weekly_summary_only_at_send_moment(service, repository, fake_telegram):  # noqa: ANN001
    repository.create_recipient(telegram_chat_id="100", telegram_enabled=True)

    before = service.run(now=_local(2025, 1, 19, 21, 59))
    at_moment = service.run(now=_local(2025, 1, 19, 22, 15))

    assert before.weekly is None
    assert at_moment.weekly is not None
    assert at_moment.sent == 1
    assert len(fake_telegram.sent) == 1


def test_weekly_summary_text() -> None:
    summary = WeeklySummary(
        key="2025-W03",
        start=_local(2025, 1, 13, 6, 0),
        end=_local(2025, 1, 19, 22, 0),
        total_margin=125000,
        sales_count=3,
        shares=(50000.0, 75000.0),
    )

    text = summary.as_text()

    assert "Итоги недели 2025-W03" in text
    assert "Период: 13.01 06:00 - 19.01 22:00" in text
    assert "Маржа: 125 000 ₸" in text
    assert "Доля 40%: 50 000 ₸" in text
    assert "Доля 60%: 75 000 ₸" in text
    assert format_money(999.6) == "1 000 ₸"


def test_run_writes_job_run(service, repository, make_sale):  # noqa: ANN001
    repository.create_recipient(telegram_chat_id="100", telegram_enabled=True)
    make_sale(_local(2025, 1, 15, 9, 0))

    service.run(now=_local(2025, 1, 15, 10, 0), correlation_id="notify-1")

    row = repository.connection.execute("SELECT * FROM job_runs WHERE correlation_id = 'notify-1'").fetchone()
    assert row["job"] == "notifications"
    assert row["status"] == "success"


def test_run_test_bypasses_ledger(service, repository, fake_telegram):  # noqa: ANN001
    repository.create_recipient(telegram_chat_id="100", telegram_enabled=True)

    first = service.run_test()
    second = service.run_test()

    assert first.sent == second.sent == 1
    assert len(fake_telegram.sent) == 2
    assert repository.connection.execute("SELECT COUNT(*) AS cnt FROM notification_logs").fetchone()["cnt"] == 0


def test_email_channel_requires_global_flag(settings, repository, test_logger, make_sale, fake_telegram, fake_email):  # noqa: ANN001
    repository.create_recipient(email="boss@example.com", email_enabled=True)
    make_sale(_local(2025, 1, 15, 9, 0))

    disabled = NotificationService(
        settings=settings,
        repository=repository,
        logger=test_logger,
        dispatcher=NotificationDispatcher(telegram=fake_telegram, email=fake_email, email_enabled=False),
    ).run(now=_local(2025, 1, 15, 10, 0))

    assert disabled.reason == "no recipients"
    assert fake_email.sent == []

    enabled = NotificationService(
        settings=settings,
        repository=repository,
        logger=test_logger,
        dispatcher=NotificationDispatcher(telegram=fake_telegram, email=fake_email, email_enabled=True),
    ).run(now=_local(2025, 1, 15, 10, 0))

    assert enabled.sent == 1
    assert fake_email.sent[0][0] == "boss@example.com"
    assert fake_email.sent[0][1].startswith("Напоминание")
