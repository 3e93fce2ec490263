from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from salestrack.config import Settings
from salestrack.core.db import SalestrackRepository, from_db_time
from salestrack.core.db.repository import OPEN_STATUSES
from salestrack.core.dedupe import (
    NotificationKind,
    NotificationLedger,
    WeeklyWindow,
    day_key,
    days_between,
    pending_window_key,
    to_business,
    weekly_window,
)
from salestrack.sources import DeliveryResult, EmailSender, TelegramSender

IN_TRANSIT_MIN_DAYS = 10
IN_TRANSIT_MAX_DAYS = 13

# Доли недельной маржи, общие для всех получателей.
WEEKLY_SHARES = (0.4, 0.6)

STATUS_LABELS = {
    "TODO": "Доделать",
    "WAITING": "Ожидание",
    "DONE": "Готово",
}


def format_money(value: float) -> str:
    return f"{round(value):,}".replace(",", " ") + " ₸"


def pending_message(sale: sqlite3.Row) -> str:
    return "\n".join(
        [
            "Напоминание по карточке товара",
            f"Статус: {STATUS_LABELS.get(sale['status'], sale['status'])}",
            f"Товар: {sale['product_name'] or '-'}",
            f"Клиент: {sale['client_name'] or '-'}",
            f"Телефон: {sale['client_phone'] or '-'}",
            f"ID: {sale['id']}",
        ]
    )


def in_transit_message(sale: sqlite3.Row, days: int) -> str:
    return "\n".join(
        [
            "Проверка статуса товара в пути",
            f"Прошло дней с добавления: {days}",
            f"Товар: {sale['product_name'] or '-'}",
            f"Клиент: {sale['client_name'] or '-'}",
            f"Телефон: {sale['client_phone'] or '-'}",
            f"ID: {sale['id']}",
        ]
    )


@dataclass(slots=True)
class WeeklySummary:
    key: str
    start: datetime
    end: datetime
    total_margin: float
    sales_count: int
    shares: tuple[float, ...] = ()

    def as_text(self) -> str:
        start_local = to_business(self.start).strftime("%d.%m %H:%M")
        end_local = to_business(self.end).strftime("%d.%m %H:%M")
        lines = [
            f"Итоги недели {self.key}",
            f"Период: {start_local} - {end_local}",
            f"Продаж: {self.sales_count}",
            f"Маржа: {format_money(self.total_margin)}",
        ]
        for ratio, amount in zip(WEEKLY_SHARES, self.shares):
            lines.append(f"Доля {round(ratio * 100)}%: {format_money(amount)}")
        return "\n".join(lines)


@dataclass(slots=True)
class NotificationRunResult:
    sent: int = 0
    skipped: int = 0
    recipients: int = 0
    sales: int = 0
    weekly: WeeklySummary | None = None
    reason: str | None = None
    failures: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["ok"] = True
        if self.weekly is not None:
            data["weekly"] = {
                "key": self.weekly.key,
                "total_margin": self.weekly.total_margin,
                "shares": list(self.weekly.shares),
                "sales_count": self.weekly.sales_count,
            }
        return data


class NotificationDispatcher:
    """Доставка одного сообщения получателю по всем включенным каналам."""

    def __init__(
        self,
        telegram: TelegramSender,
        email: EmailSender | None = None,
        email_enabled: bool = False,
    ):
        self.telegram = telegram
        self.email = email
        self.email_enabled = email_enabled and email is not None

    @classmethod
    def from_settings(cls, settings: Settings) -> NotificationDispatcher:
        return cls(
            telegram=TelegramSender(settings.telegram_bot_token, timeout_sec=settings.http_timeout_sec),
            email=EmailSender(settings.resend_api_key, settings.resend_from, timeout_sec=settings.http_timeout_sec),
            email_enabled=settings.email_enabled,
        )

    def _wants_telegram(self, recipient: sqlite3.Row) -> bool:
        return bool(recipient["telegram_enabled"] and recipient["telegram_chat_id"])

    def _wants_email(self, recipient: sqlite3.Row) -> bool:
        return bool(self.email_enabled and recipient["email_enabled"] and recipient["email"])

    def has_channel(self, recipient: sqlite3.Row) -> bool:
        return self._wants_telegram(recipient) or self._wants_email(recipient)

    def deliver(self, recipient: sqlite3.Row, subject: str, text: str) -> list[DeliveryResult]:
        results: list[DeliveryResult] = []
        if self._wants_telegram(recipient):
            results.append(self.telegram.send(str(recipient["telegram_chat_id"]), text))
        if self._wants_email(recipient) and self.email is not None:
            results.append(self.email.send(recipient["email"], subject, text))
        return results


class NotificationService:
    JOB_NAME = "notifications"

    def __init__(
        self,
        settings: Settings,
        repository: SalestrackRepository,
        logger: logging.Logger | logging.LoggerAdapter,
        dispatcher: NotificationDispatcher | None = None,
    ):
        self.settings = settings
        self.repository = repository
        self.logger = logger
        self.dispatcher = dispatcher or NotificationDispatcher.from_settings(settings)
        self.ledger = NotificationLedger(repository)

    def _deliver(
        self,
        recipient: sqlite3.Row,
        subject: str,
        text: str,
        result: NotificationRunResult,
    ) -> bool:
        if not self.dispatcher.has_channel(recipient):
            return False
        outcomes = self.dispatcher.deliver(recipient, subject, text)
        for outcome in outcomes:
            if not outcome.ok:
                reason = f"{recipient['id']} {outcome.channel}: {outcome.reason}"
                result.failures.append(reason)
                self.logger.warning("Delivery failed for recipient %s", reason)
        return any(outcome.ok for outcome in outcomes)

    def _notify_once(
        self,
        *,
        kind: NotificationKind,
        window_key: str,
        sale: sqlite3.Row,
        recipient: sqlite3.Row,
        subject: str,
        text: str,
        now: datetime,
        result: NotificationRunResult,
    ) -> None:
        if self.ledger.was_sent(kind, window_key, sale["id"], recipient["id"]):
            result.skipped += 1
            return

        if not self._deliver(recipient, subject, text, result):
            result.skipped += 1
            return

        self.ledger.record_sent(kind, window_key, sale["id"], recipient["id"], sent_at=now)
        result.sent += 1

    def build_weekly_summary(self, week: WeeklyWindow, user_id: str | None = None) -> WeeklySummary:
        total_margin, sales_count = self.repository.sum_margin(week.start, week.end, user_id=user_id)
        return WeeklySummary(
            key=week.key,
            start=week.start,
            end=week.end,
            total_margin=total_margin,
            sales_count=sales_count,
            shares=tuple(round(total_margin * ratio, 2) for ratio in WEEKLY_SHARES),
        )

    def _broadcast_weekly(
        self,
        week: WeeklyWindow,
        recipients: list[sqlite3.Row],
        user_id: str | None,
        result: NotificationRunResult,
    ) -> None:
        summary = self.build_weekly_summary(week, user_id=user_id)
        result.weekly = summary
        text = summary.as_text()

        for recipient in recipients:
            try:
                if self._deliver(recipient, f"Итоги недели {summary.key}", text, result):
                    result.sent += 1
                else:
                    result.skipped += 1
            except Exception as exc:  # noqa: BLE001
                result.skipped += 1
                self.logger.error("Weekly summary failed for recipient %s: %s", recipient["id"], exc)

    def _run(self, now: datetime, user_id: str | None, force_weekly: bool) -> NotificationRunResult:
        recipients = self.repository.list_active_recipients(include_email=self.dispatcher.email_enabled)
        result = NotificationRunResult(recipients=len(recipients))
        if not recipients:
            result.reason = "no recipients"
            self.logger.info("Notifications skipped: no active recipients")
            return result

        sales = self.repository.list_sales_by_status(OPEN_STATUSES, user_id=user_id)
        result.sales = len(sales)

        pending_key = pending_window_key(now)
        today_key = day_key(now)
        week = weekly_window(now)

        for sale in sales:
            created_at = from_db_time(sale["created_at"]) or now
            days = days_between(created_at, now)
            in_transit_due = IN_TRANSIT_MIN_DAYS <= days <= IN_TRANSIT_MAX_DAYS

            for recipient in recipients:
                try:
                    self._notify_once(
                        kind=NotificationKind.PENDING_3H,
                        window_key=pending_key,
                        sale=sale,
                        recipient=recipient,
                        subject="Напоминание: карточка товара требует действия",
                        text=pending_message(sale),
                        now=now,
                        result=result,
                    )
                    if in_transit_due:
                        self._notify_once(
                            kind=NotificationKind.IN_TRANSIT_10D,
                            window_key=today_key,
                            sale=sale,
                            recipient=recipient,
                            subject="Проверка: товар в пути",
                            text=in_transit_message(sale, days),
                            now=now,
                            result=result,
                        )
                except Exception as exc:  # noqa: BLE001
                    result.skipped += 1
                    self.logger.error(
                        "Notification failed for sale %s, recipient %s: %s",
                        sale["id"],
                        recipient["id"],
                        exc,
                    )

        if week.is_send_moment or force_weekly:
            self._broadcast_weekly(week, recipients, user_id, result)

        self.logger.info(
            "Notifications pass done: sent=%s skipped=%s sales=%s recipients=%s",
            result.sent,
            result.skipped,
            result.sales,
            result.recipients,
        )
        return result

    def run(
        self,
        *,
        now: datetime | None = None,
        user_id: str | None = None,
        force_weekly: bool = False,
        correlation_id: str | None = None,
    ) -> NotificationRunResult:
        now = now or datetime.now(timezone.utc)
        correlation_id = correlation_id or uuid.uuid4().hex
        self.repository.start_job_run(correlation_id, self.JOB_NAME, datetime.now(timezone.utc))

        try:
            result = self._run(now, user_id, force_weekly)
        except Exception as exc:  # noqa: BLE001
            self.repository.finish_job_run(
                correlation_id,
                self.JOB_NAME,
                datetime.now(timezone.utc),
                status="failed",
                stats=None,
                error_text=str(exc),
            )
            raise

        self.repository.finish_job_run(
            correlation_id,
            self.JOB_NAME,
            datetime.now(timezone.utc),
            status="success" if not result.failures else "completed_with_errors",
            stats=result.as_dict(),
            error_text=None,
        )
        return result

    def run_test(self, *, user_id: str | None = None) -> NotificationRunResult:
        recipients = self.repository.list_active_recipients(
            include_email=self.dispatcher.email_enabled,
            user_id=user_id,
        )
        result = NotificationRunResult(recipients=len(recipients))
        text = "\n".join(
            [
                "Тестовое уведомление Salestrack",
                f"Время: {datetime.now(timezone.utc).isoformat(timespec='seconds')}",
            ]
        )

        for recipient in recipients:
            try:
                if self._deliver(recipient, "Тестовое уведомление Salestrack", text, result):
                    result.sent += 1
                else:
                    result.skipped += 1
            except Exception as exc:  # noqa: BLE001
                result.skipped += 1
                self.logger.error("Test notification failed for recipient %s: %s", recipient["id"], exc)

        self.logger.info("Test notifications: sent=%s skipped=%s", result.sent, result.skipped)
        return result
