from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Union

from salestrack.config import Settings, TrackingConfig
from salestrack.core.db import SalestrackRepository, from_db_time
from salestrack.parsers import TrackInfo, looks_arrived_in_country, looks_delivered
from salestrack.sources import TelegramSender, Track17Client

PROVIDER_NAME = "17TRACK"


@dataclass(frozen=True, slots=True)
class Fresh:
    """Трек ещё не зарегистрирован у провайдера."""

    due_at: datetime


@dataclass(frozen=True, slots=True)
class Registered:
    """Зарегистрирован, но следующая проверка не запланирована."""

    due_at: datetime


@dataclass(frozen=True, slots=True)
class AwaitingCheck:
    due_at: datetime


@dataclass(frozen=True, slots=True)
class Arrived:
    arrived_at: datetime | None


TrackingState = Union[Fresh, Registered, AwaitingCheck, Arrived]


def derive_state(
    *,
    created_at: datetime,
    registered_at: datetime | None,
    next_check_at: datetime | None,
    arrived_at: datetime | None,
    status: str | None,
    substatus: str | None,
    first_check_days: int,
) -> TrackingState:
    if arrived_at is not None or looks_delivered(status, substatus):
        return Arrived(arrived_at)

    first_due = created_at + timedelta(days=first_check_days)
    if registered_at is None:
        return Fresh(next_check_at or first_due)
    if next_check_at is None:
        return Registered(first_due)
    return AwaitingCheck(next_check_at)


def state_of_row(row: sqlite3.Row, first_check_days: int) -> TrackingState:
    return derive_state(
        created_at=from_db_time(row["created_at"]),
        registered_at=from_db_time(row["tracking_registered_at"]),
        next_check_at=from_db_time(row["tracking_next_check_at"]),
        arrived_at=from_db_time(row["tracking_arrived_at"]),
        status=row["tracking_status"],
        substatus=row["tracking_substatus"],
        first_check_days=first_check_days,
    )


def group_state(states: Iterable[TrackingState]) -> TrackingState:
    states = list(states)
    pending = [state for state in states if not isinstance(state, Arrived)]
    if not pending:
        arrived_times = [state.arrived_at for state in states if state.arrived_at is not None]
        return Arrived(min(arrived_times) if arrived_times else None)

    due_at = min(state.due_at for state in pending)
    if any(isinstance(state, Fresh) for state in pending):
        return Fresh(due_at)
    if any(isinstance(state, AwaitingCheck) for state in pending):
        return AwaitingCheck(due_at)
    return Registered(due_at)


def is_due(state: TrackingState, now: datetime, force: bool = False) -> bool:
    if force:
        return True
    if isinstance(state, Arrived):
        return False
    return state.due_at <= now


def normalize_tracking_number(value: str | None) -> str:
    return (value or "").strip()


def tracking_status_message(rows: list[sqlite3.Row], tracking_number: str, info: TrackInfo, arrived: bool) -> str:
    lines = ["Обновлен трек-статус товара"]
    for row in rows:
        lines.append(f"Товар: {row['product_name'] or '-'}")
        lines.append(f"Клиент: {row['client_name'] or '-'}")
        lines.append(f"Телефон: {row['client_phone'] or '-'}")
    lines.extend(
        [
            f"Трек: {tracking_number}",
            f"Статус: {info.status or '-'}",
            f"Подстатус: {info.substatus or '-'}",
            f"Последнее событие: {info.last_event or '-'}",
        ]
    )
    if arrived:
        lines.append("Посылка прибыла в страну назначения или доставлена")
    return "\n".join(lines)


@dataclass(slots=True)
class TrackingSyncResult:
    enabled: bool = True
    checked: int = 0
    updated: int = 0
    changed: int = 0
    failed: int = 0
    skipped: int = 0
    candidates: int = 0
    groups: int = 0
    notified: int = 0
    reason: str | None = None

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["ok"] = True
        return data


class TrackingSyncService:
    JOB_NAME = "tracking_sync"

    def __init__(
        self,
        settings: Settings,
        repository: SalestrackRepository,
        logger: logging.Logger | logging.LoggerAdapter,
        client: Track17Client | None = None,
        telegram: TelegramSender | None = None,
        config: TrackingConfig | None = None,
    ):
        self.settings = settings
        self.repository = repository
        self.logger = logger
        self.config = config or settings.tracking
        if client is None and self.config.api_key:
            client = Track17Client(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                timeout_sec=settings.http_timeout_sec,
            )
        self.client = client
        self.telegram = telegram or TelegramSender(settings.telegram_bot_token, timeout_sec=settings.http_timeout_sec)

    def _group_candidates(self, rows: list[sqlite3.Row]) -> dict[str, list[sqlite3.Row]]:
        groups: dict[str, list[sqlite3.Row]] = {}
        for row in rows:
            tracking_number = normalize_tracking_number(row["tracking_number"])
            if not tracking_number:
                continue
            groups.setdefault(tracking_number, []).append(row)
        return groups

    def _register_if_needed(self, tracking_number: str, rows: list[sqlite3.Row], now: datetime) -> datetime | None:
        if all(row["tracking_registered_at"] for row in rows):
            return None
        if self.client.register(tracking_number):
            return now
        return None

    def _apply_success(
        self,
        tracking_number: str,
        rows: list[sqlite3.Row],
        info: TrackInfo,
        registered_at: datetime | None,
        now: datetime,
    ) -> tuple[bool, bool]:
        arrived = looks_arrived_in_country(info.status, info.substatus, info.last_event) or looks_delivered(
            info.status, info.substatus
        )
        next_check_at = None if arrived else now + timedelta(days=self.config.recheck_days)

        updates: dict[str, dict[str, Any]] = {}
        any_changed = False
        for row in rows:
            changed = (
                row["tracking_number"] != tracking_number
                or row["tracking_status"] != info.status
                or row["tracking_substatus"] != info.substatus
                or row["tracking_last_event"] != info.last_event
                or row["tracking_provider"] != PROVIDER_NAME
            )
            any_changed = any_changed or changed
            fields: dict[str, Any] = {
                "tracking_number": tracking_number,
                "tracking_provider": PROVIDER_NAME,
                "tracking_status": info.status,
                "tracking_substatus": info.substatus,
                "tracking_last_event": info.last_event,
                "tracking_raw": info.raw,
                "tracking_synced_at": now,
                "tracking_next_check_at": next_check_at,
            }
            # tracking_arrived_at не сбрасывается, пока не сменится трек-номер.
            if arrived and not row["tracking_arrived_at"]:
                fields["tracking_arrived_at"] = now
            if registered_at is not None and not row["tracking_registered_at"]:
                fields["tracking_registered_at"] = registered_at
            if changed:
                fields["tracking_last_changed_at"] = now
            updates[row["id"]] = fields

        self.repository.update_tracking_group(updates, updated_at=now)
        self.repository.add_tracking_check_log(
            tracking_number=tracking_number,
            success=True,
            checked_at=now,
            status=info.status,
            substatus=info.substatus,
            last_event=info.last_event,
            arrived=arrived,
            raw=info.raw,
        )
        return arrived, any_changed

    def _apply_failure(
        self,
        tracking_number: str,
        rows: list[sqlite3.Row],
        error: Exception,
        registered_at: datetime | None,
        now: datetime,
    ) -> None:
        updates: dict[str, dict[str, Any]] = {}
        for row in rows:
            fields: dict[str, Any] = {
                "tracking_number": tracking_number,
                "tracking_provider": PROVIDER_NAME,
                "tracking_synced_at": now,
                "tracking_next_check_at": now + timedelta(days=self.config.recheck_days),
            }
            if registered_at is not None and not row["tracking_registered_at"]:
                fields["tracking_registered_at"] = registered_at
            updates[row["id"]] = fields

        self.repository.update_tracking_group(updates, updated_at=now)
        self.repository.add_tracking_check_log(
            tracking_number=tracking_number,
            success=False,
            checked_at=now,
            raw=getattr(error, "payload", None),
            error_text=f"{error.__class__.__name__}: {error}",
        )

    def _broadcast(self, text: str, recipients: list[sqlite3.Row], result: TrackingSyncResult) -> None:
        for recipient in recipients:
            chat_id = recipient["telegram_chat_id"]
            if not chat_id:
                continue
            outcome = self.telegram.send(str(chat_id), text)
            if outcome.ok:
                result.notified += 1
            else:
                self.logger.warning("Tracking notification to %s failed: %s", recipient["id"], outcome.reason)

    def _sync_group(
        self,
        tracking_number: str,
        rows: list[sqlite3.Row],
        *,
        now: datetime,
        force: bool,
        recipients: list[sqlite3.Row],
        result: TrackingSyncResult,
    ) -> None:
        state = group_state(state_of_row(row, self.config.first_check_days) for row in rows)
        if not is_due(state, now, force=force):
            result.skipped += 1
            return

        claim_until = now + timedelta(days=self.config.recheck_days)
        if not self.repository.claim_tracking_group(rows, claim_until):
            self.logger.info("Tracking group %s already claimed by another run", tracking_number)
            result.skipped += 1
            return

        result.checked += 1
        registered_at = self._register_if_needed(tracking_number, rows, now)

        try:
            info = self.client.get_status(tracking_number)
        except Exception as exc:  # noqa: BLE001
            result.failed += 1
            self.logger.warning("Tracking check failed for %s: %s", tracking_number, exc)
            self._apply_failure(tracking_number, rows, exc, registered_at, now)
            return

        arrived, changed = self._apply_success(tracking_number, rows, info, registered_at, now)
        result.updated += 1
        if changed:
            result.changed += 1
        self._broadcast(tracking_status_message(rows, tracking_number, info, arrived), recipients, result)

    def _sync(self, now: datetime, user_id: str | None, force: bool) -> TrackingSyncResult:
        result = TrackingSyncResult()
        if self.client is None:
            result.enabled = False
            result.reason = "TRACK17_API_KEY missing"
            self.logger.info("Tracking sync disabled: TRACK17_API_KEY missing")
            return result

        candidates = self.repository.list_tracking_candidates(
            now=now,
            first_due_before=now - timedelta(days=self.config.first_check_days),
            limit=self.config.sync_limit,
            user_id=user_id,
            force=force,
        )
        result.candidates = len(candidates)
        groups = self._group_candidates(candidates)
        result.groups = len(groups)
        result.skipped += len(candidates) - sum(len(rows) for rows in groups.values())

        recipients = self.repository.list_active_recipients(telegram_only=True)

        for tracking_number, candidate_rows in groups.items():
            try:
                # Группа расширяется на все продажи с этим треком, независимо от владельца.
                rows = self.repository.list_sales_by_tracking_number(tracking_number) or candidate_rows
                self._sync_group(
                    tracking_number,
                    rows,
                    now=now,
                    force=force,
                    recipients=recipients,
                    result=result,
                )
            except Exception as exc:  # noqa: BLE001
                result.failed += 1
                self.logger.error("Tracking group %s processing failed: %s", tracking_number, exc)

        self.logger.info(
            "Tracking sync done: candidates=%s groups=%s checked=%s updated=%s failed=%s skipped=%s",
            result.candidates,
            result.groups,
            result.checked,
            result.updated,
            result.failed,
            result.skipped,
        )
        return result

    def sync(
        self,
        *,
        now: datetime | None = None,
        user_id: str | None = None,
        force: bool = False,
        correlation_id: str | None = None,
    ) -> TrackingSyncResult:
        now = now or datetime.now(timezone.utc)
        correlation_id = correlation_id or uuid.uuid4().hex
        self.repository.start_job_run(correlation_id, self.JOB_NAME, datetime.now(timezone.utc))

        try:
            result = self._sync(now, user_id, force)
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
            status="success" if result.failed == 0 else "completed_with_errors",
            stats=result.as_dict(),
            error_text=None,
        )
        return result
