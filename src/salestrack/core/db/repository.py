from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .migrations import MIGRATIONS_DIR, apply_migrations, connect_db

OPEN_STATUSES = ("TODO", "WAITING")
TRACKABLE_STATUSES = ("TODO", "DONE")

TRACKING_COLUMNS = {
    "tracking_number",
    "tracking_provider",
    "tracking_status",
    "tracking_substatus",
    "tracking_last_event",
    "tracking_raw",
    "tracking_synced_at",
    "tracking_registered_at",
    "tracking_next_check_at",
    "tracking_arrived_at",
    "tracking_last_changed_at",
}


def to_db_time(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    # Одинаковая точность: строки сравниваются в SQL как время.
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds")


def from_db_time(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_id() -> str:
    return uuid.uuid4().hex


class SalestrackRepository:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.connection = connect_db(db_path)

    def close(self) -> None:
        self.connection.close()

    def __enter__(self) -> SalestrackRepository:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()

    def migrate(self) -> list[str]:
        return apply_migrations(self.connection, MIGRATIONS_DIR)

    @staticmethod
    def _to_json(payload: Any) -> str | None:
        if payload is None:
            return None
        return json.dumps(payload, ensure_ascii=False, default=str)

    def _fetch_one(self, query: str, params: tuple[Any, ...]) -> sqlite3.Row | None:
        return self.connection.execute(query, params).fetchone()

    # users

    def create_user(self, username: str | None, email: str | None, name: str | None = None) -> str:
        user_id = new_id()
        with self.connection:
            self.connection.execute(
                "INSERT INTO users (id, username, email, name) VALUES (?, ?, ?, ?)",
                (
                    user_id,
                    username.strip().lower() if username else None,
                    email.strip().lower() if email else None,
                    name,
                ),
            )
        return user_id

    def find_user_by_login(self, login: str) -> sqlite3.Row | None:
        normalized = (login or "").strip().lower()
        if not normalized:
            return None
        return self._fetch_one(
            "SELECT * FROM users WHERE username = ? OR email = ? LIMIT 1",
            (normalized, normalized),
        )

    # sales

    def insert_sale(
        self,
        *,
        created_by: str | None,
        client_name: str,
        client_phone: str | None,
        product_name: str,
        quantity: int,
        cost_price: float,
        sale_price: float,
        margin: float,
        created_at: datetime,
        status: str = "TODO",
        tracking_number: str | None = None,
    ) -> str:
        sale_id = new_id()
        created = to_db_time(created_at)
        with self.connection:
            self.connection.execute(
                """
                INSERT INTO sales (
                    id, created_by, client_name, client_phone, product_name, quantity,
                    cost_price, sale_price, margin, status, tracking_number, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    sale_id,
                    created_by,
                    client_name,
                    client_phone,
                    product_name,
                    quantity,
                    cost_price,
                    sale_price,
                    margin,
                    status,
                    tracking_number,
                    created,
                    created,
                ),
            )
        return sale_id

    def get_sale(self, sale_id: str) -> sqlite3.Row | None:
        return self._fetch_one("SELECT * FROM sales WHERE id = ?", (sale_id,))

    def list_sales_by_status(self, statuses: Iterable[str], user_id: str | None = None) -> list[sqlite3.Row]:
        status_list = list(statuses)
        placeholders = ", ".join("?" for _ in status_list)
        query = f"SELECT * FROM sales WHERE status IN ({placeholders})"
        params: list[Any] = list(status_list)
        if user_id:
            query += " AND created_by = ?"
            params.append(user_id)
        query += " ORDER BY created_at, id"
        return self.connection.execute(query, tuple(params)).fetchall()

    def update_sale_status(self, sale_id: str, status: str, updated_at: datetime) -> bool:
        with self.connection:
            cursor = self.connection.execute(
                "UPDATE sales SET status = ?, updated_at = ? WHERE id = ?",
                (status, to_db_time(updated_at), sale_id),
            )
        return cursor.rowcount > 0

    def reset_tracking(
        self,
        sale_id: str,
        tracking_number: str | None,
        next_check_at: datetime | None,
        updated_at: datetime,
    ) -> bool:
        with self.connection:
            cursor = self.connection.execute(
                """
                UPDATE sales
                SET tracking_number = ?,
                    tracking_provider = NULL,
                    tracking_status = NULL,
                    tracking_substatus = NULL,
                    tracking_last_event = NULL,
                    tracking_raw = NULL,
                    tracking_synced_at = NULL,
                    tracking_registered_at = NULL,
                    tracking_next_check_at = ?,
                    tracking_arrived_at = NULL,
                    tracking_last_changed_at = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    tracking_number,
                    to_db_time(next_check_at),
                    to_db_time(updated_at),
                    to_db_time(updated_at),
                    sale_id,
                ),
            )
        return cursor.rowcount > 0

    def list_tracking_candidates(
        self,
        *,
        now: datetime,
        first_due_before: datetime,
        limit: int,
        user_id: str | None = None,
        force: bool = False,
    ) -> list[sqlite3.Row]:
        query = """
            SELECT * FROM sales
            WHERE status IN (?, ?)
              AND tracking_number IS NOT NULL
              AND trim(tracking_number) <> ''
        """
        params: list[Any] = list(TRACKABLE_STATUSES)
        if user_id:
            query += " AND created_by = ?"
            params.append(user_id)
        if not force:
            query += """
              AND tracking_arrived_at IS NULL
              AND (
                    (tracking_next_check_at IS NOT NULL AND tracking_next_check_at <= ?)
                 OR (tracking_next_check_at IS NULL AND created_at <= ?)
              )
            """
            params.extend([to_db_time(now), to_db_time(first_due_before)])
        query += """
            ORDER BY tracking_next_check_at IS NULL, tracking_next_check_at,
                     tracking_synced_at IS NULL, tracking_synced_at,
                     created_at DESC
            LIMIT ?
        """
        params.append(limit)
        return self.connection.execute(query, tuple(params)).fetchall()

    def list_sales_by_tracking_number(self, tracking_number: str) -> list[sqlite3.Row]:
        return self.connection.execute(
            """
            SELECT * FROM sales
            WHERE trim(tracking_number) = ? AND status IN (?, ?)
            ORDER BY created_at, id
            """,
            (tracking_number, *TRACKABLE_STATUSES),
        ).fetchall()

    def claim_tracking_group(self, rows: Iterable[sqlite3.Row], claim_until: datetime) -> bool:
        """
        Сдвигает tracking_next_check_at всех продаж группы, если их состояние
        не изменилось с момента выборки. Возвращает False, если группу уже
        забрал другой запуск.
        """
        rows = list(rows)
        claimed = 0
        with self.connection:
            for row in rows:
                cursor = self.connection.execute(
                    """
                    UPDATE sales SET tracking_next_check_at = ?
                    WHERE id = ?
                      AND tracking_next_check_at IS ?
                      AND tracking_synced_at IS ?
                    """,
                    (
                        to_db_time(claim_until),
                        row["id"],
                        row["tracking_next_check_at"],
                        row["tracking_synced_at"],
                    ),
                )
                claimed += cursor.rowcount
            if claimed != len(rows):
                self.connection.rollback()
                return False
        return True

    def update_tracking_group(self, updates: Mapping[str, Mapping[str, Any]], updated_at: datetime) -> None:
        with self.connection:
            for sale_id, fields in updates.items():
                unknown = set(fields) - TRACKING_COLUMNS
                if unknown:
                    raise ValueError(f"Unknown tracking columns: {sorted(unknown)}")
                values: list[Any] = []
                assignments: list[str] = []
                for column, value in fields.items():
                    if isinstance(value, datetime):
                        value = to_db_time(value)
                    elif column == "tracking_raw":
                        value = self._to_json(value)
                    assignments.append(f"{column} = ?")
                    values.append(value)
                assignments.append("updated_at = ?")
                values.append(to_db_time(updated_at))
                values.append(sale_id)
                self.connection.execute(
                    f"UPDATE sales SET {', '.join(assignments)} WHERE id = ?",
                    tuple(values),
                )

    def sum_margin(self, start: datetime, end: datetime, user_id: str | None = None) -> tuple[float, int]:
        query = """
            SELECT COALESCE(SUM(margin), 0) AS total, COUNT(*) AS cnt
            FROM sales
            WHERE created_at >= ? AND created_at <= ?
        """
        params: list[Any] = [to_db_time(start), to_db_time(end)]
        if user_id:
            query += " AND created_by = ?"
            params.append(user_id)
        row = self._fetch_one(query, tuple(params))
        return float(row["total"]), int(row["cnt"])

    def count_sales(self, status: str | None = None, user_id: str | None = None) -> int:
        query = "SELECT COUNT(*) AS cnt FROM sales WHERE 1 = 1"
        params: list[Any] = []
        if status:
            query += " AND status = ?"
            params.append(status)
        if user_id:
            query += " AND created_by = ?"
            params.append(user_id)
        return int(self._fetch_one(query, tuple(params))["cnt"])

    # recipients

    def create_recipient(
        self,
        *,
        user_id: str | None = None,
        email: str | None = None,
        telegram_chat_id: str | None = None,
        telegram_username: str | None = None,
        email_enabled: bool = False,
        telegram_enabled: bool = False,
        is_active: bool = True,
    ) -> str:
        recipient_id = new_id()
        with self.connection:
            self.connection.execute(
                """
                INSERT INTO notification_recipients (
                    id, user_id, email, telegram_chat_id, telegram_username,
                    email_enabled, telegram_enabled, is_active
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    recipient_id,
                    user_id,
                    email,
                    telegram_chat_id,
                    telegram_username,
                    int(email_enabled),
                    int(telegram_enabled),
                    int(is_active),
                ),
            )
        return recipient_id

    def list_active_recipients(
        self,
        *,
        include_email: bool = False,
        telegram_only: bool = False,
        user_id: str | None = None,
    ) -> list[sqlite3.Row]:
        telegram_clause = "(telegram_enabled = 1 AND ifnull(telegram_chat_id, '') <> '')"
        email_clause = "(email_enabled = 1 AND ifnull(email, '') <> '')"
        if telegram_only or not include_email:
            channel_clause = telegram_clause
        else:
            channel_clause = f"({telegram_clause} OR {email_clause})"

        query = f"SELECT * FROM notification_recipients WHERE is_active = 1 AND {channel_clause}"
        params: list[Any] = []
        if user_id:
            query += " AND user_id = ?"
            params.append(user_id)
        query += " ORDER BY created_at, id"
        return self.connection.execute(query, tuple(params)).fetchall()

    def get_recipient_by_chat_id(self, chat_id: str) -> sqlite3.Row | None:
        return self._fetch_one(
            "SELECT * FROM notification_recipients WHERE telegram_chat_id = ?",
            (chat_id,),
        )

    def upsert_telegram_recipient(self, chat_id: str, user_id: str | None, username: str | None) -> str:
        with self.connection:
            self.connection.execute(
                """
                INSERT INTO notification_recipients (
                    id, user_id, telegram_chat_id, telegram_username,
                    email_enabled, telegram_enabled, is_active
                )
                VALUES (?, ?, ?, ?, 0, 1, 1)
                ON CONFLICT(telegram_chat_id) DO UPDATE SET
                    user_id = excluded.user_id,
                    telegram_username = excluded.telegram_username,
                    telegram_enabled = 1,
                    is_active = 1,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (new_id(), user_id, chat_id, username),
            )
        row = self.get_recipient_by_chat_id(chat_id)
        if row is None:
            raise RuntimeError(f"Получатель не найден после upsert: {chat_id}")
        return str(row["id"])

    def set_telegram_enabled(self, chat_id: str, enabled: bool, activate: bool = False) -> bool:
        query = "UPDATE notification_recipients SET telegram_enabled = ?, updated_at = CURRENT_TIMESTAMP"
        if activate:
            query += ", is_active = 1"
        query += " WHERE telegram_chat_id = ?"
        with self.connection:
            cursor = self.connection.execute(query, (int(enabled), chat_id))
        return cursor.rowcount > 0

    # dedup ledger

    def notification_exists(self, kind: str, window_key: str, sale_id: str, recipient_id: str) -> bool:
        row = self._fetch_one(
            """
            SELECT 1 FROM notification_logs
            WHERE kind = ? AND window_key = ? AND sale_id = ? AND recipient_id = ?
            """,
            (kind, window_key, sale_id, recipient_id),
        )
        return row is not None

    def insert_notification_log(
        self,
        kind: str,
        window_key: str,
        sale_id: str,
        recipient_id: str,
        sent_at: datetime,
    ) -> bool:
        with self.connection:
            cursor = self.connection.execute(
                """
                INSERT OR IGNORE INTO notification_logs (kind, window_key, sale_id, recipient_id, sent_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (kind, window_key, sale_id, recipient_id, to_db_time(sent_at)),
            )
        return cursor.rowcount > 0

    # tracking audit

    def add_tracking_check_log(
        self,
        *,
        tracking_number: str,
        success: bool,
        checked_at: datetime,
        status: str | None = None,
        substatus: str | None = None,
        last_event: str | None = None,
        arrived: bool = False,
        raw: Any = None,
        error_text: str | None = None,
    ) -> None:
        with self.connection:
            self.connection.execute(
                """
                INSERT INTO tracking_check_logs (
                    tracking_number, status, substatus, last_event, arrived,
                    success, raw_json, error_text, checked_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    tracking_number,
                    status,
                    substatus,
                    last_event,
                    int(arrived),
                    int(success),
                    self._to_json(raw),
                    error_text,
                    to_db_time(checked_at),
                ),
            )

    # job runs

    def start_job_run(self, correlation_id: str, job: str, started_at: datetime) -> None:
        with self.connection:
            self.connection.execute(
                """
                INSERT INTO job_runs (correlation_id, job, started_at, status)
                VALUES (?, ?, ?, 'running')
                ON CONFLICT(correlation_id, job) DO UPDATE SET
                    started_at = excluded.started_at,
                    status = 'running',
                    finished_at = NULL,
                    stats_json = NULL,
                    error_text = NULL
                """,
                (correlation_id, job, to_db_time(started_at)),
            )

    def finish_job_run(
        self,
        correlation_id: str,
        job: str,
        finished_at: datetime,
        status: str,
        stats: dict[str, Any] | None,
        error_text: str | None,
    ) -> None:
        with self.connection:
            self.connection.execute(
                """
                UPDATE job_runs
                SET finished_at = ?, status = ?, stats_json = ?, error_text = ?
                WHERE correlation_id = ? AND job = ?
                """,
                (to_db_time(finished_at), status, self._to_json(stats), error_text, correlation_id, job),
            )

    def fetch_export_rows(self) -> list[dict[str, Any]]:
        rows = self.connection.execute(
            """
            SELECT
                s.id AS sale_id,
                s.created_at,
                s.status,
                u.username AS created_by,
                s.client_name,
                s.client_phone,
                s.product_name,
                s.quantity,
                s.cost_price,
                s.sale_price,
                s.margin,
                s.tracking_number,
                s.tracking_provider,
                s.tracking_status,
                s.tracking_substatus,
                s.tracking_last_event,
                s.tracking_synced_at,
                s.tracking_next_check_at,
                s.tracking_arrived_at,
                s.tracking_last_changed_at
            FROM sales s
            LEFT JOIN users u ON u.id = s.created_by
            ORDER BY s.created_at DESC, s.id
            """
        ).fetchall()
        return [dict(row) for row in rows]

    def fetch_counts(self) -> dict[str, int]:
        tables = ["users", "sales", "notification_recipients", "notification_logs", "tracking_check_logs", "job_runs"]
        return {
            table: int(self._fetch_one(f"SELECT COUNT(*) AS cnt FROM {table}", ())["cnt"])
            for table in tables
        }
