from __future__ import annotations

import json
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import typer
from dateutil import parser as dt_parser
from rich import print

from salestrack.config import Settings
from salestrack.core.db import SalestrackRepository
from salestrack.core.logging import configure_logging, get_logger
from salestrack.services import (
    NotificationService,
    SalesService,
    TelegramBotService,
    TrackingSyncService,
    authorize_cli_trigger,
    export_data,
    handle_webhook,
    run_doctor_checks,
)
from salestrack.sources import TelegramSender

app = typer.Typer(no_args_is_help=True, help="Salestrack CLI: продажи, трек-номера и уведомления")


def _load_settings(base_dir: Path | None = None) -> Settings:
    settings = Settings.load(base_dir=base_dir)
    settings.ensure_directories()
    return settings


def _parse_now(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = dt_parser.parse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _open_repository(settings: Settings) -> SalestrackRepository:
    repository = SalestrackRepository(settings.db_path)
    repository.migrate()
    return repository


def _start_job(settings: Settings, name: str) -> tuple[str, logging.LoggerAdapter]:
    correlation_id = uuid.uuid4().hex
    job = name.rsplit(".", 1)[-1]
    configure_logging(settings.logs_dir, correlation_id=correlation_id, job=job)
    return correlation_id, get_logger(name, correlation_id, job=job)


def _require_trigger(settings: Settings, authorization: str | None, secret: str | None) -> None:
    if not authorize_cli_trigger(settings, authorization=authorization, secret=secret):
        print("[red]forbidden[/red]: неверный CRON_SECRET или NOTIFY_MANUAL_SECRET")
        raise typer.Exit(1)


def _print_stats(title: str, stats: dict) -> None:
    print(f"[green]{title}[/green]")
    for key, value in stats.items():
        if key == "failures":
            continue
        print(f"- {key}: {value}")


@app.command("init")
def init_command(
    base_dir: Path | None = typer.Option(None, help="Корень проекта (по умолчанию текущая папка)"),
) -> None:
    settings = _load_settings(base_dir=base_dir)
    with SalestrackRepository(settings.db_path) as repository:
        executed = repository.migrate()
    print(f"[green]Инициализация завершена[/green]. DB: {settings.db_path}")
    print(f"Миграции: {executed if executed else 'нет новых'}")


@app.command("user-add")
def user_add_command(
    username: str = typer.Option(..., help="Логин"),
    email: str | None = typer.Option(None, help="Email"),
    name: str | None = typer.Option(None, help="Имя"),
) -> None:
    settings = _load_settings()
    with _open_repository(settings) as repository:
        user_id = repository.create_user(username=username, email=email, name=name)
    print(f"[green]Пользователь создан[/green]: {user_id}")


@app.command("recipient-add")
def recipient_add_command(
    user: str | None = typer.Option(None, help="ID пользователя"),
    email: str | None = typer.Option(None, help="Email получателя"),
    chat_id: str | None = typer.Option(None, help="Telegram chat id"),
) -> None:
    if not email and not chat_id:
        raise typer.BadParameter("Нужен --email или --chat-id")

    settings = _load_settings()
    with _open_repository(settings) as repository:
        recipient_id = repository.create_recipient(
            user_id=user,
            email=email,
            telegram_chat_id=chat_id,
            email_enabled=bool(email),
            telegram_enabled=bool(chat_id),
        )
    print(f"[green]Получатель добавлен[/green]: {recipient_id}")


@app.command("sale-add")
def sale_add_command(
    client: str = typer.Option(..., help="Имя клиента"),
    product: str = typer.Option(..., help="Товар"),
    cost: float = typer.Option(..., help="Цена товара (юани)"),
    price: float = typer.Option(..., help="Цена продажи"),
    quantity: int = typer.Option(1, help="Количество"),
    phone: str | None = typer.Option(None, help="Телефон клиента"),
    track: str | None = typer.Option(None, help="Трек-номер"),
    user: str | None = typer.Option(None, help="ID пользователя-владельца"),
) -> None:
    settings = _load_settings()
    _, logger = _start_job(settings, "salestrack.sales")
    with _open_repository(settings) as repository:
        service = SalesService(settings=settings, repository=repository, logger=logger)
        try:
            sale_id = service.create_sale(
                client_name=client,
                product_name=product,
                quantity=quantity,
                cost_price=cost,
                sale_price=price,
                client_phone=phone,
                tracking_number=track,
                created_by=user,
            )
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
    print(f"[green]Продажа создана[/green]: {sale_id}")


@app.command("sale-track")
def sale_track_command(
    sale_id: str = typer.Argument(..., help="ID продажи"),
    track: str = typer.Argument("", help="Новый трек-номер (пусто - убрать)"),
) -> None:
    settings = _load_settings()
    _, logger = _start_job(settings, "salestrack.sales")
    with _open_repository(settings) as repository:
        service = SalesService(settings=settings, repository=repository, logger=logger)
        try:
            changed = service.change_tracking_number(sale_id, track)
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
    print("[green]Трек-номер обновлен[/green]" if changed else "[yellow]Трек-номер не изменился[/yellow]")


@app.command("sale-status")
def sale_status_command(
    sale_id: str = typer.Argument(..., help="ID продажи"),
    status: str = typer.Argument(..., help="TODO|DONE|WAITING"),
) -> None:
    settings = _load_settings()
    _, logger = _start_job(settings, "salestrack.sales")
    with _open_repository(settings) as repository:
        service = SalesService(settings=settings, repository=repository, logger=logger)
        try:
            service.set_status(sale_id, status)
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
    print(f"[green]Статус обновлен[/green]: {status.upper()}")


@app.command("notify")
def notify_command(
    user: str | None = typer.Option(None, help="Только продажи пользователя"),
    force_weekly: bool = typer.Option(False, "--force-weekly", help="Отправить недельную сводку сейчас"),
    now: str | None = typer.Option(None, help="Момент времени для расчета окон (по умолчанию сейчас)"),
    authorization: str | None = typer.Option(None, help="Заголовок авторизации cron: Bearer <CRON_SECRET>"),
    secret: str | None = typer.Option(None, help="Секрет ручного запуска (NOTIFY_MANUAL_SECRET)"),
) -> None:
    settings = _load_settings()
    _require_trigger(settings, authorization, secret)
    correlation_id, logger = _start_job(settings, "salestrack.notifications")
    with _open_repository(settings) as repository:
        service = NotificationService(settings=settings, repository=repository, logger=logger)
        result = service.run(
            now=_parse_now(now),
            user_id=user,
            force_weekly=force_weekly,
            correlation_id=correlation_id,
        )
    _print_stats(f"Уведомления отправлены. correlation_id={correlation_id}", result.as_dict())


@app.command("notify-test")
def notify_test_command(
    user: str | None = typer.Option(None, help="Только получатели пользователя"),
) -> None:
    settings = _load_settings()
    _, logger = _start_job(settings, "salestrack.notifications")
    with _open_repository(settings) as repository:
        service = NotificationService(settings=settings, repository=repository, logger=logger)
        result = service.run_test(user_id=user)
    _print_stats("Тестовые уведомления", result.as_dict())


@app.command("track")
def track_command(
    user: str | None = typer.Option(None, help="Только продажи пользователя"),
    force: bool = typer.Option(False, "--force", help="Проверить все треки, игнорируя расписание"),
    now: str | None = typer.Option(None, help="Момент времени (по умолчанию сейчас)"),
    authorization: str | None = typer.Option(None, help="Заголовок авторизации cron: Bearer <CRON_SECRET>"),
    secret: str | None = typer.Option(None, help="Секрет ручного запуска (NOTIFY_MANUAL_SECRET)"),
) -> None:
    settings = _load_settings()
    _require_trigger(settings, authorization, secret)
    correlation_id, logger = _start_job(settings, "salestrack.tracking")
    with _open_repository(settings) as repository:
        service = TrackingSyncService(settings=settings, repository=repository, logger=logger)
        result = service.sync(
            now=_parse_now(now),
            user_id=user,
            force=force,
            correlation_id=correlation_id,
        )
    _print_stats(f"Синхронизация 17TRACK завершена. correlation_id={correlation_id}", result.as_dict())


@app.command("webhook")
def webhook_command(
    file: Path | None = typer.Option(None, help="JSON update от Telegram (по умолчанию stdin)"),
    secret: str | None = typer.Option(None, help="Секрет вебхука"),
) -> None:
    settings = _load_settings()
    _, logger = _start_job(settings, "salestrack.telegram")
    raw = file.read_text(encoding="utf-8") if file else sys.stdin.read()
    try:
        update = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError:
        update = {}

    with _open_repository(settings) as repository:
        bot = TelegramBotService(
            repository=repository,
            telegram=TelegramSender(settings.telegram_bot_token, timeout_sec=settings.http_timeout_sec),
            logger=logger,
        )
        status_code, body = handle_webhook(settings, bot, update, secret=secret)

    print(json.dumps(body, ensure_ascii=False))
    if status_code != 200:
        raise typer.Exit(1)


@app.command("export")
def export_command(
    format: str = typer.Option("xlsx,csv", help="Список форматов через запятую: xlsx,csv"),
    out: Path | None = typer.Option(None, help="Папка экспорта"),
) -> None:
    formats = [item.strip().lower() for item in format.split(",") if item.strip()]
    supported = {"xlsx", "csv"}
    unknown = [item for item in formats if item not in supported]
    if unknown:
        raise typer.BadParameter(f"Неподдерживаемые форматы: {unknown}")

    settings = _load_settings()
    out_dir = (out or settings.exports_dir).resolve()

    with _open_repository(settings) as repository:
        files = export_data(repository=repository, formats=formats, out_dir=out_dir)

    print("[green]Экспорт завершен[/green]")
    for file_path in files:
        print(f"- {file_path}")


@app.command("doctor")
def doctor_command() -> None:
    settings = _load_settings()
    checks = run_doctor_checks(settings)

    print("Результаты doctor:")
    for check in checks:
        status = check["status"].upper()
        print(f"- [{status}] {check['check']}: {check['detail']}")


if __name__ == "__main__":
    app()
