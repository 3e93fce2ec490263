from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import pytest

from salestrack.config import Settings, TrackingConfig
from salestrack.core.db import SalestrackRepository
from salestrack.parsers import TrackInfo
from salestrack.sources import DeliveryResult


class FakeTelegram:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_chats: set[str] = set()

    def send(self, chat_id: str, text: str) -> DeliveryResult:
        if chat_id in self.fail_chats:
            return DeliveryResult.failure("telegram", "telegram 502: bad gateway")
        self.sent.append((chat_id, text))
        return DeliveryResult.success("telegram")


class FakeEmail:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, email: str, subject: str, text: str) -> DeliveryResult:
        self.sent.append((email, subject, text))
        return DeliveryResult.success("email")


class FakeTrackClient:
    def __init__(self) -> None:
        self.register_ok = True
        self.register_calls: list[str] = []
        self.status_calls: list[str] = []
        self.responses: dict[str, TrackInfo | Exception] = {}

    def register(self, tracking_number: str) -> bool:
        self.register_calls.append(tracking_number)
        return self.register_ok

    def get_status(self, tracking_number: str) -> TrackInfo:
        self.status_calls.append(tracking_number)
        outcome = self.responses.get(
            tracking_number,
            TrackInfo(status="InTransit", substatus="InTransit_Other", last_event="Departed from facility", raw={}),
        )
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture()
def repository(tmp_path: Path):
    db_path = tmp_path / "salestrack.sqlite3"
    repo = SalestrackRepository(db_path)
    repo.migrate()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    root = tmp_path / "project"
    s = Settings(
        root_dir=root,
        data_dir=root / "data",
        db_path=root / "data" / "salestrack.sqlite3",
        logs_dir=root / "logs",
        exports_dir=root / "exports",
        telegram_bot_token="test-token",
        tracking=TrackingConfig(api_key="test-key"),
    )
    s.ensure_directories()
    return s


@pytest.fixture()
def test_logger() -> logging.Logger:
    logger = logging.getLogger("salestrack-test")
    logger.handlers.clear()
    logger.addHandler(logging.NullHandler())
    logger.setLevel(logging.INFO)
    return logger


@pytest.fixture()
def fake_telegram() -> FakeTelegram:
    return FakeTelegram()


@pytest.fixture()
def fake_email() -> FakeEmail:
    return FakeEmail()


@pytest.fixture()
def fake_track_client() -> FakeTrackClient:
    return FakeTrackClient()


@pytest.fixture()
def make_sale(repository):  # noqa: ANN001
    def _make_sale(
        created_at: datetime,
        *,
        tracking_number: str | None = None,
        status: str = "TODO",
        margin: float = 0.0,
        created_by: str | None = None,
        client_name: str = "Айгерим",
        product_name: str = "Кроссовки",
    ) -> str:
        return repository.insert_sale(
            created_by=created_by,
            client_name=client_name,
            client_phone="+77010000000",
            product_name=product_name,
            quantity=1,
            cost_price=0.0,
            sale_price=margin,
            margin=margin,
            created_at=created_at,
            status=status,
            tracking_number=tracking_number,
        )

    return _make_sale


@pytest.fixture()
def restore_root_logging():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        yield
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
