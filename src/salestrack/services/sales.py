from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from salestrack.config import Settings
from salestrack.core.db import SalestrackRepository

SALE_STATUSES = ("TODO", "DONE", "WAITING")


def compute_margin(
    cost_price: float,
    sale_price: float,
    quantity: int,
    cny_rate: float,
    fee: float = 0.0,
) -> float:
    """Себестоимость вводится в юанях, цена продажи в тенге; из маржи вычитается комиссия."""
    return round((sale_price - cost_price * cny_rate) * quantity * (1 - fee), 2)


class SalesService:
    def __init__(
        self,
        settings: Settings,
        repository: SalestrackRepository,
        logger: logging.Logger | logging.LoggerAdapter,
    ):
        self.settings = settings
        self.repository = repository
        self.logger = logger

    def create_sale(
        self,
        *,
        client_name: str,
        product_name: str,
        quantity: int,
        cost_price: float,
        sale_price: float,
        client_phone: str | None = None,
        tracking_number: str | None = None,
        created_by: str | None = None,
        created_at: datetime | None = None,
    ) -> str:
        if quantity < 1:
            raise ValueError("Количество от 1")
        if cost_price < 0 or sale_price < 0:
            raise ValueError("Цены не могут быть отрицательными")

        margin = compute_margin(
            cost_price,
            sale_price,
            quantity,
            cny_rate=self.settings.cny_rate,
            fee=self.settings.sale_fee,
        )
        sale_id = self.repository.insert_sale(
            created_by=created_by,
            client_name=client_name.strip(),
            client_phone=(client_phone or "").strip() or None,
            product_name=product_name.strip(),
            quantity=quantity,
            cost_price=cost_price,
            sale_price=sale_price,
            margin=margin,
            tracking_number=(tracking_number or "").strip() or None,
            created_at=created_at or datetime.now(timezone.utc),
        )
        self.logger.info("Sale %s created, margin=%s", sale_id, margin)
        return sale_id

    def change_tracking_number(self, sale_id: str, tracking_number: str | None, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        sale = self.repository.get_sale(sale_id)
        if sale is None:
            raise ValueError(f"Продажа не найдена: {sale_id}")

        normalized = (tracking_number or "").strip() or None
        if normalized == sale["tracking_number"]:
            return False

        # Новый трек-номер запускает отсчет до первой проверки заново.
        next_check_at = now + timedelta(days=self.settings.tracking.first_check_days) if normalized else None
        self.repository.reset_tracking(sale_id, normalized, next_check_at=next_check_at, updated_at=now)
        self.logger.info("Sale %s tracking number changed", sale_id)
        return True

    def set_status(self, sale_id: str, status: str, now: datetime | None = None) -> bool:
        status = status.strip().upper()
        if status not in SALE_STATUSES:
            raise ValueError(f"Недопустимый статус: {status}")
        updated = self.repository.update_sale_status(sale_id, status, now or datetime.now(timezone.utc))
        if not updated:
            raise ValueError(f"Продажа не найдена: {sale_id}")
        return True
