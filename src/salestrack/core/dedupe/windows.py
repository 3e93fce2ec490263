from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

# Астана: UTC+5 круглый год, без перехода на летнее время.
BUSINESS_TZ = timezone(timedelta(hours=5), name="Asia/Almaty")

PENDING_BLOCK_HOURS = 3
WEEK_START_HOUR = 6
WEEK_END_HOUR = 22
WEEKLY_SEND_WEEKDAY = 6  # воскресенье


@dataclass(frozen=True, slots=True)
class WeeklyWindow:
    start: datetime
    end: datetime
    key: str
    is_send_moment: bool

    def contains(self, instant: datetime) -> bool:
        return self.start <= _as_aware(instant) <= self.end


def _as_aware(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


def to_business(instant: datetime) -> datetime:
    return _as_aware(instant).astimezone(BUSINESS_TZ)


def business_date(instant: datetime) -> date:
    return to_business(instant).date()


def day_key(instant: datetime) -> str:
    return business_date(instant).isoformat()


def day_index(instant: datetime) -> int:
    return business_date(instant).toordinal()


def days_between(start: datetime, end: datetime) -> int:
    """Разница в календарных днях по бизнес-времени, а не в полных сутках."""
    return day_index(end) - day_index(start)


def pending_window_key(instant: datetime) -> str:
    local = to_business(instant)
    block = local.hour // PENDING_BLOCK_HOURS
    return f"{local.date().isoformat()}-h{block}"


def weekly_window(instant: datetime) -> WeeklyWindow:
    local = to_business(instant)
    monday = local.date() - timedelta(days=local.weekday())
    if local.weekday() == 0 and local.hour < WEEK_START_HOUR:
        # До 06:00 понедельника отчетной остается прошлая неделя.
        monday -= timedelta(days=7)
    sunday = monday + timedelta(days=6)

    start_local = datetime(monday.year, monday.month, monday.day, WEEK_START_HOUR, tzinfo=BUSINESS_TZ)
    end_local = datetime(sunday.year, sunday.month, sunday.day, WEEK_END_HOUR, tzinfo=BUSINESS_TZ)
    iso_year, iso_week, _ = monday.isocalendar()

    return WeeklyWindow(
        start=start_local.astimezone(timezone.utc),
        end=end_local.astimezone(timezone.utc),
        key=f"{iso_year}-W{iso_week:02d}",
        is_send_moment=local.weekday() == WEEKLY_SEND_WEEKDAY and local.hour == WEEK_END_HOUR,
    )
