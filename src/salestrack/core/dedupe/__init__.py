from .ledger import NotificationKind, NotificationLedger
from .windows import (
    BUSINESS_TZ,
    WeeklyWindow,
    day_index,
    day_key,
    days_between,
    pending_window_key,
    to_business,
    weekly_window,
)

__all__ = [
    "BUSINESS_TZ",
    "WeeklyWindow",
    "NotificationKind",
    "NotificationLedger",
    "day_index",
    "day_key",
    "days_between",
    "pending_window_key",
    "to_business",
    "weekly_window",
]
