from .doctor import run_doctor_checks
from .exporter import export_data
from .notifications import NotificationDispatcher, NotificationRunResult, NotificationService
from .sales import SalesService
from .telegram_bot import TelegramBotService
from .tracking import TrackingSyncResult, TrackingSyncService
from .triggers import authorize_cli_trigger, authorize_trigger, authorize_webhook, handle_webhook

__all__ = [
    "NotificationDispatcher",
    "NotificationRunResult",
    "NotificationService",
    "SalesService",
    "TelegramBotService",
    "TrackingSyncResult",
    "TrackingSyncService",
    "authorize_cli_trigger",
    "authorize_trigger",
    "authorize_webhook",
    "export_data",
    "handle_webhook",
    "run_doctor_checks",
]
