from .models import DeliveryResult
from .resend import EmailSender
from .telegram import TelegramSender
from .track17 import (
    Track17Client,
    TrackingBusinessError,
    TrackingHttpError,
    TrackingProviderError,
    TrackingRejectedError,
)

__all__ = [
    "DeliveryResult",
    "EmailSender",
    "TelegramSender",
    "Track17Client",
    "TrackingBusinessError",
    "TrackingHttpError",
    "TrackingProviderError",
    "TrackingRejectedError",
]
