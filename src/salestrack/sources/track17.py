from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import requests

from salestrack.config import DEFAULT_TRACK17_BASE_URL
from salestrack.parsers import TrackInfo, parse_track_info

logger = logging.getLogger(__name__)


class TrackingProviderError(Exception):
    pass


class TrackingHttpError(TrackingProviderError):
    def __init__(self, status_code: int, body: str | None = None):
        super().__init__(f"17TRACK {status_code}")
        self.status_code = status_code
        self.body = body


class TrackingBusinessError(TrackingProviderError):
    def __init__(self, code: Any, payload: Any = None):
        super().__init__(f"17TRACK code {code}")
        self.code = code
        self.payload = payload


class TrackingRejectedError(TrackingProviderError):
    def __init__(self, errors: list[Any], payload: Any = None):
        super().__init__(f"17TRACK rejected: {errors}")
        self.errors = errors
        self.payload = payload


class Track17Client:
    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_TRACK17_BASE_URL,
        timeout_sec: float = 15.0,
        session: requests.Session | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()

    def _call(self, path: str, tracking_number: str) -> Any:
        try:
            response = self.session.post(
                f"{self.base_url}{path}",
                headers={"17token": self.api_key},
                json={"data": [{"number": tracking_number}]},
                timeout=self.timeout_sec,
            )
        except requests.RequestException as exc:
            raise TrackingProviderError(f"17TRACK request failed: {exc}") from exc

        text = response.text
        try:
            payload: Any = response.json() if text else None
        except ValueError:
            payload = text

        if not response.ok:
            raise TrackingHttpError(response.status_code, text[:500] if text else None)

        return payload

    @staticmethod
    def _check_business_errors(payload: Any) -> None:
        if not isinstance(payload, Mapping):
            return

        code = payload.get("code")
        if code not in (None, 0, "0"):
            raise TrackingBusinessError(code, payload)

        data = payload.get("data")
        if isinstance(data, Mapping):
            errors = data.get("errors")
            if isinstance(errors, list) and errors:
                raise TrackingRejectedError(errors, payload)

    def register(self, tracking_number: str) -> bool:
        # Ошибка регистрации не мешает запросу статуса.
        try:
            payload = self._call("/register", tracking_number)
            self._check_business_errors(payload)
        except TrackingProviderError as exc:
            logger.warning("17TRACK register failed for %s: %s", tracking_number, exc)
            return False
        return True

    def get_status(self, tracking_number: str) -> TrackInfo:
        payload = self._call("/gettrackinfo", tracking_number)
        self._check_business_errors(payload)
        return parse_track_info(payload)
