from __future__ import annotations

import json
from typing import Any

import pytest
import requests

from salestrack.sources import (
    Track17Client,
    TrackingBusinessError,
    TrackingHttpError,
    TrackingProviderError,
    TrackingRejectedError,
)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str | None = None):
        self.status_code = status_code
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self) -> Any:
        return json.loads(self.text)


class FakeSession:
    def __init__(self, *responses: FakeResponse | Exception):
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        outcome = self.responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _client(session: FakeSession) -> Track17Client:
    return Track17Client(api_key="secret-key", base_url="https://api.example.test/v2.4/", session=session)


def test_get_status_sends_token_and_number() -> None:
    session = FakeSession(
        FakeResponse(payload={"code": 0, "data": {"accepted": [{"track_info": {"latest_status": {"status": "InTransit"}}}]}})
    )

    info = _client(session).get_status("LX123")

    assert info.status == "InTransit"
    call = session.calls[0]
    assert call["url"] == "https://api.example.test/v2.4/gettrackinfo"
    assert call["headers"] == {"17token": "secret-key"}
    assert call["json"] == {"data": [{"number": "LX123"}]}


def test_http_error_raises() -> None:
    session = FakeSession(FakeResponse(status_code=502, text="bad gateway"))

    with pytest.raises(TrackingHttpError) as exc_info:
        _client(session).get_status("LX123")

    assert exc_info.value.status_code == 502
    assert exc_info.value.body == "bad gateway"


def test_business_code_raises() -> None:
    session = FakeSession(FakeResponse(payload={"code": -18019901, "data": {}}))

    with pytest.raises(TrackingBusinessError) as exc_info:
        _client(session).get_status("LX123")

    assert exc_info.value.code == -18019901


def test_errors_array_raises() -> None:
    session = FakeSession(FakeResponse(payload={"code": 0, "data": {"errors": [{"code": -18010012}]}}))

    with pytest.raises(TrackingRejectedError):
        _client(session).get_status("LX123")


def test_transport_error_is_wrapped() -> None:
    session = FakeSession(requests.Timeout("timed out"))

    with pytest.raises(TrackingProviderError):
        _client(session).get_status("LX123")


def test_register_swallows_failures() -> None:
    session = FakeSession(
        FakeResponse(status_code=500, text="oops"),
        FakeResponse(payload={"code": 0, "data": {"accepted": [{"number": "LX123"}]}}),
    )
    client = _client(session)

    assert client.register("LX123") is False
    assert client.register("LX123") is True
    assert session.calls[1]["url"].endswith("/register")
