from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

DELIVERED_KEYWORDS = ["delivered", "signed", "pod", "received", "delivered_to_recipient"]

ARRIVED_IN_COUNTRY_KEYWORDS = [
    "arrived at destination country",
    "destination country",
    "arrived in kazakhstan",
    "arrived at local facility",
    "arrival at destination",
    "import customs",
    "almaty",
    "astana",
    "kazakhstan",
]


@dataclass(slots=True)
class TrackInfo:
    status: str | None
    substatus: str | None
    last_event: str | None
    raw: Any = None

    @property
    def is_empty(self) -> bool:
        return self.status is None and self.substatus is None and self.last_event is None


# Каждый локатор пробует свой вариант конверта ответа и возвращает запись трека или None.
EnvelopeLocator = Callable[[Mapping[str, Any]], Any]


def _first_of(value: Any) -> Any:
    if isinstance(value, list) and value and isinstance(value[0], Mapping):
        return value[0]
    return None


def _accepted_envelope(payload: Mapping[str, Any]) -> Any:
    data = payload.get("data")
    if isinstance(data, Mapping):
        return _first_of(data.get("accepted"))
    return None


def _list_envelope(payload: Mapping[str, Any]) -> Any:
    return _first_of(payload.get("data"))


def _flat_envelope(payload: Mapping[str, Any]) -> Any:
    return payload


ENVELOPE_LOCATORS: list[EnvelopeLocator] = [
    _accepted_envelope,
    _list_envelope,
    _flat_envelope,
]


def _unwrap_track_info(entry: Mapping[str, Any]) -> Mapping[str, Any]:
    for key in ("track_info", "trackInfo"):
        nested = entry.get(key)
        if isinstance(nested, Mapping):
            return nested
    return entry


def _track_root(record: Mapping[str, Any]) -> Mapping[str, Any]:
    for key in ("data", "track_info", "trackInfo"):
        nested = record.get(key)
        if isinstance(nested, Mapping):
            return nested
    return record


def _mapping_at(source: Mapping[str, Any], *keys: str) -> Mapping[str, Any] | None:
    for key in keys:
        value = source.get(key)
        if isinstance(value, Mapping):
            return value
    return None


# (вложенный объект или None для корня, имя поля) в порядке приоритета.
STATUS_FIELDS = [
    ("latest_status", "status"),
    ("latest_status", "description"),
    ("latest_event", "status"),
    (None, "status"),
]
SUBSTATUS_FIELDS = [
    ("latest_status", "sub_status"),
    ("latest_status", "subStatus"),
    ("latest_event", "sub_status"),
    (None, "sub_status"),
]
LAST_EVENT_FIELDS = [
    ("latest_event", "description"),
    ("latest_event", "event"),
    (None, "latest_event_desc"),
]

NESTED_ALIASES = {
    "latest_status": ("latest_status", "latestStatus"),
    "latest_event": ("latest_event", "latestEvent"),
}


def _extract_field(root: Mapping[str, Any], candidates: list[tuple[str | None, str]]) -> str | None:
    for nested_name, field_name in candidates:
        source = root if nested_name is None else _mapping_at(root, *NESTED_ALIASES[nested_name])
        if source is None:
            continue
        value = source.get(field_name)
        if value is None or isinstance(value, (Mapping, list)):
            continue
        text = str(value)
        if text:
            return text
    return None


def extract_track_record(record: Any, raw: Any = None) -> TrackInfo:
    raw_payload = record if raw is None else raw
    if not isinstance(record, Mapping):
        return TrackInfo(status=None, substatus=None, last_event=None, raw=raw_payload)

    root = _track_root(record)
    return TrackInfo(
        status=_extract_field(root, STATUS_FIELDS),
        substatus=_extract_field(root, SUBSTATUS_FIELDS),
        last_event=_extract_field(root, LAST_EVENT_FIELDS),
        raw=raw_payload,
    )


def parse_track_info(payload: Any) -> TrackInfo:
    if not isinstance(payload, Mapping):
        return TrackInfo(status=None, substatus=None, last_event=None, raw=payload)

    for locator in ENVELOPE_LOCATORS:
        entry = locator(payload)
        if entry is None:
            continue
        info = extract_track_record(_unwrap_track_info(entry), raw=payload)
        if not info.is_empty or locator is _flat_envelope:
            return info

    return TrackInfo(status=None, substatus=None, last_event=None, raw=payload)


def _merged(*parts: str | None) -> str:
    return " ".join(part or "" for part in parts).lower()


def looks_delivered(status: str | None, substatus: str | None) -> bool:
    merged = _merged(status, substatus)
    return any(token in merged for token in DELIVERED_KEYWORDS)


def looks_arrived_in_country(status: str | None, substatus: str | None, last_event: str | None) -> bool:
    merged = _merged(status, substatus, last_event)
    return any(token in merged for token in ARRIVED_IN_COUNTRY_KEYWORDS)
