from .track17 import (
    TrackInfo,
    extract_track_record,
    looks_arrived_in_country,
    looks_delivered,
    parse_track_info,
)

__all__ = [
    "TrackInfo",
    "extract_track_record",
    "looks_arrived_in_country",
    "looks_delivered",
    "parse_track_info",
]
