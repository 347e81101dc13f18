"""Shared geo/time primitives: great-circle distance and timezone-shifted day buckets."""

import datetime
import math

DAY_S = 86_400
EARTH_RADIUS_M = 6_371_000

_EPOCH_DATE = datetime.date(1970, 1, 1)


def finite(value) -> float | None:
    """Return ``value`` as a float, or None when it is missing or not finite."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance in metres between two WGS-84 points."""
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlon / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def day_key(timestamp: float, tz_offset_hours: float = 0) -> int:
    """Calendar-day index of ``timestamp`` once shifted by a fixed UTC offset."""
    return math.floor((timestamp + tz_offset_hours * 3600) / DAY_S)


def day_label_from_key(key: int) -> str:
    """ISO date (``YYYY-MM-DD``) of a day key produced by :func:`day_key`."""
    return (_EPOCH_DATE + datetime.timedelta(days=key)).isoformat()


def day_label(timestamp: float, tz_offset_hours: float = 0, fmt: str = "%d/%m") -> str:
    """Format the local calendar date of ``timestamp`` (``DD/MM`` by default)."""
    shifted = datetime.datetime.fromtimestamp(
        timestamp + tz_offset_hours * 3600, tz=datetime.timezone.utc,
    )
    return shifted.strftime(fmt)
