"""Trajectory analytics: distance, moving time, speed, pace and elevation per day.

Aggregation pipeline (runs per request over an ordered sample window):
1. Drop samples without a usable coordinate/timestamp
2. Downsample the window (every Nth point, last point always kept)
3. Walk consecutive pairs, accumulating totals and the destination day's bucket
4. Replace each bucket's duration with the first-to-last span of that day,
   measured on the full (not downsampled) window
"""

import logging
import math
from typing import Optional

from sqlalchemy.orm import Session

from geo import day_key, day_label_from_key, finite, haversine_m
from models import Config
from store import clean_points, downsample

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

TZ_OFFSET_HOURS = 4.0          # Réunion, UTC+4
MIN_SPEED_KMH = 1.0            # legs slower than this are not "moving"
ELEVATION_MIN_DELTA_M = 1.0    # ignore altitude jitter below this
FILL_ALTITUDE = True           # reuse last known altitude for samples without one
GAP_THRESHOLD_S = 3600         # legs at least this long count as a tracking gap
MAX_TZ_OFFSET_HOURS = 24.0

_FALSE_STRINGS = {"0", "false", "no", "off"}


def parse_bool(value, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if not text:
        return default
    return text not in _FALSE_STRINGS


def get_stats_settings(db: Session) -> dict:
    """Read analytics defaults from the Config table, falling back to module defaults."""
    defaults = {
        "tz_offset_hours": TZ_OFFSET_HOURS,
        "min_speed_kmh": MIN_SPEED_KMH,
        "elevation_min_delta_m": ELEVATION_MIN_DELTA_M,
        "fill_altitude": FILL_ALTITUDE,
    }
    rows = db.query(Config).filter(Config.key.in_(list(defaults))).all()
    for row in rows:
        if row.key == "fill_altitude":
            defaults[row.key] = parse_bool(row.value, FILL_ALTITUDE)
            continue
        value = finite(row.value)
        if value is not None:
            defaults[row.key] = value
    return defaults


def tz_offset(value, default: float) -> float:
    """A usable UTC offset in hours: non-finite values fall back, the rest are clamped."""
    hours = finite(value)
    if hours is None:
        return default
    return max(-MAX_TZ_OFFSET_HOURS, min(MAX_TZ_OFFSET_HOURS, hours))


def normalize_params(params: dict | None = None) -> dict:
    """Apply defaults and clamp aggregation parameters to their valid ranges."""
    params = params or {}

    stride = finite(params.get("stride"))
    min_speed = finite(params.get("min_speed_kmh"))
    elev_min = finite(params.get("elevation_min_delta_m"))

    return {
        "tz_offset_hours": tz_offset(params.get("tz_offset_hours"), TZ_OFFSET_HOURS),
        "stride": 1 if stride is None else max(1, int(stride)),
        "min_speed_kmh": MIN_SPEED_KMH if min_speed is None else max(0.0, min_speed),
        "fill_altitude": parse_bool(params.get("fill_altitude"), FILL_ALTITUDE),
        "elevation_min_delta_m": ELEVATION_MIN_DELTA_M if elev_min is None else max(0.0, elev_min),
    }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _round2(value: float) -> float:
    return round(value, 2)


def _leg_distance_m(a: dict, b: dict) -> float:
    if a["latitude"] == b["latitude"] and a["longitude"] == b["longitude"]:
        return 0.0
    dist = haversine_m(a["latitude"], a["longitude"], b["latitude"], b["longitude"])
    return dist if math.isfinite(dist) else 0.0


def _speed_fields(meters: float, seconds: float, moving_seconds: float) -> dict:
    """Average speeds and paces; a pace is None when its speed is zero."""
    km = meters / 1000
    hours = seconds / 3600
    moving_hours = moving_seconds / 3600
    avg_speed = km / hours if hours > 0 else 0.0
    avg_speed_moving = km / moving_hours if moving_hours > 0 else 0.0
    pace = 60 / avg_speed if avg_speed > 0 else None
    pace_moving = 60 / avg_speed_moving if avg_speed_moving > 0 else None
    return {
        "avg_speed_kmh": _round2(avg_speed),
        "avg_speed_moving_kmh": _round2(avg_speed_moving),
        "pace_min_per_km": _round2(pace) if pace is not None else None,
        "pace_moving_min_per_km": _round2(pace_moving) if pace_moving is not None else None,
    }


def _day_spans(points: list[dict], tz_offset_hours: float) -> dict[int, tuple[float, float]]:
    """First and last timestamp of every day key present in ``points``."""
    spans: dict[int, tuple[float, float]] = {}
    for pt in points:
        ts = pt["timestamp"]
        key = day_key(ts, tz_offset_hours)
        if key in spans:
            first, last = spans[key]
            spans[key] = (min(first, ts), max(last, ts))
        else:
            spans[key] = (ts, ts)
    return spans


def _new_bucket() -> dict:
    return {
        "meters": 0.0,
        "moving_seconds": 0.0,
        "elevation_gain": 0.0,
        "elevation_loss": 0.0,
        "max_speed_kmh": 0.0,
        "points": 0,
    }


def _totals(
    meters: float, seconds: float, moving_seconds: float, max_speed: float,
    gain: float, loss: float, min_alt: Optional[float], max_alt: Optional[float],
) -> dict:
    return {
        "meters": round(meters),
        "km": _round2(meters / 1000),
        "seconds": round(seconds),
        "moving_seconds": round(moving_seconds),
        **_speed_fields(meters, seconds, moving_seconds),
        "max_speed_kmh": _round2(max_speed),
        "elevation_gain": round(gain),
        "elevation_loss": round(loss),
        "min_alt": round(min_alt) if min_alt is not None else None,
        "max_alt": round(max_alt) if max_alt is not None else None,
    }


def _empty_summary(params: dict) -> dict:
    return {
        "params": params,
        "summary": {
            "points": 0,
            "points_used": 0,
            "start": None,
            "end": None,
            "duration_seconds": 0,
            "days": 0,
        },
        "totals": _totals(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, None, None),
        "per_day": [],
        "quality": {"gaps_over_1h": 0, "mean_accuracy_m": None},
        "bbox": None,
    }


def _endpoint(pt: dict) -> dict:
    return {"timestamp": int(pt["timestamp"]), "lat": pt["latitude"], "lon": pt["longitude"]}


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def aggregate(points: list[dict], params: dict | None = None) -> dict:
    """Compute totals, per-day records, quality and bounding box for a window.

    ``points`` must be sorted ascending by timestamp. An empty window yields a
    zeroed summary rather than an error.
    """
    params = normalize_params(params)
    rows = clean_points(points)
    if not rows:
        return _empty_summary(params)

    tz = params["tz_offset_hours"]
    min_speed = params["min_speed_kmh"]
    elev_min = params["elevation_min_delta_m"]
    fill_altitude = params["fill_altitude"]

    used = downsample(rows, params["stride"])

    total_m = 0.0
    moving_s = 0.0
    max_speed = 0.0
    gaps = 0
    gain = loss = 0.0
    min_alt: Optional[float] = None
    max_alt: Optional[float] = None
    last_alt: Optional[float] = None
    acc_sum = 0.0
    acc_count = 0
    min_lat, max_lat = 90.0, -90.0
    min_lon, max_lon = 180.0, -180.0

    daily: dict[int, dict] = {}
    prev: Optional[dict] = None
    prev_alt: Optional[float] = None

    for pt in used:
        lat, lon, ts = pt["latitude"], pt["longitude"], pt["timestamp"]

        acc = finite(pt.get("horizontal_accuracy"))
        if acc is not None:
            acc_sum += acc
            acc_count += 1

        alt = finite(pt.get("altitude"))
        if alt is None and fill_altitude:
            alt = last_alt
        if alt is not None:
            last_alt = alt
            min_alt = alt if min_alt is None else min(min_alt, alt)
            max_alt = alt if max_alt is None else max(max_alt, alt)

        min_lat, max_lat = min(min_lat, lat), max(max_lat, lat)
        min_lon, max_lon = min(min_lon, lon), max(max_lon, lon)

        if prev is not None:
            dt = ts - prev["timestamp"]
            if dt >= GAP_THRESHOLD_S:
                gaps += 1
            if dt > 0:
                dist = _leg_distance_m(prev, pt)
                speed_kmh = (dist / 1000) / (dt / 3600)
                total_m += dist
                max_speed = max(max_speed, speed_kmh)
                moving = speed_kmh >= min_speed
                if moving:
                    moving_s += dt

                delta = 0.0
                if alt is not None and prev_alt is not None and abs(alt - prev_alt) >= elev_min:
                    delta = alt - prev_alt
                if delta > 0:
                    gain += delta
                else:
                    loss -= delta

                bucket = daily.setdefault(day_key(ts, tz), _new_bucket())
                bucket["meters"] += dist
                if moving:
                    bucket["moving_seconds"] += dt
                if delta > 0:
                    bucket["elevation_gain"] += delta
                else:
                    bucket["elevation_loss"] -= delta
                bucket["max_speed_kmh"] = max(bucket["max_speed_kmh"], speed_kmh)
                bucket["points"] += 1

        prev = pt
        prev_alt = alt

    # Second pass: day durations come from the full window, not the legs above
    spans = _day_spans(rows, tz)
    per_day = []
    for key in sorted(daily):
        b = daily[key]
        first, last = spans.get(key, (0, 0))
        seconds = max(0.0, last - first)
        per_day.append({
            "date": day_label_from_key(key),
            "meters": round(b["meters"]),
            "km": _round2(b["meters"] / 1000),
            "seconds": round(seconds),
            "moving_seconds": round(b["moving_seconds"]),
            **_speed_fields(b["meters"], seconds, b["moving_seconds"]),
            "elevation_gain": round(b["elevation_gain"]),
            "elevation_loss": round(b["elevation_loss"]),
            "max_speed_kmh": _round2(b["max_speed_kmh"]),
            "points": b["points"],
        })

    duration_s = max(0.0, used[-1]["timestamp"] - used[0]["timestamp"])

    logger.debug(
        "Aggregated %d points (%d used): %.0f m over %d day(s)",
        len(rows), len(used), total_m, len(per_day),
    )

    return {
        "params": params,
        "summary": {
            "points": len(rows),
            "points_used": len(used),
            "start": _endpoint(used[0]),
            "end": _endpoint(used[-1]),
            "duration_seconds": round(duration_s),
            "days": len(per_day),
        },
        "totals": _totals(total_m, duration_s, moving_s, max_speed, gain, loss, min_alt, max_alt),
        "per_day": per_day,
        "quality": {
            "gaps_over_1h": gaps,
            "mean_accuracy_m": _round2(acc_sum / acc_count) if acc_count else None,
        },
        "bbox": {
            "min_lat": min_lat,
            "min_lon": min_lon,
            "max_lat": max_lat,
            "max_lon": max_lon,
            "center": {"lat": (min_lat + max_lat) / 2, "lon": (min_lon + max_lon) / 2},
        },
    }


# ---------------------------------------------------------------------------
# Simple distance statistics
# ---------------------------------------------------------------------------

def compute_distances(points: list[dict], tz_offset_hours: float = 0) -> dict:
    """Total distance and per-day distance over every consecutive pair.

    Unlike :func:`aggregate` this does no downsampling and no time checks;
    legs between identical coordinates are skipped.
    """
    tz = tz_offset(tz_offset_hours, 0.0)
    rows = clean_points(points)
    total = 0.0
    daily: dict[int, float] = {}
    for a, b in zip(rows, rows[1:]):
        if a["latitude"] == b["latitude"] and a["longitude"] == b["longitude"]:
            continue
        dist = _leg_distance_m(a, b)
        total += dist
        key = day_key(b["timestamp"], tz)
        daily[key] = daily.get(key, 0.0) + dist

    per_day = [
        {"date": day_label_from_key(key), "meters": meters, "km": _round2(meters / 1000)}
        for key, meters in sorted(daily.items())
    ]
    return {"meters": total, "km": _round2(total / 1000), "per_day": per_day}
