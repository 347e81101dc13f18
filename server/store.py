"""Read-only access to stored location samples, plus window downsampling."""

from typing import Optional

from sqlalchemy.orm import Session

from geo import finite
from models import Location


def _as_point(loc: Location) -> dict:
    return {
        "latitude": loc.latitude,
        "longitude": loc.longitude,
        "timestamp": loc.timestamp,
        "altitude": loc.altitude,
        "horizontal_accuracy": loc.horizontal_accuracy,
        "speed": loc.speed,
    }


def load_ordered(
    db: Session, from_ts: Optional[float] = None, to_ts: Optional[float] = None,
) -> list[dict]:
    """Return samples ascending by timestamp, optionally bounded (inclusive)."""
    query = db.query(Location)
    if from_ts is not None:
        query = query.filter(Location.timestamp >= from_ts)
    if to_ts is not None:
        query = query.filter(Location.timestamp <= to_ts)
    rows = query.order_by(Location.timestamp.asc(), Location.id.asc()).all()
    return [_as_point(loc) for loc in rows]


def load_last(db: Session) -> Optional[dict]:
    """Return the most recent sample, or None when nothing is stored."""
    loc = (
        db.query(Location)
        .order_by(Location.timestamp.desc(), Location.id.desc())
        .first()
    )
    if loc is None:
        return None
    point = _as_point(loc)
    point.update(id=loc.id, city=loc.city, address=loc.address, timezone=loc.timezone)
    return point


def downsample(points: list[dict], stride: int) -> list[dict]:
    """Keep every ``stride``-th point, always ending on the true last point."""
    stride = max(1, int(stride))
    if not points:
        return []
    kept = points[::stride]
    if (len(points) - 1) % stride:
        kept.append(points[-1])
    return kept


def clean_points(points: list[dict]) -> list[dict]:
    """Keep samples whose coordinate and timestamp are finite numbers."""
    clean = []
    for pt in points:
        lat = finite(pt.get("latitude"))
        lon = finite(pt.get("longitude"))
        ts = finite(pt.get("timestamp"))
        if lat is None or lon is None or ts is None:
            continue
        clean.append({**pt, "latitude": lat, "longitude": lon, "timestamp": ts})
    return clean
