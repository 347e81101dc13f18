"""REST API endpoints: trajectory statistics, last known location and the parcours map."""

import logging
import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database import get_db
from errors import ProviderError, ProviderNotConfiguredError, RenderTimeoutError, ValidationError
from overlay import RenderParams
from renderer import Compositor
from stats import aggregate, compute_distances, get_stats_settings
from store import load_last, load_ordered

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class TotalDistanceResponse(BaseModel):
    meters: float
    km: float


class DailyDistance(BaseModel):
    date: str
    meters: float
    km: float


class LocationResponse(BaseModel):
    id: int
    latitude: float
    longitude: float
    timestamp: int
    altitude: Optional[float] = None
    horizontal_accuracy: Optional[float] = None
    speed: Optional[float] = None
    city: Optional[str] = None
    address: Optional[str] = None
    timezone: Optional[str] = None


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_compositor(request: Request) -> Compositor:
    """The process-wide compositor (and its render cache), created in main.py."""
    return request.app.state.compositor


def _check_range(from_ts: Optional[float], to_ts: Optional[float]):
    for name, value in (("from", from_ts), ("to", to_ts)):
        if value is not None and not math.isfinite(value):
            raise HTTPException(status_code=400, detail=f"'{name}' must be epoch seconds")
    if from_ts is not None and to_ts is not None and from_ts > to_ts:
        raise HTTPException(status_code=400, detail="'from' must not be after 'to'")


# ---------------------------------------------------------------------------
# Statistics endpoints
# ---------------------------------------------------------------------------

@router.get("/stats/parcours")
def parcours_stats(
    from_ts: Optional[float] = Query(None, alias="from"),
    to_ts: Optional[float] = Query(None, alias="to"),
    tz: Optional[float] = None,
    modulo: int = 1,
    min_speed_kmh: Optional[float] = None,
    fill_alt: Optional[str] = None,
    elev_min_delta: Optional[float] = None,
    db: Session = Depends(get_db),
):
    """Totals, per-day records, quality and bounding box for the requested window."""
    _check_range(from_ts, to_ts)
    settings = get_stats_settings(db)
    params = {
        "tz_offset_hours": settings["tz_offset_hours"] if tz is None else tz,
        "stride": modulo,
        "min_speed_kmh": settings["min_speed_kmh"] if min_speed_kmh is None else min_speed_kmh,
        "fill_altitude": settings["fill_altitude"] if fill_alt is None else fill_alt,
        "elevation_min_delta_m": (
            settings["elevation_min_delta_m"] if elev_min_delta is None else elev_min_delta
        ),
    }

    points = load_ordered(db, from_ts, to_ts)
    result = aggregate(points, params)
    result["params"].update({"from": from_ts, "to": to_ts})
    return result


@router.get("/stats/distance/total", response_model=TotalDistanceResponse)
def total_distance(
    from_ts: Optional[float] = Query(None, alias="from"),
    to_ts: Optional[float] = Query(None, alias="to"),
    db: Session = Depends(get_db),
):
    _check_range(from_ts, to_ts)
    result = compute_distances(load_ordered(db, from_ts, to_ts))
    return TotalDistanceResponse(meters=result["meters"], km=result["km"])


@router.get("/stats/distance/daily", response_model=list[DailyDistance])
def daily_distance(
    from_ts: Optional[float] = Query(None, alias="from"),
    to_ts: Optional[float] = Query(None, alias="to"),
    tz: float = 0,
    db: Session = Depends(get_db),
):
    _check_range(from_ts, to_ts)
    result = compute_distances(load_ordered(db, from_ts, to_ts), tz_offset_hours=tz)
    return [DailyDistance(**day) for day in result["per_day"]]


# ---------------------------------------------------------------------------
# Location endpoints
# ---------------------------------------------------------------------------

@router.get("/locations/last", response_model=LocationResponse)
def last_location(db: Session = Depends(get_db)):
    last = load_last(db)
    if last is None:
        raise HTTPException(status_code=404, detail="No location recorded")
    return LocationResponse(**last)


# ---------------------------------------------------------------------------
# Map image endpoint
# ---------------------------------------------------------------------------

@router.get("/parcours.png")
def parcours_image(
    w: Optional[str] = None,
    h: Optional[str] = None,
    modulo: Optional[str] = None,
    weight: Optional[str] = None,
    color: Optional[str] = None,
    z: Optional[str] = None,
    ts: Optional[str] = None,
    render: Optional[str] = None,
    order: Optional[str] = None,
    debug: bool = False,
    db: Session = Depends(get_db),
    compositor: Compositor = Depends(get_compositor),
):
    """PNG of the whole trajectory over a static map; ``debug=1`` returns the render inputs."""
    try:
        params = RenderParams.from_query(
            width=w, height=h, stride=modulo, weight=weight, color=color,
            zoom=z, tile_size=ts, mode=render, order=order,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    points = load_ordered(db)
    if debug:
        return compositor.describe(points, params)

    try:
        result = compositor.render(points, params)
    except ProviderNotConfiguredError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ProviderError as e:
        logger.error("Map render failed: %s", e)
        raise HTTPException(status_code=502, detail={"error": str(e), "details": e.details})
    except RenderTimeoutError as e:
        logger.error("Map render timed out: %s", e)
        raise HTTPException(status_code=504, detail=str(e))

    return Response(content=result.body, media_type=result.content_type)
