"""Web-Mercator projection and the vector overlay (path + day markers) for map renders.

The background raster and the overlay are aligned only if both assume the same
tile size and zoom, so every pixel computation goes through ``world_pixel``.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Optional

from errors import ValidationError
from geo import day_key, day_label
from store import downsample

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

REUNION_CENTER = (-21.115, 55.53)  # (lat, lon) shows the whole island
REUNION_ZOOM = 9
MARKER_TZ_OFFSET_HOURS = 4

DEFAULT_TILE_SIZE = 512            # provider static maps use 512 px tiles
MAX_LATITUDE = 85.05112878         # Web-Mercator cut-off

WIDTH_RANGE = (180, 1600)
HEIGHT_RANGE = (120, 1200)
WEIGHT_RANGE = (1, 32)
ZOOM_RANGE = (0, 20)
TILE_SIZE_RANGE = (128, 1024)

RENDER_MODES = ("server", "geoapify")
POINT_ORDERS = ("latlon", "lonlat")

MARKER_RADIUS = 5
LABEL_INSET_X = 4
LABEL_MIN_Y = 12
LABEL_OFFSET_Y = 14

_HEX_RE = re.compile(r"[0-9a-f]{6}(?:[0-9a-f]{2})?")


# ---------------------------------------------------------------------------
# Colour
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Color:
    value: str      # normalised 6/8 hex digits, no prefix
    hex6: str       # "#rrggbb"
    opacity: float  # 0..1, three decimals
    r: int
    g: int
    b: int

    @property
    def rgba(self) -> tuple[int, int, int, int]:
        return self.r, self.g, self.b, round(self.opacity * 255)


def parse_color(text: Optional[str]) -> Color:
    """Parse ``rrggbb`` / ``rrggbbaa`` with an optional ``0x`` or ``#`` prefix.

    Raises ValidationError for anything else.
    """
    if text is None:
        raise ValidationError("Missing color")
    clean = str(text).strip().lower()
    if clean.startswith("0x"):
        clean = clean[2:]
    elif clean.startswith("#"):
        clean = clean[1:]
    if not _HEX_RE.fullmatch(clean):
        raise ValidationError(f"Invalid color {text!r}: expected 6 or 8 hex digits")

    opacity = 1.0
    if len(clean) == 8:
        opacity = round(int(clean[6:8], 16) / 255, 3)
    return Color(
        value=clean,
        hex6=f"#{clean[:6]}",
        opacity=opacity,
        r=int(clean[0:2], 16),
        g=int(clean[2:4], 16),
        b=int(clean[4:6], 16),
    )


DEFAULT_COLOR = parse_color("ff0000ff")


# ---------------------------------------------------------------------------
# Render parameters
# ---------------------------------------------------------------------------

def _clamp_int(value, default: int, bounds: tuple[int, int]) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    low, high = bounds
    return max(low, min(high, number))


@dataclass(frozen=True)
class RenderParams:
    """Everything that changes the pixels of a rendered map."""

    width: int = 800
    height: int = 600
    stride: int = 10
    weight: int = 8
    color: Color = DEFAULT_COLOR
    zoom: int = REUNION_ZOOM
    tile_size: int = DEFAULT_TILE_SIZE
    mode: str = "server"
    order: str = "latlon"
    center: tuple[float, float] = REUNION_CENTER
    tz_offset_hours: float = MARKER_TZ_OFFSET_HOURS

    @classmethod
    def from_query(
        cls,
        width=None,
        height=None,
        stride=None,
        weight=None,
        color: Optional[str] = None,
        zoom=None,
        tile_size=None,
        mode: Optional[str] = None,
        order: Optional[str] = None,
    ) -> "RenderParams":
        """Build params from raw query values, clamping sizes and rejecting bad enums."""
        mode = (mode or "server").lower()
        if mode not in RENDER_MODES:
            raise ValidationError(f"Unknown render mode {mode!r}")
        order = (order or "latlon").lower()
        if order not in POINT_ORDERS:
            raise ValidationError(f"Unknown point order {order!r}")
        return cls(
            width=_clamp_int(width, 800, WIDTH_RANGE),
            height=_clamp_int(height, 600, HEIGHT_RANGE),
            stride=_clamp_int(stride, 10, (1, 1_000_000)),
            weight=_clamp_int(weight, 8, WEIGHT_RANGE),
            color=parse_color(color) if color is not None else DEFAULT_COLOR,
            zoom=_clamp_int(zoom, REUNION_ZOOM, ZOOM_RANGE),
            tile_size=_clamp_int(tile_size, DEFAULT_TILE_SIZE, TILE_SIZE_RANGE),
            mode=mode,
            order=order,
        )

    def cache_key(self, last_timestamp) -> str:
        return (
            f"{self.width}x{self.height}:{last_timestamp}:{self.mode}"
            f":m{self.stride}:w{self.weight}:c{self.color.value}:z{self.zoom}"
            f":ts{self.tile_size}:o{self.order}"
        )


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------

def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def world_pixel(lat: float, lon: float, zoom: float, tile_size: int = DEFAULT_TILE_SIZE) -> tuple[float, float]:
    """Spherical Web-Mercator pixel in a world raster of ``tile_size * 2**zoom``."""
    lat = max(-MAX_LATITUDE, min(MAX_LATITUDE, lat))
    sin_lat = math.sin(lat * math.pi / 180)
    world_size = tile_size * 2 ** zoom
    x = (lon + 180) / 360 * world_size
    y = (0.5 - math.log((1 + sin_lat) / (1 - sin_lat)) / (4 * math.pi)) * world_size
    return x, y


def project_to_image_pixel(
    lat: float, lon: float, zoom: float, tile_size: int,
    center_lat: float, center_lon: float, width: int, height: int,
) -> tuple[int, int]:
    """Pixel of (lat, lon) in a ``width`` x ``height`` image centred on the given point."""
    px, py = world_pixel(lat, lon, zoom, tile_size)
    cx, cy = world_pixel(center_lat, center_lon, zoom, tile_size)
    return _round_half_up(px - cx + width / 2), _round_half_up(py - cy + height / 2)


class _Projector:
    """Projects many points against one centre without recomputing it."""

    def __init__(self, params: RenderParams):
        self.params = params
        self.center_px = world_pixel(*params.center, params.zoom, params.tile_size)

    def __call__(self, lat: float, lon: float) -> tuple[int, int]:
        p = self.params
        px, py = world_pixel(lat, lon, p.zoom, p.tile_size)
        return (
            _round_half_up(px - self.center_px[0] + p.width / 2),
            _round_half_up(py - self.center_px[1] + p.height / 2),
        )


# ---------------------------------------------------------------------------
# Overlay
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DayMarker:
    x: int
    y: int
    label: str
    text_x: int
    text_y: int


@dataclass
class Overlay:
    width: int
    height: int
    polyline: list[tuple[int, int]]
    markers: list[DayMarker]
    color: Color
    weight: int


def _marker(x: int, y: int, label: str, width: int, height: int) -> DayMarker:
    text_x = max(LABEL_INSET_X, min(width - LABEL_INSET_X, x))
    text_y = max(LABEL_MIN_Y, min(height - LABEL_INSET_X, y + LABEL_OFFSET_Y))
    return DayMarker(x=x, y=y, label=label, text_x=text_x, text_y=text_y)


def build_day_markers(points: list[dict], params: RenderParams, label_fmt: str = "%d/%m") -> list[DayMarker]:
    """One marker on the first sample, then one wherever the local day changes.

    ``points`` is the full window; downsampling would hide day transitions.
    """
    project = _Projector(params)
    tz = params.tz_offset_hours
    markers = []
    prev_key = None
    for i, pt in enumerate(points):
        key = day_key(pt["timestamp"], tz)
        if i == 0 or key != prev_key:
            x, y = project(pt["latitude"], pt["longitude"])
            label = day_label(pt["timestamp"], tz, label_fmt)
            markers.append(_marker(x, y, label, params.width, params.height))
        prev_key = key
    return markers


def build_overlay(points: list[dict], params: RenderParams) -> Overlay:
    """Project the downsampled path and the full-window day markers to image pixels."""
    project = _Projector(params)
    polyline = [project(pt["latitude"], pt["longitude"]) for pt in downsample(points, params.stride)]
    return Overlay(
        width=params.width,
        height=params.height,
        polyline=polyline,
        markers=build_day_markers(points, params),
        color=params.color,
        weight=params.weight,
    )


# ---------------------------------------------------------------------------
# Encoded polyline (provider-drawn paths)
# ---------------------------------------------------------------------------

def _encode_signed(value: int) -> str:
    s = value << 1
    if value < 0:
        s = ~s
    chunks = []
    while s >= 0x20:
        chunks.append(chr((0x20 | (s & 0x1F)) + 63))
        s >>= 5
    chunks.append(chr(s + 63))
    return "".join(chunks)


def encode_polyline(coords: list[tuple[float, float]]) -> str:
    """Google encoded-polyline string at 1e-5 precision."""
    last_a = last_b = 0
    out = []
    for a, b in coords:
        a_e5 = _round_half_up(a * 1e5)
        b_e5 = _round_half_up(b * 1e5)
        out.append(_encode_signed(a_e5 - last_a))
        out.append(_encode_signed(b_e5 - last_b))
        last_a, last_b = a_e5, b_e5
    return "".join(out)


def path_coords(points: list[dict], order: str = "latlon") -> list[tuple[float, float]]:
    if order == "lonlat":
        return [(pt["longitude"], pt["latitude"]) for pt in points]
    return [(pt["latitude"], pt["longitude"]) for pt in points]
