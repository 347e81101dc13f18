"""Map image rendering: background fetch, overlay rasterization, compositing, caching.

Render flow for ``mode="server"``:
1. Fetch the background raster for the fixed regional centre and requested zoom
2. Project the window into an overlay (path + day markers)
3. Rasterize the overlay into a transparent layer of the same size
4. Alpha-composite and encode as PNG

A failed background fetch fails the render. A failed composite degrades to
the background alone.
"""

import io
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Optional

from PIL import Image, ImageDraw, ImageFont

from cache import CachedRender, RenderCache
from errors import RenderTimeoutError
from overlay import (
    MARKER_RADIUS,
    REUNION_CENTER,
    REUNION_ZOOM,
    Overlay,
    RenderParams,
    build_overlay,
    encode_polyline,
    path_coords,
)
from store import clean_points, downsample
from tiles import StaticMapClient

logger = logging.getLogger(__name__)

RENDER_TIMEOUT_S = float(os.environ.get("RENDER_TIMEOUT_S", "15"))

LABEL_FONT_SIZE = 12
LABEL_HALO = 2

# Font cache
_font_cache: dict = {}
_font_path: Optional[str] = None


def _get_font(size: int = LABEL_FONT_SIZE) -> ImageFont.ImageFont:
    """Get a cached font instance, preferring a bold sans face."""
    global _font_path

    if size in _font_cache:
        return _font_cache[size]

    if _font_path is None:
        for font_name in ["DejaVuSans-Bold.ttf", "DejaVuSans.ttf", "Arial Bold.ttf", "Arial.ttf"]:
            try:
                ImageFont.truetype(font_name, size)
                _font_path = font_name
                break
            except OSError:
                continue

    if _font_path:
        font = ImageFont.truetype(_font_path, size)
    else:
        font = ImageFont.load_default(size=size)

    _font_cache[size] = font
    return font


# ---------------------------------------------------------------------------
# Rasterization
# ---------------------------------------------------------------------------

def rasterize(overlay: Overlay) -> Image.Image:
    """Draw the overlay on a transparent RGBA layer of the overlay's size."""
    layer = Image.new("RGBA", (overlay.width, overlay.height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    rgba = overlay.color.rgba

    points = overlay.polyline
    if len(points) >= 2:
        draw.line(points, fill=rgba, width=overlay.weight, joint="curve")
    if points:
        # Round line caps
        half = overlay.weight / 2
        for x, y in (points[0], points[-1]):
            draw.ellipse((x - half, y - half, x + half, y + half), fill=rgba)

    r = MARKER_RADIUS
    for m in overlay.markers:
        draw.ellipse((m.x - r, m.y - r, m.x + r, m.y + r), fill="#ffffff", outline="#000000", width=2)

    font = _get_font()
    for m in overlay.markers:
        # Centred on text_x, baseline on text_y
        draw.text(
            (m.text_x, m.text_y), m.label, font=font, fill="#000000", anchor="ms",
            stroke_width=LABEL_HALO, stroke_fill="#ffffff",
        )
    return layer


def compose(background: bytes, overlay: Overlay) -> bytes:
    """Alpha-composite the rasterized overlay over ``background`` and encode PNG."""
    with Image.open(io.BytesIO(background)) as img:
        base = img.convert("RGBA")
    merged = Image.alpha_composite(base, rasterize(overlay))
    out = io.BytesIO()
    merged.save(out, format="PNG")
    return out.getvalue()


# ---------------------------------------------------------------------------
# Compositor
# ---------------------------------------------------------------------------

class Compositor:
    """Renders the trajectory map for a window and caches the encoded result."""

    def __init__(
        self,
        client: StaticMapClient,
        cache: RenderCache,
        render_timeout_s: float = RENDER_TIMEOUT_S,
        max_workers: int = 2,
    ):
        self.client = client
        self.cache = cache
        self.render_timeout_s = render_timeout_s
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="compose")

    # -- URLs ---------------------------------------------------------------

    def _fallback_url(self, params: RenderParams) -> str:
        return self.client.build_url(REUNION_CENTER, REUNION_ZOOM, params.width, params.height)

    def _background_url(self, params: RenderParams) -> str:
        return self.client.build_url(params.center, params.zoom, params.width, params.height)

    def _path_url(self, points: list[dict], params: RenderParams) -> str:
        filtered = downsample(points, params.stride)
        enc = encode_polyline(path_coords(filtered, params.order))
        path = f"stroke:{params.color.value};strokeWidth:{params.weight};line:round;enc:{enc}"
        return self.client.build_url(params.center, params.zoom, params.width, params.height, path=path)

    # -- Rendering ----------------------------------------------------------

    def render(self, points: list[dict], params: RenderParams) -> CachedRender:
        """Return the (possibly cached) image for ``points`` rendered with ``params``."""
        points = clean_points(points)
        if not points:
            key = f"empty-{params.width}x{params.height}"
            return self.cache.get_or_render(key, lambda: self.client.fetch(self._fallback_url(params)))

        key = params.cache_key(int(points[-1]["timestamp"]))
        if params.mode == "geoapify":
            return self.cache.get_or_render(key, lambda: self.client.fetch(self._path_url(points, params)))
        return self.cache.get_or_render(key, lambda: self._render_server(points, params))

    def _render_server(self, points: list[dict], params: RenderParams) -> tuple[bytes, str]:
        overlay = build_overlay(points, params)
        background, content_type = self.client.fetch(self._background_url(params))

        try:
            body = self._compose_in_pool(background, overlay)
        except RenderTimeoutError:
            raise
        except Exception:
            logger.exception("Overlay compositing failed, returning background only")
            return background, content_type

        logger.info(
            "Rendered map %dx%d z%d: %d path points, %d day markers",
            params.width, params.height, params.zoom, len(overlay.polyline), len(overlay.markers),
        )
        return body, "image/png"

    def _compose_in_pool(self, background: bytes, overlay: Overlay) -> bytes:
        """Run :func:`compose` on the worker pool.

        A timed-out job cannot be stopped and keeps its worker until it ends,
        so time spent queued behind such jobs is bounded separately and does
        not count against this job's own compositing budget.
        """
        started = threading.Event()

        def job():
            started.set()
            return compose(background, overlay)

        future = self._executor.submit(job)
        if not started.wait(self.render_timeout_s):
            future.cancel()
            raise RenderTimeoutError(
                f"No compositing worker became free within {self.render_timeout_s:g}s"
            )
        try:
            return future.result(timeout=self.render_timeout_s)
        except FutureTimeout as e:
            raise RenderTimeoutError(
                f"Compositing did not finish within {self.render_timeout_s:g}s"
            ) from e

    def describe(self, points: list[dict], params: RenderParams) -> dict:
        """Inputs a render would use, for tuning; fetches and draws nothing."""
        points = clean_points(points)
        if not points:
            return {
                "mode": "empty",
                "total_points": 0,
                "bg_url": self.client.redact(self._fallback_url(params)),
                "tile_size": params.tile_size,
                "zoom_used": REUNION_ZOOM,
            }

        filtered = downsample(points, params.stride)
        if params.mode == "geoapify":
            return {
                "mode": "geoapify",
                "total_points": len(points),
                "filtered_points": len(filtered),
                "url": self.client.redact(self._path_url(points, params)),
                "zoom_used": params.zoom,
            }

        overlay = build_overlay(points, params)
        return {
            "mode": "server",
            "total_points": len(points),
            "filtered_points": len(filtered),
            "polyline_points": len(overlay.polyline),
            "bg_url": self.client.redact(self._background_url(params)),
            "tile_size": params.tile_size,
            "zoom_used": params.zoom,
            "day_markers": len(overlay.markers),
        }

    def close(self):
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.client.close()
