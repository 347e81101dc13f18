"""Tests for overlay rasterization and the caching compositor (provider faked)."""

import io
import threading
import time
from urllib.parse import unquote

import pytest
from PIL import Image

import renderer
from cache import RenderCache
from errors import ProviderError, RenderTimeoutError
from overlay import RenderParams, build_overlay, parse_color
from renderer import Compositor, compose, rasterize
from tests.fakes import FakeMapClient, make_png
from tests.gps_test_fixtures import GPS_TRACE

RED = (255, 0, 0, 255)
BLUE = (0, 0, 255, 255)

# A straight east-west walk across the middle of the island
WALK = [
    {"latitude": -21.0, "longitude": 55.3, "timestamp": 1_734_660_000},
    {"latitude": -21.0, "longitude": 55.7, "timestamp": 1_734_663_600},
]


def _decode(body: bytes) -> Image.Image:
    return Image.open(io.BytesIO(body)).convert("RGBA")


def _midpoint(overlay):
    (x0, y0), (x1, y1) = overlay.polyline[0], overlay.polyline[-1]
    return (x0 + x1) // 2, (y0 + y1) // 2


@pytest.fixture
def compositor(fake_client):
    comp = Compositor(fake_client, RenderCache(ttl_s=60))
    yield comp
    comp.close()


# =====================================================================
# Rasterization
# =====================================================================

class TestRasterize:
    def test_layer_matches_overlay_size(self):
        overlay = build_overlay(WALK, RenderParams(width=400, height=300))
        layer = rasterize(overlay)
        assert layer.size == (400, 300)
        assert layer.mode == "RGBA"

    def test_path_and_transparent_surroundings(self):
        overlay = build_overlay(WALK, RenderParams())
        layer = rasterize(overlay)
        assert layer.getpixel(_midpoint(overlay)) == RED
        assert layer.getpixel((2, 2))[3] == 0

    def test_marker_is_white_with_dark_outline(self):
        overlay = build_overlay(WALK, RenderParams())
        layer = rasterize(overlay)
        marker = overlay.markers[0]
        assert layer.getpixel((marker.x, marker.y)) == (255, 255, 255, 255)

    def test_single_point_still_draws_a_dot(self):
        overlay = build_overlay(WALK[:1], RenderParams(weight=30))
        layer = rasterize(overlay)
        x, y = overlay.polyline[0]
        # Left of the marker, inside the round cap
        assert layer.getpixel((x - 12, y)) == RED


class TestCompose:
    def test_output_is_png_of_the_background_size(self):
        overlay = build_overlay(WALK, RenderParams())
        img = _decode(compose(make_png(), overlay))
        assert img.size == (800, 600)
        assert img.getpixel(_midpoint(overlay)) == RED
        assert img.getpixel((2, 2)) == BLUE

    def test_translucent_path_blends(self):
        overlay = build_overlay(WALK, RenderParams(color=parse_color("ff000080")))
        r, g, b, a = _decode(compose(make_png(), overlay)).getpixel(_midpoint(overlay))
        assert a == 255
        assert r > 100 and b > 100
        assert g == 0

    def test_size_mismatch_raises(self):
        overlay = build_overlay(WALK, RenderParams())
        with pytest.raises(ValueError):
            compose(make_png(400, 300), overlay)


# =====================================================================
# Compositor
# =====================================================================

class TestCompositorServerMode:
    def test_renders_path_over_background(self, compositor, fake_client):
        result = compositor.render(WALK, RenderParams())
        assert result.content_type == "image/png"
        img = _decode(result.body)
        assert img.size == (800, 600)
        overlay = build_overlay(WALK, RenderParams())
        assert img.getpixel(_midpoint(overlay)) == RED
        assert len(fake_client.urls) == 1

    def test_background_url_uses_requested_zoom(self, compositor, fake_client):
        compositor.render(WALK, RenderParams(zoom=10))
        url = unquote(fake_client.urls[0])
        assert "zoom=10" in url
        assert "center=lonlat:55.53,-21.115" in url
        assert "path=" not in url

    def test_second_render_is_cached(self, compositor, fake_client):
        first = compositor.render(WALK, RenderParams())
        second = compositor.render(WALK, RenderParams())
        assert second is first
        assert len(fake_client.urls) == 1

    def test_new_sample_invalidates(self, compositor, fake_client):
        compositor.render(WALK, RenderParams())
        moved = WALK + [{"latitude": -21.1, "longitude": 55.7, "timestamp": WALK[-1]["timestamp"] + 60}]
        compositor.render(moved, RenderParams())
        assert len(fake_client.urls) == 2

    def test_different_colour_is_a_different_entry(self, compositor, fake_client):
        compositor.render(WALK, RenderParams.from_query(color="ff0000"))
        compositor.render(WALK, RenderParams.from_query(color="00ff00"))
        assert len(fake_client.urls) == 2

    def test_mismatched_background_falls_back(self):
        small = make_png(400, 300)
        comp = Compositor(FakeMapClient(body=small), RenderCache())
        try:
            result = comp.render(WALK, RenderParams())
        finally:
            comp.close()
        assert result.body == small

    def test_undecodable_background_falls_back(self):
        comp = Compositor(FakeMapClient(body=b"not an image", content_type="image/jpeg"), RenderCache())
        try:
            result = comp.render(WALK, RenderParams())
        finally:
            comp.close()
        assert result.body == b"not an image"
        assert result.content_type == "image/jpeg"

    def test_provider_error_propagates_and_is_not_cached(self):
        cache = RenderCache()
        comp = Compositor(FakeMapClient(error=ProviderError("HTTP 500", status_code=500)), cache)
        try:
            with pytest.raises(ProviderError):
                comp.render(WALK, RenderParams())
        finally:
            comp.close()
        assert len(cache) == 0

    def test_slow_compositing_times_out(self, fake_client, monkeypatch):
        def slow_compose(background, overlay):
            time.sleep(0.5)
            return background

        monkeypatch.setattr(renderer, "compose", slow_compose)
        cache = RenderCache()
        comp = Compositor(fake_client, cache, render_timeout_s=0.05)
        try:
            with pytest.raises(RenderTimeoutError):
                comp.render(WALK, RenderParams())
        finally:
            comp.close()
        assert len(cache) == 0

    def test_queue_wait_does_not_count_against_compositing(self, fake_client, monkeypatch):
        release = threading.Event()
        calls = []

        def stuck_then_slow(background, overlay):
            calls.append(1)
            if len(calls) == 1:
                release.wait(5)
            else:
                time.sleep(0.6)
            return background

        monkeypatch.setattr(renderer, "compose", stuck_then_slow)
        comp = Compositor(fake_client, RenderCache(), render_timeout_s=1.0, max_workers=1)
        try:
            with pytest.raises(RenderTimeoutError):
                comp.render(WALK, RenderParams())
            # The stuck job holds the only worker for another 0.6s, then
            # this job needs 0.6s: over budget end to end, within it per phase.
            threading.Timer(0.6, release.set).start()
            result = comp.render(WALK, RenderParams(weight=4))
            assert result.body == fake_client.body
        finally:
            release.set()
            comp.close()

    def test_no_free_worker_times_out(self, fake_client, monkeypatch):
        release = threading.Event()

        def stuck(background, overlay):
            release.wait(5)
            return background

        monkeypatch.setattr(renderer, "compose", stuck)
        comp = Compositor(fake_client, RenderCache(), render_timeout_s=0.1, max_workers=1)
        try:
            with pytest.raises(RenderTimeoutError):
                comp.render(WALK, RenderParams())
            with pytest.raises(RenderTimeoutError, match="No compositing worker"):
                comp.render(WALK, RenderParams(weight=4))
        finally:
            release.set()
            comp.close()

    def test_unusable_samples_are_skipped(self, compositor, fake_client):
        points = WALK + [{"latitude": None, "longitude": 55.5, "timestamp": WALK[-1]["timestamp"] + 60}]
        result = compositor.render(points, RenderParams())
        assert _decode(result.body).size == (800, 600)


class TestCompositorEmptyWindow:
    def test_fallback_map_is_cached(self, compositor, fake_client):
        first = compositor.render([], RenderParams())
        second = compositor.render([], RenderParams())
        assert second is first
        assert first.body == fake_client.body
        assert len(fake_client.urls) == 1

    def test_fallback_uses_regional_view(self, compositor, fake_client):
        compositor.render([], RenderParams(zoom=14))
        url = unquote(fake_client.urls[0])
        assert "zoom=9" in url
        assert "center=lonlat:55.53,-21.115" in url

    def test_provider_error_propagates(self):
        comp = Compositor(FakeMapClient(error=ProviderError("down")), RenderCache())
        try:
            with pytest.raises(ProviderError):
                comp.render([], RenderParams())
        finally:
            comp.close()


class TestCompositorProviderMode:
    def test_provider_draws_the_path(self, compositor, fake_client):
        params = RenderParams.from_query(mode="geoapify", stride="1", weight="5", color="00ff00")
        result = compositor.render(GPS_TRACE, params)
        assert result.body == fake_client.body
        url = unquote(fake_client.urls[0])
        assert "path=stroke:00ff00;strokeWidth:5;line:round;enc:" in url

    def test_cached(self, compositor, fake_client):
        params = RenderParams.from_query(mode="geoapify")
        compositor.render(GPS_TRACE, params)
        compositor.render(GPS_TRACE, params)
        assert len(fake_client.urls) == 1


class TestDescribe:
    def test_server_mode(self, compositor, fake_client):
        info = compositor.describe(GPS_TRACE, RenderParams())
        assert info["mode"] == "server"
        assert info["total_points"] == len(GPS_TRACE)
        assert info["filtered_points"] == 4
        assert info["polyline_points"] == 4
        assert info["day_markers"] == 2
        assert info["zoom_used"] == 9
        assert info["tile_size"] == 512
        assert "secret-key" not in info["bg_url"]
        assert fake_client.urls == []

    def test_provider_mode(self, compositor):
        info = compositor.describe(GPS_TRACE, RenderParams.from_query(mode="geoapify"))
        assert info["mode"] == "geoapify"
        assert "secret-key" not in info["url"]
        assert "path=" in info["url"]

    def test_empty_window(self, compositor):
        info = compositor.describe([], RenderParams())
        assert info["mode"] == "empty"
        assert info["total_points"] == 0
        assert "***" in info["bg_url"]
