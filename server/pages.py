"""NiceGUI web pages: the auto-refreshing parcours map."""

import time

from nicegui import ui

from database import SessionLocal
from stats import aggregate, get_stats_settings
from store import load_ordered

REFRESH_INTERVAL_S = 10 * 60


def _image_src(width: int, height: int) -> str:
    """Map URL with a cache-busting parameter so the browser refetches it."""
    return f"/api/parcours.png?w={width}&h={height}&cb={int(time.time() * 1000)}"


def _format_duration(seconds: int) -> str:
    """Format seconds into human-readable duration."""
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    remaining_min = minutes % 60
    if hours < 24:
        return f"{hours}h {remaining_min}m"
    days = hours // 24
    remaining_hrs = hours % 24
    return f"{days}d {remaining_hrs}h"


def _summary_text() -> str:
    db = SessionLocal()
    try:
        settings = get_stats_settings(db)
        result = aggregate(load_ordered(db), settings)
    finally:
        db.close()
    totals = result["totals"]
    if not result["summary"]["points"]:
        return "No positions recorded yet"
    return (
        f"{totals['km']} km in {result['summary']['days']} day(s), "
        f"{_format_duration(totals['moving_seconds'])} moving, "
        f"+{totals['elevation_gain']} m / -{totals['elevation_loss']} m"
    )


# ---------------------------------------------------------------------------
# Parcours page
# ---------------------------------------------------------------------------
@ui.page("/parcours", title="Parcours - La Réunion")
def parcours_page(w: int = 800, h: int = 600):
    ui.query("body").style(
        "margin: 0; background: #111; color: #eee; font-family: system-ui, Arial, sans-serif"
    )

    with ui.column().classes("w-full items-center gap-2"):
        image = ui.image(_image_src(w, h)).style(f"max-width: 100%; width: {w}px")
        summary = ui.label(_summary_text()).style("opacity: 0.8; font-size: 0.9rem")

    def refresh():
        image.set_source(_image_src(w, h))
        summary.set_text(_summary_text())

    ui.timer(REFRESH_INTERVAL_S, refresh)
