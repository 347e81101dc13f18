"""Entry point: starts the NiceGUI server with the REST API mounted."""

import logging
import logging.handlers
import os

from nicegui import app, ui

from api import router
from cache import RenderCache
from database import init_db
from renderer import Compositor
from tiles import StaticMapClient

# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------
LOG_DIR = os.environ.get("LOG_DIR", "/data" if os.path.isdir("/data") else ".")
LOG_FILE = os.path.join(LOG_DIR, "parcours-tracker.log")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[
        logging.StreamHandler(),
        logging.handlers.RotatingFileHandler(
            LOG_FILE, maxBytes=5 * 1024 * 1024, backupCount=3,
        ),
    ],
)
logger = logging.getLogger("parcourstracker")

# Quiet noisy libraries
logging.getLogger("watchfiles").setLevel(logging.WARNING)
logging.getLogger("PIL").setLevel(logging.WARNING)
logging.getLogger("urllib3").setLevel(logging.WARNING)

RENDER_CACHE_TTL_S = float(os.environ.get("RENDER_CACHE_TTL_S", "60"))

# Shared render cache and map provider client, reached by handlers via app.state
app.state.compositor = Compositor(StaticMapClient(), RenderCache(ttl_s=RENDER_CACHE_TTL_S))
if not app.state.compositor.client.api_key:
    logger.warning("GEOAPIFY_API_KEY is not set; /api/parcours.png will answer 503")

# Mount FastAPI REST endpoints
app.include_router(router)

# Initialize the database tables on startup
app.on_startup(init_db)
app.on_shutdown(app.state.compositor.close)

# Import pages so their @ui.page decorators register routes
import pages  # noqa: F401, E402

ui.run(
    title="Parcours Tracker",
    port=int(os.environ.get("PORT", "8080")),
    storage_secret=os.environ.get("STORAGE_SECRET", "change-me-in-production"),
    show=False,
)
