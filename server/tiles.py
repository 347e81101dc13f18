"""Client for the Geoapify static-map API (background rasters for map renders)."""

import logging
import os
from typing import Optional
from urllib.parse import quote_plus, urlencode

import requests

from errors import ProviderError, ProviderNotConfiguredError

logger = logging.getLogger(__name__)

GEOAPIFY_API_KEY = os.environ.get("GEOAPIFY_API_KEY", "")
GEOAPIFY_STATIC_URL = os.environ.get("GEOAPIFY_STATIC_URL", "https://maps.geoapify.com/v1/staticmap")
MAP_STYLE = os.environ.get("MAP_STYLE", "osm-carto")
PROVIDER_TIMEOUT_S = float(os.environ.get("PROVIDER_TIMEOUT_S", "10"))


class StaticMapClient:
    """Fetches ``width`` x ``height`` PNG maps centred on a coordinate.

    Failures are never retried: a non-2xx answer, a transport error or a
    timeout all raise :class:`ProviderError`.
    """

    def __init__(
        self,
        api_key: str = GEOAPIFY_API_KEY,
        base_url: str = GEOAPIFY_STATIC_URL,
        style: str = MAP_STYLE,
        timeout: float = PROVIDER_TIMEOUT_S,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.style = style
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "ParcoursTracker/1.0"})

    def build_url(
        self,
        center: tuple[float, float],
        zoom: int,
        width: int,
        height: int,
        path: Optional[str] = None,
    ) -> str:
        lat, lon = center
        params = {
            "style": self.style,
            "width": str(width),
            "height": str(height),
            "format": "png",
            "center": f"lonlat:{lon},{lat}",
            "zoom": str(zoom),
        }
        if path:
            params["path"] = path
        params["apiKey"] = self.api_key
        return f"{self.base_url}?{urlencode(params)}"

    def redact(self, url: str) -> str:
        """Hide the API key so the URL can be logged or shown in debug output."""
        if not self.api_key:
            return url
        return url.replace(quote_plus(self.api_key), "***").replace(self.api_key, "***")

    def fetch(self, url: str) -> tuple[bytes, str]:
        """GET a rendered map; returns (body, content type)."""
        if not self.api_key:
            raise ProviderNotConfiguredError("GEOAPIFY_API_KEY is not set")

        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error("Static map request failed: %s", e)
            raise ProviderError(f"Map provider unreachable: {e}") from e

        if not 200 <= resp.status_code < 300:
            logger.warning(
                "Static map provider returned %d for %s", resp.status_code, self.redact(url),
            )
            raise ProviderError(
                f"Map provider returned HTTP {resp.status_code}",
                status_code=resp.status_code,
                details=resp.text[:500],
            )

        return resp.content, resp.headers.get("content-type") or "image/png"

    def close(self):
        self.session.close()
