"""Central error types shared by the analytics and rendering modules."""

from __future__ import annotations


class TrackerError(RuntimeError):
    """Base error for the trajectory server."""


class ValidationError(TrackerError, ValueError):
    """Raised when a request parameter cannot be interpreted."""


class ProviderError(TrackerError):
    """Raised when the map-tile provider fails or returns a non-2xx response."""

    def __init__(self, message: str, status_code: int | None = None, details: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class ProviderNotConfiguredError(ProviderError):
    """Raised when no API key is available for the map-tile provider."""


class RenderTimeoutError(TrackerError):
    """Raised when compositing or encoding the map image takes too long."""


__all__ = [
    "TrackerError",
    "ValidationError",
    "ProviderError",
    "ProviderNotConfiguredError",
    "RenderTimeoutError",
]
