"""Exception types raised by the exporter."""
from typing import Optional


class ExporterError(Exception):
    """Base class for exporter errors."""


class ConfigError(ExporterError):
    """Configuration is missing or invalid. Fatal at startup."""


class FetchError(ExporterError):
    """A remote API call failed.

    ``transient`` is True for network failures, timeouts, throttling and
    server errors; False for authentication and other client errors. The
    collection core treats both the same way.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, transient: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.transient = transient


class AggregationError(ExporterError):
    """A producer recorded labels its metric family does not declare."""
