"""Utility modules for the data pipeline."""

from georesolver.utils.geo import (
    InvalidGeometryError,
    approximate_utc_offset,
    is_valid_coordinates,
    to_multipolygon,
)
from georesolver.utils.http import HTTPError, RateLimitError, atomic_write_bytes, fetch_with_retry
from georesolver.utils.logging import setup_logging

__all__ = [
    # HTTP utilities
    "fetch_with_retry",
    "atomic_write_bytes",
    "HTTPError",
    "RateLimitError",
    # Logging
    "setup_logging",
    # Geographic utilities
    "InvalidGeometryError",
    "to_multipolygon",
    "is_valid_coordinates",
    "approximate_utc_offset",
]
