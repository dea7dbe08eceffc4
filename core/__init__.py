"""Core utilities shared by the simulator and its CLI."""

from .logging_setup import setup_logging, teardown_logging
from .market_metadata import (
    DEFAULT_BUCKET,
    SUPPORTED_TIMESPANS,
    TIMESPAN_ALIASES,
    WILDCARD_BUCKET,
    bar_cache_label,
    bucket_matches,
    normalize_bucket,
    normalize_symbol,
    normalize_timespan,
)

__all__ = [
    "setup_logging",
    "teardown_logging",
    "DEFAULT_BUCKET",
    "WILDCARD_BUCKET",
    "TIMESPAN_ALIASES",
    "SUPPORTED_TIMESPANS",
    "normalize_symbol",
    "normalize_bucket",
    "bucket_matches",
    "normalize_timespan",
    "bar_cache_label",
]
