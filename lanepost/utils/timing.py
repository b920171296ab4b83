"""Performance timing utilities for measuring bottlenecks.

Provides a context manager for timing operations and logging results.
"""

import time
from contextlib import contextmanager
from typing import Optional

from lanepost.utils.run_logger import get_logger


@contextmanager
def timing(operation: str, log_threshold_ms: Optional[float] = None):
    """Context manager for timing operations.

    Usage:
        with timing("radius search Cincinnati, OH"):
            search.search(anchor)

        # Only log slow index queries
        with timing("cities_within_radius", log_threshold_ms=250):
            index.cities_within_radius(lat, lng, radius)

    Args:
        operation: Human-readable description of the operation
        log_threshold_ms: Only log if operation takes longer than this (ms)
                         If None, always log

    Yields:
        Dict with elapsed_ms key (updated after context exits)
    """
    logger = get_logger()
    start_time = time.perf_counter()
    timing_data = {"elapsed_ms": 0.0}

    try:
        yield timing_data
    finally:
        elapsed_seconds = time.perf_counter() - start_time
        elapsed_ms = elapsed_seconds * 1000
        timing_data["elapsed_ms"] = elapsed_ms

        should_log = (log_threshold_ms is None) or (elapsed_ms >= log_threshold_ms)

        if should_log:
            if elapsed_ms < 1000:
                logger.info(f"⏱️  {operation}: {elapsed_ms:.1f}ms")
            else:
                logger.info(f"⏱️  {operation}: {elapsed_seconds:.2f}s")
