"""Utility modules for configuration, logging and external clients."""

from lanepost.utils.bigquery_client import execute_dml, execute_query, get_bigquery_client
from lanepost.utils.config import Settings, settings
from lanepost.utils.run_logger import get_logger
from lanepost.utils.timing import timing

__all__ = [
    "Settings",
    "settings",
    "get_bigquery_client",
    "execute_query",
    "execute_dml",
    "get_logger",
    "timing",
]
