"""Logger lookup that works inside and outside Prefect runs.

Engine code runs both inside Prefect tasks (batch export) and directly
(single-lane CLI calls, tests). get_run_logger() raises outside a run
context, so fall back to Prefect's module logger there.
"""

import logging

from prefect import get_run_logger
from prefect.exceptions import MissingContextError
from prefect.logging import get_logger as get_prefect_logger


def get_logger() -> logging.Logger | logging.LoggerAdapter:
    """Return the active run logger, or the 'lanepost' logger when no run is active."""
    try:
        return get_run_logger()
    except MissingContextError:
        return get_prefect_logger("lanepost")
