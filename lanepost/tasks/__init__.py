"""Prefect tasks for the lane-posting pipeline."""

from lanepost.tasks.lane_tasks import build_lane_postings_task

__all__ = [
    "build_lane_postings_task",
]
