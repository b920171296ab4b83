"""Prefect flows for the lane-posting pipeline."""

from lanepost.flows.export_lanes import export_lane_postings, request_cancellation

__all__ = [
    "export_lane_postings",
    "request_cancellation",
]
