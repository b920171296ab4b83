"""Data models and schemas for the pipeline."""

from lanepost.models.schemas import (
    DAT_HEADERS,
    BatchReport,
    CandidatePair,
    City,
    DiscoveredPlace,
    LaneRequest,
    LaneResult,
    LocationRef,
    MarketArea,
    PostingRow,
    RankedCandidate,
)

__all__ = [
    "DAT_HEADERS",
    "BatchReport",
    "CandidatePair",
    "City",
    "DiscoveredPlace",
    "LaneRequest",
    "LaneResult",
    "LocationRef",
    "MarketArea",
    "PostingRow",
    "RankedCandidate",
]
