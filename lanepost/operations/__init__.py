"""Lane-posting operations - public API.

Operations are organized by pipeline stage:
- geo_ops / city_index: distance metric and city catalog access
- radius_search: expanding-radius market-area search
- discovery_ops: external discovery fallback and enrichment
- ranking_ops: scoring and near-tie resolution
- pair_ops: strict / relaxed pair assembly
- row_ops / csv_ops: DAT row expansion and CSV chunking
- lane_ops / batch_ops: single-lane engine and batch helpers
"""

from lanepost.operations.batch_ops import (
    CancellationToken,
    load_lane_records,
    parse_lane_records,
    plan_waves,
    summarize_lane_results,
)
from lanepost.operations.city_index import (
    BigQueryCityIndex,
    CityIndex,
    InMemoryCityIndex,
    build_city_index,
)
from lanepost.operations.csv_ops import chunk_lane_rows, chunk_rows, to_csv_text, write_csv_parts
from lanepost.operations.discovery_ops import DiscoveryFallback
from lanepost.operations.geo_ops import haversine_miles
from lanepost.operations.lane_ops import LaneEngine
from lanepost.operations.pair_ops import assemble_pairs, relaxed_assemble, strict_assemble
from lanepost.operations.radius_search import RadiusDiversitySearch, SearchParams, SearchState, next_step
from lanepost.operations.ranking_ops import (
    CandidateRanker,
    DelegatedTieBreaker,
    DeterministicTieBreaker,
    TieBreakCache,
)
from lanepost.operations.row_ops import ReferenceIdGenerator, RowExpander, legal_max_weight

__all__ = [
    # Catalog
    "CityIndex",
    "InMemoryCityIndex",
    "BigQueryCityIndex",
    "build_city_index",
    "haversine_miles",
    # Search and discovery
    "RadiusDiversitySearch",
    "SearchParams",
    "SearchState",
    "next_step",
    "DiscoveryFallback",
    # Ranking
    "CandidateRanker",
    "DeterministicTieBreaker",
    "DelegatedTieBreaker",
    "TieBreakCache",
    # Pairing
    "strict_assemble",
    "relaxed_assemble",
    "assemble_pairs",
    # Rows and CSV
    "RowExpander",
    "ReferenceIdGenerator",
    "legal_max_weight",
    "chunk_rows",
    "chunk_lane_rows",
    "to_csv_text",
    "write_csv_parts",
    # Lanes and batches
    "LaneEngine",
    "CancellationToken",
    "load_lane_records",
    "parse_lane_records",
    "plan_waves",
    "summarize_lane_results",
]
