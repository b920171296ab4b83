"""Prefect tasks for lane processing."""

from prefect import task
from prefect.cache_policies import NONE

from lanepost.models.schemas import LaneRequest, LaneResult
from lanepost.operations.lane_ops import LaneEngine
from lanepost.operations.row_ops import ReferenceIdGenerator


@task(name="build-lane-postings", cache_policy=NONE)
def build_lane_postings_task(
    lane: LaneRequest,
    engine: LaneEngine,
    reference_ids: ReferenceIdGenerator | None = None
) -> LaneResult:
    """Run the single-lane pipeline.

    Never raises for lane-level problems; the LaneResult carries the
    failure so sibling lanes in the same wave are unaffected.

    Args:
        lane: Validated lane request
        engine: Shared engine (city index, discovery gate, tie-break cache)
        reference_ids: Generator shared across the export so ids never repeat

    Returns:
        LaneResult with status ok, partial or failed
    """
    return engine.process_lane(lane, reference_ids)
