"""Tests for the Prefect lane task (called through .fn, no flow run needed)."""

from unittest.mock import MagicMock

from lanepost.models.schemas import LaneResult
from lanepost.operations.lane_ops import LaneEngine
from lanepost.operations.radius_search import RadiusDiversitySearch, SearchParams
from lanepost.operations.row_ops import ReferenceIdGenerator
from lanepost.tasks.lane_tasks import build_lane_postings_task


class TestBuildLanePostingsTask:
    """build_lane_postings_task"""

    def test_delegates_to_engine(self, sample_lane):
        engine = MagicMock()
        engine.process_lane.return_value = LaneResult(lane_id="LN-1001", status="ok")
        generator = ReferenceIdGenerator()

        result = build_lane_postings_task.fn(sample_lane, engine, generator)

        assert result.status == "ok"
        engine.process_lane.assert_called_once_with(sample_lane, generator)

    def test_runs_real_pipeline(self, city_index, sample_lane):
        engine = LaneEngine(city_index, search=RadiusDiversitySearch(city_index, SearchParams(target_areas=6)))

        result = build_lane_postings_task.fn(sample_lane, engine)

        assert result.status == "ok"
        assert len(result.rows) == 2 * len(result.pairs)
