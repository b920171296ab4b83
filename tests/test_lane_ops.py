"""Tests for the single-lane pipeline."""

from unittest.mock import MagicMock, patch

import pytest

from lanepost.exceptions import InsufficientDiversity, UnresolvableLocation
from lanepost.models.schemas import LocationRef
from lanepost.operations.city_index import InMemoryCityIndex
from lanepost.operations.discovery_ops import DiscoveryFallback
from lanepost.operations.lane_ops import LaneEngine
from lanepost.operations.radius_search import RadiusDiversitySearch, SearchParams
from lanepost.operations.ranking_ops import CandidateRanker, TieBreakCache
from lanepost.operations.row_ops import RowExpander
from lanepost.utils.config import Settings
from lanepost.utils.cost_tracking import DiscoveryGate
from lanepost.utils.serper_client import MockDiscoveryProvider


@pytest.fixture
def config():
    return Settings(contact_methods=["email", "primary phone"], min_pairs=6)


@pytest.fixture
def make_engine(config):
    def _make(index, params=None, discovery=None, allow_partial=True):
        return LaneEngine(
            city_index=index,
            search=RadiusDiversitySearch(index, params or SearchParams(target_areas=6)),
            ranker=CandidateRanker(epsilon=0.03, ceiling_miles=150),
            expander=RowExpander(config=config),
            discovery=discovery,
            min_pairs=6,
            allow_partial=allow_partial,
        )

    return _make


@pytest.fixture
def sparse_index(cincinnati, atlanta, place_city):
    """Two areas per side plus Toledo, which sits beyond a 100 mi search."""
    return InMemoryCityIndex([
        cincinnati,
        place_city(cincinnati, "Mason", "OH", "CIN", 20),
        place_city(cincinnati, "Dayton", "OH", "DAY", 40),
        place_city(cincinnati, "Toledo", "OH", "TOL", 140),
        atlanta,
        place_city(atlanta, "Marietta", "GA", "ATL", 15),
        place_city(atlanta, "Cartersville", "GA", "CTV", 35),
    ])


class TestProcessLane:
    """End-to-end lane processing."""

    def test_cincinnati_to_atlanta(self, city_index, make_engine, sample_lane):
        result = make_engine(city_index).process_lane(sample_lane)

        assert result.status == "ok"
        assert len(result.pairs) == 6
        assert len(result.rows) == 12
        assert len({p.area_key for p in result.pairs}) == 6
        assert result.origin_radius_miles == 125
        assert result.destination_radius_miles == 75
        assert not result.relaxed

    def test_rows_never_use_anchor_city(self, city_index, make_engine, sample_lane):
        result = make_engine(city_index).process_lane(sample_lane)

        assert "Cincinnati" not in {r.origin_city for r in result.rows}
        assert "Atlanta" not in {r.destination_city for r in result.rows}

    def test_weight_violation_fails_before_search(self, make_engine, sample_lane):
        index = MagicMock()
        lane = sample_lane.model_copy(update={"weight_lbs": 60000})

        result = make_engine(index).process_lane(lane)

        assert result.status == "failed"
        assert result.error_type == "EquipmentWeightViolation"
        assert result.rows == []
        index.find_city.assert_not_called()
        index.cities_within_radius.assert_not_called()

    def test_unresolvable_destination(self, city_index, make_engine, sample_lane):
        lane = sample_lane.model_copy(update={"destination": LocationRef(city="Atlantis", state="FL")})

        result = make_engine(city_index).process_lane(lane)

        assert result.status == "failed"
        assert result.error_type == "UnresolvableLocation"
        assert "Atlantis" in result.error

    def test_partial_lane_reported(self, sparse_index, make_engine, sample_lane):
        result = make_engine(sparse_index, SearchParams(target_areas=6, ceiling_miles=100)).process_lane(sample_lane)

        assert result.status == "partial"
        assert len(result.pairs) == 4
        assert len(result.rows) == 8
        assert result.shortfall_reason == "insufficient_unique_markets"

    def test_partial_disallowed_fails(self, sparse_index, make_engine, sample_lane):
        engine = make_engine(sparse_index, SearchParams(target_areas=6, ceiling_miles=100), allow_partial=False)

        result = engine.process_lane(sample_lane)

        assert result.status == "failed"
        assert result.error_type == "InsufficientDiversity"
        assert result.shortfall_reason == "insufficient_unique_markets"
        assert result.rows == []

    def test_relaxed_fill_requested_by_lane(self, sparse_index, make_engine, sample_lane, cincinnati, place_city):
        sparse_index.upsert_cities([place_city(cincinnati, "Hamilton", "OH", "CIN", 30)])
        lane = sample_lane.model_copy(update={"relax_diversity": True})

        result = make_engine(sparse_index, SearchParams(target_areas=6, ceiling_miles=100)).process_lane(lane)

        assert result.status == "ok"
        assert result.relaxed
        assert len(result.pairs) == 6
        pairs = {(p.origin.name, p.destination.name) for p in result.pairs}
        assert len(pairs) == 6

    def test_unexpected_error_captured(self, make_engine, sample_lane):
        index = MagicMock()
        index.find_city.side_effect = RuntimeError("catalog offline")

        result = make_engine(index).process_lane(sample_lane)

        assert result.status == "failed"
        assert result.error_type == "RuntimeError"


class TestBuildLane:
    """build_lane raises instead of reporting."""

    def test_no_candidates_raises(self, cincinnati, atlanta, make_engine, sample_lane):
        engine = make_engine(InMemoryCityIndex([cincinnati, atlanta]))

        with pytest.raises(InsufficientDiversity) as exc:
            engine.build_lane(sample_lane)

        assert exc.value.found == 0

    def test_unresolvable_raises(self, cincinnati, make_engine, sample_lane):
        with pytest.raises(UnresolvableLocation):
            make_engine(InMemoryCityIndex([cincinnati])).build_lane(sample_lane)


class TestDiscoveryIntegration:
    """Discovery fallback wired into the lane."""

    def test_one_discovery_call_per_short_side(
        self, sparse_index, make_engine, sample_lane, fake_provider, discovered_place, cincinnati
    ):
        fake_provider.places = [discovered_place(cincinnati, "Bowling Green", "OH", 95)]
        gate = DiscoveryGate(budget_usd=10.0, cost_per_credit=0.001, max_concurrent=2, slot_timeout_seconds=1)
        discovery = DiscoveryFallback(fake_provider, sparse_index, gate, area_max_miles=100)
        engine = make_engine(sparse_index, SearchParams(target_areas=6, ceiling_miles=100), discovery=discovery)

        result = engine.process_lane(sample_lane)

        assert len(fake_provider.search_calls) == 2
        assert result.discovery_calls == 2
        # Two of six areas found per side: 4 missing x 2 places each
        assert fake_provider.limits == [8, 8]
        # Bowling Green joins TOL, giving 3 origin areas x 2 destination areas
        assert result.status == "ok"
        assert "Bowling Green" in {p.origin.name for p in result.pairs}
        assert sparse_index.find_city("Bowling Green", "OH").provenance == "discovered"

    def test_no_discovery_when_target_met(self, city_index, make_engine, sample_lane, fake_provider):
        discovery = DiscoveryFallback(fake_provider, city_index, DiscoveryGate(budget_usd=10.0))

        make_engine(city_index, discovery=discovery).process_lane(sample_lane)

        assert fake_provider.search_calls == []


class TestResolve:
    """Anchor resolution order."""

    def test_fuzzy_match(self, city_index, make_engine):
        city = make_engine(city_index).resolve(LocationRef(city="Cincinati", state="OH"))

        assert city.name == "Cincinnati"

    def test_geocode_fallback(self, city_index, make_engine, fake_provider, discovered_place, cincinnati):
        fake_provider.geocoded = discovered_place(cincinnati, "Loveland", "OH", 22)
        discovery = DiscoveryFallback(fake_provider, city_index, DiscoveryGate(budget_usd=10.0))

        city = make_engine(city_index, discovery=discovery).resolve(LocationRef(city="Loveland", state="OH"))

        assert city.provenance == "discovered"
        assert fake_provider.geocode_calls == [("Loveland", "OH")]


class TestFromSettings:
    """Engine assembly from configuration."""

    def test_uses_mock_provider_and_given_index(self, city_index):
        config = Settings(use_mock_api=True, min_pairs=4, relax_policy="least_recently_used")

        engine = LaneEngine.from_settings(config, city_index=city_index)

        assert engine.city_index is city_index
        assert isinstance(engine.discovery.provider, MockDiscoveryProvider)
        assert engine.min_pairs == 4
        assert engine.relax_policy == "least_recently_used"

    @patch("lanepost.operations.lane_ops.build_city_index")
    def test_empty_injected_index_and_cache_are_kept(self, mock_build):
        config = Settings(use_mock_api=True, tiebreak_mode="delegated", tiebreak_api_key="sk-test")
        index = InMemoryCityIndex()
        cache = TieBreakCache(ttl_seconds=60)

        engine = LaneEngine.from_settings(config, city_index=index, tiebreak_cache=cache)

        assert engine.city_index is index
        assert engine.discovery.city_index is index
        assert engine.ranker.tie_breaker.cache is cache
        mock_build.assert_not_called()
