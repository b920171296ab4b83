"""Single-lane pipeline: resolve, search, discover, rank, pair, expand.

LaneEngine.build_lane raises LanePostError subclasses; process_lane turns
any outcome into a LaneResult so one lane never takes down a batch.
"""

from dataclasses import dataclass

from lanepost.exceptions import InsufficientDiversity, LanePostError, UnresolvableLocation
from lanepost.models.schemas import City, LaneRequest, LaneResult, LocationRef
from lanepost.operations.city_index import CityIndex, build_city_index
from lanepost.operations.discovery_ops import DiscoveryFallback
from lanepost.operations.pair_ops import PairAssembly, RelaxPolicy, assemble_pairs
from lanepost.operations.radius_search import RadiusDiversitySearch, SearchOutcome, SearchParams
from lanepost.operations.ranking_ops import CandidateRanker, TieBreakCache, build_tie_breaker
from lanepost.operations.row_ops import ReferenceIdGenerator, RowExpander, weight_bounds
from lanepost.utils.config import settings
from lanepost.utils.cost_tracking import DiscoveryGate
from lanepost.utils.run_logger import get_logger
from lanepost.utils.serper_client import build_discovery_provider
from lanepost.utils.timing import timing


@dataclass
class SideResult:
    """Search result for one side of a lane (origin or destination)."""

    anchor: City
    outcome: SearchOutcome
    discovery_calls: int = 0


class LaneEngine:
    """Wires the pipeline stages together for one lane at a time.

    Safe to share across worker threads: all mutable shared state lives in
    the CityIndex, the DiscoveryGate and the TieBreakCache.
    """

    def __init__(
        self,
        city_index: CityIndex,
        search: RadiusDiversitySearch | None = None,
        ranker: CandidateRanker | None = None,
        expander: RowExpander | None = None,
        discovery: DiscoveryFallback | None = None,
        min_pairs: int | None = None,
        relax_policy: RelaxPolicy | None = None,
        allow_partial: bool | None = None,
        max_candidates: int | None = None,
    ):
        self.city_index = city_index
        self.search = search or RadiusDiversitySearch(city_index)
        self.ranker = ranker or CandidateRanker()
        self.expander = expander or RowExpander()
        self.discovery = discovery
        self.min_pairs = min_pairs or settings.min_pairs
        self.relax_policy = relax_policy or settings.relax_policy
        self.allow_partial = settings.allow_partial_lanes if allow_partial is None else allow_partial
        self.max_candidates = max_candidates or settings.max_candidates_per_side

    @classmethod
    def from_settings(
        cls,
        config=None,
        city_index: CityIndex | None = None,
        gate: DiscoveryGate | None = None,
        tiebreak_cache: TieBreakCache | None = None,
    ) -> "LaneEngine":
        """Build an engine with the configured backends and providers."""
        config = config or settings
        if city_index is None:
            city_index = build_city_index(config)
        params = SearchParams.from_settings(config)
        discovery = DiscoveryFallback(
            provider=build_discovery_provider(config),
            city_index=city_index,
            gate=gate or DiscoveryGate(
                budget_usd=config.discovery_budget_usd,
                cost_per_credit=config.cost_per_credit,
                max_concurrent=config.max_concurrent_discovery_calls,
                slot_timeout_seconds=config.discovery_slot_timeout_seconds,
            ),
            category=config.discovery_category,
            area_max_miles=config.area_resolution_max_miles,
        )
        return cls(
            city_index=city_index,
            search=RadiusDiversitySearch(city_index, params),
            ranker=CandidateRanker(
                tie_breaker=build_tie_breaker(config, tiebreak_cache),
                epsilon=config.tiebreak_epsilon,
                ceiling_miles=config.search_radius_ceiling_miles,
            ),
            expander=RowExpander(config=config),
            discovery=discovery,
            min_pairs=config.min_pairs,
            relax_policy=config.relax_policy,
            allow_partial=config.allow_partial_lanes,
            max_candidates=config.max_candidates_per_side,
        )

    def resolve(self, location: LocationRef) -> City:
        """Catalog exact match, then fuzzy match, then provider geocode.

        Raises:
            UnresolvableLocation: If every source fails
        """
        logger = get_logger()
        city = self.city_index.find_city(location.city, location.state)
        if city is not None:
            return city

        city = self.city_index.fuzzy_find_city(location.city, location.state)
        if city is not None:
            logger.info(f"Fuzzy matched {location.city}, {location.state} to {city.label}")
            return city

        if self.discovery is not None:
            city = self.discovery.resolve_anchor(location)
            if city is not None:
                return city

        raise UnresolvableLocation(location.city, location.state)

    def search_side(self, anchor: City) -> SideResult:
        """Radius search, plus one discovery call if the target was missed."""
        outcome = self.search.search(anchor)
        calls = 0
        if outcome.distinct_areas < self.search.params.target_areas and self.discovery is not None:
            missing = self.search.params.target_areas - outcome.distinct_areas
            discovered = self.discovery.discover(anchor, outcome.radius_miles, desired_count=missing)
            calls = int(discovered.called)
            if discovered.cities:
                outcome = self.search.collect(anchor, outcome.radius_miles)
        return SideResult(anchor=anchor, outcome=outcome, discovery_calls=calls)

    def build_lane(
        self, lane: LaneRequest, reference_ids: ReferenceIdGenerator | None = None
    ) -> tuple[PairAssembly, list, SideResult, SideResult]:
        """Run the full pipeline for one lane.

        Returns:
            (assembly, rows, origin side, destination side)

        Raises:
            EquipmentWeightViolation: Before any search
            UnresolvableLocation: Anchor cannot be resolved
            InsufficientDiversity: Zero pairs, or a shortfall with partial lanes disabled
            FormatViolation: A generated row breaks the upload schema
        """
        logger = get_logger()

        # Weight is checked before any search or discovery spend
        weight_bounds(lane, self.expander.config)

        origin = self.resolve(lane.origin)
        destination = self.resolve(lane.destination)

        with timing(f"Lane {lane.lane_id} search"):
            origin_side = self.search_side(origin)
            destination_side = self.search_side(destination)

        origins = self.ranker.rank(origin_side.outcome.candidates, lane.equipment_code)[:self.max_candidates]
        destinations = self.ranker.rank(destination_side.outcome.candidates, lane.equipment_code)[:self.max_candidates]

        assembly = assemble_pairs(
            origins,
            destinations,
            self.min_pairs,
            fill=lane.relax_diversity,
            policy=self.relax_policy,
        )

        if not assembly.pairs:
            raise InsufficientDiversity(assembly.shortfall_reason or "insufficient_candidates", 0, self.min_pairs)
        if assembly.is_short:
            if not self.allow_partial:
                raise InsufficientDiversity(assembly.shortfall_reason, len(assembly.pairs), self.min_pairs)
            logger.warning(
                f"Lane {lane.lane_id}: {len(assembly.pairs)}/{self.min_pairs} pairs "
                f"({assembly.shortfall_reason})"
            )

        rows = self.expander.expand(lane, assembly.pairs, reference_ids)
        return assembly, rows, origin_side, destination_side

    def process_lane(
        self, lane: LaneRequest, reference_ids: ReferenceIdGenerator | None = None
    ) -> LaneResult:
        """build_lane with every failure captured in the result."""
        logger = get_logger()
        try:
            assembly, rows, origin_side, destination_side = self.build_lane(lane, reference_ids)
        except LanePostError as e:
            logger.error(f"Lane {lane.lane_id} failed: {type(e).__name__}: {e}")
            return LaneResult(
                lane_id=lane.lane_id,
                status="failed",
                shortfall_reason=getattr(e, "reason", None),
                error_type=type(e).__name__,
                error=str(e),
            )
        except Exception as e:
            logger.error(f"Lane {lane.lane_id} failed unexpectedly: {type(e).__name__}: {e}")
            return LaneResult(
                lane_id=lane.lane_id,
                status="failed",
                error_type=type(e).__name__,
                error=str(e),
            )

        result = LaneResult(
            lane_id=lane.lane_id,
            status="partial" if assembly.is_short else "ok",
            rows=rows,
            pairs=assembly.pairs,
            relaxed=assembly.relaxed,
            shortfall_reason=assembly.shortfall_reason,
            origin_radius_miles=origin_side.outcome.radius_miles,
            destination_radius_miles=destination_side.outcome.radius_miles,
            discovery_calls=origin_side.discovery_calls + destination_side.discovery_calls,
        )
        logger.info(
            f"Lane {lane.lane_id}: {len(result.pairs)} pairs, {len(result.rows)} rows ({result.status})"
        )
        return result
