"""Radius-expanding market-area diversity search.

The expansion loop is an explicit state machine. next_step() is the pure
transition function; RadiusDiversitySearch drives it against a CityIndex.
"""

from dataclasses import dataclass, field, replace
from enum import Enum

from lanepost.exceptions import UnresolvableLocation
from lanepost.models.schemas import City
from lanepost.operations.city_index import CityIndex
from lanepost.utils.config import settings
from lanepost.utils.run_logger import get_logger


class SearchState(str, Enum):
    SEARCHING = "searching"
    EXPANDED = "expanded"
    SATISFIED = "satisfied"
    EXHAUSTED = "exhausted"


TERMINAL_STATES = frozenset({SearchState.SATISFIED, SearchState.EXHAUSTED})


@dataclass(frozen=True)
class SearchParams:
    target_areas: int = 6
    start_radius_miles: float = 75.0
    step_miles: float = 25.0
    multiplier: float | None = None
    ceiling_miles: float = 150.0
    max_attempts: int = 8

    @classmethod
    def from_settings(cls, config=None) -> "SearchParams":
        config = config or settings
        return cls(
            target_areas=config.search_target_areas,
            start_radius_miles=config.search_start_radius_miles,
            step_miles=config.search_radius_step_miles,
            multiplier=config.search_radius_multiplier,
            ceiling_miles=config.search_radius_ceiling_miles,
            max_attempts=config.search_max_attempts,
        )


@dataclass(frozen=True)
class SearchStep:
    """One state of the expansion machine. attempt counts index queries made."""

    state: SearchState
    radius_miles: float
    attempt: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


def initial_step(params: SearchParams) -> SearchStep:
    return SearchStep(
        state=SearchState.SEARCHING,
        radius_miles=min(params.start_radius_miles, params.ceiling_miles),
    )


def expanded_radius(radius_miles: float, params: SearchParams) -> float:
    if params.multiplier:
        grown = radius_miles * params.multiplier
    else:
        grown = radius_miles + params.step_miles
    return min(grown, params.ceiling_miles)


def next_step(step: SearchStep, distinct_areas: int, params: SearchParams) -> SearchStep:
    """Transition after a query at step.radius_miles found distinct_areas areas.

    Terminal states are fixed points.
    """
    if step.is_terminal:
        return step
    if distinct_areas >= params.target_areas:
        return replace(step, state=SearchState.SATISFIED)
    if step.radius_miles >= params.ceiling_miles or step.attempt >= params.max_attempts:
        return replace(step, state=SearchState.EXHAUSTED)

    radius = expanded_radius(step.radius_miles, params)
    if radius <= step.radius_miles:
        # Multiplier <= 1 can never grow the radius
        return replace(step, state=SearchState.EXHAUSTED)
    return SearchStep(state=SearchState.EXPANDED, radius_miles=radius, attempt=step.attempt + 1)


@dataclass
class SearchOutcome:
    """Result of a diversity search around one anchor."""

    anchor: City
    representatives: list[tuple[City, float]] = field(default_factory=list)
    candidates: list[tuple[City, float]] = field(default_factory=list)
    radius_miles: float = 0.0
    state: SearchState = SearchState.SEARCHING
    attempts: int = 0

    @property
    def distinct_areas(self) -> int:
        return len(self.representatives)


def group_by_area(
    hits: list[tuple[City, float]], anchor: City
) -> tuple[list[tuple[City, float]], list[tuple[City, float]]]:
    """Split radius hits into (representatives, deduplicated pool).

    Hits must be sorted nearest first. The anchor city itself is skipped.
    """
    representatives: dict[str, tuple[City, float]] = {}
    seen: set[tuple[str, str, str]] = set()
    pool = []
    for city, distance in hits:
        if city.key == anchor.key or not city.is_pairing_eligible:
            continue
        dedup_key = (city.market_area_code, city.name.lower(), city.state)
        if dedup_key in seen:
            continue
        seen.add(dedup_key)
        pool.append((city, distance))
        representatives.setdefault(city.market_area_code, (city, distance))

    ordered = sorted(representatives.values(), key=lambda hit: (hit[1], hit[0].name, hit[0].state))
    return ordered, pool


class RadiusDiversitySearch:
    """Find nearby cities covering as many distinct market areas as possible."""

    def __init__(self, city_index: CityIndex, params: SearchParams | None = None):
        self.city_index = city_index
        self.params = params or SearchParams.from_settings()

    def collect(self, anchor: City, radius_miles: float) -> SearchOutcome:
        """Single query at a fixed radius (no expansion)."""
        _require_resolved(anchor)
        hits = self.city_index.cities_within_radius(anchor.latitude, anchor.longitude, radius_miles)
        representatives, pool = group_by_area(hits, anchor)
        return SearchOutcome(
            anchor=anchor,
            representatives=representatives,
            candidates=pool,
            radius_miles=radius_miles,
            state=(
                SearchState.SATISFIED
                if len(representatives) >= self.params.target_areas
                else SearchState.EXHAUSTED
            ),
            attempts=1,
        )

    def search(self, anchor: City) -> SearchOutcome:
        """Expand the radius until the target, the ceiling, or the retry budget stops it.

        Raises:
            UnresolvableLocation: If the anchor lacks coordinates or a market area
        """
        logger = get_logger()
        _require_resolved(anchor)

        step = initial_step(self.params)
        outcome = SearchOutcome(anchor=anchor)
        while not step.is_terminal:
            hits = self.city_index.cities_within_radius(
                anchor.latitude, anchor.longitude, step.radius_miles
            )
            representatives, pool = group_by_area(hits, anchor)
            outcome = SearchOutcome(
                anchor=anchor,
                representatives=representatives,
                candidates=pool,
                radius_miles=step.radius_miles,
                attempts=step.attempt,
            )
            step = next_step(step, len(representatives), self.params)
            if step.state == SearchState.EXPANDED:
                logger.info(
                    f"{anchor.label}: {len(representatives)} areas at {outcome.radius_miles:.0f}mi, "
                    f"expanding to {step.radius_miles:.0f}mi"
                )

        outcome.state = step.state
        logger.info(
            f"{anchor.label}: {outcome.distinct_areas} areas within {outcome.radius_miles:.0f}mi "
            f"({outcome.state.value}, {outcome.attempts} queries)"
        )
        return outcome


def _require_resolved(anchor: City) -> None:
    if not anchor.has_coordinates:
        raise UnresolvableLocation(anchor.name, anchor.state, "anchor has no coordinates")
    if not anchor.market_area_code:
        raise UnresolvableLocation(anchor.name, anchor.state, "anchor has no market area")
