"""External discovery fallback and catalog enrichment.

Used only when the local catalog under-delivers. Every provider call goes
through the shared DiscoveryGate; provider failures degrade to zero
candidates instead of failing the lane.
"""

from dataclasses import dataclass, field

import httpx

from lanepost.exceptions import ExternalProviderFailure
from lanepost.models.schemas import City, DiscoveredPlace, LocationRef
from lanepost.operations.city_index import CityIndex
from lanepost.operations.geo_ops import haversine_miles
from lanepost.utils.config import settings
from lanepost.utils.cost_tracking import DiscoveryGate
from lanepost.utils.run_logger import get_logger
from lanepost.utils.serper_client import US_STATES, DiscoveryProvider

# ValueError covers malformed JSON bodies, unexpected response shapes and invalid provider records
PROVIDER_ERRORS = (httpx.HTTPError, ValueError)

# Places requested per market area still missing
PLACES_PER_MISSING_AREA = 2


@dataclass
class DiscoveryOutcome:
    cities: list[City] = field(default_factory=list)
    called: bool = False
    skipped_reason: str | None = None
    dropped: int = 0


def is_domestic(place: DiscoveredPlace) -> bool:
    return place.state in US_STATES and (place.country in (None, "US"))


class DiscoveryFallback:
    """Fetch nearby places, assign market areas, and upsert them as discovered cities."""

    def __init__(
        self,
        provider: DiscoveryProvider,
        city_index: CityIndex,
        gate: DiscoveryGate | None = None,
        category: str | None = None,
        area_max_miles: float | None = None,
    ):
        self.provider = provider
        self.city_index = city_index
        self.gate = gate or DiscoveryGate()
        self.category = category or settings.discovery_category
        self.area_max_miles = area_max_miles or settings.area_resolution_max_miles

    def _to_city(self, place: DiscoveredPlace) -> City | None:
        """Resolve a place into a pairing-eligible City, or None to drop it."""
        existing = self.city_index.find_city(place.name, place.state)
        if existing is not None and existing.is_pairing_eligible:
            return existing

        area = self.city_index.nearest_market_area(place.latitude, place.longitude, self.area_max_miles)
        if area is None:
            return None
        return City(
            name=place.name,
            state=place.state,
            latitude=place.latitude,
            longitude=place.longitude,
            market_area_code=area.code,
            market_area_name=area.name,
            postal_code=place.postal_code,
            provenance="discovered",
        )

    def discover(self, anchor: City, radius_miles: float, desired_count: int | None = None) -> DiscoveryOutcome:
        """One provider call around the anchor.

        desired_count is the number of market areas still missing; the
        provider is asked for PLACES_PER_MISSING_AREA places per missing
        area (its own default when None).

        Returns the usable cities (already upserted). Never raises for
        provider trouble: ExternalProviderFailure is logged and the outcome
        is empty.
        """
        logger = get_logger()
        label = f"discovery near {anchor.label}"
        limit = desired_count * PLACES_PER_MISSING_AREA if desired_count else None

        with self.gate.reserve(label) as allowed:
            if not allowed:
                return DiscoveryOutcome(skipped_reason="gate_denied")
            try:
                places = self.provider.search_nearby(
                    anchor.latitude, anchor.longitude, radius_miles, self.category, limit=limit
                )
            except PROVIDER_ERRORS as e:
                failure = ExternalProviderFailure(f"{label} failed: {type(e).__name__}: {e}")
                logger.warning(f"{failure} - continuing with local candidates only")
                return DiscoveryOutcome(called=True, skipped_reason="provider_error")

        accepted: dict[tuple[str, str], City] = {}
        dropped = 0
        for place in places:
            if not is_domestic(place):
                dropped += 1
                continue
            if haversine_miles(anchor.latitude, anchor.longitude, place.latitude, place.longitude) > radius_miles:
                dropped += 1
                continue
            city = self._to_city(place)
            if city is None or city.key == anchor.key:
                dropped += 1
                continue
            accepted.setdefault(city.key, city)

        new_cities = [c for c in accepted.values() if c.provenance == "discovered"]
        if new_cities:
            self.city_index.upsert_cities(new_cities)

        logger.info(
            f"{label}: {len(places)} places, {len(accepted)} usable, {dropped} dropped, "
            f"{len(new_cities)} upserted"
        )
        return DiscoveryOutcome(cities=list(accepted.values()), called=True, dropped=dropped)

    def resolve_anchor(self, location: LocationRef) -> City | None:
        """Geocode an anchor missing from the catalog.

        Resolved anchors with a market area are upserted as discovered.
        Returns None when the provider cannot place it.
        """
        logger = get_logger()
        label = f"geocode {location.city}, {location.state}"

        with self.gate.reserve(label) as allowed:
            if not allowed:
                return None
            try:
                place = self.provider.geocode(location.city, location.state)
            except PROVIDER_ERRORS as e:
                failure = ExternalProviderFailure(f"{label} failed: {type(e).__name__}: {e}")
                logger.warning(str(failure))
                return None

        if place is None or not is_domestic(place):
            return None

        area = self.city_index.nearest_market_area(place.latitude, place.longitude, self.area_max_miles)
        city = City(
            name=location.city,
            state=location.state,
            latitude=place.latitude,
            longitude=place.longitude,
            market_area_code=area.code if area else None,
            market_area_name=area.name if area else None,
            postal_code=location.postal_code or place.postal_code,
            provenance="discovered",
        )
        if city.is_pairing_eligible:
            self.city_index.upsert_cities([city])
            logger.info(f"Resolved {city.label} via provider (area {city.market_area_code})")
        return city
