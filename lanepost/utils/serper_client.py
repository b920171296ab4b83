"""Serper Places client used as the external discovery provider.

Supports both mock and real Serper API implementations via the
USE_MOCK_API toggle.
"""

import math
import random
import re
from typing import Any, Protocol

import httpx

from lanepost.models.schemas import DiscoveredPlace
from lanepost.utils.config import settings
from lanepost.utils.run_logger import get_logger
from lanepost.utils.timing import timing

SERPER_PLACES_URL = "https://google.serper.dev/places"

US_STATES = frozenset({
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "FL", "GA",
    "HI", "ID", "IL", "IN", "IA", "KS", "KY", "LA", "ME", "MD",
    "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV", "NH", "NJ",
    "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "RI", "SC",
    "SD", "TN", "TX", "UT", "VT", "VA", "WA", "WV", "WI", "WY",
    "DC",
})

# "..., Mason, OH 45040, USA" / "Mason, OH" / "Windsor, ON N9A 1A1, Canada"
_ADDRESS_TAIL = re.compile(
    r"(?:^|,\s*)(?P<city>[^,\d][^,]*?),\s*(?P<state>[A-Z]{2})"
    r"(?:\s+(?P<postal>\d{5}(?:-\d{4})?|[A-Z]\d[A-Z]\s?\d[A-Z]\d))?"
    r"(?:,\s*(?P<country>[A-Za-z .]+))?\s*$"
)


class DiscoveryProvider(Protocol):
    def search_nearby(
        self, latitude: float, longitude: float, radius_miles: float, category: str, limit: int | None = None
    ) -> list[DiscoveredPlace]:
        """At most `limit` places (provider default when None)."""
        ...

    def geocode(self, city: str, state: str) -> DiscoveredPlace | None:
        ...


def parse_address(address: str) -> dict[str, str | None] | None:
    """Split a Serper address into city/state/postal/country.

    Returns None when the address has no recognizable `City, ST` tail.
    """
    match = _ADDRESS_TAIL.search(address.strip())
    if not match:
        return None
    country = (match.group("country") or "").strip()
    if country.upper() in ("", "USA", "US", "UNITED STATES"):
        country = "US" if match.group("state") in US_STATES else country or None
    postal = match.group("postal")
    return {
        "city": match.group("city").strip(),
        "state": match.group("state"),
        "postal_code": postal[:5] if postal and postal[:5].isdigit() else postal,
        "country": country,
    }


def place_from_result(result: dict[str, Any]) -> DiscoveredPlace | None:
    """Convert one Serper `places[]` entry, or None if unusable."""
    latitude = result.get("latitude")
    longitude = result.get("longitude")
    address = result.get("address") or ""
    if latitude is None or longitude is None:
        return None
    parsed = parse_address(address)
    if parsed is None:
        return None
    return DiscoveredPlace(
        name=parsed["city"],
        state=parsed["state"],
        postal_code=parsed["postal_code"],
        country=parsed["country"],
        latitude=float(latitude),
        longitude=float(longitude),
        address=address,
    )


def zoom_for_radius(radius_miles: float) -> int:
    """Map zoom level whose viewport roughly covers the radius."""
    if radius_miles <= 0:
        return 14
    return max(3, min(14, round(14 - math.log2(radius_miles))))


class SerperDiscoveryProvider:
    """Real Serper.dev Places API with structured error handling.

    Errors are logged by status class and re-raised; the discovery layer
    decides whether to degrade.
    """

    def __init__(
        self,
        api_key: str | None = None,
        timeout_seconds: float | None = None,
        max_results: int | None = None,
        client: httpx.Client | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.serper_api_key
        self.timeout_seconds = timeout_seconds or settings.serper_timeout_seconds
        self.max_results = max_results or settings.discovery_max_results
        self._client = client

        if not self.api_key:
            raise ValueError(
                "SERPER_API_KEY environment variable is required when use_mock_api=False. "
                "Get your API key from https://serper.dev"
            )

    def _post(self, payload: dict[str, Any], label: str) -> dict[str, Any]:
        logger = get_logger()
        headers = {
            "X-API-KEY": self.api_key,
            "Content-Type": "application/json"
        }
        try:
            with timing(f"Serper API call: {label}"):
                if self._client is not None:
                    response = self._client.post(
                        SERPER_PLACES_URL, headers=headers, json=payload, timeout=self.timeout_seconds
                    )
                else:
                    response = httpx.post(
                        SERPER_PLACES_URL, headers=headers, json=payload, timeout=self.timeout_seconds
                    )
                response.raise_for_status()

            result = response.json()
            if not isinstance(result, dict):
                raise ValueError(f"Unexpected Serper response for {label}: {type(result).__name__} body")
            places = result.get("places", [])
            if not isinstance(places, list) or not all(isinstance(entry, dict) for entry in places):
                raise ValueError(f"Unexpected Serper response for {label}: malformed places list")
            logger.debug(
                f"Serper API success: {label} - {len(places)} places, "
                f"{result.get('credits', 1)} credits"
            )
            return result

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code == 401:
                logger.error("Serper API authentication failed - check API key")
            elif status_code == 429:
                logger.warning("Serper API rate limit exceeded")
            elif 400 <= status_code < 500:
                logger.error(f"Serper API client error {status_code} for {label}: {e.response.text}")
            else:
                logger.error(f"Serper API server error {status_code} for {label}: {e.response.text}")
            raise

        except httpx.TimeoutException:
            logger.warning(f"Serper API timeout after {self.timeout_seconds}s for {label}")
            raise

        except httpx.RequestError as e:
            logger.error(f"Serper API network error for {label}: {type(e).__name__}: {e}")
            raise

    def search_nearby(
        self, latitude: float, longitude: float, radius_miles: float, category: str, limit: int | None = None
    ) -> list[DiscoveredPlace]:
        payload = {
            "q": category,
            "ll": f"@{latitude:.6f},{longitude:.6f},{zoom_for_radius(radius_miles)}z",
            "num": min(limit, self.max_results) if limit else self.max_results,
        }
        result = self._post(payload, f"{category} near {latitude:.3f},{longitude:.3f}")
        places = []
        for entry in result.get("places", []):
            place = place_from_result(entry)
            if place is not None:
                places.append(place)
        return places

    def geocode(self, city: str, state: str) -> DiscoveredPlace | None:
        result = self._post({"q": f"{city}, {state}", "num": 5}, f"geocode {city}, {state}")
        for entry in result.get("places", []):
            place = place_from_result(entry)
            if place is not None and place.state == state.upper():
                return place
        return None


class MockDiscoveryProvider:
    """Offline provider for development without spending credits.

    Produces synthetic places scattered inside the requested radius. All
    mock places report `state` as their state.
    """

    def __init__(self, state: str = "OH", places_per_call: int = 6, seed: int | None = None):
        self.state = state.upper()
        self.places_per_call = places_per_call
        self._rng = random.Random(seed)
        self.calls: list[tuple[str, tuple]] = []

    def search_nearby(
        self, latitude: float, longitude: float, radius_miles: float, category: str, limit: int | None = None
    ) -> list[DiscoveredPlace]:
        self.calls.append(("search_nearby", (latitude, longitude, radius_miles, category, limit)))
        count = min(limit, self.places_per_call) if limit else self.places_per_call
        places = []
        for i in range(count):
            bearing = self._rng.uniform(0, 2 * math.pi)
            miles = self._rng.uniform(0.2, 0.95) * radius_miles
            lat = latitude + (miles / 69.0) * math.cos(bearing)
            lng = longitude + (miles / (69.0 * max(math.cos(math.radians(latitude)), 1e-6))) * math.sin(bearing)
            name = f"Mock {category.title()} {i + 1}"
            places.append(DiscoveredPlace(
                name=name,
                state=self.state,
                postal_code=f"{self._rng.randint(10000, 99999)}",
                country="US",
                latitude=round(lat, 6),
                longitude=round(lng, 6),
                address=f"{name}, {self.state}, USA",
                source="mock",
            ))
        return places

    def geocode(self, city: str, state: str) -> DiscoveredPlace | None:
        self.calls.append(("geocode", (city, state)))
        return None


def build_discovery_provider(config=None) -> DiscoveryProvider:
    """Pick the real or mock provider from USE_MOCK_API."""
    config = config or settings
    if config.use_mock_api:
        return MockDiscoveryProvider()
    return SerperDiscoveryProvider(
        api_key=config.serper_api_key,
        timeout_seconds=config.serper_timeout_seconds,
        max_results=config.discovery_max_results,
    )
