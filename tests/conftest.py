"""Pytest configuration and shared fixtures.

This file is automatically loaded by pytest and provides fixtures
that can be used across all test files.

Synthetic catalogs place cities due north or due south of their anchor
on the same meridian, so the haversine distance equals the requested
mileage exactly.
"""

import math
from datetime import date
from unittest.mock import MagicMock, patch

import pytest

from lanepost.models.schemas import City, DiscoveredPlace, LaneRequest, LocationRef
from lanepost.operations.city_index import InMemoryCityIndex
from lanepost.operations.geo_ops import EARTH_RADIUS_MILES

MILES_PER_DEGREE = EARTH_RADIUS_MILES * math.pi / 180

CINCINNATI = (39.1031, -84.5120)
ATLANTA = (33.7490, -84.3880)


def city_near(
    anchor: City | tuple[float, float],
    name: str,
    state: str,
    area: str | None,
    miles: float,
    provenance: str = "verified",
) -> City:
    """City `miles` due north (positive) or due south (negative) of anchor."""
    if isinstance(anchor, City):
        lat, lng = anchor.latitude, anchor.longitude
    else:
        lat, lng = anchor
    return City(
        name=name,
        state=state,
        latitude=lat + miles / MILES_PER_DEGREE,
        longitude=lng,
        market_area_code=area,
        market_area_name=f"{area} Mkt" if area else None,
        provenance=provenance,
    )


@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch):
    """Set required environment variables for all tests.

    This fixture runs automatically for all tests (autouse=True)
    to ensure a consistent test environment.
    """
    monkeypatch.setenv("GOOGLE_APPLICATION_CREDENTIALS", "/fake/path/to/credentials.json")
    monkeypatch.setenv("BIGQUERY_PROJECT_ID", "test-project")
    monkeypatch.setenv("BIGQUERY_DATASET", "test_dataset")
    monkeypatch.setenv("USE_MOCK_API", "true")
    monkeypatch.setenv("SERPER_API_KEY", "")  # Not needed for mock


@pytest.fixture
def place_city():
    """city_near() helper for tests that build their own catalogs."""
    return city_near


@pytest.fixture
def mock_execute_query():
    """Mock execute_query where the city index uses it."""
    with patch("lanepost.operations.city_index.execute_query") as mock:
        yield mock


@pytest.fixture
def mock_execute_dml():
    """Mock execute_dml where the city index uses it."""
    with patch("lanepost.operations.city_index.execute_dml") as mock:
        yield mock


@pytest.fixture
def cincinnati():
    """Origin anchor city."""
    return City(
        name="Cincinnati",
        state="OH",
        latitude=CINCINNATI[0],
        longitude=CINCINNATI[1],
        market_area_code="CIN",
        market_area_name="CIN Mkt",
        postal_code="45202",
    )


@pytest.fixture
def atlanta():
    """Destination anchor city."""
    return City(
        name="Atlanta",
        state="GA",
        latitude=ATLANTA[0],
        longitude=ATLANTA[1],
        market_area_code="ATL",
        market_area_name="ATL Mkt",
        postal_code="30303",
    )


@pytest.fixture
def cincinnati_cities(cincinnati):
    """Cities around Cincinnati.

    3 areas within 75 mi, 4 within 100 mi, 6 within 125 mi, 7 within 150 mi.
    """
    return [
        cincinnati,
        city_near(CINCINNATI, "Mason", "OH", "CIN", 20),
        city_near(CINCINNATI, "Hamilton", "OH", "CIN", 30),
        city_near(CINCINNATI, "Dayton", "OH", "DAY", 40),
        city_near(CINCINNATI, "Springfield", "OH", "DAY", 55),
        city_near(CINCINNATI, "Lexington", "KY", "LEX", -60),
        city_near(CINCINNATI, "Lima", "OH", "LIM", 90),
        city_near(CINCINNATI, "Findlay", "OH", "FIN", 110),
        city_near(CINCINNATI, "Somerset", "KY", "SOM", -120),
        city_near(CINCINNATI, "Toledo", "OH", "TOL", 140),
        # Not pairing-eligible: no market area
        city_near(CINCINNATI, "Nowhere", "OH", None, 10),
    ]


@pytest.fixture
def atlanta_cities(atlanta):
    """Six areas around Atlanta within 75 mi."""
    return [
        atlanta,
        city_near(ATLANTA, "Marietta", "GA", "ATL", 15),
        city_near(ATLANTA, "Cartersville", "GA", "CTV", 35),
        city_near(ATLANTA, "Griffin", "GA", "GRF", -35),
        city_near(ATLANTA, "Calhoun", "GA", "CAL", 55),
        city_near(ATLANTA, "Barnesville", "GA", "BRN", -50),
        city_near(ATLANTA, "Dalton", "GA", "DAL", 70),
        city_near(ATLANTA, "Forsyth", "GA", "FOR", -65),
    ]


@pytest.fixture
def city_index(cincinnati_cities, atlanta_cities):
    """In-memory catalog holding both anchors and their neighbours."""
    return InMemoryCityIndex(cincinnati_cities + atlanta_cities, fuzzy_cutoff=85)


class FakeDiscoveryProvider:
    """Discovery provider returning canned places (or raising)."""

    def __init__(self, places=None, geocoded=None, error: Exception | None = None):
        self.places = places or []
        self.geocoded = geocoded
        self.error = error
        self.search_calls = []
        self.limits = []
        self.geocode_calls = []

    def search_nearby(self, latitude, longitude, radius_miles, category, limit=None):
        self.search_calls.append((latitude, longitude, radius_miles, category))
        self.limits.append(limit)
        if self.error:
            raise self.error
        return list(self.places)

    def geocode(self, city, state):
        self.geocode_calls.append((city, state))
        if self.error:
            raise self.error
        return self.geocoded


@pytest.fixture
def fake_provider():
    return FakeDiscoveryProvider()


@pytest.fixture
def discovered_place():
    """Factory for provider places near an anchor."""

    def _make(anchor, name, state, miles, country="US"):
        lat, lng = anchor.latitude, anchor.longitude
        return DiscoveredPlace(
            name=name,
            state=state,
            country=country,
            postal_code="00000",
            latitude=lat + miles / MILES_PER_DEGREE,
            longitude=lng,
            address=f"{name}, {state}",
        )

    return _make


@pytest.fixture
def fake_judge():
    """Tie-break judge double; .judge returns a verdict dict."""
    judge = MagicMock()
    judge.judge.return_value = {"winner": "B", "reason": "better fit"}
    return judge


@pytest.fixture
def sample_lane():
    """Cincinnati -> Atlanta van lane with a fixed weight."""
    return LaneRequest(
        lane_id="LN-1001",
        origin=LocationRef(city="Cincinnati", state="OH"),
        destination=LocationRef(city="Atlanta", state="GA"),
        equipment_code="V",
        pickup_earliest=date(2025, 3, 10),
        pickup_latest=date(2025, 3, 11),
        length_ft=53,
        weight_lbs=42000,
        comment="Dock high only",
        commodity="Paper goods",
    )


@pytest.fixture
def sample_lane_record():
    """Raw JSON lane record as supplied by the lane-management side."""
    return {
        "lane_id": "LN-2002",
        "origin": {"city": "Cincinnati", "state": "oh"},
        "destination": {"city": "Atlanta", "state": "GA"},
        "equipment_code": "r",
        "pickup_earliest": "2025-03-10",
        "randomize_weight": True,
        "weight_min": 38000,
        "weight_max": 42000,
    }
