"""City catalog access.

The engine only talks to the CityIndex protocol. Two backends exist:
- InMemoryCityIndex: thread-safe dict store, loaded from a CSV catalog
- BigQueryCityIndex: parameterized GIS queries plus idempotent MERGE upserts
"""

import csv
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Protocol

from google.cloud import bigquery
from rapidfuzz import fuzz, process, utils as rf_utils

from lanepost.models.schemas import City, MarketArea
from lanepost.operations.geo_ops import bounding_box, haversine_miles, in_bounding_box
from lanepost.utils.bigquery_client import cities_table_id, execute_dml, execute_query
from lanepost.utils.config import settings
from lanepost.utils.timing import timing

METERS_PER_MILE = 1609.344

# Rows per MERGE statement (8 query parameters per row)
MERGE_CHUNK_SIZE = 500

CATALOG_COLUMNS = [
    "city",
    "state",
    "latitude",
    "longitude",
    "market_area_code",
    "market_area_name",
    "postal_code",
    "provenance",
]


class CityIndex(Protocol):
    """Query and upsert surface over the geocoded city catalog."""

    def find_city(self, name: str, state: str) -> City | None:
        ...

    def fuzzy_find_city(self, name: str, state: str) -> City | None:
        ...

    def cities_within_radius(
        self, latitude: float, longitude: float, radius_miles: float
    ) -> list[tuple[City, float]]:
        ...

    def cities_in_market_area(self, market_area_code: str) -> list[City]:
        ...

    def nearest_market_area(
        self, latitude: float, longitude: float, max_miles: float
    ) -> MarketArea | None:
        ...

    def upsert_cities(self, cities: Iterable[City]) -> int:
        ...


def best_fuzzy_match(name: str, cities: list[City], cutoff: float) -> City | None:
    """Pick the closest city name with rapidfuzz, or None below cutoff."""
    if not cities:
        return None
    choices = {i: city.name for i, city in enumerate(cities)}
    match = process.extractOne(
        name,
        choices,
        scorer=fuzz.token_sort_ratio,
        processor=rf_utils.default_process,
        score_cutoff=cutoff,
    )
    if match is None:
        return None
    _, _, idx = match
    return cities[idx]


def should_replace(existing: City | None, incoming: City) -> bool:
    """Upsert rule shared by both backends.

    Verified rows are never overwritten by discovered ones.
    """
    if existing is None:
        return True
    if existing == incoming:
        return False
    return not (existing.provenance == "verified" and incoming.provenance == "discovered")


class InMemoryCityIndex:
    """Dict-backed CityIndex keyed by (name.lower(), STATE)."""

    def __init__(self, cities: Iterable[City] = (), fuzzy_cutoff: float | None = None):
        self._lock = threading.RLock()
        self._cities: dict[tuple[str, str], City] = {}
        self.fuzzy_cutoff = settings.fuzzy_match_cutoff if fuzzy_cutoff is None else fuzzy_cutoff
        self.upsert_cities(cities)

    @classmethod
    def from_csv(cls, path: str | Path, fuzzy_cutoff: float | None = None) -> "InMemoryCityIndex":
        """Load a catalog CSV with CATALOG_COLUMNS headers."""
        cities = []
        with open(path, newline="", encoding="utf-8") as f:
            for record in csv.DictReader(f):
                cities.append(_city_from_record(record))
        return cls(cities, fuzzy_cutoff=fuzzy_cutoff)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cities)

    def all_cities(self) -> list[City]:
        with self._lock:
            return list(self._cities.values())

    def find_city(self, name: str, state: str) -> City | None:
        with self._lock:
            return self._cities.get((name.strip().lower(), state.strip().upper()))

    def fuzzy_find_city(self, name: str, state: str) -> City | None:
        state = state.strip().upper()
        with self._lock:
            in_state = [c for c in self._cities.values() if c.state == state]
        return best_fuzzy_match(name, in_state, self.fuzzy_cutoff)

    def cities_within_radius(
        self, latitude: float, longitude: float, radius_miles: float
    ) -> list[tuple[City, float]]:
        """Pairing-eligible cities within radius, nearest first."""
        box = bounding_box(latitude, longitude, radius_miles)
        with self._lock:
            snapshot = list(self._cities.values())

        hits = []
        for city in snapshot:
            if not city.is_pairing_eligible:
                continue
            if not in_bounding_box(city.latitude, city.longitude, box):
                continue
            distance = haversine_miles(latitude, longitude, city.latitude, city.longitude)
            if distance <= radius_miles:
                hits.append((city, distance))
        hits.sort(key=lambda hit: (hit[1], hit[0].name, hit[0].state))
        return hits

    def cities_in_market_area(self, market_area_code: str) -> list[City]:
        with self._lock:
            return sorted(
                (c for c in self._cities.values() if c.market_area_code == market_area_code),
                key=lambda c: c.key,
            )

    def nearest_market_area(
        self, latitude: float, longitude: float, max_miles: float
    ) -> MarketArea | None:
        """Area of the nearest verified city that has one, within max_miles."""
        with self._lock:
            snapshot = list(self._cities.values())

        best: tuple[float, City] | None = None
        for city in snapshot:
            if city.provenance != "verified" or not city.is_pairing_eligible:
                continue
            distance = haversine_miles(latitude, longitude, city.latitude, city.longitude)
            if distance > max_miles:
                continue
            if best is None or distance < best[0]:
                best = (distance, city)
        return best[1].market_area if best else None

    def upsert_cities(self, cities: Iterable[City]) -> int:
        """Insert or update by (name, state). Returns rows changed."""
        changed = 0
        with self._lock:
            for city in cities:
                if should_replace(self._cities.get(city.key), city):
                    self._cities[city.key] = city
                    changed += 1
        return changed


class BigQueryCityIndex:
    """CityIndex backed by the BigQuery cities table (GEOGRAPHY functions)."""

    def __init__(self, table_id: str | None = None, fuzzy_cutoff: float | None = None):
        self.table_id = table_id or cities_table_id()
        self.fuzzy_cutoff = settings.fuzzy_match_cutoff if fuzzy_cutoff is None else fuzzy_cutoff

    def find_city(self, name: str, state: str) -> City | None:
        query = f"""
        SELECT {", ".join(CATALOG_COLUMNS)}
        FROM `{self.table_id}`
        WHERE LOWER(city) = LOWER(@city) AND state = @state
        LIMIT 1
        """
        parameters = [
            bigquery.ScalarQueryParameter("city", "STRING", name.strip()),
            bigquery.ScalarQueryParameter("state", "STRING", state.strip().upper()),
        ]
        rows = list(execute_query(query, parameters))
        return _city_from_record(dict(rows[0])) if rows else None

    def fuzzy_find_city(self, name: str, state: str) -> City | None:
        query = f"""
        SELECT {", ".join(CATALOG_COLUMNS)}
        FROM `{self.table_id}`
        WHERE state = @state
        """
        parameters = [bigquery.ScalarQueryParameter("state", "STRING", state.strip().upper())]
        cities = [_city_from_record(dict(row)) for row in execute_query(query, parameters)]
        return best_fuzzy_match(name, cities, self.fuzzy_cutoff)

    def cities_within_radius(
        self, latitude: float, longitude: float, radius_miles: float
    ) -> list[tuple[City, float]]:
        query = f"""
        SELECT {", ".join(CATALOG_COLUMNS)},
               ST_DISTANCE(ST_GEOGPOINT(longitude, latitude), ST_GEOGPOINT(@lng, @lat)) / {METERS_PER_MILE}
                   AS distance_miles
        FROM `{self.table_id}`
        WHERE latitude IS NOT NULL
          AND longitude IS NOT NULL
          AND market_area_code IS NOT NULL
          AND ST_DWITHIN(ST_GEOGPOINT(longitude, latitude), ST_GEOGPOINT(@lng, @lat), @radius_m)
        ORDER BY distance_miles, city, state
        """
        parameters = [
            bigquery.ScalarQueryParameter("lat", "FLOAT64", latitude),
            bigquery.ScalarQueryParameter("lng", "FLOAT64", longitude),
            bigquery.ScalarQueryParameter("radius_m", "FLOAT64", radius_miles * METERS_PER_MILE),
        ]
        with timing(f"cities_within_radius {radius_miles:.0f}mi", log_threshold_ms=500):
            rows = list(execute_query(query, parameters))
        return [(_city_from_record(dict(row)), float(row["distance_miles"])) for row in rows]

    def cities_in_market_area(self, market_area_code: str) -> list[City]:
        query = f"""
        SELECT {", ".join(CATALOG_COLUMNS)}
        FROM `{self.table_id}`
        WHERE market_area_code = @code
        ORDER BY LOWER(city), state
        """
        parameters = [bigquery.ScalarQueryParameter("code", "STRING", market_area_code)]
        return [_city_from_record(dict(row)) for row in execute_query(query, parameters)]

    def nearest_market_area(
        self, latitude: float, longitude: float, max_miles: float
    ) -> MarketArea | None:
        query = f"""
        SELECT market_area_code, market_area_name
        FROM `{self.table_id}`
        WHERE provenance = 'verified'
          AND market_area_code IS NOT NULL
          AND latitude IS NOT NULL
          AND longitude IS NOT NULL
          AND ST_DWITHIN(ST_GEOGPOINT(longitude, latitude), ST_GEOGPOINT(@lng, @lat), @radius_m)
        ORDER BY ST_DISTANCE(ST_GEOGPOINT(longitude, latitude), ST_GEOGPOINT(@lng, @lat))
        LIMIT 1
        """
        parameters = [
            bigquery.ScalarQueryParameter("lat", "FLOAT64", latitude),
            bigquery.ScalarQueryParameter("lng", "FLOAT64", longitude),
            bigquery.ScalarQueryParameter("radius_m", "FLOAT64", max_miles * METERS_PER_MILE),
        ]
        rows = list(execute_query(query, parameters))
        if not rows:
            return None
        return MarketArea(code=rows[0]["market_area_code"], name=rows[0]["market_area_name"] or "")

    def _upsert_chunk(self, cities: list[City]) -> int:
        """MERGE one chunk (<=500 rows) keyed by (LOWER(city), state)."""
        values_clauses = []
        parameters = [
            bigquery.ScalarQueryParameter("updated_at", "TIMESTAMP", datetime.now(timezone.utc)),
        ]
        for i, city in enumerate(cities):
            values_clauses.append(
                f"(@city_{i}, @state_{i}, @lat_{i}, @lng_{i}, @area_code_{i}, "
                f"@area_name_{i}, @postal_{i}, @provenance_{i})"
            )
            parameters.extend([
                bigquery.ScalarQueryParameter(f"city_{i}", "STRING", city.name),
                bigquery.ScalarQueryParameter(f"state_{i}", "STRING", city.state),
                bigquery.ScalarQueryParameter(f"lat_{i}", "FLOAT64", city.latitude),
                bigquery.ScalarQueryParameter(f"lng_{i}", "FLOAT64", city.longitude),
                bigquery.ScalarQueryParameter(f"area_code_{i}", "STRING", city.market_area_code),
                bigquery.ScalarQueryParameter(f"area_name_{i}", "STRING", city.market_area_name),
                bigquery.ScalarQueryParameter(f"postal_{i}", "STRING", city.postal_code),
                bigquery.ScalarQueryParameter(f"provenance_{i}", "STRING", city.provenance),
            ])

        values_sql = ",\n            ".join(values_clauses)

        merge_query = f"""
        MERGE `{self.table_id}` AS target
        USING (
            SELECT * FROM UNNEST([
                STRUCT<city STRING, state STRING, latitude FLOAT64, longitude FLOAT64,
                       market_area_code STRING, market_area_name STRING, postal_code STRING,
                       provenance STRING>
                {values_sql}
            ])
        ) AS source
        ON LOWER(target.city) = LOWER(source.city) AND target.state = source.state
        WHEN MATCHED AND NOT (target.provenance = 'verified' AND source.provenance = 'discovered') THEN
            UPDATE SET latitude = source.latitude,
                       longitude = source.longitude,
                       market_area_code = source.market_area_code,
                       market_area_name = source.market_area_name,
                       postal_code = source.postal_code,
                       provenance = source.provenance,
                       updated_at = @updated_at
        WHEN NOT MATCHED THEN
            INSERT (city, state, latitude, longitude, market_area_code, market_area_name,
                    postal_code, provenance, updated_at)
            VALUES (source.city, source.state, source.latitude, source.longitude,
                    source.market_area_code, source.market_area_name, source.postal_code,
                    source.provenance, @updated_at)
        """

        with timing(f"MERGE upsert {len(cities)} cities"):
            return execute_dml(merge_query, parameters)

    def upsert_cities(self, cities: Iterable[City]) -> int:
        """Idempotent MERGE upsert, chunked to stay under BigQuery parameter limits."""
        # Last occurrence wins within one call so the MERGE source has unique keys
        unique = list({city.key: city for city in cities}.values())
        if not unique:
            return 0

        total = 0
        for i in range(0, len(unique), MERGE_CHUNK_SIZE):
            total += self._upsert_chunk(unique[i:i + MERGE_CHUNK_SIZE])
        return total


def _city_from_record(record: dict) -> City:
    """Build a City from a catalog row (CSV dict or BigQuery Row mapping)."""

    def _float(value) -> float | None:
        if value is None or value == "":
            return None
        return float(value)

    def _text(value) -> str | None:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    return City(
        name=record["city"],
        state=record["state"],
        latitude=_float(record.get("latitude")),
        longitude=_float(record.get("longitude")),
        market_area_code=_text(record.get("market_area_code")),
        market_area_name=_text(record.get("market_area_name")),
        postal_code=_text(record.get("postal_code")),
        provenance=_text(record.get("provenance")) or "verified",
    )


def build_city_index(config=None) -> CityIndex:
    """Construct the configured backend."""
    config = config or settings
    if config.city_index_backend == "bigquery":
        return BigQueryCityIndex(fuzzy_cutoff=config.fuzzy_match_cutoff)
    return InMemoryCityIndex.from_csv(config.city_catalog_path, fuzzy_cutoff=config.fuzzy_match_cutoff)
