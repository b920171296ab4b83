"""Unit tests for lanepost/operations/city_index.py

Covers the in-memory backend end to end and the BigQuery backend's
query/MERGE construction with BigQuery helpers patched at their use site.
"""

import pytest
from google.cloud import bigquery

from lanepost.models.schemas import City
from lanepost.operations.city_index import (
    MERGE_CHUNK_SIZE,
    BigQueryCityIndex,
    InMemoryCityIndex,
    best_fuzzy_match,
)


class TestInMemoryLookups:
    """Exact and fuzzy lookup."""

    def test_find_city_is_case_insensitive(self, city_index):
        city = city_index.find_city("  cincinnati ", "oh")

        assert city is not None
        assert city.name == "Cincinnati"
        assert city.market_area_code == "CIN"

    def test_find_city_missing(self, city_index):
        assert city_index.find_city("Springfield", "IL") is None

    def test_fuzzy_find_city_handles_typo(self, city_index):
        city = city_index.fuzzy_find_city("Cincinati", "OH")

        assert city is not None
        assert city.name == "Cincinnati"

    def test_fuzzy_find_city_stays_in_state(self, city_index):
        """Lexington is in KY; searching OH must not return it."""
        assert city_index.fuzzy_find_city("Lexington", "OH") is None

    def test_fuzzy_below_cutoff_returns_none(self, city_index):
        assert city_index.fuzzy_find_city("Zanesville", "OH") is None

    def test_best_fuzzy_match_empty(self):
        assert best_fuzzy_match("Anything", [], 80) is None


class TestInMemoryRadius:
    """Radius and market-area queries."""

    def test_within_radius_sorted_and_eligible_only(self, city_index, cincinnati):
        hits = city_index.cities_within_radius(cincinnati.latitude, cincinnati.longitude, 75)

        names = [city.name for city, _ in hits]
        distances = [d for _, d in hits]
        assert names == ["Cincinnati", "Mason", "Hamilton", "Dayton", "Springfield", "Lexington"]
        assert distances == sorted(distances)
        # "Nowhere" has no market area
        assert "Nowhere" not in names

    def test_distances_match_placement(self, city_index, cincinnati):
        hits = {
            city.name: d
            for city, d in city_index.cities_within_radius(cincinnati.latitude, cincinnati.longitude, 150)
        }

        assert hits["Lima"] == pytest.approx(90, abs=0.01)
        assert hits["Somerset"] == pytest.approx(120, abs=0.01)

    def test_cities_in_market_area(self, city_index):
        cities = city_index.cities_in_market_area("DAY")

        assert [c.name for c in cities] == ["Dayton", "Springfield"]

    def test_nearest_market_area(self, city_index, cincinnati):
        lat, lng = cincinnati.latitude, cincinnati.longitude
        area = city_index.nearest_market_area(lat + 41 / 69.0934, lng, 50)

        assert area is not None
        assert area.code == "DAY"

    def test_nearest_market_area_respects_max_distance(self, city_index):
        assert city_index.nearest_market_area(45.0, -100.0, 100) is None

    def test_nearest_market_area_ignores_discovered(self, cincinnati, place_city):
        index = InMemoryCityIndex([
            place_city(cincinnati, "Verified", "OH", "VER", 30),
            place_city(cincinnati, "Found", "OH", "DIS", 5, provenance="discovered"),
        ])

        area = index.nearest_market_area(cincinnati.latitude, cincinnati.longitude, 100)

        assert area.code == "VER"


class TestInMemoryUpsert:
    """Upsert keyed by (name, state)."""

    def test_insert_new_city(self, city_index, cincinnati, place_city):
        before = len(city_index)
        changed = city_index.upsert_cities([place_city(cincinnati, "Oxford", "OH", "CIN", 35)])

        assert changed == 1
        assert len(city_index) == before + 1

    def test_same_city_twice_is_noop(self, city_index, cincinnati, place_city):
        oxford = place_city(cincinnati, "Oxford", "OH", "CIN", 35)
        city_index.upsert_cities([oxford])

        assert city_index.upsert_cities([oxford]) == 0

    def test_discovered_never_overwrites_verified(self, city_index, cincinnati, place_city):
        impostor = place_city(cincinnati, "mason", "oh", "XXX", 99, provenance="discovered")

        changed = city_index.upsert_cities([impostor])

        assert changed == 0
        assert city_index.find_city("Mason", "OH").market_area_code == "CIN"

    def test_discovered_updates_discovered(self, city_index, cincinnati, place_city):
        city_index.upsert_cities([place_city(cincinnati, "Newtown", "OH", "CIN", 12, provenance="discovered")])
        city_index.upsert_cities([place_city(cincinnati, "Newtown", "OH", "DAY", 12, provenance="discovered")])

        assert city_index.find_city("Newtown", "OH").market_area_code == "DAY"

    def test_from_csv(self, tmp_path):
        path = tmp_path / "cities.csv"
        path.write_text(
            "city,state,latitude,longitude,market_area_code,market_area_name,postal_code,provenance\n"
            "Cincinnati,OH,39.1031,-84.5120,CIN,Cincinnati Mkt,45202,verified\n"
            "Ghost,OH,,,,,,\n",
            encoding="utf-8",
        )

        index = InMemoryCityIndex.from_csv(path)

        assert len(index) == 2
        assert index.find_city("Cincinnati", "OH").is_pairing_eligible
        ghost = index.find_city("Ghost", "OH")
        assert ghost.provenance == "verified"
        assert not ghost.is_pairing_eligible


class TestBigQueryCityIndex:
    """BigQuery backend query construction."""

    def test_find_city_parameterized(self, mock_execute_query):
        mock_execute_query.return_value = [{
            "city": "Cincinnati", "state": "OH", "latitude": 39.1, "longitude": -84.5,
            "market_area_code": "CIN", "market_area_name": "Cincinnati Mkt",
            "postal_code": "45202", "provenance": "verified",
        }]
        index = BigQueryCityIndex(table_id="proj.ds.cities")

        city = index.find_city("cincinnati", "oh")

        assert city.name == "Cincinnati"
        query, params = mock_execute_query.call_args[0]
        assert "`proj.ds.cities`" in query
        assert "LOWER(city) = LOWER(@city)" in query
        values = {p.name: p.value for p in params}
        assert values == {"city": "cincinnati", "state": "OH"}

    def test_within_radius_uses_gis_filter(self, mock_execute_query):
        mock_execute_query.return_value = [{
            "city": "Mason", "state": "OH", "latitude": 39.36, "longitude": -84.31,
            "market_area_code": "CIN", "market_area_name": None,
            "postal_code": None, "provenance": "discovered", "distance_miles": 20.4,
        }]
        index = BigQueryCityIndex(table_id="proj.ds.cities")

        hits = index.cities_within_radius(39.1, -84.5, 75)

        assert hits[0][0].provenance == "discovered"
        assert hits[0][1] == 20.4
        query, params = mock_execute_query.call_args[0]
        assert "ST_DWITHIN" in query
        radius = next(p for p in params if p.name == "radius_m")
        assert radius.value == pytest.approx(75 * 1609.344)

    def test_upsert_merge_shape(self, mock_execute_dml, cincinnati, place_city):
        mock_execute_dml.return_value = 2
        index = BigQueryCityIndex(table_id="proj.ds.cities")
        cities = [
            place_city(cincinnati, "Mason", "OH", "CIN", 20, provenance="discovered"),
            place_city(cincinnati, "Dayton", "OH", "DAY", 40, provenance="discovered"),
        ]

        changed = index.upsert_cities(cities)

        assert changed == 2
        query, params = mock_execute_dml.call_args[0]
        assert "MERGE `proj.ds.cities`" in query
        assert "ON LOWER(target.city) = LOWER(source.city) AND target.state = source.state" in query
        assert "WHEN NOT MATCHED THEN" in query
        assert "target.provenance = 'verified' AND source.provenance = 'discovered'" in query
        assert all(isinstance(p, bigquery.ScalarQueryParameter) for p in params)
        names = {p.name for p in params}
        assert {"city_0", "city_1", "provenance_1", "updated_at"} <= names

    def test_upsert_chunks_large_sets(self, mock_execute_dml):
        mock_execute_dml.return_value = MERGE_CHUNK_SIZE
        index = BigQueryCityIndex(table_id="proj.ds.cities")
        cities = [
            City(name=f"Town {i}", state="OH", latitude=39.0, longitude=-84.0,
                 market_area_code="CIN", provenance="discovered")
            for i in range(1200)
        ]

        index.upsert_cities(cities)

        assert mock_execute_dml.call_count == 3

    def test_upsert_dedupes_keys(self, mock_execute_dml, cincinnati, place_city):
        mock_execute_dml.return_value = 1
        index = BigQueryCityIndex(table_id="proj.ds.cities")
        twice = [
            place_city(cincinnati, "Mason", "OH", "CIN", 20, provenance="discovered"),
            place_city(cincinnati, "MASON", "OH", "CIN", 21, provenance="discovered"),
        ]

        index.upsert_cities(twice)

        _, params = mock_execute_dml.call_args[0]
        assert "city_1" not in {p.name for p in params}

    def test_upsert_empty_skips_query(self, mock_execute_dml):
        assert BigQueryCityIndex(table_id="proj.ds.cities").upsert_cities([]) == 0
        mock_execute_dml.assert_not_called()
