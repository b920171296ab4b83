#!/usr/bin/env python3
"""Validate the city catalog the lane engine searches.

The engine cannot pair a city without coordinates and a market-area code,
so this reports how much of the catalog is pairing-eligible and how many
distinct market areas surround a sample anchor.

Usage:
    python scripts/validate_city_catalog.py
    python scripts/validate_city_catalog.py Cincinnati OH
"""

import sys
from collections import Counter

from lanepost.operations.city_index import InMemoryCityIndex, build_city_index
from lanepost.operations.radius_search import RadiusDiversitySearch, SearchParams
from lanepost.utils.config import settings


def summarize_memory_catalog(index: InMemoryCityIndex) -> bool:
    cities = index.all_cities()
    eligible = [c for c in cities if c.is_pairing_eligible]
    provenance = Counter(c.provenance for c in cities)
    areas = {c.market_area_code for c in eligible}

    print(f"  Cities: {len(cities):,}")
    print(f"  Pairing-eligible: {len(eligible):,}")
    print(f"  Market areas: {len(areas):,}")
    print(f"  Provenance: {dict(provenance)}")
    print()

    missing = [c for c in cities if not c.is_pairing_eligible]
    if missing:
        print(f"⚠️  {len(missing)} cities lack coordinates or a market area:")
        for city in missing[:10]:
            print(f"    - {city.label}")
        print()
    return bool(eligible)


def validate_city_catalog(anchor_city: str | None = None, anchor_state: str | None = None) -> bool:
    print("=" * 70)
    print("CITY CATALOG VALIDATION")
    print("=" * 70)
    print(f"  Backend: {settings.city_index_backend}")
    print()

    try:
        index = build_city_index()
    except Exception as e:
        print(f"❌ CRITICAL FAILURE: Cannot load city catalog")
        print(f"   Error: {type(e).__name__}: {e}")
        return False

    ok = True
    if isinstance(index, InMemoryCityIndex):
        ok = summarize_memory_catalog(index)

    if anchor_city and anchor_state:
        anchor = index.find_city(anchor_city, anchor_state)
        if anchor is None:
            print(f"❌ Anchor {anchor_city}, {anchor_state} not in catalog")
            return False

        outcome = RadiusDiversitySearch(index, SearchParams.from_settings()).search(anchor)
        print(f"Diversity around {anchor.label}:")
        print(f"  State: {outcome.state.value} at {outcome.radius_miles:.0f} mi "
              f"after {outcome.attempts} queries")
        for city, distance in outcome.representatives:
            print(f"    {city.market_area_code:<6} {city.label:<30} {distance:6.1f} mi")
        print()
        if outcome.distinct_areas < settings.search_target_areas:
            print(f"⚠️  Only {outcome.distinct_areas} of {settings.search_target_areas} target areas")

    print("✅ Catalog usable" if ok else "❌ Catalog has no pairing-eligible cities")
    return ok


if __name__ == "__main__":
    args = sys.argv[1:3]
    success = validate_city_catalog(*args) if len(args) == 2 else validate_city_catalog()
    sys.exit(0 if success else 1)
