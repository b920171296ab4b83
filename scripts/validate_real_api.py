#!/usr/bin/env python3
"""Validate the real Serper Places integration used for discovery.

This script:
1. Checks that the real provider is configured
2. Geocodes one anchor and runs one nearby-city search around it
3. Prints latency, parsed places, and how many would pass the domestic filter

Cost: 2 API credits
Time: a few seconds

Usage:
    USE_MOCK_API=false python scripts/validate_real_api.py Cincinnati OH
"""

import sys
import time

from lanepost.operations.discovery_ops import is_domestic
from lanepost.utils.config import settings
from lanepost.utils.serper_client import SerperDiscoveryProvider


def validate_real_api(city: str, state: str, radius_miles: float = 75.0) -> bool:
    """Run one geocode and one discovery call against Serper."""
    print("=" * 70)
    print("REAL SERPER API VALIDATION")
    print("=" * 70)
    print()

    print("Configuration Check:")
    print(f"  USE_MOCK_API: {settings.use_mock_api}")
    print(f"  SERPER_API_KEY: {'Set' if settings.serper_api_key else 'MISSING'}")
    print(f"  Category query: {settings.discovery_category}")
    print()

    if settings.use_mock_api:
        print("❌ FAILURE: Still using mock API")
        print("   Run with: USE_MOCK_API=false python scripts/validate_real_api.py")
        print()
        return False

    if not settings.serper_api_key:
        print("❌ FAILURE: SERPER_API_KEY not set")
        print("   Add to .env: SERPER_API_KEY=your-key-here")
        print()
        return False

    provider = SerperDiscoveryProvider()

    try:
        start_time = time.perf_counter()
        anchor = provider.geocode(city, state)
        geocode_seconds = time.perf_counter() - start_time

        if anchor is None:
            print(f"❌ FAILURE: Serper could not geocode {city}, {state}")
            return False

        print(f"✅ Geocoded {city}, {state} -> {anchor.latitude:.4f}, {anchor.longitude:.4f} "
              f"({geocode_seconds:.2f}s)")
        print()

        start_time = time.perf_counter()
        places = provider.search_nearby(anchor.latitude, anchor.longitude, radius_miles, settings.discovery_category)
        search_seconds = time.perf_counter() - start_time

    except Exception as e:
        print()
        print("=" * 70)
        print("VALIDATION FAILED")
        print("=" * 70)
        print(f"❌ Error: {type(e).__name__}: {e}")
        print()
        print("Possible causes:")
        print("  - Invalid API key")
        print("  - Network connectivity issue")
        print("  - API rate limiting")
        print("  - Response format changed")
        print()
        return False

    domestic = [p for p in places if is_domestic(p)]

    print("=" * 70)
    print("VALIDATION RESULTS")
    print("=" * 70)
    print(f"  Places parsed: {len(places)}")
    print(f"  Domestic: {len(domestic)}")
    print(f"  Search latency: {search_seconds:.2f}s")
    print()
    for place in places[:15]:
        flag = "✅" if is_domestic(place) else "⚠️ "
        print(f"  {flag} {place.name}, {place.state} {place.postal_code or ''} "
              f"({place.latitude:.3f}, {place.longitude:.3f})")
    print()

    if not domestic:
        print("⚠️  WARNING: No usable places returned - check the category query")
        return False

    print("✅ Real Serper discovery working")
    return True


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print("Usage: python scripts/validate_real_api.py <city> <state> [radius_miles]")
        sys.exit(1)

    radius = float(sys.argv[3]) if len(sys.argv) > 3 else 75.0
    success = validate_real_api(sys.argv[1], sys.argv[2], radius)
    sys.exit(0 if success else 1)
