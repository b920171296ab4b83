"""Great-circle distance helpers."""

import math

EARTH_RADIUS_MILES = 3958.8
MILES_PER_DEGREE_LAT = 69.0


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in statute miles between two coordinates."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.asin(min(1.0, math.sqrt(a)))


def bounding_box(lat: float, lng: float, radius_miles: float) -> tuple[float, float, float, float]:
    """Lat/lng box that contains every point within radius_miles.

    Used as a cheap prefilter before the exact haversine check.

    Returns:
        (min_lat, max_lat, min_lng, max_lng)
    """
    d_lat = radius_miles / MILES_PER_DEGREE_LAT
    cos_lat = math.cos(math.radians(lat))
    # Near the poles every longitude qualifies
    if cos_lat < 1e-6:
        return (lat - d_lat, lat + d_lat, -180.0, 180.0)
    d_lng = radius_miles / (MILES_PER_DEGREE_LAT * cos_lat)
    return (lat - d_lat, lat + d_lat, lng - d_lng, lng + d_lng)


def in_bounding_box(lat: float, lng: float, box: tuple[float, float, float, float]) -> bool:
    min_lat, max_lat, min_lng, max_lng = box
    return min_lat <= lat <= max_lat and min_lng <= lng <= max_lng
