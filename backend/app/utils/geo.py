"""Shared geospatial utilities."""

from math import radians, cos, sin, asin, sqrt

EARTH_RADIUS_MILES = 3959  # Mean Earth radius
MILES_PER_DEGREE_LAT = 69.0
METERS_PER_MILE = 1609.344


def haversine(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Calculate the great circle distance in miles between two points on earth.

    Args:
        lat1: Latitude of point 1 (decimal degrees)
        lng1: Longitude of point 1 (decimal degrees)
        lat2: Latitude of point 2 (decimal degrees)
        lng2: Longitude of point 2 (decimal degrees)

    Returns:
        Distance in miles.
    """
    lat1, lng1, lat2, lng2 = map(radians, [lat1, lng1, lat2, lng2])
    dlng = lng2 - lng1
    dlat = lat2 - lat1
    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlng / 2) ** 2
    # Rounding can push a a hair above 1 for antipodal points
    c = 2 * asin(sqrt(min(a, 1.0)))
    return c * EARTH_RADIUS_MILES


def bounding_box_for_radius(lat: float, lng: float, radius_miles: float) -> tuple[float, float, float, float]:
    """
    Coarse (sw_lat, sw_lng, ne_lat, ne_lng) box enclosing a radius.

    Longitude degrees shrink with cos(latitude); near the poles the box
    widens to the full longitude range. A box crossing the antimeridian
    wraps, giving sw_lng > ne_lng.
    """
    lat_delta = radius_miles / MILES_PER_DEGREE_LAT
    cos_lat = cos(radians(lat))
    if cos_lat < 1e-6 or radius_miles / (MILES_PER_DEGREE_LAT * cos_lat) >= 180.0:
        sw_lng, ne_lng = -180.0, 180.0
    else:
        lng_delta = radius_miles / (MILES_PER_DEGREE_LAT * cos_lat)
        sw_lng, ne_lng = lng - lng_delta, lng + lng_delta
        if sw_lng < -180.0:
            sw_lng += 360.0
        if ne_lng > 180.0:
            ne_lng -= 360.0
    return (
        max(lat - lat_delta, -90.0),
        sw_lng,
        min(lat + lat_delta, 90.0),
        ne_lng,
    )


def miles_to_meters(miles: float) -> int:
    return int(round(miles * METERS_PER_MILE))
