"""Geofence helpers."""

import math


EARTH_RADIUS_METERS = 6371e3


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two WGS84 points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def is_within_radius(
    lat: float,
    lon: float,
    center_lat: float,
    center_lon: float,
    radius_meters: float,
) -> bool:
    return haversine_distance(lat, lon, center_lat, center_lon) <= radius_meters
