"""
Report location checks.
Uses the Haversine formula to compare a report's GPS point to the job site.
"""
import math
from typing import Optional
from ..config import settings


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great circle distance between two points on Earth.

    Returns:
        Distance in meters
    """
    R = 6371000

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2 +
        math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R * c


def valid_point(latitude: Optional[float], longitude: Optional[float]) -> bool:
    if latitude is None or longitude is None:
        return False
    return -90 <= latitude <= 90 and -180 <= longitude <= 180


def is_off_site(
    report_lat: Optional[float],
    report_lng: Optional[float],
    site_lat: float,
    site_lng: float,
    radius_m: Optional[float] = None,
) -> bool:
    """True when the report carries a point farther than ``radius_m`` from the site."""
    if report_lat is None or report_lng is None:
        return False
    radius = settings.report_gps_radius_m if radius_m is None else radius_m
    return haversine_distance(report_lat, report_lng, site_lat, site_lng) > radius
