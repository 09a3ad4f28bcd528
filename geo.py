import math
from typing import Optional

EARTH_RADIUS_KM = 6371.0088


def location_point(latitude: Optional[float], longitude: Optional[float]) -> Optional[dict]:
    """GeoJSON point for a lat/lon pair, or None when either is missing."""
    if latitude is None or longitude is None:
        return None
    return {"type": "Point", "coordinates": [float(longitude), float(latitude)]}


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    # haversine
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def bounding_box(latitude: float, longitude: float, radius_km: float) -> dict:
    """Coarse lat/lon range filter that contains every point within radius_km.

    Used to narrow the candidate set in the store before exact distances are
    computed. Longitude is left unbounded near the poles and when the box would
    cross the antimeridian.
    """
    angular = radius_km / EARTH_RADIUS_KM
    dlat = math.degrees(angular)
    query = {"latitude": {"$gte": latitude - dlat, "$lte": latitude + dlat}}
    cos_lat = math.cos(math.radians(latitude))
    if angular < math.pi / 2 and cos_lat > 1e-6:
        ratio = math.sin(angular) / cos_lat
        if ratio < 1:
            dlon = math.degrees(math.asin(ratio))
            if -180 <= longitude - dlon and longitude + dlon <= 180:
                query["longitude"] = {"$gte": longitude - dlon, "$lte": longitude + dlon}
    return query
