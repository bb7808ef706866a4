# app/services/distance.py
import json
import logging
import math
from typing import Callable, Iterable, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

LatLng = Tuple[float, float]


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres, rounded to one decimal."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_KM * c, 1)


def _from_mapping(value: Mapping) -> Optional[LatLng]:
    for lat_key, lng_key in (("lat", "lng"), ("latitude", "longitude")):
        if value.get(lat_key) is not None and value.get(lng_key) is not None:
            try:
                return float(value[lat_key]), float(value[lng_key])
            except (TypeError, ValueError):
                return None
    return None


def parse_location(value) -> Optional[LatLng]:
    """
    Accepts "lat,lng", a JSON object string or a mapping with lat/lng or
    latitude/longitude keys. Anything unparseable gives None.
    """
    if not value:
        return None
    if isinstance(value, Mapping):
        return _from_mapping(value)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if text.startswith("{"):
        try:
            parsed = json.loads(text)
        except ValueError:
            logger.debug(f"Unparseable location: {text!r}")
            return None
        return _from_mapping(parsed) if isinstance(parsed, dict) else None

    parts = [p.strip() for p in text.split(",")]
    if len(parts) != 2:
        return None
    try:
        lat, lng = float(parts[0]), float(parts[1])
    except ValueError:
        return None
    if math.isnan(lat) or math.isnan(lng):
        return None
    return lat, lng


def format_distance(km: float) -> str:
    if km < 1:
        return f"{round(km * 1000)}m"
    return f"{km:.1f}km"


def distance_category(km: float) -> str:
    if km < 1:
        return "very-close"
    if km < 5:
        return "nearby"
    if km < 15:
        return "moderate"
    return "far"


def distance_between(origin, target) -> Optional[float]:
    a = parse_location(origin)
    b = parse_location(target)
    if not a or not b:
        return None
    return haversine_km(a[0], a[1], b[0], b[1])


def rank_by_distance(items: Iterable, origin, location_of: Callable) -> List[Tuple[object, Optional[float]]]:
    """
    Pair each item with its distance from `origin` and order nearest first.
    Items whose location is unknown follow in their original order.
    """
    located, unlocated = [], []
    for item in items:
        km = distance_between(origin, location_of(item))
        if km is None:
            unlocated.append((item, None))
        else:
            located.append((item, km))
    # sorted() is stable so equal distances keep their input order
    located = sorted(located, key=lambda pair: pair[1])
    return located + unlocated
