"""
Amenities collector

Single combined Overpass query, then the nearest feature per category
by haversine distance
"""

from typing import Any, Dict, List, Optional

from loguru import logger

from ..config import get_config
from ..connectors.base import http_scope
from ..exceptions import EnrichmentValidationError
from ..geometry import haversine_distance, is_valid_coordinate
from ..http_client import HttpClient
from .api_client import OverpassAPIClient
from .parser import OSMElement, bucket_elements, get_feature_type, parse_elements
from .query import build_amenities_query

# Output key per bucket
AMENITY_KEYS = {
    "coastline": "coastline",
    "beach": "beach",
    "airport": "airport",
    "main_town": "nearest_main_town",
    "public_transport": "public_transport",
    "supermarket": "supermarket",
    "convenience": "convenience_store",
    "restaurant": "restaurant_or_fastfood",
    "cafe": "cafe",
}


def _empty() -> Dict[str, Any]:
    return {"distance": None, "nearest_point": None}


def find_nearest_feature(elements: List[OSMElement], lat: float, lon: float) -> Dict[str, Any]:
    """
    Nearest node or way vertex to the point.

    Ways are measured to every vertex, so sparse ways overstate the
    distance to their edges.
    """
    best_distance: Optional[float] = None
    best_point = None
    best_element = None

    for element in elements:
        for point_lat, point_lon in element.get_points():
            if not is_valid_coordinate(point_lat, point_lon):
                continue
            d = haversine_distance(lat, lon, point_lat, point_lon)
            if best_distance is None or d < best_distance:
                best_distance = d
                best_point = (point_lat, point_lon)
                best_element = element

    if best_element is None:
        return _empty()

    return {
        "distance": round(best_distance),
        "nearest_point": {
            "lat": best_point[0],
            "lon": best_point[1],
            "name": best_element.tags.get("name"),
            "type": get_feature_type(best_element.tags),
        },
    }


def enrich_amenities(lat: float, lon: float, http: Optional[HttpClient] = None) -> Dict[str, Dict[str, Any]]:
    """
    Distance to the nearest amenity of each category within the radius.

    Raises:
        EnrichmentValidationError: For invalid coordinates
        TransportError: If every Overpass mirror fails
    """
    if not is_valid_coordinate(lat, lon):
        raise EnrichmentValidationError(f"Invalid coordinates: {lat}, {lon}")

    cfg = get_config().amenities
    query = build_amenities_query(lat, lon, cfg.radius_m, cfg.query_timeout_s)

    logger.info(f"Fetching amenities within {cfg.radius_m}m of ({lat}, {lon}) in single batch query")
    with http_scope(http) as client:
        payload = OverpassAPIClient(client).query(query)

    buckets = bucket_elements(parse_elements(payload))
    result = {key: find_nearest_feature(buckets[bucket], lat, lon) for bucket, key in AMENITY_KEYS.items()}

    found = sum(1 for value in result.values() if value["distance"] is not None)
    logger.debug(f"Amenities: {found}/{len(result)} categories found")
    return result
