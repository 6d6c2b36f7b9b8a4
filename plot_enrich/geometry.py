"""
Geometry utility functions

Spatial primitives shared by every connector:
- Haversine distance, centroid, point-in-polygon
- Bounding boxes around a point or from a plot area
- Best-candidate selection and progressive buffer search
- UTM projections for Spain and Germany
"""

import math
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from loguru import logger
from pyproj import Transformer
from shapely.errors import GEOSException
from shapely.geometry import Point, Polygon

EARTH_RADIUS_M = 6371000
METERS_PER_DEGREE_LAT = 111320

BBox = Tuple[float, float, float, float]  # (min_lon, min_lat, max_lon, max_lat)


def haversine_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float
) -> float:
    """Calculate distance between two points in meters"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = math.sin(delta_phi/2)**2 + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda/2)**2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1-a))

    return EARTH_RADIUS_M * c


def distance(lon1: float, lat1: float, lon2: float, lat2: float) -> float:
    """Haversine distance with GeoJSON (lon, lat) argument order"""
    return haversine_distance(lat1, lon1, lat2, lon2)


def is_valid_coordinate(lat: Any, lon: Any) -> bool:
    """Check that lat/lon are finite numbers inside WGS84 bounds"""
    if isinstance(lat, bool) or isinstance(lon, bool):
        return False
    if not isinstance(lat, (int, float)) or not isinstance(lon, (int, float)):
        return False
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    return -90 <= lat <= 90 and -180 <= lon <= 180


def _ring_vertices(ring: Sequence[Sequence[float]]) -> List[Sequence[float]]:
    """Drop the duplicate closing vertex if present"""
    if len(ring) > 1 and list(ring[0][:2]) == list(ring[-1][:2]):
        return list(ring[:-1])
    return list(ring)


def get_polygon_centroid(coords: Sequence[Sequence[float]]) -> Optional[Tuple[float, float]]:
    """Vertex-mean centroid of a ring as (lon, lat)"""
    coords_clean = _ring_vertices(coords)
    if not coords_clean:
        return None

    lon_sum = sum(c[0] for c in coords_clean)
    lat_sum = sum(c[1] for c in coords_clean)

    return (lon_sum / len(coords_clean), lat_sum / len(coords_clean))


def _exterior_ring(geometry: Optional[Dict[str, Any]]) -> Optional[Sequence[Sequence[float]]]:
    if not geometry or not isinstance(geometry, dict):
        return None
    coords = geometry.get("coordinates")
    if not coords:
        return None
    gtype = geometry.get("type")
    try:
        if gtype == "Polygon":
            return coords[0]
        if gtype == "MultiPolygon":
            # First part only; not area-weighted across parts
            return coords[0][0]
    except (IndexError, TypeError):
        return None
    return None


def geometry_centroid(geometry: Optional[Dict[str, Any]]) -> Optional[Tuple[float, float]]:
    """
    Centroid of a GeoJSON Polygon or MultiPolygon as (lon, lat).

    For MultiPolygon only the first polygon's exterior ring is used.
    Returns None for any other geometry type or empty coordinates.
    """
    ring = _exterior_ring(geometry)
    if not ring:
        return None
    return get_polygon_centroid(ring)


def point_in_ring(
    x: float,
    y: float,
    polygon: Sequence[Sequence[float]]
) -> bool:
    """Whether (x, y) lies inside a closed ring"""
    if len(polygon) < 3:
        return False
    return Polygon([(p[0], p[1]) for p in polygon]).contains(Point(x, y))


def point_in_geometry(lon: float, lat: float, geometry: Optional[Dict[str, Any]]) -> bool:
    """
    Containment test against a GeoJSON Polygon or MultiPolygon.

    Only exterior rings are tested, so holes count as inside. A
    MultiPolygon contains the point if any of its parts does.
    """
    if not geometry or not isinstance(geometry, dict):
        return False
    coords = geometry.get("coordinates")
    if not coords:
        return False
    gtype = geometry.get("type")
    try:
        if gtype == "Polygon":
            return point_in_ring(lon, lat, coords[0])
        if gtype == "MultiPolygon":
            return any(point_in_ring(lon, lat, polygon[0]) for polygon in coords if polygon)
    except (IndexError, TypeError, ValueError, GEOSException) as e:
        logger.debug(f"Containment test failed: {e}")
        return False
    return False


def meters_to_degrees(lat: float, meters: float) -> Tuple[float, float]:
    """Approximate (dlat, dlon) for a distance in meters at a latitude"""
    d_lat = meters / METERS_PER_DEGREE_LAT
    d_lon = meters / (METERS_PER_DEGREE_LAT * math.cos(math.radians(lat)))
    return d_lat, d_lon


def bbox_around_point(lon: float, lat: float, meters: float) -> BBox:
    """Square bbox of half-side `meters` centered on a point"""
    d_lat, d_lon = meters_to_degrees(lat, meters)
    return (lon - d_lon, lat - d_lat, lon + d_lon, lat + d_lat)


def bbox_from_area(lat: float, lon: float, area_m2: float) -> Dict[str, float]:
    """
    Square bounding box of side sqrt(area) centered on the point.

    Returned with minLng/minLat/maxLng/maxLat keys to match the layer
    response schema.
    """
    half_side = math.sqrt(area_m2) / 2
    min_lon, min_lat, max_lon, max_lat = bbox_around_point(lon, lat, half_side)
    return {"minLng": min_lon, "minLat": min_lat, "maxLng": max_lon, "maxLat": max_lat}


def geometry_bbox(geometry: Optional[Dict[str, Any]]) -> Optional[BBox]:
    """Bounding box of every vertex in a GeoJSON geometry"""
    if not geometry:
        return None

    xs: List[float] = []
    ys: List[float] = []

    def walk(node):
        if isinstance(node, (list, tuple)) and node and isinstance(node[0], (int, float)):
            xs.append(node[0])
            ys.append(node[1])
        elif isinstance(node, (list, tuple)):
            for child in node:
                walk(child)

    walk(geometry.get("coordinates"))
    if not xs:
        return None
    return (min(xs), min(ys), max(xs), max(ys))


def esri_rings_to_geojson(rings: Optional[List[List[List[float]]]]) -> Optional[Dict[str, Any]]:
    """Convert ArcGIS rings to a GeoJSON Polygon"""
    if not rings:
        return None
    return {"type": "Polygon", "coordinates": rings}


# ============================================================
# Candidate selection
# ============================================================

@dataclass
class CandidateMatch:
    """The single feature chosen from a spatial query result"""
    feature: Dict[str, Any]
    contains_point: bool
    distance_meters: float
    centroid: Optional[Tuple[float, float]] = None


def select_best_candidate(
    features: Sequence[Dict[str, Any]],
    lon: float,
    lat: float,
) -> Optional[CandidateMatch]:
    """
    Pick exactly one feature for a point.

    1. The first feature whose polygon contains the point wins outright.
    2. Otherwise the feature with the nearest centroid wins; ties keep
       the earliest feature.
    3. None if no feature carries a usable polygon.
    """
    for feature in features:
        geometry = feature.get("geometry")
        if point_in_geometry(lon, lat, geometry):
            return CandidateMatch(
                feature=feature,
                contains_point=True,
                distance_meters=0.0,
                centroid=geometry_centroid(geometry),
            )

    best: Optional[CandidateMatch] = None
    for feature in features:
        centroid = geometry_centroid(feature.get("geometry"))
        if centroid is None:
            continue
        d = distance(lon, lat, centroid[0], centroid[1])
        if best is None or d < best.distance_meters:
            best = CandidateMatch(feature=feature, contains_point=False, distance_meters=d, centroid=centroid)

    return best


@dataclass
class ProgressiveSearchResult:
    match: CandidateMatch
    buffer_used: float
    buffers_tried: List[float] = field(default_factory=list)
    feature_count: int = 0


def progressive_search(
    buffers: Sequence[float],
    fetch: Callable[[float], List[Dict[str, Any]]],
    lon: float,
    lat: float,
    label: str = "spatial query",
) -> Optional[ProgressiveSearchResult]:
    """
    Query with increasing buffers and stop at the first non-empty result.

    `fetch(buffer)` returns a list of GeoJSON-like features; transport
    retries happen inside it. Returns None once every buffer is exhausted.
    """
    tried: List[float] = []
    for buffer in sorted(buffers):
        tried.append(buffer)
        features = fetch(buffer) or []
        logger.debug(f"{label}: buffer {buffer} returned {len(features)} features")
        if not features:
            continue

        match = select_best_candidate(features, lon, lat)
        if match is None:
            logger.debug(f"{label}: {len(features)} features at buffer {buffer} but none with geometry")
            return None
        return ProgressiveSearchResult(
            match=match,
            buffer_used=buffer,
            buffers_tried=tried,
            feature_count=len(features),
        )

    logger.debug(f"{label}: no features within {tried[-1] if tried else 0}")
    return None


# ============================================================
# Projections
# ============================================================

def spain_utm_epsg(lon: float) -> int:
    """ETRS89 UTM zone for a Spanish longitude"""
    if lon < -6:
        return 25829
    if lon < 0:
        return 25830
    return 25831


@lru_cache(maxsize=16)
def _transformer(src_epsg: int, dst_epsg: int) -> Transformer:
    return Transformer.from_crs(f"EPSG:{src_epsg}", f"EPSG:{dst_epsg}", always_xy=True)


def to_utm(lon: float, lat: float, epsg: int) -> Tuple[float, float]:
    """WGS84 lon/lat to projected x/y"""
    return _transformer(4326, epsg).transform(lon, lat)


def from_utm(x: float, y: float, epsg: int) -> Tuple[float, float]:
    """Projected x/y back to WGS84 lon/lat"""
    return _transformer(epsg, 4326).transform(x, y)


def reproject_geometry(geometry: Optional[Dict[str, Any]], src_epsg: int) -> Optional[Dict[str, Any]]:
    """Reproject a Point/Polygon/MultiPolygon to WGS84"""
    if not geometry:
        return geometry

    def convert(node):
        if isinstance(node, (list, tuple)) and node and isinstance(node[0], (int, float)):
            lon, lat = from_utm(node[0], node[1], src_epsg)
            return [lon, lat]
        return [convert(child) for child in node]

    return {"type": geometry["type"], "coordinates": convert(geometry["coordinates"])}
