"""
BUPi (Balcão Único do Prédio) property boundaries

Two access paths to the RGG dataset:
- WFS 2.0.0 GetFeature with GeoJSON output (continental only)
- ArcGIS REST MapServer query, continental or Madeira endpoint
"""

from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from ..config import RetryConfig, get_config
from ..geometry import esri_rings_to_geojson, progressive_search
from ..http_client import HttpClient
from ..schemas import parse_payload
from .base import format_bbox, http_scope

WFS_BUFFERS_DEG = [0.001, 0.005, 0.01]
REST_DISTANCES_M = [100, 500, 1000]

# ArcGIS endpoints are slow; own policy with 200 ms jitter
REST_RETRY = RetryConfig(max_attempts=3, base_delay_s=0.5, jitter_s=0.2)

# Madeira bounding box (with small buffer)
MADEIRA_BBOX = (-17.5, 32.0, -16.0, 33.5)


def select_bupi_endpoint(lon: float, lat: float) -> Tuple[str, str]:
    """Return (query url, region name) for a coordinate"""
    api = get_config().api
    min_lon, min_lat, max_lon, max_lat = MADEIRA_BBOX
    if min_lon <= lon <= max_lon and min_lat <= lat <= max_lat:
        return api.bupi_rest_madeira, "Madeira"
    return api.bupi_rest_continental, "Continental"


def _property_id(props: Dict[str, Any]) -> Optional[str]:
    for key in ("OBJECTID", "objectid"):
        if props.get(key) is not None:
            return str(props[key])
    return None


def _property_area(props: Dict[str, Any], keys: List[str]) -> Optional[float]:
    for key in keys:
        if props.get(key):
            return props[key]
    return None


def _format_area(area: Optional[float]) -> str:
    return f"{round(area)}m²" if area else "unknown area"


def get_bupi_property_info(lon: float, lat: float, http: Optional[HttpClient] = None) -> Optional[Dict[str, Any]]:
    """
    Look up the BUPi property at a point through the WFS.

    Buffers of 0.001, 0.005 and 0.01 degrees are tried in turn; the
    first buffer with features decides the candidate set.
    """
    api = get_config().api

    with http_scope(http) as client:
        def fetch(buffer: float) -> List[Dict[str, Any]]:
            params = {
                "SERVICE": "WFS",
                "REQUEST": "GetFeature",
                "VERSION": "2.0.0",
                "TYPENAMES": api.bupi_wfs_typename,
                "BBOX": format_bbox((lon - buffer, lat - buffer, lon + buffer, lat + buffer)),
                "SRSNAME": "urn:ogc:def:crs:EPSG::4326",
                "COUNT": 50,
                "outputFormat": "GEOJSON",
            }
            payload = client.get_json(api.bupi_wfs_url, params=params, timeout=api.cadastre_timeout)
            return parse_payload("wfs-geojson", payload).feature_dicts()

        result = progressive_search(WFS_BUFFERS_DEG, fetch, lon, lat, label="BUPi WFS")

    if result is None:
        logger.info("  No BUPi properties found near coordinates")
        return None

    match = result.match
    props = match.feature.get("properties") or {}
    info = {
        "bupi_id": _property_id(props),
        "area_m2": _property_area(props, ["Shape_Area", "SHAPE_Area", "shape_area"]),
        "geometry": match.feature.get("geometry"),
        "centroid": list(match.centroid) if match.centroid else None,
        "distance_meters": round(match.distance_meters),
        "contains_point": match.contains_point,
        "source": "BUPi - Balcão Único do Prédio (RGG)",
        "service_url": api.bupi_wfs_url,
        "coordinates": {"longitude": lon, "latitude": lat, "srs": "EPSG:4326"},
        "notes": (
            "Point is inside property"
            if match.contains_point
            else f"Closest property, ~{round(match.distance_meters)}m from point"
        ),
    }
    logger.info(f"  ✓ Found BUPi property: {info['bupi_id'] or 'unknown'} ({_format_area(info['area_m2'])}, "
                f"{'contains point' if match.contains_point else f'~{round(match.distance_meters)}m away'})")
    return info


def get_bupi_property_info_arcgis(lon: float, lat: float, http: Optional[HttpClient] = None) -> Optional[Dict[str, Any]]:
    """
    Look up the BUPi property at a point through ArcGIS REST.

    The Madeira endpoint serves coordinates inside the archipelago box,
    the continental one everything else. Search radii grow 100 -> 500 ->
    1000 m; ESRI rings are converted to GeoJSON polygons before selection.
    """
    api = get_config().api
    endpoint, region = select_bupi_endpoint(lon, lat)
    logger.debug(f"Using BUPi {region} endpoint")

    with http_scope(http) as client:
        def fetch(dist: float) -> List[Dict[str, Any]]:
            params = {
                "where": "1=1",
                "f": "json",
                "geometry": f"{lon},{lat}",
                "geometryType": "esriGeometryPoint",
                "inSR": 4326,
                "outSR": 4326,
                "spatialRel": "esriSpatialRelIntersects",
                "distance": dist,
                "units": "esriSRUnit_Meter",
                "returnGeometry": "true",
                "outFields": "*",
                "returnCountOnly": "false",
            }
            payload = client.get_json(endpoint, params=params, timeout=api.bupi_rest_timeout, retry=REST_RETRY)
            response = parse_payload("arcgis-query", payload)
            return [
                {
                    "type": "Feature",
                    "geometry": esri_rings_to_geojson(f.geometry.rings if f.geometry else None),
                    "properties": f.attributes or {},
                }
                for f in response.features
            ]

        result = progressive_search(REST_DISTANCES_M, fetch, lon, lat, label=f"BUPi ArcGIS {region}")

    if result is None:
        logger.info("  No BUPi ArcGIS properties found near coordinates")
        return None

    match = result.match
    props = match.feature.get("properties") or {}
    info = {
        "bupi_id": _property_id(props),
        "area_m2": _property_area(props, ["st_area(shape)", "shape_area", "Shape_Area"]),
        "geometry": match.feature.get("geometry"),
        "centroid": list(match.centroid) if match.centroid else None,
        "distance_meters": round(match.distance_meters),
        "contains_point": match.contains_point,
        "source": f"BUPi - ArcGIS REST (RGG {region})",
        "service_url": endpoint,
        "coordinates": {"longitude": lon, "latitude": lat, "srs": "EPSG:4326"},
        "notes": (
            "Point is inside property"
            if match.contains_point
            else f"Closest property within ~{round(result.buffer_used)}m; ~{round(match.distance_meters)}m from point"
        ),
    }
    logger.info(f"  ✓ BUPi ArcGIS: {info['bupi_id'] or 'unknown'} ({_format_area(info['area_m2'])}, "
                f"{'contains point' if match.contains_point else f'~{round(match.distance_meters)}m away'})")
    return info
