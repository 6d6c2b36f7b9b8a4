"""
Portugal cadastre lookup (DGT OGC API Features, collection "cadastro")
"""

from typing import Any, Dict, List, Optional

from loguru import logger

from ..config import get_config
from ..geometry import distance, geometry_centroid, point_in_geometry, select_best_candidate
from ..http_client import HttpClient
from ..models import LayerResult
from .base import http_scope, ogc_items, run_concurrently, safe_layer
from .bupi import get_bupi_property_info, get_bupi_property_info_arcgis

CADASTRE_COLLECTION = "cadastro"
CADASTRE_SOURCE = "Portugal Cadastre - Direção-Geral do Território"


def _service_url() -> str:
    return f"{get_config().api.dgt_ogc_url}/collections/{CADASTRE_COLLECTION}/items"


def _parcel_record(
    feature: Dict[str, Any],
    lon: float,
    lat: float,
    centroid,
    distance_m: Optional[float],
    contains_point: bool,
) -> Dict[str, Any]:
    props = feature.get("properties") or {}
    return {
        "cadastral_reference": props.get("nationalcadastralreference"),
        "inspire_id": props.get("inspireid"),
        "label": props.get("label"),
        "parcel_area_m2": props.get("areavalue"),
        "registration_date": props.get("beginlifespanversion"),
        "administrative_unit": props.get("administrativeunit"),
        "municipality_code": props.get("administrativeunit"),
        "geometry": feature.get("geometry"),
        "centroid": list(centroid) if centroid else None,
        "distance_meters": round(distance_m) if distance_m is not None else None,
        "contains_point": contains_point,
        "source": CADASTRE_SOURCE,
        "service_url": _service_url(),
        "coordinates": {"longitude": lon, "latitude": lat, "srs": "EPSG:4326"},
    }


def get_portugal_cadastral_info(lon: float, lat: float, http: Optional[HttpClient] = None) -> Optional[Dict[str, Any]]:
    """
    Resolve the cadastral parcel for a point.

    Parcels within ~100 m are fetched and one is chosen: the parcel
    containing the point, otherwise the one with the nearest centroid.

    Returns:
        Parcel record, or None when no parcel with geometry is nearby

    Raises:
        TransportError / ProviderSchemaError on service failure
    """
    buffer = 0.001
    bbox = (lon - buffer, lat - buffer, lon + buffer, lat + buffer)
    with http_scope(http) as client:
        features = ogc_items(client, CADASTRE_COLLECTION, bbox, limit=20, timeout=get_config().api.cadastre_timeout)

    if not features:
        logger.debug(f"No cadastral parcels near ({lat}, {lon})")
        return None

    match = select_best_candidate(features, lon, lat)
    if match is None:
        return None

    record = _parcel_record(match.feature, lon, lat, match.centroid, match.distance_meters, match.contains_point)
    record["notes"] = (
        "Point is inside parcel"
        if match.contains_point
        else f"Closest parcel, ~{round(match.distance_meters)}m from point"
    )
    logger.info(f"  ✓ Found cadastral parcel: {record['label']} ({record['parcel_area_m2']}m², "
                f"{'contains point' if match.contains_point else f'~{round(match.distance_meters)}m away'})")
    return record


def get_nearby_cadastral_parcels(
    lon: float,
    lat: float,
    max_results: int = 10,
    http: Optional[HttpClient] = None,
) -> List[Dict[str, Any]]:
    """All parcels within ~200 m, nearest centroid first"""
    buffer = 0.002
    bbox = (lon - buffer, lat - buffer, lon + buffer, lat + buffer)
    with http_scope(http) as client:
        features = ogc_items(client, CADASTRE_COLLECTION, bbox, limit=max_results, timeout=get_config().api.cadastre_timeout)

    parcels = []
    for feature in features:
        geometry = feature.get("geometry")
        centroid = geometry_centroid(geometry)
        d = distance(lon, lat, centroid[0], centroid[1]) if centroid else None
        parcels.append(_parcel_record(feature, lon, lat, centroid, d, point_in_geometry(lon, lat, geometry)))

    parcels.sort(key=lambda p: p["distance_meters"] if p["distance_meters"] is not None else float("inf"))
    return parcels


def query_portuguese_cadastre(lat: float, lng: float, area_m2: Optional[float] = None, http: Optional[HttpClient] = None) -> LayerResult:
    """Portugal cadastre as a layer result"""
    layer_id, layer_name = "pt-cadastro", "Cadastro Predial"

    def call() -> LayerResult:
        info = get_portugal_cadastral_info(lng, lat, http=http)
        if not info:
            return LayerResult(layerId=layer_id, layerName=layer_name, found=False)
        return LayerResult(
            layerId=layer_id,
            layerName=layer_name,
            found=True,
            data={
                "parcelReference": info["cadastral_reference"],
                "inspireId": info["inspire_id"],
                "label": info["label"],
                "areaM2": info["parcel_area_m2"],
                "municipalityCode": info["municipality_code"],
                "validFrom": info["registration_date"],
                "geometry": info["geometry"],
                "centroid": info["centroid"],
                "distanceMeters": info["distance_meters"],
                "containsPoint": info["contains_point"],
            },
        )

    return safe_layer(layer_id, layer_name, call)


def _bupi_lookup(lon: float, lat: float, http: Optional[HttpClient]) -> Optional[Dict[str, Any]]:
    """BUPi ArcGIS, then BUPi WFS; failures count as no data"""
    for lookup in (get_bupi_property_info_arcgis, get_bupi_property_info):
        try:
            info = lookup(lon, lat, http=http)
        except Exception as e:
            logger.warning(f"  BUPi lookup {lookup.__name__} failed: {e}")
            info = None
        if info:
            return info
        logger.debug(f"  No BUPi data from {lookup.__name__}")
    return None


def _record_from_bupi(bupi: Dict[str, Any]) -> Dict[str, Any]:
    bupi_id = bupi.get("bupi_id")
    return {
        "cadastral_reference": bupi_id,
        "inspire_id": None,
        "label": f"BUPi-{bupi_id}" if bupi_id else None,
        "parcel_area_m2": bupi.get("area_m2"),
        "registration_date": None,
        "administrative_unit": None,
        "municipality_code": None,
        "geometry": bupi.get("geometry"),
        "centroid": bupi.get("centroid"),
        "distance_meters": bupi.get("distance_meters"),
        "contains_point": bool(bupi.get("contains_point")),
        "source": bupi.get("source"),
        "service_url": bupi.get("service_url"),
        "coordinates": bupi.get("coordinates"),
        "notes": bupi.get("notes"),
    }


def resolve_portugal_cadastre(lon: float, lat: float, http: Optional[HttpClient] = None) -> Optional[Dict[str, Any]]:
    """
    Cadastral parcel from DGT, backed by BUPi.

    DGT and BUPi ArcGIS are queried in parallel, BUPi WFS only when
    ArcGIS has nothing. A DGT parcel with a reference is primary and
    carries the BUPi property as bupi_* fields; otherwise the BUPi
    property becomes the parcel (data_source "BUPi").

    Raises:
        The DGT error, when DGT failed and BUPi has no property either
    """
    with http_scope(http) as client:
        def dgt():
            try:
                return get_portugal_cadastral_info(lon, lat, http=client), None
            except Exception as e:
                logger.warning(f"  DGT cadastre failed: {e}")
                return None, e

        (dgt_info, dgt_error), bupi = run_concurrently([dgt, lambda: _bupi_lookup(lon, lat, client)])

    has_bupi = bool(bupi and bupi.get("bupi_id"))

    if dgt_info and dgt_info.get("cadastral_reference"):
        record = dict(dgt_info, data_source="DGT")
        if has_bupi:
            logger.info("  ✓ DGT parcel found, keeping BUPi geometry alongside")
            record.update({
                "bupi_geometry": bupi.get("geometry"),
                "bupi_area_m2": bupi.get("area_m2"),
                "bupi_id": bupi.get("bupi_id"),
                "bupi_source": bupi.get("source"),
            })
        return record

    if has_bupi:
        logger.info("  No DGT parcel, using BUPi as primary source")
        return dict(_record_from_bupi(bupi), data_source="BUPi")

    if dgt_error is not None:
        raise dgt_error
    return None
