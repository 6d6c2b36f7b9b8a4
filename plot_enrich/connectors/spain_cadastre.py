"""
Spanish Catastro lookup (INSPIRE WFS + WMS)

Parcels, buildings and addresses are requested as GML in the local
ETRS89/UTM zone and converted back to WGS84 for selection.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import urlencode
from xml.etree import ElementTree as ET

from loguru import logger

from ..config import get_config
from ..geometry import progressive_search, reproject_geometry, spain_utm_epsg, to_utm
from ..http_client import HttpClient
from ..models import LayerResult
from . import gml
from .base import format_bbox, http_scope, run_concurrently, safe_layer

UTM_BUFFERS_M = [50, 100, 250]
DETAIL_BUFFER_M = 50
MAP_BUFFER_M = 150
SOURCE = "Spanish Cadastre WFS"


def _wfs_get(client: HttpClient, url: str, typename: str, bbox, epsg: int, count: int) -> ET.Element:
    params = {
        "service": "WFS",
        "version": "2.0.0",
        "request": "GetFeature",
        "TYPENAMES": typename,
        "bbox": format_bbox(bbox),
        "SRSNAME": f"EPSG:{epsg}",
        "count": count,
    }
    text = client.get_text(url, params=params, timeout=get_config().api.cadastre_timeout, verify=False)
    return gml.parse_xml(text, provider=f"catastro {typename}")


def parse_parcels(root: ET.Element, epsg: int) -> List[Dict[str, Any]]:
    """cp:CadastralParcel members as WGS84 GeoJSON-like features"""
    parcels = []
    for feature in gml.feature_members(root):
        if gml.local_name(feature.tag) != "CadastralParcel":
            continue

        props: Dict[str, Any] = {
            "nationalCadastralReference": gml.value_of(gml.child(feature, "nationalCadastralReference")),
            "label": gml.value_of(gml.child(feature, "label")),
            "beginLifespanVersion": gml.value_of(gml.child(feature, "beginLifespanVersion")),
            "endLifespanVersion": gml.value_of(gml.child(feature, "endLifespanVersion")),
            "validFrom": gml.value_of(gml.child(feature, "validFrom")),
            "validTo": gml.value_of(gml.child(feature, "validTo")),
        }

        inspire_id = gml.child(feature, "inspireId")
        props["inspireId"] = gml.deep_text(inspire_id, "localId")
        props["namespace"] = gml.deep_text(inspire_id, "namespace")

        area = gml.value_of(gml.child(feature, "areaValue"))
        try:
            props["areaValue"] = float(area) if area is not None else None
        except ValueError:
            props["areaValue"] = None

        ref_point = gml.extract_geometry(gml.child(feature, "referencePoint"))
        props["referencePoint"] = reproject_geometry(ref_point, epsg) if ref_point else None

        zoning = []
        for z in gml.children(feature, "zoning"):
            zoning.append({
                "label": gml.deep_text(z, "label"),
                "nationalCadastralZoningReference": gml.deep_text(z, "nationalCadastralZoningReference"),
                "reference": gml.value_of(z),
            })
        if zoning:
            props["zoning"] = zoning

        geometry = gml.extract_geometry(gml.child(feature, "geometry"))
        parcels.append({
            "type": "Feature",
            "geometry": reproject_geometry(geometry, epsg) if geometry else None,
            "properties": props,
        })
    return parcels


def _int_or_none(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


def parse_buildings(root: ET.Element, epsg: int) -> List[Dict[str, Any]]:
    buildings = []
    for feature in gml.feature_members(root):
        if gml.local_name(feature.tag) != "Building":
            continue
        geometry = gml.extract_geometry(gml.child(feature, "geometry"))
        buildings.append({
            "reference": gml.deep_text(gml.child(feature, "inspireId"), "localId"),
            "condition_of_construction": gml.value_of(gml.child(feature, "conditionOfConstruction")),
            "current_use": gml.deep_text(gml.child(feature, "currentUse"), "currentUse")
            or gml.value_of(gml.child(feature, "currentUse")),
            "date_of_construction": gml.deep_text(gml.child(feature, "dateOfConstruction"), "beginning")
            or gml.value_of(gml.child(feature, "dateOfConstruction")),
            "date_of_renovation": gml.value_of(gml.child(feature, "dateOfRenovation")),
            "number_of_dwellings": _int_or_none(gml.value_of(gml.child(feature, "numberOfDwellings"))),
            "number_of_building_units": _int_or_none(gml.value_of(gml.child(feature, "numberOfBuildingUnits"))),
            "number_of_floors_above_ground": _int_or_none(gml.value_of(gml.child(feature, "numberOfFloorsAboveGround"))),
            "number_of_floors_below_ground": _int_or_none(gml.value_of(gml.child(feature, "numberOfFloorsBelowGround"))),
            "geometry": reproject_geometry(geometry, epsg) if geometry else None,
        })
    return buildings


def parse_addresses(root: ET.Element, epsg: int) -> List[Dict[str, Any]]:
    addresses = []
    for feature in gml.feature_members(root):
        if gml.local_name(feature.tag) != "Address":
            continue

        locators = []
        for loc in gml.children(feature, "locator"):
            locators.append({
                "designator": gml.deep_text(loc, "designator"),
                "type": gml.deep_text(loc, "type"),
                "level": gml.deep_text(loc, "level"),
            })

        thoroughfare = gml.child(feature, "thoroughfare")
        position = gml.extract_geometry(gml.child(feature, "position"))
        addresses.append({
            "locators": locators,
            "thoroughfare_name": gml.deep_text(thoroughfare, "text") or gml.deep_text(thoroughfare, "name")
            or gml.value_of(thoroughfare),
            "thoroughfare_type": gml.deep_text(thoroughfare, "type"),
            "post_code": gml.value_of(gml.child(feature, "postCode")),
            "post_name": gml.value_of(gml.child(feature, "postName")),
            "admin_unit": gml.value_of(gml.child(feature, "adminUnit")),
            "position": reproject_geometry(position, epsg) if position else None,
            "valid_from": gml.value_of(gml.child(feature, "validFrom")),
            "valid_to": gml.value_of(gml.child(feature, "validTo")),
        })
    return addresses


def build_map_image_url(
    lon: float,
    lat: float,
    buffer_m: float = MAP_BUFFER_M,
    width: int = 1024,
    height: int = 768,
    layers: Optional[List[str]] = None,
) -> str:
    """WMS 1.1.1 GetMap URL centred on the point in the local UTM zone"""
    epsg = spain_utm_epsg(lon)
    x, y = to_utm(lon, lat, epsg)
    params = {
        "SERVICE": "WMS",
        "VERSION": "1.1.1",
        "REQUEST": "GetMap",
        "LAYERS": ",".join(layers or ["CP.CadastralParcel", "BU.Building"]),
        "SRS": f"EPSG:{epsg}",
        "BBOX": f"{x - buffer_m},{y - buffer_m},{x + buffer_m},{y + buffer_m}",
        "WIDTH": str(width),
        "HEIGHT": str(height),
        "FORMAT": "image/png",
        "TRANSPARENT": "true",
        "STYLES": "",
    }
    return f"{get_config().api.catastro_wms}?{urlencode(params)}"


def _parcel_summary(feature: Dict[str, Any]) -> Dict[str, Any]:
    p = feature["properties"]
    return {
        "cadastral_reference": p.get("nationalCadastralReference"),
        "area_value": p.get("areaValue"),
        "label": p.get("label"),
        "beginning_lifespan": p.get("beginLifespanVersion"),
        "valid_from": p.get("validFrom"),
        "valid_to": p.get("validTo"),
        "reference_point": p.get("referencePoint"),
        "zoning": p.get("zoning"),
        "geometry": feature.get("geometry"),
    }


def get_spanish_cadastral_info(lon: float, lat: float, http: Optional[HttpClient] = None) -> Dict[str, Any]:
    """
    Comprehensive Catastro record for a point.

    Parcels are searched with UTM buffers of 50, 100 and 250 m. Once a
    parcel is chosen, buildings and addresses within 50 m are fetched
    in parallel; their failure only drops those sections.

    Returns:
        Result dict; cadastral_reference is None when nothing was found
    """
    api = get_config().api
    epsg = spain_utm_epsg(lon)
    x, y = to_utm(lon, lat, epsg)
    candidates: Dict[float, List[Dict[str, Any]]] = {}

    with http_scope(http) as client:
        def fetch(buffer: float) -> List[Dict[str, Any]]:
            root = _wfs_get(client, api.catastro_wfs_parcels, "CP.CadastralParcel",
                            (x - buffer, y - buffer, x + buffer, y + buffer), epsg, count=50)
            candidates[buffer] = parse_parcels(root, epsg)
            return candidates[buffer]

        result = progressive_search(UTM_BUFFERS_M, fetch, lon, lat, label="Catastro parcels")
        if result is None:
            return {
                "cadastral_reference": None,
                "source": SOURCE,
                "notes": "No cadastral parcel found at this location",
            }

        detail_bbox = (x - DETAIL_BUFFER_M, y - DETAIL_BUFFER_M, x + DETAIL_BUFFER_M, y + DETAIL_BUFFER_M)

        def fetch_buildings() -> List[Dict[str, Any]]:
            try:
                root = _wfs_get(client, api.catastro_wfs_buildings, "BU.Building", detail_bbox, epsg, count=20)
                return parse_buildings(root, epsg)
            except Exception as e:
                logger.warning(f"Catastro building query failed: {e}")
                return []

        def fetch_addresses() -> List[Dict[str, Any]]:
            try:
                root = _wfs_get(client, api.catastro_wfs_addresses, "AD.Address", detail_bbox, epsg, count=20)
                return parse_addresses(root, epsg)
            except Exception as e:
                logger.warning(f"Catastro address query failed: {e}")
                return []

        buildings, addresses = run_concurrently([fetch_buildings, fetch_addresses])

    match = result.match
    chosen = match.feature
    others = [f for f in candidates[result.buffer_used] if f is not chosen]
    parcels = [_parcel_summary(chosen)] + [_parcel_summary(f) for f in others]
    reference = chosen["properties"].get("nationalCadastralReference")

    info: Dict[str, Any] = {
        "cadastral_reference": reference,
        "address": None,
        "postal_code": None,
        "coordinates": {"x": x, "y": y, "srs": f"EPSG:{epsg}"},
        "contains_point": match.contains_point,
        "distance_meters": round(match.distance_meters),
        "source": SOURCE,
        "service_urls": [api.catastro_wfs_parcels],
        "map_images": {
            "wms_url": build_map_image_url(lon, lat),
            "description": "WMS map image showing cadastral parcels and buildings",
        },
        "parcels": parcels,
        "parcel": parcels[0],
        "parcel_count": len(parcels),
        "notes": (
            "Point is inside parcel"
            if match.contains_point
            else f"Closest parcel within {result.buffer_used}m, ~{round(match.distance_meters)}m from point"
        ),
    }

    if buildings:
        info["buildings"] = buildings
        info["building"] = buildings[0]
        info["building_count"] = len(buildings)
        info["service_urls"].append(api.catastro_wfs_buildings)

    if addresses:
        first = addresses[0]
        info["addresses"] = addresses
        info["address_count"] = len(addresses)
        info["postal_code"] = first.get("post_code")
        if first.get("thoroughfare_name"):
            info["address"] = f"{first.get('thoroughfare_type') or ''} {first['thoroughfare_name']}".strip()
        info["service_urls"].append(api.catastro_wfs_addresses)

    logger.info(f"  ✓ Catastro parcel {reference} ({info['notes']})")
    return info


def query_spanish_cadastre(lat: float, lng: float, area_m2: Optional[float] = None, http: Optional[HttpClient] = None) -> LayerResult:
    """Spanish cadastre as a layer result"""
    layer_id, layer_name = "es-cadastro", "Catastro"

    def call() -> LayerResult:
        info = get_spanish_cadastral_info(lng, lat, http=http)
        return LayerResult(
            layerId=layer_id,
            layerName=layer_name,
            found=info.get("cadastral_reference") is not None,
            data=info,
        )

    return safe_layer(layer_id, layer_name, call)
