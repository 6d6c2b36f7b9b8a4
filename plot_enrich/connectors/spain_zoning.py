"""
Spanish zoning from regional (Comunidad Autónoma) WFS services

Planning data in Spain is published per autonomous community. The
community is detected from coarse bounding boxes and its configured
WFS layers are tried in order of detail.
"""

from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from ..geometry import bbox_around_point
from ..http_client import HttpClient
from ..models import LayerResult
from ..schemas import parse_payload
from . import gml
from .base import http_scope, pick_label, pick_zoning_feature, safe_layer

_MUC_NOTES = "Mapa Urbanístic de Catalunya (MUC) - No legal validity"
_MADRID_NOTES = "Primary access via ATOM feed, not WFS"

REGIONAL_SERVICES: Dict[str, Dict[str, Optional[str]]] = {
    "Catalunya": {"wfs": "https://sig.gencat.cat/ows/PLANEJAMENT/wfs", "type": "WFS", "format": None, "notes": _MUC_NOTES},
    "Cataluña": {"wfs": "https://sig.gencat.cat/ows/PLANEJAMENT/wfs", "type": "WFS", "format": None, "notes": _MUC_NOTES},
    "Andalucía": {
        "wfs": "http://www.ideandalucia.es/services/DERA_g7_sistema_urbano/wfs",
        "type": "WFS",
        "format": None,
        "notes": "Sistema Urbano - Urban fabric, detailed zoning at municipal level",
    },
    "Castilla y León": {
        "wfs": "https://idecyl.jcyl.es/geoserver/lu/wfs",
        "type": "WFS",
        "format": None,
        "notes": "Land use WFS - Check GetCapabilities for planning layers",
    },
    "Comunidad de Madrid": {"wfs": None, "type": "ATOM", "format": None, "notes": _MADRID_NOTES},
    "Madrid": {"wfs": None, "type": "ATOM", "format": None, "notes": _MADRID_NOTES},
    "Comunitat Valenciana": {
        "wfs": "https://terramapas.icv.gva.es/0702_Planeamiento",
        "type": "WFS",
        "format": "GML",
        "notes": "Planeamiento urbanístico - Urban planning classification and zoning",
    },
}

_MUC_LAYERS = [
    "PLANEJAMENT:MUC_QUALIFICACIONS",
    "PLANEJAMENT:MUC_CLASSIFICACIONS",
    "PLANEJAMENT:PLANSTP_SISTEMES_URBANS",
]

# Most detailed layer first
LAYERS_BY_REGION: Dict[str, List[str]] = {
    "Catalunya": _MUC_LAYERS,
    "Cataluña": _MUC_LAYERS,
    "Andalucía": ["DERA_g7_sistema_urbano:g07_01_Poblaciones"],
    "Castilla y León": ["lu:LandUse"],
    "Comunitat Valenciana": [
        "ms:Planeamiento.Clasificacion",
        "ms:Planeamiento.Zonificacion",
        "ms:Planeamiento.Dotaciones",
    ],
}

# (name, min_lon, max_lon, min_lat, max_lat); first match wins
CCAA_BOUNDS: List[Tuple[str, float, float, float, float]] = [
    ("Catalunya", 0.16, 3.33, 40.52, 42.87),
    ("Andalucía", -7.5, -1.6, 36.0, 38.7),
    ("Madrid", -4.6, -3.0, 39.9, 41.2),
    ("Comunitat Valenciana", -1.5, 0.5, 37.8, 40.8),
    ("Castilla y León", -7.0, -1.5, 40.0, 43.0),
    ("País Vasco", -3.5, -1.5, 42.5, 43.5),
    ("Galicia", -9.3, -6.7, 41.8, 43.8),
    ("Aragón", -2.0, 0.8, 39.8, 42.9),
]

LABEL_FIELDS = [
    # Catalunya MUC, most detailed first
    "DESC_QUAL_MUC",
    "DESC_QUAL_AJUNT",
    "DESC_CLAS_MUC",
    "DESC_CLAS_AJUNT",
    "CODI_QUAL_MUC",
    "CODI_CLAS_MUC",
    "SISTEMA_URBA_PTP",
    "us_text",
    "qualificacio",
    "planejament",
    # Comunitat Valenciana
    "descripcio",
    "descripcio_val",
    "zon_suelo",
    "clas_suelo",
    "denominaci",
    "dot_descri",
    # General Spanish
    "clasificacion",
    "clasificación",
    "categoria",
    "categoría",
    "uso",
    "uso_suelo",
    "clase_suelo",
    "calificacion",
    "calificación",
    # Castilla y León
    "clasificacion_de_suelo",
    "categoria_de_suelo",
    "nombre",
    "noms_mun",
    "descripcion",
    "description",
    "name",
]


def detect_ccaa(lon: float, lat: float) -> Optional[str]:
    """Autonomous community from bounding boxes, in fixed priority order"""
    for name, min_lon, max_lon, min_lat, max_lat in CCAA_BOUNDS:
        if min_lon <= lon <= max_lon and min_lat <= lat <= max_lat:
            return name
    return None


def parse_gml_features(text: str) -> List[Dict[str, Any]]:
    """
    MapServer GML3 (WFS 1.1.0) into GeoJSON-like features.

    Scalar child elements become properties; coordinates come back
    lat,lon for EPSG:4326 and are swapped to lon,lat.
    """
    root = gml.parse_xml(text, provider="regional WFS GML")
    features = []
    for member in gml.feature_members(root):
        props = {}
        for node in member:
            name = gml.local_name(node.tag)
            if name == "msGeometry" or len(node):
                continue
            if node.text and node.text.strip():
                props[name] = node.text.strip()
        if not props:
            continue
        features.append({
            "type": "Feature",
            "id": member.get("{http://www.opengis.net/gml}id"),
            "geometry": gml.extract_geometry(member, swap_axes=True),
            "properties": props,
        })
    return features


def comprehensive_label(props: Dict[str, Any], fallback: Optional[str]) -> Optional[str]:
    """Catalunya and Valencia descriptive fields joined with ' | '"""
    parts: List[str] = []
    if props.get("DESC_QUAL_MUC"):
        parts.append(props["DESC_QUAL_MUC"])
    if props.get("DESC_QUAL_AJUNT") and props["DESC_QUAL_AJUNT"] != props.get("DESC_QUAL_MUC"):
        parts.append(props["DESC_QUAL_AJUNT"])
    if props.get("DESC_CLAS_MUC") and props["DESC_CLAS_MUC"] not in parts:
        parts.append(props["DESC_CLAS_MUC"])
    if props.get("descripcio") and props["descripcio"] not in parts:
        parts.append(props["descripcio"])
    if props.get("zon_suelo") and props["zon_suelo"] not in parts:
        parts.append(f"[{props['zon_suelo']}]")
    return " | ".join(str(p) for p in parts) if parts else fallback


def _fetch_typename(
    client: HttpClient,
    service: Dict[str, Optional[str]],
    typename: str,
    lon: float,
    lat: float,
) -> List[Dict[str, Any]]:
    minx, miny, maxx, maxy = bbox_around_point(lon, lat, 100)

    if service.get("format") == "GML":
        params = {
            "service": "WFS",
            "version": "1.1.0",
            "request": "GetFeature",
            "typeName": typename,
            # WFS 1.1.0 with EPSG:4326 is lat,lon
            "bbox": f"{miny},{minx},{maxy},{maxx},EPSG:4326",
            "srsName": "EPSG:4326",
            "outputFormat": "GML3",
            "maxFeatures": 20,
        }
        return parse_gml_features(client.get_text(service["wfs"], params=params, verify=False))

    params = {
        "service": "WFS",
        "version": "2.0.0",
        "request": "GetFeature",
        "typeNames": typename,
        "bbox": f"{minx},{miny},{maxx},{maxy},EPSG:4326",
        "srsName": "EPSG:4326",
        "outputFormat": "application/json",
        "count": 20,
    }
    payload = client.get_json(service["wfs"], params=params, verify=False)
    return parse_payload("wfs-geojson", payload).feature_dicts()


def get_spanish_zoning_for_point(lon: float, lat: float, http: Optional[HttpClient] = None) -> Dict[str, Any]:
    """
    Regional zoning for a point in Spain.

    Always returns a dict; regions without a configured WFS report
    their service type and notes only.
    """
    ccaa = detect_ccaa(lon, lat)
    if not ccaa:
        return {
            "ccaa": None,
            "service_type": "unknown",
            "notes": "Could not determine Autonomous Community for this location",
        }

    service = REGIONAL_SERVICES.get(ccaa)
    if not service:
        return {
            "ccaa": ccaa,
            "service_type": "unknown",
            "notes": "No regional zoning service configured for this autonomous community",
        }

    if not service.get("wfs"):
        return {"ccaa": ccaa, "service_type": service["type"], "notes": service["notes"]}

    typenames = LAYERS_BY_REGION.get(ccaa, [])
    if not typenames:
        return {
            "ccaa": ccaa,
            "service_type": service["type"],
            "service_url": service["wfs"],
            "feature_count": 0,
            "notes": "WFS layer names not yet configured for this region - manual discovery needed",
        }

    features: List[Dict[str, Any]] = []
    used_typename = None
    errors: List[Exception] = []
    with http_scope(http) as client:
        for typename in typenames:
            try:
                features = _fetch_typename(client, service, typename, lon, lat)
            except Exception as e:
                logger.warning(f"Failed to query {typename}: {e}")
                errors.append(e)
                continue
            if features:
                used_typename = typename
                break

    if not features:
        if len(errors) == len(typenames):
            raise errors[-1]
        return {
            "ccaa": ccaa,
            "service_type": service["type"],
            "service_url": service["wfs"],
            "feature_count": 0,
            "notes": "No zoning features found at this location (tried configured layers)",
        }

    best = pick_zoning_feature(features, lon, lat)
    props = best.get("properties") or {}
    label, picked_field = pick_label(props, LABEL_FIELDS)

    return {
        "ccaa": ccaa,
        "service_type": service["type"],
        "service_url": service["wfs"],
        "typename": used_typename,
        "feature_id": best.get("id"),
        "feature_count": len(features),
        "label": comprehensive_label(props, label),
        "zoning_qualification": props.get("DESC_QUAL_MUC") or props.get("descripcio") or None,
        "zoning_qualification_code": props.get("CODI_QUAL_MUC") or props.get("zon_suelo") or None,
        "zoning_municipal": props.get("DESC_QUAL_AJUNT") or props.get("denominaci") or None,
        "zoning_municipal_code": props.get("CODI_QUAL_AJUNT") or None,
        "land_classification": props.get("DESC_CLAS_MUC") or props.get("clas_suelo") or None,
        "land_classification_code": props.get("CODI_CLAS_MUC") or None,
        "municipality_code": props.get("CODI_INE") or props.get("cod_ine_mun") or None,
        "picked_field": picked_field,
        "properties": props,
        "notes": service["notes"],
    }


def query_spanish_zoning(lat: float, lng: float, area_m2: Optional[float] = None, http: Optional[HttpClient] = None) -> LayerResult:
    """Regional zoning as a layer result"""
    layer_id, layer_name = "es-zoning", "Planeamiento Urbanístico"

    def call() -> LayerResult:
        zoning = get_spanish_zoning_for_point(lng, lat, http=http)
        return LayerResult(layerId=layer_id, layerName=layer_name, found=bool(zoning.get("label")), data=zoning)

    return safe_layer(layer_id, layer_name, call)
