"""
German zoning (Bebauungspläne / Flächennutzungspläne) per Land

- NRW: INSPIRE Planned Land Use via OGC API Features
- Berlin, Hamburg, Baden-Württemberg, Niedersachsen: WFS, with
  typenames discovered from GetCapabilities and output formats probed
  until one answers with features
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger
from owslib.wfs import WebFeatureService

from ..config import RetryConfig, get_config
from ..exceptions import TransportError
from ..geometry import BBox, bbox_around_point, to_utm
from ..http_client import HttpClient
from ..schemas import parse_payload
from . import gml
from .base import format_bbox, http_scope, pick_label, pick_zoning_feature

# (state, min_lon, max_lon, min_lat, max_lat); city-states first so they
# win over the surrounding Länder
STATE_BOUNDS: List[Tuple[str, float, float, float, float]] = [
    ("Berlin", 13.09, 13.77, 52.33, 52.68),
    ("Hamburg", 9.70, 10.30, 53.30, 53.75),
    ("NRW", 5.86, 9.46, 50.30, 52.55),
    ("BW", 7.30, 10.50, 47.50, 49.80),
    ("NI", 6.60, 11.60, 51.30, 53.90),
]

LABEL_FIELDS = [
    "ArtDerBaulichenNutzung",
    "art_der_baulichen_nutzung",
    "art_der_nutzung",
    "art",
    "Nutzung",
    "nutzung",
    "Zweckbestimmung",
    "zweckbestimmung",
    "Gebietstyp",
    "gebietstyp",
    "Baugebiet",
    "baugebiet",
    "Name",
    "name",
    "Bezeichnung",
    "bezeichnung",
    "Planname",
    "planname",
    "Planbez",
    "planbez",
    "BPlan",
    "bplan",
    "Bebauungsplan",
    "bebauungsplan",
    "Nutzungsart",
    "nutzungsart",
    "nutzungszweck",
]

BW_SELECTORS = ["bplan", "beba", "bebau", "bauleit", "bpl"]
HAMBURG_SELECTORS = ["fnp", "flächennutzungs", "flaechen", "nutz"]
NI_SELECTORS = ["bplan", "bebau", "xplan", "bauleit", "bp:", "bp_", "fnp", "fplan", "flächennutz", "flaechen"]
NI_LANDUSE_SELECTORS = ["landnutz", "bodennutz", "flaechennutz", "landuse", "nutz", "alkis", "ax_", "ax:", "basis-dlm", "dlm"]

SRS_CANDIDATES = ["EPSG:4326", "EPSG:25832", "EPSG:25833"]
GEOJSON_FORMATS = [
    "application/json",
    "application/geo+json",
    "application/json; subtype=geojson",
    "application/vnd.geo+json",
    "json",
]
WFS_SEARCH_M = 2000

# Format probing expects failures; do not retry each probe
PROBE_RETRY = RetryConfig(max_attempts=1, base_delay_s=0.0, jitter_s=0.0)


def detect_state(lon: float, lat: float) -> Optional[str]:
    for state, min_lon, max_lon, min_lat, max_lat in STATE_BOUNDS:
        if min_lon <= lon <= max_lon and min_lat <= lat <= max_lat:
            return state
    return None


def bbox_for_srs(lon: float, lat: float, meters: float, srs: str) -> BBox:
    """Square bbox in the requested CRS (degrees for 4326, metres for UTM)"""
    if srs.upper() == "EPSG:4326":
        return bbox_around_point(lon, lat, meters)
    x, y = to_utm(lon, lat, int(srs.split(":")[1]))
    return (x - meters, y - meters, x + meters, y + meters)


def _payload(
    state: str,
    service_type: str,
    service_url: str,
    features: List[Dict[str, Any]],
    lon: float,
    lat: float,
    notes: str,
    typename: Optional[str] = None,
    collection_id: Optional[str] = None,
) -> Dict[str, Any]:
    best = pick_zoning_feature(features, lon, lat)
    props = best.get("properties") or {}
    label, picked_field = pick_label(props, LABEL_FIELDS)
    return {
        "state": state,
        "service_type": service_type,
        "service_url": service_url,
        "collection_id": collection_id,
        "typename": typename,
        "feature_id": best.get("id"),
        "feature_count": len(features),
        "label": label,
        "picked_field": picked_field,
        "properties": props,
        "notes": notes,
    }


def _empty(state: str, service_type: str, service_url: Optional[str], notes: str) -> Dict[str, Any]:
    return {
        "state": state,
        "service_type": service_type,
        "service_url": service_url,
        "feature_count": 0,
        "notes": notes,
    }


# ============================================================
# NRW (OGC API Features)
# ============================================================

def query_nrw(lon: float, lat: float, http: Optional[HttpClient] = None) -> Dict[str, Any]:
    """NRW Bebauungspläne from collections whose id/title mentions bplan"""
    api = get_config().api
    base = api.nrw_bplan_api.rstrip("/")
    state = "Nordrhein-Westfalen"

    with http_scope(http) as client:
        payload = client.get_json(f"{base}/collections", params={"f": "json"}, timeout=api.germany_timeout)
        collections = parse_payload("ogc-collections", payload).collections

        candidates = [
            c for c in collections
            if any(k in f"{c.id} {c.title or ''}".lower() for k in ("bplan", "bebauung", "planned land use"))
        ] or collections

        bbox = bbox_around_point(lon, lat, 120)
        for collection in candidates:
            try:
                features = parse_payload("ogc-features", client.get_json(
                    f"{base}/collections/{collection.id}/items",
                    params={"f": "json", "bbox": format_bbox(bbox), "limit": 25},
                    timeout=api.germany_timeout,
                )).feature_dicts()
            except Exception as e:
                logger.debug(f"NRW collection {collection.id} failed: {e}")
                continue
            if features:
                return _payload(state, "OGC-API Features", api.nrw_bplan_api, features, lon, lat,
                                "NRW INSPIRE Planned Land Use (Bebauungspläne)", collection_id=collection.id)

    return _empty(state, "OGC-API Features", api.nrw_bplan_api, "No features found at this location in NRW collections")


# ============================================================
# Generic WFS
# ============================================================

def _discover_typenames(url: str, timeout: int) -> List[str]:
    """Feature type names advertised by a WFS GetCapabilities document"""
    try:
        wfs = WebFeatureService(url, version="2.0.0", timeout=timeout)
    except Exception as e:
        raise TransportError(f"WFS GetCapabilities failed for {url}: {e}", url=url) from e
    return list(wfs.contents.keys())


def _select_typenames(typenames: Sequence[str], selectors: Sequence[str]) -> List[str]:
    lowered = [s.lower() for s in selectors]
    preferred = [t for t in typenames if any(s in t.lower() for s in lowered)]
    return preferred or list(typenames)


def _gml_features(text: str) -> List[Dict[str, Any]]:
    root = gml.parse_xml(text, provider="WFS GML")
    features = []
    for member in gml.feature_members(root):
        props = {}
        for node in member.iter():
            if node is member or len(node):
                continue
            if node.text and node.text.strip():
                props[gml.local_name(node.tag)] = node.text.strip()
        features.append({
            "type": "Feature",
            "id": member.get("{http://www.opengis.net/gml/3.2}id") or member.get("{http://www.opengis.net/gml}id"),
            "geometry": None,
            "properties": props,
        })
    return features


def query_generic_wfs(
    url: str,
    lon: float,
    lat: float,
    selectors: Sequence[str],
    state: str,
    note: str,
    typenames: Optional[Sequence[str]] = None,
    http: Optional[HttpClient] = None,
) -> Dict[str, Any]:
    """
    Probe a WFS for zoning features around the point.

    For each candidate typename, each SRS is tried with the GeoJSON
    output formats and then with plain GML. The first response that
    carries features wins. GML features have no geometry, so the first
    one is used.

    Raises:
        TransportError: When capabilities fail or no probe got a response
    """
    timeout = get_config().api.germany_timeout
    if typenames is None:
        typenames = _discover_typenames(url, timeout)
    candidates = _select_typenames(typenames, selectors)

    last_error: Optional[Exception] = None
    answered = False
    with http_scope(http) as client:
        for typename in candidates:
            for srs in SRS_CANDIDATES:
                bbox = f"{format_bbox(bbox_for_srs(lon, lat, WFS_SEARCH_M, srs))},{srs}"
                base_params = {
                    "service": "WFS",
                    "version": "2.0.0",
                    "request": "GetFeature",
                    "typeNames": typename,
                    "bbox": bbox,
                    "srsName": srs,
                    "count": 20,
                }

                for fmt in GEOJSON_FORMATS:
                    try:
                        payload = client.get_json(url, params={**base_params, "outputFormat": fmt},
                                                  timeout=timeout, retry=PROBE_RETRY)
                        features = parse_payload("wfs-geojson", payload).feature_dicts()
                    except Exception as e:
                        last_error = e
                        continue
                    answered = True
                    if features:
                        return _payload(state, "WFS 2.0.0", url, features, lon, lat, note, typename=typename)

                try:
                    text = client.get_text(url, params=base_params, timeout=timeout, retry=PROBE_RETRY,
                                           headers={"Accept": "application/xml, text/xml, */*"})
                    features = _gml_features(text)
                except Exception as e:
                    last_error = e
                    continue
                answered = True
                if features:
                    return _payload(state, "WFS 2.0.0", url, features, lon, lat, f"{note} (GML fallback)", typename=typename)

    if candidates and not answered and last_error is not None:
        raise last_error
    return _empty(state, "WFS 2.0", url, f"No features found at this location for {state} WFS")


def query_berlin(lon: float, lat: float, http: Optional[HttpClient] = None) -> Dict[str, Any]:
    api = get_config().api
    return query_generic_wfs(api.berlin_wfs_url, lon, lat, ["bplan"], "Berlin",
                             "Berlin FIS-Broker Bebauungspläne", typenames=api.berlin_typenames, http=http)


def query_hamburg(lon: float, lat: float, http: Optional[HttpClient] = None) -> Dict[str, Any]:
    return query_generic_wfs(get_config().api.hamburg_wfs_url, lon, lat, HAMBURG_SELECTORS,
                             "Hamburg", "Hamburg FNP WFS", http=http)


def query_bw(lon: float, lat: float, http: Optional[HttpClient] = None) -> Dict[str, Any]:
    return query_generic_wfs(get_config().api.bw_wfs_url, lon, lat, BW_SELECTORS,
                             "Baden-Württemberg", "Baden-Württemberg state WFS", http=http)


def query_niedersachsen(lon: float, lat: float, http: Optional[HttpClient] = None) -> Dict[str, Any]:
    """
    Niedersachsen: configured municipal WFS seeds, then the state
    land-use WFS as fallback. A failing endpoint is skipped.
    """
    api = get_config().api
    attempts = [(seed, NI_SELECTORS, "Niedersachsen (municipal)", "Niedersachsen municipal WFS")
                for seed in api.ni_wfs_seeds]
    if api.ni_landuse_wfs_url:
        attempts.append((api.ni_landuse_wfs_url, NI_LANDUSE_SELECTORS,
                         "Niedersachsen (ALKIS Landnutzung)", "Niedersachsen state land-use WFS"))

    for url, selectors, state, note in attempts:
        try:
            result = query_generic_wfs(url, lon, lat, selectors, state, note, http=http)
        except Exception as e:
            logger.warning(f"Niedersachsen WFS {url} failed: {e}")
            continue
        if result.get("feature_count"):
            return result

    notes = ("No municipal WFS features found at this location in Niedersachsen."
             if attempts else "No Niedersachsen WFS endpoints configured (NI_WFS_SEEDS).")
    return {"state": "Niedersachsen", "service_type": "WFS 2.0", "notes": notes}


def get_german_zoning_for_point(lon: float, lat: float, http: Optional[HttpClient] = None) -> Dict[str, Any]:
    """Dispatch to the state service; unknown states get service_type 'unknown'"""
    state = detect_state(lon, lat)
    handlers = {
        "Berlin": query_berlin,
        "Hamburg": query_hamburg,
        "NRW": query_nrw,
        "BW": query_bw,
        "NI": query_niedersachsen,
    }
    if state is None:
        return {
            "state": None,
            "service_type": "unknown",
            "notes": "Point not in configured states (Berlin, Hamburg, NRW, BW, NI)",
        }
    logger.debug(f"Germany zoning: state {state}")
    return handlers[state](lon, lat, http=http)
