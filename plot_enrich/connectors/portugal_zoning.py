"""
Portugal zoning: CRUS land-use plans, COS2023 land cover and parish (CAOP)

CRUS is published per municipality as separate OGC collections
(crus_<municipio>), so the municipality is resolved first and then
mapped to a collection id through the collections catalogue.
"""

import re
import threading
import unicodedata
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger
from shapely.errors import GEOSException
from shapely.geometry import shape

from ..config import get_config
from ..geometry import BBox, bbox_around_point, geometry_bbox, point_in_geometry
from ..http_client import HttpClient
from ..models import LayerResult
from ..schemas import parse_payload
from .base import first_present, http_scope, ogc_items, pick_label, pick_zoning_feature, run_concurrently, safe_layer

MUNICIPIOS_COLLECTION = "municipios"
FREGUESIAS_COLLECTION = "freguesias"
COS2023_COLLECTION = "cos2023v1"
NATIONAL_CRUS_IDS = ("crus_portugal", "crus_continente", "crus")

CRUS_LABEL_FIELDS = [
    "Designacao",
    "designacao",
    "Categoria_",
    "categoria",
    "Classe_202",
    "classe_202",
    "classe",
    "classe_solo",
    "qualificacao",
    "uso",
    "uso_solo",
    "categoria_",
    "classe1",
    "desc_class",
]

DESIGNATION_FIELDS = ["Designacao", "designacao", "uso", "zoning", "tipo"]


def normalize_municipio_name(name: Optional[str]) -> str:
    """'Vila Nova de Gaia' -> 'vila_nova_de_gaia'"""
    if not name:
        return ""
    decomposed = unicodedata.normalize("NFD", name)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return re.sub(r"[^a-z0-9]+", "_", stripped.lower()).strip("_")


class CollectionCatalog:
    """
    Cached list of OGC collection ids with CRUS resolution.

    The list is fetched once per catalog; per-municipality resolutions
    are memoised as well.
    """

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = base_url
        self._ids: Optional[List[str]] = None
        self._resolved: Dict[str, Optional[str]] = {}
        self._lock = threading.Lock()

    def ids(self, http: HttpClient) -> List[str]:
        with self._lock:
            if self._ids is None:
                base = (self.base_url or get_config().api.dgt_ogc_url).rstrip("/")
                payload = http.get_json(f"{base}/collections", params={"f": "json"}, verify=False)
                self._ids = [c.id for c in parse_payload("ogc-collections", payload).collections]
                logger.debug(f"Loaded {len(self._ids)} OGC collections")
            return self._ids

    def resolve_crus(self, http: HttpClient, municipio: Optional[str]) -> Optional[str]:
        """
        Map a municipality name to its CRUS collection id.

        Order: exact crus_<name>, a crus_* id containing the name, a
        national collection, then any crus_* collection.
        """
        all_ids = self.ids(http)
        if not all_ids:
            return None

        normalized = normalize_municipio_name(municipio)
        if normalized:
            if normalized in self._resolved:
                return self._resolved[normalized]

            lowered = [(cid, cid.lower()) for cid in all_ids]
            for cid, low in lowered:
                if low == f"crus_{normalized}":
                    self._resolved[normalized] = cid
                    return cid
            for cid, low in lowered:
                if low.startswith("crus_") and normalized in low:
                    self._resolved[normalized] = cid
                    return cid

        for cid in all_ids:
            if cid.lower() in NATIONAL_CRUS_IDS:
                return cid
        for cid in all_ids:
            if cid.lower().startswith("crus_"):
                return cid
        return None

    def clear(self) -> None:
        with self._lock:
            self._ids = None
            self._resolved.clear()


# Shared across lookups within the process
catalog = CollectionCatalog()


def get_municipio(lat: float, lon: float, http: Optional[HttpClient] = None) -> Optional[Dict[str, Any]]:
    """Municipality feature around a point: the containing one, else the first"""
    with http_scope(http) as client:
        features = ogc_items(client, MUNICIPIOS_COLLECTION, bbox_around_point(lon, lat, 200), limit=5)
    if not features:
        return None

    best = next((f for f in features if point_in_geometry(lon, lat, f.get("geometry"))), features[0])
    props = best.get("properties") or {}
    name = first_present(props, ["municipio", "MUNICIPIO", "NOME", "nome"])
    return {
        "id": best.get("id"),
        "municipio": str(name).strip() if name else None,
        "raw": best,
    }


def geometries_intersect(a: Optional[Dict[str, Any]], b: Optional[Dict[str, Any]]) -> bool:
    if not a or not b:
        return False
    try:
        return shape(a).intersects(shape(b))
    except (GEOSException, ValueError, TypeError, AttributeError, IndexError, KeyError) as e:
        logger.debug(f"Intersection test failed: {e}")
        return False


def _query_bbox(lat: float, lon: float, geometry: Optional[Dict[str, Any]]) -> Tuple[BBox, str]:
    if geometry:
        bbox = geometry_bbox(geometry)
        if bbox:
            return bbox, "geometry"
        logger.debug("Parcel geometry bbox failed, using point buffer")
    return bbox_around_point(lon, lat, 50), "point"


def _matching_feature(
    features: List[Dict[str, Any]],
    lat: float,
    lon: float,
    geometry: Optional[Dict[str, Any]],
    query_method: str,
) -> Optional[Dict[str, Any]]:
    if query_method == "geometry":
        return next((f for f in features if geometries_intersect(geometry, f.get("geometry"))), None)
    return next((f for f in features if point_in_geometry(lon, lat, f.get("geometry"))), None)


def get_crus_zoning(
    lat: float,
    lon: float,
    geometry: Optional[Dict[str, Any]] = None,
    http: Optional[HttpClient] = None,
) -> Optional[Dict[str, Any]]:
    """
    CRUS zoning for a point, or for a parcel when its geometry is known.

    With a parcel geometry the query covers the parcel's bbox and the
    first CRUS feature intersecting the parcel is used; otherwise the
    feature containing the point within a 50 m box.
    """
    with http_scope(http) as client:
        municipio = get_municipio(lat, lon, http=client)
        if not municipio or not municipio["municipio"]:
            logger.warning(f"CRUS: No município found for {lat},{lon}")
            return None

        collection_id = catalog.resolve_crus(client, municipio["municipio"])
        if not collection_id:
            logger.warning("CRUS: No zoning collections found")
            return None

        bbox, query_method = _query_bbox(lat, lon, geometry)
        features = ogc_items(client, collection_id, bbox, limit=20)

    match = _matching_feature(features, lat, lon, geometry, query_method)
    if match is None:
        return None

    props = match.get("properties") or {}
    designation = first_present(props, DESIGNATION_FIELDS)
    if designation is None:
        return None

    return {
        "designation": str(designation),
        "category": first_present(props, ["Categoria_", "categoria"]),
        "land_class": first_present(props, ["Classe_202", "classe_202"]),
        "area_hectares": first_present(props, ["AREA_HA", "area_ha"]),
        "publication_date": first_present(props, ["Data_Pub_O", "data_pub_o"]),
        "legal_reference": first_present(props, ["Registo_ou", "registo_ou"]),
        "municipality": first_present(props, ["Municipio", "municipio"]) or municipio["municipio"],
        "municipal_code": first_present(props, ["DTCC", "dtcc"]),
        "original_scale": first_present(props, ["Escala_ori", "escala_ori"]),
        "data_source": first_present(props, ["Fonte", "fonte"]),
        "author": first_present(props, ["Autor", "autor"]),
        "feature_id": first_present(props, ["ID1", "id1"]),
        "collection_id": collection_id,
        "query_method": query_method,
        "source": "DGT CRUS",
        "srs": "EPSG:4326",
        "raw_properties": props,
    }


def get_cos2023_land_cover(
    lat: float,
    lon: float,
    geometry: Optional[Dict[str, Any]] = None,
    http: Optional[HttpClient] = None,
) -> Optional[Dict[str, Any]]:
    """COS2023 level-4 land cover class"""
    bbox, query_method = _query_bbox(lat, lon, geometry)
    with http_scope(http) as client:
        features = ogc_items(client, COS2023_COLLECTION, bbox, limit=10)

    match = _matching_feature(features, lat, lon, geometry, query_method)
    if match is None:
        return None

    props = match.get("properties") or {}
    return {
        "level4_code": first_present(props, ["COS23_n4_C", "cos23_n4_c"]) or "",
        "level4_label": first_present(props, ["COS23_n4_L", "cos23_n4_l"]) or "",
        "municipality": first_present(props, ["Municipio", "municipio"]),
        "nuts2": first_present(props, ["NUTSII", "nutsii"]),
        "nuts3": first_present(props, ["NUTSIII", "nutsiii"]),
        "source": "DGT COS2023",
        "collection_id": COS2023_COLLECTION,
        "query_method": query_method,
    }


def get_parish(lat: float, lon: float, http: Optional[HttpClient] = None) -> Optional[Dict[str, Any]]:
    """Freguesia containing the point (CAOP 2024)"""
    with http_scope(http) as client:
        features = ogc_items(client, FREGUESIAS_COLLECTION, bbox_around_point(lon, lat, 200), limit=5)
    if not features:
        return None

    best = next((f for f in features if point_in_geometry(lon, lat, f.get("geometry"))), features[0])
    props = best.get("properties") or {}
    return {
        "parish_name": first_present(props, ["freguesia", "Freguesia"]) or "",
        "municipality": first_present(props, ["municipio", "Municipio"]) or "",
        "district": first_present(props, ["distrito_ilha", "Distrito_Ilha"]) or "",
        "nuts": {
            "nuts1": first_present(props, ["nuts1", "NUTS1"]),
            "nuts2": first_present(props, ["nuts2", "NUTS2"]),
            "nuts3": first_present(props, ["nuts3", "NUTS3"]),
        },
        "area_hectares": props.get("area_ha"),
        "perimeter_km": props.get("perimetro_km"),
        "simplified_name": props.get("designacao_simplificada"),
        "source": "DGT CAOP2024 Freguesias",
    }


def get_portugal_zoning_data(
    lat: float,
    lon: float,
    parcel_geometry: Optional[Dict[str, Any]] = None,
    http: Optional[HttpClient] = None,
) -> Optional[Dict[str, Any]]:
    """
    CRUS, COS2023 and parish in parallel.

    A failing sub-lookup only drops its section; the error is raised
    only when all three fail.

    Returns:
        {crus, land_cover, parish, label, query_method} or None when
        none of the three found anything
    """
    lookups = [
        ("crus", lambda: get_crus_zoning(lat, lon, parcel_geometry, http=http)),
        ("land_cover", lambda: get_cos2023_land_cover(lat, lon, parcel_geometry, http=http)),
        ("parish", lambda: get_parish(lat, lon, http=http)),
    ]
    errors: List[Exception] = []

    def isolated(name, call):
        def run():
            try:
                return call()
            except Exception as e:
                logger.warning(f"Portugal zoning: {name} lookup failed: {e}")
                errors.append(e)
                return None
        return run

    crus, land_cover, parish = run_concurrently([isolated(name, call) for name, call in lookups])

    if len(errors) == len(lookups):
        raise errors[0]
    if not crus and not land_cover and not parish:
        return None

    return {
        "crus": crus,
        "land_cover": land_cover,
        "parish": parish,
        "label": (crus or {}).get("designation") or (land_cover or {}).get("level4_label") or None,
        "query_method": (crus or {}).get("query_method") or (land_cover or {}).get("query_method") or "point",
    }


def query_crus_zoning(lat: float, lng: float, area_m2: Optional[float] = None, http: Optional[HttpClient] = None) -> LayerResult:
    """CRUS zoning as a layer result"""
    layer_id, layer_name = "pt-crus", "CRUS Zoning"

    def call() -> LayerResult:
        with http_scope(http) as client:
            municipio = get_municipio(lat, lng, http=client)
            if not municipio or not municipio["municipio"]:
                return LayerResult(layerId=layer_id, layerName=layer_name, found=False)

            collection_id = catalog.resolve_crus(client, municipio["municipio"])
            if not collection_id:
                return LayerResult(layerId=layer_id, layerName=layer_name, found=False)

            features = ogc_items(client, collection_id, bbox_around_point(lng, lat, 100), limit=20)

        best = pick_zoning_feature(features, lng, lat)
        if best is None:
            return LayerResult(layerId=layer_id, layerName=layer_name, found=False)

        props = best.get("properties") or {}
        label, picked_field = pick_label(props, CRUS_LABEL_FIELDS)
        return LayerResult(
            layerId=layer_id,
            layerName=layer_name,
            found=True,
            data={
                "label": label,
                "typename": collection_id,
                "pickedField": picked_field,
                "municipality": municipio["municipio"],
                "rawProperties": props,
                "source": "DGT CRUS (OGC API)",
            },
        )

    return safe_layer(layer_id, layer_name, call)
