"""
Portugal administrative boundaries (CAOP)

District from the DGT WMS; municipality, parish and NUTS III from the
DGT OGC API Features collections.
"""

from typing import Any, Callable, Dict, Optional

from ..config import get_config
from ..geometry import bbox_around_point
from ..http_client import HttpClient
from ..models import LayerResult
from .base import area_buffer, first_present, http_scope, ogc_items, run_concurrently, safe_layer, wms_feature_info


def _municipality_props(props: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "municipio": props.get("municipio"),
        "distrito": props.get("distrito_ilha"),
        "nuts1": props.get("nuts1"),
        "nuts2": props.get("nuts2"),
        "nuts3": props.get("nuts3"),
        "areaHa": props.get("area_ha"),
        "nFreguesias": props.get("n_freguesias"),
        "dicofre": first_present(props, ["dtmn", "dtcc", "dico"]),
    }


def _parish_props(props: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "freguesia": props.get("freguesia"),
        "municipio": props.get("municipio"),
        "distrito": props.get("distrito_ilha"),
        "areaHa": props.get("area_ha"),
        "dicofre": first_present(props, ["dtmnfr", "dicofre"]),
    }


def _nuts3_props(props: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "nuts3": props.get("nuts3"),
        "nuts2": props.get("nuts2"),
        "nuts1": props.get("nuts1"),
    }


def query_ogc_collection(
    lat: float,
    lng: float,
    collection: str,
    layer_id: str,
    layer_name: str,
    mapper: Callable[[Dict[str, Any]], Dict[str, Any]],
    area_m2: Optional[float] = None,
    http: Optional[HttpClient] = None,
) -> LayerResult:
    """
    Query a CAOP collection around a point.

    With an area the whole square is searched and every feature is
    returned as {count, features}; without one only the first feature.
    """
    def call() -> LayerResult:
        bbox = bbox_around_point(lng, lat, area_buffer(area_m2))
        limit = 100 if area_m2 else 1
        with http_scope(http) as client:
            features = ogc_items(client, collection, bbox, limit)

        if not features:
            return LayerResult(layerId=layer_id, layerName=layer_name, found=False)

        if area_m2 and len(features) > 1:
            return LayerResult(
                layerId=layer_id,
                layerName=layer_name,
                found=True,
                data={"count": len(features), "features": [mapper(f["properties"]) for f in features]},
            )

        return LayerResult(layerId=layer_id, layerName=layer_name, found=True, data=mapper(features[0]["properties"]))

    return safe_layer(layer_id, layer_name, call)


def query_district(lat: float, lng: float, area_m2: Optional[float] = None, http: Optional[HttpClient] = None) -> LayerResult:
    """District (Distrito) via WMS GetFeatureInfo on cont_distritos"""
    layer_id, layer_name = "pt-distrito", "Distrito"

    def call() -> LayerResult:
        url = f"{get_config().api.dgt_wms_base}/caop_continente/wms"
        with http_scope(http) as client:
            features = wms_feature_info(client, url, "cont_distritos", lat, lng, buffer_m=area_buffer(area_m2))
        if not features:
            return LayerResult(layerId=layer_id, layerName=layer_name, found=False)
        props = features[0]["properties"]
        return LayerResult(
            layerId=layer_id,
            layerName=layer_name,
            found=True,
            data={"distrito": first_present(props, ["Distrito", "distrito", "DISTRITO"]), "source": "CAOP WMS"},
        )

    return safe_layer(layer_id, layer_name, call)


def query_municipality(lat: float, lng: float, area_m2: Optional[float] = None, http: Optional[HttpClient] = None) -> LayerResult:
    return query_ogc_collection(lat, lng, "municipios", "pt-municipio", "Município (CAOP)", _municipality_props, area_m2, http)


def query_parish(lat: float, lng: float, area_m2: Optional[float] = None, http: Optional[HttpClient] = None) -> LayerResult:
    return query_ogc_collection(lat, lng, "freguesias", "pt-freguesia", "Freguesia", _parish_props, area_m2, http)


def query_nuts3(lat: float, lng: float, area_m2: Optional[float] = None, http: Optional[HttpClient] = None) -> LayerResult:
    return query_ogc_collection(lat, lng, "nuts3", "pt-nuts3", "NUTS III", _nuts3_props, area_m2, http)


def query_administrative_layers(lat: float, lng: float, area_m2: Optional[float] = None, http: Optional[HttpClient] = None):
    """District, municipality, parish and NUTS III in parallel"""
    return run_concurrently([
        lambda: query_district(lat, lng, area_m2, http),
        lambda: query_municipality(lat, lng, area_m2, http),
        lambda: query_parish(lat, lng, area_m2, http),
        lambda: query_nuts3(lat, lng, area_m2, http),
    ])
