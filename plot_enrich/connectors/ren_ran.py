"""
REN / RAN restrictions from municipal ArcGIS MapServers

Each municipality publishes its own service; the URLs live on the
municipality record and are only trusted once gis_verified is set.
"""

import json
from typing import Any, Dict, Optional

from ..http_client import HttpClient
from ..models import LayerResult, MunicipalityRecord
from ..schemas import parse_payload
from .base import http_scope, safe_layer

IDENTIFY_DELTA_DEG = 0.0005


def identify_params(lat: float, lng: float, delta: float = IDENTIFY_DELTA_DEG) -> Dict[str, str]:
    """MapServer /identify parameters for a small envelope around the point"""
    envelope = {
        "xmin": lng - delta,
        "ymin": lat - delta,
        "xmax": lng + delta,
        "ymax": lat + delta,
        "spatialReference": {"wkid": 4326},
    }
    return {
        "f": "json",
        "geometry": json.dumps(envelope),
        "geometryType": "esriGeometryEnvelope",
        "sr": "4326",
        "layers": "all:" + ",".join(str(i) for i in range(11)),
        "tolerance": "5",
        "mapExtent": f"{lng - delta},{lat - delta},{lng + delta},{lat + delta}",
        "imageDisplay": "256,256,96",
        "returnGeometry": "false",
        "returnFieldName": "true",
        "returnUnformattedValues": "true",
    }


def _service_url(service: Optional[Dict[str, Any]]) -> Optional[str]:
    if not service:
        return None
    return service.get("url")


def query_municipal_service(
    lat: float,
    lng: float,
    service_url: str,
    layer_id: str,
    layer_name: str,
    http: Optional[HttpClient] = None,
) -> LayerResult:
    """Identify on a municipal MapServer; the first result wins"""

    def call() -> LayerResult:
        with http_scope(http) as client:
            payload = client.get_json(f"{service_url.rstrip('/')}/identify", params=identify_params(lat, lng))
        response = parse_payload("arcgis-identify", payload)
        if not response.results:
            return LayerResult(layerId=layer_id, layerName=layer_name, found=False)

        first = response.results[0]
        return LayerResult(
            layerId=layer_id,
            layerName=layer_name,
            found=True,
            data={"sourceLayer": first.layerName, "attributes": first.attributes},
        )

    return safe_layer(layer_id, layer_name, call)


def _query_reserve(
    kind: str,
    layer_id: str,
    layer_name: str,
    lat: float,
    lng: float,
    municipality: Optional[MunicipalityRecord],
    http: Optional[HttpClient],
) -> LayerResult:
    service = None
    if municipality is not None:
        service = municipality.renService if kind == "REN" else municipality.ranService
    url = _service_url(service)

    if municipality is None or not municipality.gisVerified or not url:
        return LayerResult(
            layerId=layer_id,
            layerName=layer_name,
            found=False,
            error=(
                f"No {kind} service available for {municipality.name}"
                if municipality is not None
                else "Municipality not identified"
            ),
        )

    return query_municipal_service(lat, lng, url, layer_id, f"{kind} - {municipality.name}", http=http)


def query_ren(lat: float, lng: float, municipality: Optional[MunicipalityRecord] = None, http: Optional[HttpClient] = None) -> LayerResult:
    """Reserva Ecológica Nacional"""
    return _query_reserve("REN", "pt-ren", "Reserva Ecológica Nacional", lat, lng, municipality, http)


def query_ran(lat: float, lng: float, municipality: Optional[MunicipalityRecord] = None, http: Optional[HttpClient] = None) -> LayerResult:
    """Reserva Agrícola Nacional"""
    return _query_reserve("RAN", "pt-ran", "Reserva Agrícola Nacional", lat, lng, municipality, http)
