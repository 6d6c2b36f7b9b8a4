"""
Elevation from the Open-Elevation API
"""

from typing import Optional

from ..config import get_config
from ..http_client import HttpClient
from ..models import LayerResult
from ..schemas import parse_payload
from .base import http_scope, safe_layer


def query_elevation(lat: float, lng: float, http: Optional[HttpClient] = None) -> LayerResult:
    """Point elevation in meters (SRTM)"""
    layer_id, layer_name = "elevation", "Elevation"

    def call() -> LayerResult:
        with http_scope(http) as client:
            payload = client.get_json(
                get_config().api.open_elevation_url,
                params={"locations": f"{lat},{lng}"},
            )
        response = parse_payload("open-elevation", payload)
        if not response.results:
            return LayerResult(layerId=layer_id, layerName=layer_name, found=False)
        return LayerResult(
            layerId=layer_id,
            layerName=layer_name,
            found=True,
            data={"elevationM": response.results[0].elevation, "source": "SRTM/Open-Elevation"},
        )

    return safe_layer(layer_id, layer_name, call)
