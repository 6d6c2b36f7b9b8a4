"""
Shape a LayerQueryResponse into the stored `layers` enrichment
"""

from typing import Any, Dict, List

from ..models import LayerQueryResponse

ADMINISTRATIVE_PREFIXES = ("pt-distrito", "pt-municipio", "pt-freguesia", "pt-nuts3")
CADASTRE_PREFIXES = ("pt-cadastro", "es-cadastro")
ZONING_PREFIXES = ("pt-crus", "pt-ren", "pt-ran", "es-zoning")
LANDUSE_PREFIXES = ("pt-cos", "pt-clc", "pt-built-up")


def categorize_layer(layer_id: str) -> str:
    """Semantic bucket for a layer id, by prefix"""
    if layer_id.startswith(ADMINISTRATIVE_PREFIXES) or layer_id == "pt-municipality-db":
        return "administrative"
    if layer_id.startswith(CADASTRE_PREFIXES):
        return "cadastre"
    if layer_id.startswith(ZONING_PREFIXES):
        return "zoning"
    if layer_id.startswith(LANDUSE_PREFIXES):
        return "landuse"
    if layer_id == "elevation":
        return "elevation"
    if layer_id.startswith("es-"):
        return "spain"
    return "other"


def transform_layers_to_enrichment(response: LayerQueryResponse) -> Dict[str, Any]:
    """
    Group layers by category for storage.

    Layers that were not found and carry no error are dropped from the
    grouping; layersRaw keeps every layer for debugging.
    """
    enrichment: Dict[str, Any] = {
        "timestamp": response.timestamp,
        "coordinates": response.coordinates,
        "country": response.country,
    }
    if response.areaM2:
        enrichment["areaM2"] = response.areaM2
    if response.boundingBox:
        enrichment["boundingBox"] = response.boundingBox.model_dump()

    by_category: Dict[str, List[Dict[str, Any]]] = {}
    for layer in response.layers:
        if not layer.found and not layer.error:
            continue
        entry: Dict[str, Any] = {"layerId": layer.layerId, "layerName": layer.layerName, "found": layer.found}
        if layer.data:
            entry["data"] = layer.data
        if layer.error:
            entry["error"] = layer.error
        by_category.setdefault(categorize_layer(layer.layerId), []).append(entry)

    enrichment["layersByCategory"] = by_category
    enrichment["layersRaw"] = [layer.model_dump(exclude_none=True) for layer in response.layers]
    return enrichment
