"""
Plot enrichment

Enriches a coordinate with administrative, cadastral, zoning, land-use,
elevation and amenity data from public Portuguese, Spanish, German and
OpenStreetMap services, and stores the merged result per plot.
"""

from .layers import query_all_layers, transform_layers_to_enrichment
from .pipeline import EnrichmentPipeline, enrich_location

__version__ = "1.0.0"

__all__ = [
    "EnrichmentPipeline",
    "enrich_location",
    "query_all_layers",
    "transform_layers_to_enrichment",
]
