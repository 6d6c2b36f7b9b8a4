"""
Layer query service

Queries every applicable layer connector for a coordinate and shapes
the results for storage.
"""

from .aggregator import calculate_bounding_box, query_all_layers, query_portugal_layers, query_spain_layers
from .transform import categorize_layer, transform_layers_to_enrichment

__all__ = [
    "calculate_bounding_box",
    "query_all_layers",
    "query_portugal_layers",
    "query_spain_layers",
    "categorize_layer",
    "transform_layers_to_enrichment",
]
