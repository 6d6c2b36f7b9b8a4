"""
Amenities proximity enrichment from OpenStreetMap

- api_client: Overpass mirrors with per-mirror retry
- query: combined Overpass QL for all amenity categories
- parser: Overpass elements into nodes/ways and category buckets
- collector: nearest feature per category
"""

from .collector import AMENITY_KEYS, enrich_amenities, find_nearest_feature
from .models import OSMNode, OSMWay

__all__ = [
    "AMENITY_KEYS",
    "enrich_amenities",
    "find_nearest_feature",
    "OSMNode",
    "OSMWay",
]
