"""
Overpass response parser

Parses Overpass responses into OSMNode / OSMWay objects and buckets
them by amenity category
"""

from typing import Any, Dict, List, Union

from ..schemas import parse_payload
from .models import OSMNode, OSMWay

OSMElement = Union[OSMNode, OSMWay]

BUCKETS = [
    "coastline",
    "beach",
    "airport",
    "main_town",
    "public_transport",
    "supermarket",
    "convenience",
    "cafe",
    "restaurant",
]


def parse_elements(payload: Dict[str, Any]) -> List[OSMElement]:
    """
    Nodes with coordinates and ways with 'out geom' geometry.

    The tags-only copies emitted by 'out tags' carry no position and
    are dropped.
    """
    response = parse_payload("overpass", payload)
    elements: List[OSMElement] = []
    for element in response.elements:
        if element.type == "node":
            if element.lat is None or element.lon is None:
                continue
            elements.append(OSMNode(id=element.id, lat=element.lat, lon=element.lon, tags=element.tags))
        elif element.type == "way" and element.geometry:
            points = [(p.lat, p.lon) for p in element.geometry if p is not None]
            if points:
                elements.append(OSMWay(id=element.id, tags=element.tags, geometry=points))
    return elements


def bucket_for(tags: Dict[str, str]) -> Union[str, None]:
    """First matching category for an element's tags"""
    if tags.get("natural") == "coastline":
        return "coastline"
    if tags.get("natural") == "beach":
        return "beach"
    if tags.get("aeroway"):
        return "airport"
    if tags.get("place") in ("town", "city"):
        return "main_town"
    if (
        tags.get("highway") == "bus_stop"
        or tags.get("railway") == "station"
        or tags.get("amenity") == "bus_station"
        or tags.get("public_transport")
    ):
        return "public_transport"
    if tags.get("shop") == "supermarket":
        return "supermarket"
    if tags.get("shop") == "convenience":
        return "convenience"
    if tags.get("amenity") == "cafe":
        return "cafe"
    if tags.get("amenity") in ("restaurant", "fast_food"):
        return "restaurant"
    return None


def bucket_elements(elements: List[OSMElement]) -> Dict[str, List[OSMElement]]:
    buckets: Dict[str, List[OSMElement]] = {name: [] for name in BUCKETS}
    for element in elements:
        name = bucket_for(element.tags)
        if name:
            buckets[name].append(element)
    return buckets


def get_feature_type(tags: Dict[str, str]) -> str:
    """Human-readable feature type from OSM tags"""
    if tags.get("natural") == "coastline":
        return "coastline"
    if tags.get("natural") == "beach":
        return "beach"
    if tags.get("aeroway"):
        return tags["aeroway"]
    if tags.get("place"):
        return tags["place"]
    if tags.get("highway") == "bus_stop":
        return "bus_stop"
    if tags.get("railway") == "station":
        return "train_station"
    if tags.get("amenity") == "bus_station":
        return "bus_station"
    if tags.get("public_transport") == "platform":
        if tags.get("bus") == "yes":
            return "bus_stop"
        if tags.get("train") == "yes":
            return "train_platform"
        return "transport_platform"
    if tags.get("public_transport") == "station":
        if tags.get("bus") == "yes":
            return "bus_station"
        if tags.get("train") == "yes":
            return "train_station"
        return "transport_station"
    if tags.get("shop") == "supermarket":
        return "supermarket"
    if tags.get("shop") == "convenience":
        return "convenience_store"
    if tags.get("amenity") in ("cafe", "restaurant", "fast_food"):
        return tags["amenity"]
    return "unknown"
