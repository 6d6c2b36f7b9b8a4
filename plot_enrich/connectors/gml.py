"""
GML helpers for WFS responses that do not offer GeoJSON

Elements are matched by local name so the INSPIRE schema version
(cp/4.0, gml/3.2, ...) carried by each service does not matter.
"""

from typing import Any, Dict, Iterator, List, Optional
from xml.etree import ElementTree as ET

from ..exceptions import ProviderSchemaError

XLINK = "{http://www.w3.org/1999/xlink}"


def local_name(tag: Any) -> str:
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1].split(":")[-1]


def parse_xml(text: str, provider: str = "gml") -> ET.Element:
    try:
        return ET.fromstring(text.encode("utf-8") if isinstance(text, str) else text)
    except ET.ParseError as e:
        raise ProviderSchemaError(provider, f"invalid XML: {e}") from e


def children(elem: ET.Element, name: str) -> List[ET.Element]:
    return [c for c in elem if local_name(c.tag) == name]


def child(elem: Optional[ET.Element], name: str) -> Optional[ET.Element]:
    if elem is None:
        return None
    for c in elem:
        if local_name(c.tag) == name:
            return c
    return None


def descendant(elem: Optional[ET.Element], name: str) -> Optional[ET.Element]:
    if elem is None:
        return None
    for node in elem.iter():
        if node is not elem and local_name(node.tag) == name:
            return node
    return None


def value_of(elem: Optional[ET.Element]) -> Optional[str]:
    """Element text, or its xlink title/href when the value is a reference"""
    if elem is None:
        return None
    if elem.text and elem.text.strip():
        return elem.text.strip()
    for attr in ("title", "href"):
        value = elem.get(XLINK + attr)
        if value:
            return value
    return None


def deep_text(elem: Optional[ET.Element], name: str) -> Optional[str]:
    """Text of the first descendant with this local name that has a value"""
    if elem is None:
        return None
    for node in elem.iter():
        if node is not elem and local_name(node.tag) == name:
            value = value_of(node)
            if value:
                return value
    return None


def feature_members(root: ET.Element) -> Iterator[ET.Element]:
    """Yield feature elements from wfs:member / gml:featureMember(s)"""
    for node in root:
        name = local_name(node.tag)
        if name in ("member", "featureMember", "featureMembers"):
            for feature in node:
                if isinstance(feature.tag, str):
                    yield feature


def parse_pos_list(text: Optional[str], swap_axes: bool = False) -> List[List[float]]:
    """
    "x1 y1 x2 y2 ..." into coordinate pairs.

    With swap_axes the input is read as lat,lon and emitted lon,lat.
    """
    if not text:
        return []
    values = text.replace(",", " ").split()
    pairs = []
    for i in range(0, len(values) - 1, 2):
        a, b = float(values[i]), float(values[i + 1])
        pairs.append([b, a] if swap_axes else [a, b])
    return pairs


def _ring(polygon: ET.Element, swap_axes: bool) -> List[List[float]]:
    exterior = descendant(polygon, "exterior")
    pos_list = descendant(exterior, "posList")
    if pos_list is not None:
        return parse_pos_list(pos_list.text, swap_axes)
    ring = descendant(exterior, "LinearRing")
    if ring is None:
        return []
    return [pt for pos in children(ring, "pos") for pt in parse_pos_list(pos.text, swap_axes)]


def extract_geometry(elem: Optional[ET.Element], swap_axes: bool = False) -> Optional[Dict[str, Any]]:
    """First Point, Polygon or MultiSurface under elem as GeoJSON"""
    if elem is None:
        return None

    for node in elem.iter():
        name = local_name(node.tag)
        if name == "Point":
            coords = parse_pos_list(value_of(descendant(node, "pos")), swap_axes)
            return {"type": "Point", "coordinates": coords[0]} if coords else None

        if name in ("Polygon", "PolygonPatch"):
            ring = _ring(node, swap_axes)
            return {"type": "Polygon", "coordinates": [ring]} if ring else None

        if name in ("MultiSurface", "MultiPolygon"):
            rings = [
                _ring(part, swap_axes)
                for part in node.iter()
                if local_name(part.tag) in ("Polygon", "PolygonPatch")
            ]
            rings = [r for r in rings if r]
            if len(rings) == 1:
                return {"type": "Polygon", "coordinates": rings}
            if rings:
                return {"type": "MultiPolygon", "coordinates": [[r] for r in rings]}
            return None

    return None
