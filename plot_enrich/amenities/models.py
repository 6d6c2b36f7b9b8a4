"""
OSM data models

Data classes for the Overpass elements used in proximity search
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple


@dataclass
class OSMNode:
    """Represents an OSM node (point)"""
    id: int
    lat: float
    lon: float
    tags: Dict[str, str] = field(default_factory=dict)

    def get_points(self) -> List[Tuple[float, float]]:
        return [(self.lat, self.lon)]


@dataclass
class OSMWay:
    """Represents an OSM way; geometry comes from 'out geom' as (lat, lon)"""
    id: int
    tags: Dict[str, str] = field(default_factory=dict)
    geometry: List[Tuple[float, float]] = field(default_factory=list)

    def get_points(self) -> List[Tuple[float, float]]:
        """Every vertex of the way, not just its endpoints"""
        return self.geometry
