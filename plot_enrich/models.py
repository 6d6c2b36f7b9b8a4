"""
Pydantic models for normalized enrichment output
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================
# GeoJSON Types
# ============================================================

class GeoJSONPoint(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float]  # [longitude, latitude]


class GeoJSONPolygon(BaseModel):
    type: Literal["Polygon"] = "Polygon"
    coordinates: List[List[List[float]]]  # [[[lon, lat], ...]]


class Coordinate(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class BoundingBox(BaseModel):
    minLng: float
    minLat: float
    maxLng: float
    maxLat: float


# ============================================================
# Layer Models
# ============================================================

class LayerResult(BaseModel):
    """
    Outcome of one layer connector.

    found=False without an error means "no feature here"; an error string
    is only set on transport or parse failure.
    """
    layerId: str
    layerName: str
    found: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class LayerQueryResponse(BaseModel):
    coordinates: Dict[str, float]  # {"lat": ..., "lng": ...}
    country: str
    timestamp: str = Field(default_factory=utc_now_iso)
    layers: List[LayerResult] = Field(default_factory=list)
    areaM2: Optional[float] = None
    boundingBox: Optional[BoundingBox] = None
    polygon: Optional[Dict[str, Any]] = None


class MunicipalityRecord(BaseModel):
    """Portugal municipality row with optional REN/RAN ArcGIS services"""
    id: Optional[int] = None
    name: str
    caopId: Optional[str] = None
    district: Optional[str] = None
    renService: Optional[Dict[str, Any]] = None
    ranService: Optional[Dict[str, Any]] = None
    gisVerified: bool = False


# ============================================================
# Cadastre / Zoning Models
# ============================================================

class CadastralInfo(BaseModel):
    """A resolved cadastral parcel; contains_point implies distance 0"""
    model_config = ConfigDict(extra="allow")

    cadastral_reference: Optional[str] = None
    area_m2: Optional[float] = None
    geometry: Optional[Dict[str, Any]] = None
    centroid: Optional[List[float]] = None
    distance_meters: Optional[float] = None
    contains_point: bool = False
    source: str
    service_url: Optional[str] = None


class ZoningTranslation(BaseModel):
    label_en: str
    confidence: Optional[float] = None
    notes: Optional[str] = None


# ============================================================
# Pipeline Models
# ============================================================

class MunicipalityInfo(BaseModel):
    id: Optional[int] = None
    name: str
    district: Optional[str] = None
    country: Optional[str] = None


class LocationEnrichmentResponse(BaseModel):
    location: Coordinate
    country: Optional[str] = None
    municipality: Optional[MunicipalityInfo] = None
    amenities: Optional[Dict[str, Any]] = None
    layers: Optional[Dict[str, Any]] = None
    zoning: Optional[Dict[str, Any]] = None
    cadastre: Optional[Dict[str, Any]] = None
    enrichment_data: Optional[Dict[str, Any]] = None
    enrichments_run: List[str] = Field(default_factory=list)
    enrichments_skipped: List[str] = Field(default_factory=list)
    enrichments_failed: List[str] = Field(default_factory=list)
    timestamp: str = Field(default_factory=utc_now_iso)
    error: Optional[str] = None

    def mark(self, stage: str, outcome: Literal["run", "skipped", "failed"]) -> None:
        """Record a stage outcome; a stage lives in exactly one list"""
        for bucket in (self.enrichments_run, self.enrichments_skipped, self.enrichments_failed):
            if stage in bucket:
                bucket.remove(stage)
        {
            "run": self.enrichments_run,
            "skipped": self.enrichments_skipped,
            "failed": self.enrichments_failed,
        }[outcome].append(stage)
