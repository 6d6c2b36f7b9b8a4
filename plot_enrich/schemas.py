"""
Upstream response schemas

Each external service family gets a pydantic model that is validated at the
connector boundary. Unexpected shapes raise ProviderSchemaError instead of
flowing into the normalized output as raw objects.
"""

from typing import Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ProviderSchemaError


class _Loose(BaseModel):
    model_config = ConfigDict(extra="allow")


# ============================================================
# GeoJSON / OGC API Features / WFS GeoJSON / WMS GetFeatureInfo
# ============================================================

class GeoJSONFeature(_Loose):
    type: str = "Feature"
    id: Optional[Union[str, int]] = None
    geometry: Optional[Dict[str, Any]] = None
    properties: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("properties", mode="before")
    @classmethod
    def _none_properties(cls, value):
        return value or {}

    def as_dict(self) -> Dict[str, Any]:
        return {"type": "Feature", "id": self.id, "geometry": self.geometry, "properties": self.properties}


class FeatureCollection(_Loose):
    type: str = "FeatureCollection"
    features: List[GeoJSONFeature] = Field(default_factory=list)

    @field_validator("features", mode="before")
    @classmethod
    def _none_features(cls, value):
        return value or []

    def feature_dicts(self) -> List[Dict[str, Any]]:
        return [f.as_dict() for f in self.features]


class OGCCollection(_Loose):
    id: str
    title: Optional[str] = None


class OGCCollections(_Loose):
    collections: List[OGCCollection] = Field(default_factory=list)


# ============================================================
# ArcGIS REST
# ============================================================

class ArcGISGeometry(_Loose):
    rings: Optional[List[List[List[float]]]] = None
    x: Optional[float] = None
    y: Optional[float] = None


class ArcGISFeature(_Loose):
    attributes: Dict[str, Any] = Field(default_factory=dict)
    geometry: Optional[ArcGISGeometry] = None


class ArcGISQueryResponse(_Loose):
    features: List[ArcGISFeature] = Field(default_factory=list)
    error: Optional[Dict[str, Any]] = None


class ArcGISIdentifyResult(_Loose):
    layerId: Optional[int] = None
    layerName: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)


class ArcGISIdentifyResponse(_Loose):
    results: List[ArcGISIdentifyResult] = Field(default_factory=list)


# ============================================================
# Open-Elevation
# ============================================================

class ElevationResult(_Loose):
    latitude: float
    longitude: float
    elevation: float


class OpenElevationResponse(_Loose):
    results: List[ElevationResult] = Field(default_factory=list)


# ============================================================
# Nominatim
# ============================================================

class NominatimAddress(_Loose):
    city: Optional[str] = None
    town: Optional[str] = None
    village: Optional[str] = None
    municipality: Optional[str] = None
    county: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None


class NominatimReverse(_Loose):
    display_name: Optional[str] = None
    address: Optional[NominatimAddress] = None


# ============================================================
# Overpass
# ============================================================

class OverpassPoint(_Loose):
    lat: float
    lon: float


class OverpassElement(_Loose):
    type: str
    id: int
    lat: Optional[float] = None
    lon: Optional[float] = None
    geometry: Optional[List[Optional[OverpassPoint]]] = None
    tags: Dict[str, str] = Field(default_factory=dict)


class OverpassResponse(_Loose):
    elements: List[OverpassElement] = Field(default_factory=list)


# ============================================================
# Gemini generateContent
# ============================================================

class GeminiPart(_Loose):
    text: Optional[str] = None


class GeminiContent(_Loose):
    parts: List[GeminiPart] = Field(default_factory=list)


class GeminiCandidate(_Loose):
    content: Optional[GeminiContent] = None


class GeminiResponse(_Loose):
    candidates: List[GeminiCandidate] = Field(default_factory=list)

    def text(self) -> str:
        for candidate in self.candidates:
            if candidate.content:
                for part in candidate.content.parts:
                    if part.text:
                        return part.text
        return ""


PROVIDER_SCHEMAS: Dict[str, Type[BaseModel]] = {
    "ogc-features": FeatureCollection,
    "ogc-collections": OGCCollections,
    "wfs-geojson": FeatureCollection,
    "wms-featureinfo": FeatureCollection,
    "arcgis-query": ArcGISQueryResponse,
    "arcgis-identify": ArcGISIdentifyResponse,
    "open-elevation": OpenElevationResponse,
    "nominatim": NominatimReverse,
    "overpass": OverpassResponse,
    "gemini": GeminiResponse,
}


def parse_payload(provider: str, payload: Any) -> Any:
    """Validate a raw upstream payload against its provider schema"""
    model = PROVIDER_SCHEMAS.get(provider)
    if model is None:
        raise KeyError(f"No schema registered for provider {provider!r}")
    if not isinstance(payload, dict):
        raise ProviderSchemaError(provider, f"expected JSON object, got {type(payload).__name__}")
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise ProviderSchemaError(provider, f"{e.error_count()} validation errors") from e
