"""
Layer aggregator

Portugal runs in phases, general to specific:
1. Administrative boundaries (district, municipality, parish, NUTS III)
2. Cadastre
3. Municipality database lookup (REN/RAN service URLs)
4. Zoning and restrictions (CRUS, REN, RAN)
5. Land use and elevation

Spain queries cadastre, regional zoning and elevation in parallel.
Every connector returns a LayerResult, so a failing source never
aborts the query.
"""

from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from ..connectors.administrative import query_administrative_layers
from ..connectors.base import http_scope, run_concurrently
from ..connectors.elevation import query_elevation
from ..connectors.land_use import query_land_use_layers
from ..connectors.portugal_cadastre import query_portuguese_cadastre
from ..connectors.portugal_zoning import query_crus_zoning
from ..connectors.ren_ran import query_ran, query_ren
from ..connectors.spain_cadastre import query_spanish_cadastre
from ..connectors.spain_zoning import query_spanish_zoning
from ..geometry import bbox_from_area
from ..http_client import HttpClient
from ..models import BoundingBox, LayerQueryResponse, LayerResult, MunicipalityRecord

MunicipalityLookup = Callable[[Optional[str], Optional[str]], Optional[MunicipalityRecord]]


def calculate_bounding_box(lat: float, lng: float, area_m2: float) -> BoundingBox:
    """Square box of side sqrt(area) centered on the point"""
    return BoundingBox(**bbox_from_area(lat, lng, area_m2))


def _layer_data(layers: List[LayerResult], layer_id: str, key: str) -> Optional[str]:
    for layer in layers:
        if layer.layerId == layer_id and layer.data:
            value = layer.data.get(key)
            return str(value) if value is not None else None
    return None


def _lookup_municipality(
    lookup: MunicipalityLookup,
    name: Optional[str],
    caop_id: Optional[str],
) -> Optional[MunicipalityRecord]:
    try:
        return lookup(name, caop_id)
    except Exception as e:
        logger.warning(f"Municipality database lookup failed for {name!r}: {e}")
        return None


def query_portugal_layers(
    lat: float,
    lng: float,
    area_m2: Optional[float] = None,
    http: Optional[HttpClient] = None,
    municipality_lookup: Optional[MunicipalityLookup] = None,
) -> List[LayerResult]:
    layers: List[LayerResult] = []

    # Phase 1: administrative
    admin_layers = query_administrative_layers(lat, lng, area_m2, http=http)
    layers.extend(admin_layers)
    municipio_name = _layer_data(admin_layers, "pt-municipio", "municipio")

    # Phase 2: cadastre
    cadastre = query_portuguese_cadastre(lat, lng, area_m2, http=http)
    layers.append(cadastre)
    cadastre_code = _layer_data([cadastre], "pt-cadastro", "municipalityCode")

    # Phase 3: municipality record with REN/RAN services
    municipality: Optional[MunicipalityRecord] = None
    if municipality_lookup is not None:
        municipality = _lookup_municipality(municipality_lookup, municipio_name, cadastre_code)
        if municipality is not None:
            layers.append(LayerResult(
                layerId="pt-municipality-db",
                layerName="Município (Database)",
                found=True,
                data={
                    "name": municipality.name,
                    "caopId": municipality.caopId,
                    "hasRenService": bool(municipality.renService),
                    "hasRanService": bool(municipality.ranService),
                    "gisVerified": municipality.gisVerified,
                },
            ))

    # Phase 4: zoning and restrictions
    layers.extend(run_concurrently([
        lambda: query_crus_zoning(lat, lng, area_m2, http=http),
        lambda: query_ren(lat, lng, municipality, http=http),
        lambda: query_ran(lat, lng, municipality, http=http),
    ]))

    # Phase 5: land use and elevation
    land_use, elevation = run_concurrently([
        lambda: query_land_use_layers(lat, lng, area_m2, http=http),
        lambda: query_elevation(lat, lng, http=http),
    ])
    layers.extend(land_use)
    layers.append(elevation)

    return layers


def query_spain_layers(lat: float, lng: float, area_m2: Optional[float] = None, http: Optional[HttpClient] = None) -> List[LayerResult]:
    return run_concurrently([
        lambda: query_spanish_cadastre(lat, lng, area_m2, http=http),
        lambda: query_spanish_zoning(lat, lng, area_m2, http=http),
        lambda: query_elevation(lat, lng, http=http),
    ])


def query_all_layers(
    lat: float,
    lng: float,
    country: str,
    area_m2: Optional[float] = None,
    polygon: Optional[Dict[str, Any]] = None,
    http: Optional[HttpClient] = None,
    municipality_lookup: Optional[MunicipalityLookup] = None,
) -> LayerQueryResponse:
    """
    Query every layer that applies to the country.

    Partial results are always returned; a failing connector shows up
    as found=False with an error.

    Raises:
        ValueError: If country is not PT or ES, or area_m2 is not positive
    """
    country = country.upper()
    if country not in ("PT", "ES"):
        raise ValueError(f"Layer queries support PT and ES, got {country!r}")
    if area_m2 is not None and area_m2 <= 0:
        raise ValueError(f"area_m2 must be positive, got {area_m2}")

    logger.info(f"Querying {country} layers at ({lat}, {lng})")
    with http_scope(http) as client:
        if country == "PT":
            layers = query_portugal_layers(lat, lng, area_m2, http=client, municipality_lookup=municipality_lookup)
        else:
            layers = query_spain_layers(lat, lng, area_m2, http=client)

    found = sum(1 for layer in layers if layer.found)
    logger.info(f"Layers: {found}/{len(layers)} found")

    return LayerQueryResponse(
        coordinates={"lat": lat, "lng": lng},
        country=country,
        layers=layers,
        areaM2=area_m2 or None,
        boundingBox=calculate_bounding_box(lat, lng, area_m2) if area_m2 else None,
        polygon=polygon,
    )
