"""
Connectors for external geospatial services

One module per service family:
- administrative: DGT CAOP districts, municipalities, parishes, NUTS3
- land_use: COS, CLC and built-up areas via WMS GetFeatureInfo
- elevation: Open-Elevation
- portugal_cadastre / bupi: Portuguese parcels and BUPi properties
- spain_cadastre: Catastro INSPIRE parcels, buildings, addresses
- portugal_zoning / ren_ran: CRUS, COS2023, parish, REN/RAN
- spain_zoning / germany_zoning: regional planning WFS
- municipality: Nominatim reverse geocoding
"""

from .administrative import query_administrative_layers
from .bupi import get_bupi_property_info, get_bupi_property_info_arcgis
from .elevation import query_elevation
from .germany_zoning import get_german_zoning_for_point
from .land_use import query_land_use_layers
from .municipality import get_municipality_from_coordinates
from .portugal_cadastre import (
    get_nearby_cadastral_parcels,
    get_portugal_cadastral_info,
    query_portuguese_cadastre,
    resolve_portugal_cadastre,
)
from .portugal_zoning import get_portugal_zoning_data, query_crus_zoning
from .ren_ran import query_ran, query_ren
from .spain_cadastre import get_spanish_cadastral_info, query_spanish_cadastre
from .spain_zoning import get_spanish_zoning_for_point, query_spanish_zoning

__all__ = [
    "query_administrative_layers",
    "get_bupi_property_info",
    "get_bupi_property_info_arcgis",
    "query_elevation",
    "get_german_zoning_for_point",
    "query_land_use_layers",
    "get_municipality_from_coordinates",
    "get_nearby_cadastral_parcels",
    "get_portugal_cadastral_info",
    "query_portuguese_cadastre",
    "resolve_portugal_cadastre",
    "get_portugal_zoning_data",
    "query_crus_zoning",
    "query_ran",
    "query_ren",
    "get_spanish_cadastral_info",
    "query_spanish_cadastre",
    "get_spanish_zoning_for_point",
    "query_spanish_zoning",
]
