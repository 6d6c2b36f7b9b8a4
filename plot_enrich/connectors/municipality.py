"""
Municipality resolution via Nominatim reverse geocoding

This is the only source of country determination for the pipeline.
"""

from typing import Dict, Optional

from loguru import logger

from ..config import RetryConfig, get_config
from ..geometry import is_valid_coordinate
from ..http_client import HttpClient
from ..schemas import parse_payload
from .base import http_scope

NOMINATIM_RETRY = RetryConfig(max_attempts=4, base_delay_s=0.1, jitter_s=0.0)
NOMINATIM_TIMEOUT = 30


def get_municipality_from_coordinates(
    lat: float,
    lon: float,
    http: Optional[HttpClient] = None,
) -> Optional[Dict[str, Optional[str]]]:
    """
    Reverse geocode a point to {name, district, country}.

    Returns None for invalid coordinates or when Nominatim has no
    usable address. Transport failures propagate.
    """
    if not is_valid_coordinate(lat, lon):
        logger.warning(f"Invalid coordinates: {lat}, {lon}")
        return None

    url = f"{get_config().api.nominatim_url.rstrip('/')}/reverse"
    params = {"format": "json", "lat": lat, "lon": lon, "addressdetails": 1, "zoom": 10}

    with http_scope(http) as client:
        payload = client.get_json(url, params=params, timeout=NOMINATIM_TIMEOUT, retry=NOMINATIM_RETRY)

    address = parse_payload("nominatim", payload).address
    if address is None:
        logger.warning(f"No address data found for coordinates: {lat}, {lon}")
        return None

    name = address.city or address.town or address.village or address.municipality or address.county
    if not name:
        logger.warning(f"No municipality found in address for coordinates: {lat}, {lon}")
        return None

    return {
        "name": name,
        "district": address.state or address.county,
        "country": address.country_code.upper()[:2] if address.country_code else None,
    }
