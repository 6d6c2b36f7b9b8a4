"""
Shared connector plumbing

- safe_layer: converts any connector exception into a failed LayerResult
- run_concurrently: ordered thread fan-out over independent calls
- OGC API Features and WMS GetFeatureInfo request helpers
"""

import concurrent.futures
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, TypeVar

from loguru import logger

from ..config import get_config
from ..geometry import BBox, point_in_geometry
from ..http_client import HttpClient
from ..models import LayerResult
from ..schemas import parse_payload

T = TypeVar("T")


def safe_layer(layer_id: str, layer_name: str, call: Callable[[], LayerResult]) -> LayerResult:
    """Run a layer connector; an exception becomes found=False with an error"""
    try:
        return call()
    except Exception as e:
        logger.warning(f"Layer {layer_id} failed: {e}")
        return LayerResult(layerId=layer_id, layerName=layer_name, found=False, error=str(e) or type(e).__name__)


def run_concurrently(calls: Sequence[Callable[[], T]], max_workers: Optional[int] = None) -> List[T]:
    """
    Execute independent calls on a thread pool.

    Results come back in submission order. Exceptions propagate, so
    callers that need isolation wrap each call with safe_layer.
    """
    if not calls:
        return []
    if len(calls) == 1:
        return [calls[0]()]
    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers or len(calls)) as ex:
        futures = [ex.submit(call) for call in calls]
        return [f.result() for f in futures]


def first_present(props: Dict[str, Any], keys: Iterable[str]) -> Any:
    """First non-empty value among candidate property names"""
    for key in keys:
        value = props.get(key)
        if value is not None and str(value).strip() != "":
            return value
    return None


def pick_label(props: Dict[str, Any], candidates: Iterable[str]):
    """Return (label, field) for the first non-blank candidate field"""
    for key in candidates:
        value = props.get(key)
        if value is not None and str(value).strip() != "":
            return str(value).strip(), key
    return None, None


def format_bbox(bbox: BBox) -> str:
    return ",".join(str(v) for v in bbox)


def ogc_items(
    http: HttpClient,
    collection: str,
    bbox: BBox,
    limit: int,
    base_url: Optional[str] = None,
    timeout: Optional[float] = None,
) -> List[Dict[str, Any]]:
    """Fetch features from an OGC API Features collection by bbox"""
    base = (base_url or get_config().api.dgt_ogc_url).rstrip("/")
    url = f"{base}/collections/{collection}/items"
    payload = http.get_json(
        url,
        params={"bbox": format_bbox(bbox), "limit": limit, "f": "json"},
        timeout=timeout,
        verify=False,
    )
    return parse_payload("ogc-features", payload).feature_dicts()


def wms_feature_info(
    http: HttpClient,
    url: str,
    layer: str,
    lat: float,
    lon: float,
    buffer_m: float = 100,
    timeout: Optional[float] = None,
) -> List[Dict[str, Any]]:
    """
    WMS 1.1.1 GetFeatureInfo at the center pixel of a 256x256 map.

    The map extent is a square of +/- buffer_m converted with the
    latitude degree length only.
    """
    delta = buffer_m / 111320
    params = {
        "SERVICE": "WMS",
        "VERSION": "1.1.1",
        "REQUEST": "GetFeatureInfo",
        "LAYERS": layer,
        "QUERY_LAYERS": layer,
        "INFO_FORMAT": "application/json",
        "SRS": "EPSG:4326",
        "BBOX": f"{lon - delta},{lat - delta},{lon + delta},{lat + delta}",
        "WIDTH": "256",
        "HEIGHT": "256",
        "X": "128",
        "Y": "128",
    }
    payload = http.get_json(url, params=params, timeout=timeout, verify=False)
    return parse_payload("wms-featureinfo", payload).feature_dicts()


def area_buffer(area_m2: Optional[float], default_m: float = 100) -> float:
    """Half-side of the square implied by a plot area, or a default buffer"""
    if area_m2:
        return area_m2 ** 0.5 / 2
    return default_m


@contextmanager
def http_scope(http: Optional[HttpClient] = None) -> Iterator[HttpClient]:
    """Use the caller's client, or a private one closed on exit"""
    if http is not None:
        yield http
        return
    client = HttpClient()
    try:
        yield client
    finally:
        client.close()


def pick_zoning_feature(features: List[Dict[str, Any]], lon: float, lat: float) -> Optional[Dict[str, Any]]:
    """A polygon containing the point, else the first polygon, else the first feature"""
    if not features:
        return None

    def is_polygonal(f: Dict[str, Any]) -> bool:
        return "polygon" in str((f.get("geometry") or {}).get("type", "")).lower()

    for f in features:
        if is_polygonal(f) and point_in_geometry(lon, lat, f.get("geometry")):
            return f
    for f in features:
        if is_polygonal(f):
            return f
    return features[0]
