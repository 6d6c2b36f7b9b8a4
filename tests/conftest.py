"""
Shared fixtures: a fresh configuration per test and an in-memory HTTP
double with the same surface as HttpClient.
"""

import pytest

from plot_enrich import config as config_module
from plot_enrich.config import EnrichConfig, RetryConfig, set_config
from plot_enrich.connectors.portugal_zoning import catalog
from plot_enrich.exceptions import TransportError


class FakeHttp:
    """
    Routes requests by URL fragment; the longest matching fragment wins.

    A route's response may be a payload, an exception to raise, or a
    callable(url, params) returning either.
    """

    def __init__(self, routes=None):
        self.routes = list(routes or [])
        self.calls = []
        self.closed = False

    def route(self, fragment, response):
        self.routes.append((fragment, response))
        return self

    def _respond(self, method, url, params=None, **kwargs):
        self.calls.append({"method": method, "url": url, "params": params or {}, **kwargs})
        matches = [(fragment, response) for fragment, response in self.routes if fragment in url]
        if not matches:
            raise TransportError(f"No route for {url}", url=url)
        _, response = max(matches, key=lambda match: len(match[0]))
        if callable(response):
            response = response(url, params or {})
        if isinstance(response, Exception):
            raise response
        return response

    def urls(self):
        return [call["url"] for call in self.calls]

    def get_json(self, url, params=None, **kwargs):
        return self._respond("GET", url, params, **kwargs)

    def get_text(self, url, params=None, **kwargs):
        return self._respond("GET", url, params, **kwargs)

    def post_form(self, url, data, **kwargs):
        params = kwargs.pop("params", None)
        return self._respond("POST", url, params, data=data, **kwargs)

    def post_json(self, url, payload, **kwargs):
        params = kwargs.pop("params", None)
        return self._respond("POST", url, params, json=payload, **kwargs)

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def fresh_config():
    """Isolated configuration without retry sleeps"""
    previous = config_module.config
    cfg = EnrichConfig()
    cfg.retry = RetryConfig(max_attempts=3, base_delay_s=0.0, jitter_s=0.0)
    cfg.amenities.retry = RetryConfig(max_attempts=1, base_delay_s=0.0, jitter_s=0.0)
    set_config(cfg)
    catalog.clear()
    yield cfg
    catalog.clear()
    set_config(previous)


@pytest.fixture
def http():
    return FakeHttp()


def feature(properties, geometry=None, feature_id=None):
    return {"type": "Feature", "id": feature_id, "geometry": geometry, "properties": properties}


def square(lon, lat, half=0.001):
    """GeoJSON Polygon centered on a point"""
    ring = [
        [lon - half, lat - half],
        [lon + half, lat - half],
        [lon + half, lat + half],
        [lon - half, lat + half],
        [lon - half, lat - half],
    ]
    return {"type": "Polygon", "coordinates": [ring]}


def collection(*features):
    return {"type": "FeatureCollection", "features": list(features)}
