from unittest.mock import MagicMock

import pytest
import requests

from plot_enrich.config import RetryConfig
from plot_enrich.connectors.base import http_scope
from plot_enrich.exceptions import TransportError
from plot_enrich.http_client import HttpClient, SessionRegistry, backoff_delays

URL = "https://example.org/api"


def make_response(status, payload=None):
    response = MagicMock()
    response.status_code = status
    response.text = "" if payload is None else str(payload)
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def sleeps(monkeypatch):
    recorded = []
    monkeypatch.setattr("plot_enrich.http_client.time.sleep", recorded.append)
    return recorded


def client_with(*outcomes, retry=None):
    session = MagicMock()
    session.request.side_effect = list(outcomes)
    registry = MagicMock()
    registry.get.return_value = session
    client = HttpClient(registry=registry, retry=retry or RetryConfig(max_attempts=3, base_delay_s=0.5, jitter_s=0.0))
    return client, session


@pytest.mark.parametrize("base, attempts, expected", [
    (0.5, 3, [0.5, 1.0]),
    (1.0, 4, [1.0, 2.0, 4.0]),
    (0.1, 4, [0.1, 0.2, 0.4]),
    (1.0, 1, []),
])
def test_backoff_delays(base, attempts, expected):
    assert backoff_delays(base, attempts) == pytest.approx(expected)


def test_registry_reuses_session_per_host_and_clears():
    registry = SessionRegistry(user_agent="test-agent")
    a = registry.get("https://host-a.example/x")
    assert registry.get("https://host-a.example/other") is a
    b = registry.get("https://host-b.example/x")
    assert b is not a
    assert a.headers["User-Agent"] == "test-agent"
    assert len(registry) == 2

    registry.clear()
    assert len(registry) == 0
    assert registry.get("https://host-a.example/x") is not a


def test_retryable_status_then_success(sleeps):
    client, session = client_with(make_response(503), make_response(200, {"ok": True}))
    assert client.get_json(URL) == {"ok": True}
    assert session.request.call_count == 2
    assert sleeps == [0.5]


def test_client_error_is_not_retried(sleeps):
    client, session = client_with(make_response(404))
    with pytest.raises(TransportError) as exc:
        client.get_json(URL)
    assert exc.value.status_code == 404
    assert session.request.call_count == 1
    assert sleeps == []


def test_timeouts_exhaust_attempts(sleeps):
    client, session = client_with(
        requests.exceptions.Timeout(),
        requests.exceptions.ConnectionError("reset"),
        requests.exceptions.Timeout(),
    )
    with pytest.raises(TransportError) as exc:
        client.get_text(URL)
    assert session.request.call_count == 3
    assert sleeps == [0.5, 1.0]
    assert "timeout" in str(exc.value)


def test_rate_limit_exhaustion_keeps_status(sleeps):
    client, _ = client_with(make_response(429), make_response(429), retry=RetryConfig(max_attempts=2, base_delay_s=0.0, jitter_s=0.0))
    with pytest.raises(TransportError) as exc:
        client.get_json(URL)
    assert exc.value.status_code == 429


def test_invalid_json_is_transport_error(sleeps):
    client, _ = client_with(make_response(200, ValueError("not json")))
    with pytest.raises(TransportError):
        client.post_json(URL, {"q": 1})


def test_post_form_sends_form_body(sleeps):
    client, session = client_with(make_response(200, {"elements": []}))
    client.post_form(URL, data={"data": "[out:json];"}, timeout=5)
    _, kwargs = session.request.call_args
    assert kwargs["data"] == {"data": "[out:json];"}
    assert kwargs["timeout"] == 5


def test_http_scope_closes_only_private_clients(monkeypatch):
    closed = []
    monkeypatch.setattr(HttpClient, "close", lambda self: closed.append(self))

    shared = HttpClient(registry=MagicMock())
    with http_scope(shared) as client:
        assert client is shared
    assert closed == []

    with http_scope() as private:
        pass
    assert closed == [private]
