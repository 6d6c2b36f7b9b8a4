import pytest

from plot_enrich.connectors import germany_zoning
from plot_enrich.connectors.germany_zoning import (
    bbox_for_srs,
    detect_state,
    get_german_zoning_for_point,
    query_generic_wfs,
    query_niedersachsen,
    query_nrw,
)
from plot_enrich.exceptions import TransportError

from conftest import collection, feature, square

COLOGNE = (6.9603, 50.9375)
WFS_URL = "https://wfs.example.de/bplan"

BPLAN_GML = """<?xml version="1.0" encoding="UTF-8"?>
<wfs:FeatureCollection xmlns:wfs="http://www.opengis.net/wfs/2.0"
    xmlns:gml="http://www.opengis.net/gml/3.2" xmlns:bp="https://example.de/bplan">
  <wfs:member>
    <bp:BPlan gml:id="bp.7">
      <bp:planname>Am Stadtpark</bp:planname>
      <bp:rechtsstand>rechtskräftig</bp:rechtsstand>
    </bp:BPlan>
  </wfs:member>
</wfs:FeatureCollection>
"""


@pytest.mark.parametrize("point, state", [
    ((13.4050, 52.5200), "Berlin"),
    ((9.9937, 53.5511), "Hamburg"),
    (COLOGNE, "NRW"),
    ((9.1829, 48.7758), "BW"),
    ((8.2146, 53.1435), "NI"),
    ((11.5820, 48.1351), None),
])
def test_detect_state(point, state):
    assert detect_state(*point) == state


def test_unknown_state_makes_no_request(http):
    result = get_german_zoning_for_point(11.5820, 48.1351, http=http)
    assert result["state"] is None
    assert result["service_type"] == "unknown"
    assert http.calls == []


def test_bbox_for_srs_uses_metres_for_utm():
    min_x, min_y, max_x, max_y = bbox_for_srs(*COLOGNE, 2000, "EPSG:25832")
    assert max_x - min_x == pytest.approx(4000)
    assert max_y - min_y == pytest.approx(4000)
    lon_box = bbox_for_srs(*COLOGNE, 2000, "EPSG:4326")
    assert lon_box[2] - lon_box[0] < 1


class TestNrw:

    def test_filters_collections_and_picks_label(self, http):
        http.route("/collections", {"collections": [
            {"id": "hydro", "title": "Gewässer"},
            {"id": "bplan_koeln", "title": "Bebauungspläne Köln"},
        ]})
        http.route("/collections/bplan_koeln/items", collection(
            feature({"planname": "Nr. 70459/02", "rechtsstand": "Festgesetzt"}, square(*COLOGNE), "k.1"),
        ))

        result = query_nrw(*COLOGNE, http=http)

        assert not any("/collections/hydro/items" in url for url in http.urls())
        assert result["state"] == "Nordrhein-Westfalen"
        assert result["collection_id"] == "bplan_koeln"
        assert result["label"] == "Nr. 70459/02"
        assert result["picked_field"] == "planname"
        assert result["feature_count"] == 1

    def test_no_features(self, http):
        http.route("/collections", {"collections": [{"id": "bplan"}]})
        http.route("/collections/bplan/items", collection())
        result = query_nrw(*COLOGNE, http=http)
        assert result["feature_count"] == 0
        assert "label" not in result


class TestGenericWfs:

    def test_format_probing_until_features(self, http):
        def respond(url, params):
            if params.get("outputFormat") == "application/json":
                return TransportError("HTTP 400", status_code=400)
            return collection(feature({"Nutzung": "Allgemeines Wohngebiet"}, square(*COLOGNE)))

        http.route(WFS_URL, respond)
        result = query_generic_wfs(WFS_URL, *COLOGNE, ["bplan"], "Test", "Test WFS",
                                   typenames=["ns:gewaesser", "ns:bplan_flaechen"], http=http)

        assert http.calls[0]["params"]["typeNames"] == "ns:bplan_flaechen"
        assert [c["params"]["outputFormat"] for c in http.calls] == ["application/json", "application/geo+json"]
        assert result["typename"] == "ns:bplan_flaechen"
        assert result["label"] == "Allgemeines Wohngebiet"
        assert result["service_type"] == "WFS 2.0.0"

    def test_gml_fallback(self, http):
        def respond(url, params):
            if "outputFormat" in params:
                return TransportError("unsupported format")
            return BPLAN_GML

        http.route(WFS_URL, respond)
        result = query_generic_wfs(WFS_URL, *COLOGNE, ["bplan"], "Test", "Test WFS", typenames=["bp:BPlan"], http=http)
        assert result["label"] == "Am Stadtpark"
        assert result["feature_id"] == "bp.7"
        assert result["notes"] == "Test WFS (GML fallback)"
        assert http.calls[0]["params"]["srsName"] == "EPSG:4326"

    def test_no_probe_answered_raises(self, http):
        http.route(WFS_URL, TransportError("offline"))
        with pytest.raises(TransportError):
            query_generic_wfs(WFS_URL, *COLOGNE, ["bplan"], "Test", "Test WFS", typenames=["bp:BPlan"], http=http)

    def test_answered_but_empty(self, http):
        http.route(WFS_URL, lambda url, params: collection() if "outputFormat" in params else EMPTY)
        result = query_generic_wfs(WFS_URL, *COLOGNE, ["bplan"], "Test", "Test WFS", typenames=["bp:BPlan"], http=http)
        assert result["feature_count"] == 0
        assert result["service_type"] == "WFS 2.0"

    def test_capabilities_failure_is_transport_error(self, monkeypatch):
        def broken(url, version, timeout):
            raise OSError("connection refused")

        monkeypatch.setattr(germany_zoning, "WebFeatureService", broken)
        with pytest.raises(TransportError, match="GetCapabilities"):
            query_generic_wfs(WFS_URL, *COLOGNE, ["bplan"], "Test", "Test WFS")


EMPTY = '<wfs:FeatureCollection xmlns:wfs="http://www.opengis.net/wfs/2.0"/>'


class TestNiedersachsen:

    def test_without_endpoints(self, http):
        result = query_niedersachsen(8.2146, 53.1435, http=http)
        assert "NI_WFS_SEEDS" in result["notes"]
        assert http.calls == []

    def test_failing_seed_is_skipped(self, fresh_config, monkeypatch):
        fresh_config.api.ni_wfs_seeds = ["https://a.example/wfs", "https://b.example/wfs"]
        fresh_config.api.ni_landuse_wfs_url = "https://landuse.example/wfs"
        tried = []

        def fake_wfs(url, lon, lat, selectors, state, note, typenames=None, http=None):
            tried.append(url)
            if url.startswith("https://a."):
                raise TransportError("down")
            return {"state": state, "feature_count": 2, "label": "WA"}

        monkeypatch.setattr(germany_zoning, "query_generic_wfs", fake_wfs)
        result = query_niedersachsen(8.2146, 53.1435)
        assert tried == ["https://a.example/wfs", "https://b.example/wfs"]
        assert result["state"] == "Niedersachsen (municipal)"

    def test_landuse_fallback(self, fresh_config, monkeypatch):
        fresh_config.api.ni_landuse_wfs_url = "https://landuse.example/wfs"
        calls = []

        def fake_wfs(url, lon, lat, selectors, state, note, typenames=None, http=None):
            calls.append((url, selectors))
            return {"state": state, "feature_count": 1}

        monkeypatch.setattr(germany_zoning, "query_generic_wfs", fake_wfs)
        result = query_niedersachsen(8.2146, 53.1435)
        assert calls == [("https://landuse.example/wfs", germany_zoning.NI_LANDUSE_SELECTORS)]
        assert result["state"] == "Niedersachsen (ALKIS Landnutzung)"


def test_dispatch_to_state_handler(monkeypatch, http):
    monkeypatch.setattr(germany_zoning, "query_berlin", lambda lon, lat, http=None: {"state": "Berlin"})
    assert get_german_zoning_for_point(13.4050, 52.5200, http=http) == {"state": "Berlin"}
