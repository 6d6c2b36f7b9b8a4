import pytest

from plot_enrich.connectors.base import safe_layer
from plot_enrich.layers import aggregator, categorize_layer, query_all_layers, transform_layers_to_enrichment
from plot_enrich.models import LayerQueryResponse, LayerResult, MunicipalityRecord

LAT, LON = 38.7223, -9.1393


def layer(layer_id, found=True, data=None, error=None):
    return LayerResult(layerId=layer_id, layerName=layer_id.upper(), found=found, data=data, error=error)


@pytest.mark.parametrize("layer_id, category", [
    ("pt-distrito", "administrative"),
    ("pt-municipality-db", "administrative"),
    ("pt-cadastro", "cadastre"),
    ("es-cadastro", "cadastre"),
    ("pt-crus", "zoning"),
    ("pt-ran", "zoning"),
    ("es-zoning", "zoning"),
    ("pt-clc", "landuse"),
    ("pt-built-up", "landuse"),
    ("elevation", "elevation"),
    ("es-other", "spain"),
    ("xx-custom", "other"),
])
def test_categorize_layer(layer_id, category):
    assert categorize_layer(layer_id) == category


def test_transform_groups_layers_and_keeps_raw():
    response = LayerQueryResponse(
        coordinates={"lat": LAT, "lng": LON},
        country="PT",
        areaM2=400.0,
        boundingBox=aggregator.calculate_bounding_box(LAT, LON, 400.0),
        layers=[
            layer("pt-municipio", data={"municipio": "Lisboa"}),
            layer("pt-nuts3", found=False),
            layer("pt-ren", found=False, error="Municipality not identified"),
            layer("elevation", data={"elevationM": 77}),
        ],
    )
    enrichment = transform_layers_to_enrichment(response)

    assert enrichment["country"] == "PT"
    assert enrichment["areaM2"] == 400.0
    assert set(enrichment["boundingBox"]) == {"minLng", "minLat", "maxLng", "maxLat"}
    by_category = enrichment["layersByCategory"]
    assert [entry["layerId"] for entry in by_category["administrative"]] == ["pt-municipio"]
    assert by_category["zoning"] == [
        {"layerId": "pt-ren", "layerName": "PT-REN", "found": False, "error": "Municipality not identified"},
    ]
    assert by_category["elevation"][0]["data"] == {"elevationM": 77}
    assert len(enrichment["layersRaw"]) == 4
    assert "data" not in enrichment["layersRaw"][1]


def test_unsupported_country():
    with pytest.raises(ValueError):
        query_all_layers(LAT, LON, "FR")


@pytest.mark.parametrize("area", [0, -400.0])
def test_non_positive_area_is_rejected_before_queries(area, http):
    with pytest.raises(ValueError, match="area_m2"):
        query_all_layers(LAT, LON, "PT", area_m2=area, http=http)
    assert http.calls == []


def test_spain_layers_partial_failure(monkeypatch, http):
    def failing(*args, **kwargs):
        raise RuntimeError("WFS timeout")

    monkeypatch.setattr(aggregator, "query_spanish_cadastre", lambda lat, lng, area, http=None: layer("es-cadastro", data={"cadastral_reference": "X"}))
    monkeypatch.setattr(aggregator, "query_spanish_zoning", lambda lat, lng, area, http=None: safe_layer("es-zoning", "Zoning", failing))
    monkeypatch.setattr(aggregator, "query_elevation", lambda lat, lng, http=None: layer("elevation", data={"elevationM": 650}))

    result = query_all_layers(40.4168, -3.7038, "es", area_m2=900, http=http)

    assert result.country == "ES"
    assert [l.layerId for l in result.layers] == ["es-cadastro", "es-zoning", "elevation"]
    assert result.layers[1].found is False
    assert result.layers[1].error == "WFS timeout"
    assert result.areaM2 == 900
    assert result.boundingBox.maxLat > result.boundingBox.minLat


class TestPortugalPhases:

    @pytest.fixture
    def connectors(self, monkeypatch):
        seen = {}

        monkeypatch.setattr(aggregator, "query_administrative_layers", lambda lat, lng, area, http=None: [
            layer("pt-distrito", data={"distrito": "Lisboa"}),
            layer("pt-municipio", data={"municipio": "Lisboa"}),
            layer("pt-freguesia", found=False),
            layer("pt-nuts3", data={"nuts3": "Grande Lisboa"}),
        ])
        monkeypatch.setattr(aggregator, "query_portuguese_cadastre", lambda lat, lng, area, http=None: layer("pt-cadastro", data={"municipalityCode": "110654"}))
        monkeypatch.setattr(aggregator, "query_crus_zoning", lambda lat, lng, area, http=None: layer("pt-crus"))

        def ren(lat, lng, municipality, http=None):
            seen["ren"] = municipality
            return layer("pt-ren", found=False)

        def ran(lat, lng, municipality, http=None):
            seen["ran"] = municipality
            return layer("pt-ran", found=False)

        monkeypatch.setattr(aggregator, "query_ren", ren)
        monkeypatch.setattr(aggregator, "query_ran", ran)
        monkeypatch.setattr(aggregator, "query_land_use_layers", lambda lat, lng, area, http=None: [layer("pt-cos"), layer("pt-clc"), layer("pt-built-up")])
        monkeypatch.setattr(aggregator, "query_elevation", lambda lat, lng, http=None: layer("elevation"))
        return seen

    def test_phase_order_and_municipality_record(self, connectors, http):
        lookups = []
        record = MunicipalityRecord(id=3, name="Lisboa", caopId="1106", renService={"url": "https://x"}, gisVerified=True)

        def lookup(name, caop_id):
            lookups.append((name, caop_id))
            return record

        result = query_all_layers(LAT, LON, "PT", http=http, municipality_lookup=lookup)

        assert lookups == [("Lisboa", "110654")]
        assert [l.layerId for l in result.layers] == [
            "pt-distrito", "pt-municipio", "pt-freguesia", "pt-nuts3",
            "pt-cadastro",
            "pt-municipality-db",
            "pt-crus", "pt-ren", "pt-ran",
            "pt-cos", "pt-clc", "pt-built-up",
            "elevation",
        ]
        db_layer = result.layers[5]
        assert db_layer.data == {
            "name": "Lisboa",
            "caopId": "1106",
            "hasRenService": True,
            "hasRanService": False,
            "gisVerified": True,
        }
        assert connectors["ren"] is record
        assert connectors["ran"] is record
        assert result.boundingBox is None

    def test_lookup_failure_is_not_fatal(self, connectors, http):
        def lookup(name, caop_id):
            raise ConnectionError("database down")

        result = query_all_layers(LAT, LON, "PT", http=http, municipality_lookup=lookup)
        assert "pt-municipality-db" not in [l.layerId for l in result.layers]
        assert connectors["ren"] is None
        assert len(result.layers) == 12
