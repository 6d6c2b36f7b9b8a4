from unittest.mock import MagicMock

import pytest

from plot_enrich import pipeline
from plot_enrich.exceptions import EnrichmentValidationError
from plot_enrich.persistence import PlotStore
from plot_enrich.pipeline import enrich_location

LISBON = (38.7223, -9.1393)
ALL_STAGES = {
    "municipalities", "layers", "amenities",
    "portugal-cadastre", "portugal-zoning",
    "spain-cadastre", "spain-zoning", "germany-zoning",
}


def stages(response):
    return response.enrichments_run + response.enrichments_skipped + response.enrichments_failed


@pytest.fixture
def fake(monkeypatch):
    """Stub every connector; tests override what they need"""
    state = {
        "municipality": {"name": "Lisboa", "district": "Lisboa", "country": "PT"},
        "amenities": {"bus_stop": {"count": 3, "nearest_m": 120}},
        "cadastre": {"cadastral_reference": "PT-1", "geometry": {"type": "Polygon", "coordinates": []}},
        "zoning": {"crus": {"designation": "Espaços Centrais"}, "label": "Espaços Centrais"},
        "calls": [],
    }

    def call(name, value):
        def fn(*args, **kwargs):
            state["calls"].append((name, args, kwargs))
            result = state[value] if isinstance(value, str) else value
            if isinstance(result, Exception):
                raise result
            return result
        return fn

    monkeypatch.setattr(pipeline, "get_municipality_from_coordinates", call("municipality", "municipality"))
    monkeypatch.setattr(pipeline, "query_all_layers", call("layers", {"raw": True}))
    monkeypatch.setattr(pipeline, "transform_layers_to_enrichment", call("transform", {"layersByCategory": {}}))
    monkeypatch.setattr(pipeline, "enrich_amenities", call("amenities", "amenities"))
    monkeypatch.setattr(pipeline, "resolve_portugal_cadastre", call("pt-cadastre", "cadastre"))
    monkeypatch.setattr(pipeline, "get_portugal_zoning_data", call("pt-zoning", "zoning"))
    monkeypatch.setattr(pipeline, "get_spanish_cadastral_info", call("es-cadastre", "cadastre"))
    monkeypatch.setattr(pipeline, "get_spanish_zoning_for_point", call("es-zoning", "zoning"))
    monkeypatch.setattr(pipeline, "get_german_zoning_for_point", call("de-zoning", "zoning"))
    return state


def called(state):
    return [name for name, _, _ in state["calls"]]


@pytest.fixture
def store():
    store = MagicMock(spec=PlotStore)
    store.find_municipality_by_name.return_value = {"id": 7, "name": "Lisboa"}
    store.get_real_coordinates.return_value = None
    return store


def conn_of(store):
    return store.connection.return_value.__enter__.return_value


class TestValidation:

    def test_plot_id_required_when_storing(self, fake, http):
        with pytest.raises(EnrichmentValidationError):
            enrich_location(*LISBON, store_results=True, http=http)
        assert fake["calls"] == []

    def test_invalid_coordinates(self, fake, http):
        with pytest.raises(EnrichmentValidationError):
            enrich_location(91.0, 0.0, store_results=False, http=http)
        assert fake["calls"] == []


class TestStages:

    def test_portugal_runs_everything(self, fake, http):
        response = enrich_location(*LISBON, store_results=False, http=http)

        assert response.error is None
        assert response.country == "PT"
        assert response.municipality.name == "Lisboa"
        assert response.enrichments_run == ["municipalities", "layers", "amenities", "portugal-cadastre", "portugal-zoning"]
        assert called(fake) == ["municipality", "layers", "transform", "amenities", "pt-cadastre", "pt-zoning"]
        assert set(response.enrichment_data) == {"layers", "amenities", "cadastral", "zoning"}

    def test_parcel_geometry_feeds_zoning(self, fake, http):
        enrich_location(*LISBON, store_results=False, http=http)
        _, args, _ = fake["calls"][-1]
        assert args == (LISBON[0], LISBON[1], fake["cadastre"]["geometry"])

    def test_stage_lists_are_disjoint_and_complete(self, fake, http):
        fake["amenities"] = RuntimeError("overpass down")
        response = enrich_location(*LISBON, store_results=False, http=http)
        assert len(stages(response)) == len(set(stages(response)))
        assert "amenities" in response.enrichments_failed
        assert response.error is None
        assert "amenities" not in response.enrichment_data

    def test_unknown_country_skips_country_stages(self, fake, http):
        fake["municipality"] = {"name": "Paris", "country": "FR"}
        response = enrich_location(48.8566, 2.3522, store_results=False, http=http)

        assert response.enrichments_run == ["municipalities", "amenities"]
        assert set(response.enrichments_skipped) == ALL_STAGES - {"municipalities", "amenities"}
        assert set(stages(response)) == ALL_STAGES
        assert "layers" not in called(fake)

    def test_municipality_unknown(self, fake, http):
        fake["municipality"] = None
        response = enrich_location(*LISBON, store_results=False, http=http)
        assert response.country is None
        assert response.enrichments_failed == ["municipalities"]
        assert response.enrichments_run == ["amenities"]

    def test_germany_without_label_is_skipped(self, fake, http):
        fake["municipality"] = {"name": "Köln", "country": "DE"}
        fake["zoning"] = {"state": "Nordrhein-Westfalen", "feature_count": 0}
        response = enrich_location(50.9375, 6.9603, store_results=False, http=http)
        assert "germany-zoning" in response.enrichments_skipped
        assert "layers" in response.enrichments_skipped
        assert response.zoning is None

    def test_spain_without_reference_is_skipped(self, fake, http):
        fake["municipality"] = {"name": "Madrid", "country": "ES"}
        fake["cadastre"] = {"cadastral_reference": None}
        response = enrich_location(40.4168, -3.7038, store_results=False, http=http)
        assert "spain-cadastre" in response.enrichments_skipped
        assert "spain-zoning" in response.enrichments_run
        assert response.cadastre is None

    def test_translation_uses_country_language(self, fake, http, monkeypatch):
        seen = []

        def translate(zoning, source_lang, target_lang, municipality, http=None):
            seen.append((source_lang, target_lang, municipality))
            return {**zoning, "label": "Central areas", "translated": True}

        monkeypatch.setattr(pipeline, "translate_zoning", translate)
        response = enrich_location(*LISBON, store_results=False, translate=True, target_language="en", http=http)
        assert seen == [("pt", "en", "Lisboa")]
        assert response.zoning["label"] == "Central areas"

    def test_no_store_without_store_results(self, fake, http, monkeypatch):
        connect = MagicMock()
        monkeypatch.setattr(pipeline, "connect_store", connect)
        enrich_location(*LISBON, store_results=False, http=http)
        connect.assert_not_called()


class TestPersistence:

    def test_new_plot_stores_real_coordinates(self, fake, http, store):
        response = enrich_location(*LISBON, plot_id="p1", http=http, store=store)

        conn = conn_of(store)
        assert response.municipality.id == 7
        store.insert_municipality.assert_not_called()
        args = store.upsert_enrichment.call_args[0]
        assert args[:5] == (conn, "p1", LISBON[0], LISBON[1], 7)
        assert set(args[5]) == {"layers", "amenities", "cadastral", "zoning"}
        assert args[6] is True

    def test_unchanged_real_coordinates_are_kept(self, fake, http, store):
        store.get_real_coordinates.return_value = LISBON
        enrich_location(*LISBON, plot_id="p1", http=http, store=store)
        assert store.upsert_enrichment.call_args[0][6] is False

    def test_moved_plot_rewrites_real_coordinates(self, fake, http, store):
        store.get_real_coordinates.return_value = (38.0, -9.0)
        enrich_location(*LISBON, plot_id="p1", http=http, store=store)
        assert store.upsert_enrichment.call_args[0][6] is True

    def test_missing_municipality_is_inserted(self, fake, http, store):
        store.find_municipality_by_name.return_value = None
        store.insert_municipality.return_value = {"id": 12, "name": "Lisboa"}
        response = enrich_location(*LISBON, plot_id="p1", http=http, store=store)
        store.insert_municipality.assert_called_once_with(conn_of(store), "Lisboa", "Lisboa", "PT")
        assert response.municipality.id == 12

    def test_upsert_failure_rolls_back(self, fake, http, store):
        store.upsert_enrichment.side_effect = RuntimeError("deadlock")
        response = enrich_location(*LISBON, plot_id="p1", http=http, store=store)
        conn_of(store).rollback.assert_called_once()
        assert response.error is None
        assert "amenities" in response.enrichments_run

    def test_layers_get_municipality_lookup(self, fake, http, store):
        enrich_location(*LISBON, plot_id="p1", http=http, store=store)
        _, _, kwargs = fake["calls"][1]
        assert kwargs["municipality_lookup"] == store.find_portugal_municipality

    def test_municipality_db_error_keeps_stage_and_persistence(self, fake, http, store):
        store.find_municipality_by_name.side_effect = RuntimeError("db down")
        response = enrich_location(*LISBON, plot_id="p1", http=http, store=store)

        assert response.country == "PT"
        assert response.municipality.id is None
        assert response.enrichments_failed == []
        assert response.enrichments_run[0] == "municipalities"
        conn_of(store).rollback.assert_called_once()
        args = store.upsert_enrichment.call_args[0]
        assert args[4] is None
        assert "amenities" in args[5]
