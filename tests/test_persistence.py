from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from plot_enrich.config import DatabaseConfig
from plot_enrich.persistence import (
    _UPSERT_KEEP_REAL_COORDS,
    _UPSERT_WITH_REAL_COORDS,
    PlotStore,
    connect_store,
    merge_enrichment_key,
)


@pytest.fixture
def pool():
    pool = MagicMock()
    pool.getconn.return_value = MagicMock(name="conn")
    return pool


@pytest.fixture
def store(pool):
    return PlotStore(pool=pool, config=DatabaseConfig())


def cursor_of(conn):
    return conn.cursor.return_value.__enter__.return_value


def test_merge_keeps_other_keys():
    existing = {"amenities": {"bus": 1}, "portugal_zoning": {"label": "x"}}
    merged = merge_enrichment_key(existing, "amenities", {"bus": 2})
    assert merged == {"amenities": {"bus": 2}, "portugal_zoning": {"label": "x"}}
    assert existing["amenities"] == {"bus": 1}
    assert merge_enrichment_key(None, "spain_zoning", {}) == {"spain_zoning": {}}


def test_upsert_sql_merges_at_top_level():
    for template in (_UPSERT_WITH_REAL_COORDS, _UPSERT_KEEP_REAL_COORDS):
        assert "COALESCE({table}.enrichment_data, '{{}}'::jsonb) || EXCLUDED.enrichment_data" in template
    assert "real_latitude" not in _UPSERT_KEEP_REAL_COORDS


class TestConnection:

    def test_commits_and_returns_connection(self, store, pool):
        with store.connection() as conn:
            pass
        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        pool.putconn.assert_called_once_with(conn)

    def test_rolls_back_on_error(self, store, pool):
        with pytest.raises(RuntimeError):
            with store.connection() as conn:
                raise RuntimeError("boom")
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        pool.putconn.assert_called_once_with(conn)

    def test_missing_dsn(self):
        with pytest.raises(ValueError, match="DATABASE_URL"):
            PlotStore(config=DatabaseConfig(url=None))


class TestPlots:

    def test_upsert_with_real_coordinates(self, store):
        conn = MagicMock()
        store.upsert_enrichment(conn, "p1", 38.7, -9.1, 3, {"amenities": {}}, update_real_coords=True)
        query, params = cursor_of(conn).execute.call_args[0]
        assert len(params) == 7
        assert params[:6] == ("p1", 38.7, -9.1, 38.7, -9.1, 3)
        assert params[6].adapted == {"amenities": {}}

    def test_upsert_keeps_real_coordinates(self, store):
        conn = MagicMock()
        store.upsert_enrichment(conn, "p1", 38.7, -9.1, None, {"amenities": {}}, update_real_coords=False)
        _, params = cursor_of(conn).execute.call_args[0]
        assert len(params) == 5
        assert params[:4] == ("p1", 38.7, -9.1, None)

    def test_real_coordinates_are_floats(self, store):
        conn = MagicMock()
        cursor_of(conn).fetchone.return_value = {"real_latitude": Decimal("38.7223"), "real_longitude": None}
        assert store.get_real_coordinates(conn, "p1") == (38.7223, None)

    def test_real_coordinates_without_row(self, store):
        conn = MagicMock()
        cursor_of(conn).fetchone.return_value = None
        assert store.get_real_coordinates(conn, "missing") is None

    def test_existing_enrichment_map(self, store):
        conn = MagicMock()
        assert store.get_existing_enrichment_map(conn, []) == {}
        cursor_of(conn).fetchall.return_value = [
            {"id": "a", "enrichment_data": {"amenities": {}}},
            {"id": "b", "enrichment_data": None},
        ]
        assert store.get_existing_enrichment_map(conn, ["a", "b"]) == {"a": {"amenities": {}}, "b": {}}
        assert cursor_of(conn).execute.call_args[0][1] == (["a", "b"],)

    def test_fetch_plot_batch_pages(self, store):
        conn = MagicMock()
        cursor_of(conn).fetchall.return_value = [{"id": "a", "latitude": 1.0, "longitude": 2.0}]
        rows = store.fetch_plot_batch(conn, limit=50, offset=100)
        assert rows == [{"id": "a", "latitude": 1.0, "longitude": 2.0}]
        assert cursor_of(conn).execute.call_args[0][1] == (100, 50)


class TestMunicipalities:

    def test_name_falls_back_to_ilike(self, store):
        conn = MagicMock()
        cur = cursor_of(conn)
        cur.fetchone.side_effect = [None, {"id": 9, "name": "Lisboa", "district": None, "country": "PT"}]
        assert store.find_municipality_by_name(conn, "lisboa")["id"] == 9
        statements = [c[0][0] for c in cur.execute.call_args_list]
        assert "name = %s" in statements[0]
        assert "name ILIKE %s" in statements[1]

    def test_insert_returns_row(self, store):
        conn = MagicMock()
        cursor_of(conn).fetchone.return_value = {"id": 4, "name": "Porto", "district": "Porto", "country": "PT"}
        assert store.insert_municipality(conn, "Porto", "Porto", "PT")["id"] == 4
        assert cursor_of(conn).execute.call_args[0][1] == ("Porto", "Porto", "PT")

    def test_portugal_lookup_by_caop_prefix(self, store, pool):
        cur = cursor_of(pool.getconn.return_value)
        cur.fetchone.side_effect = [None, {
            "id": 1, "name": "Lisboa", "caop_id": "1106", "district": "Lisboa",
            "ren_service": {"url": "https://ren"}, "ran_service": None, "gis_verified": 1,
        }]
        record = store.find_portugal_municipality("Lisbon", "110654")
        assert record.caopId == "1106"
        assert record.gisVerified is True
        assert record.renService == {"url": "https://ren"}
        assert [c[0][1] for c in cur.execute.call_args_list] == [("Lisbon",), ("1106",)]

    def test_portugal_lookup_needs_a_key(self, store, pool):
        assert store.find_portugal_municipality(None, "") is None
        pool.getconn.assert_not_called()


def test_connect_store_without_url():
    assert connect_store(DatabaseConfig(url=None)) is None
