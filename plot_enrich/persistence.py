"""
Postgres persistence for enriched plots and municipalities

enrichment_data is merged at the SQL level with
COALESCE(existing, '{}') || new, so writers touching different
top-level keys never clobber each other. Two writers touching the same
key race and the last write wins.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

import psycopg2
from loguru import logger
from psycopg2 import sql
from psycopg2.extras import Json, RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from .config import DatabaseConfig, get_config
from .models import MunicipalityRecord

_UPSERT_WITH_REAL_COORDS = """
    INSERT INTO {table} (id, latitude, longitude, real_latitude, real_longitude, municipality_id, enrichment_data)
    VALUES (%s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (id) DO UPDATE SET
        real_latitude = EXCLUDED.real_latitude,
        real_longitude = EXCLUDED.real_longitude,
        municipality_id = EXCLUDED.municipality_id,
        enrichment_data = COALESCE({table}.enrichment_data, '{{}}'::jsonb) || EXCLUDED.enrichment_data
"""

_UPSERT_KEEP_REAL_COORDS = """
    INSERT INTO {table} (id, latitude, longitude, municipality_id, enrichment_data)
    VALUES (%s, %s, %s, %s, %s)
    ON CONFLICT (id) DO UPDATE SET
        municipality_id = EXCLUDED.municipality_id,
        enrichment_data = COALESCE({table}.enrichment_data, '{{}}'::jsonb) || EXCLUDED.enrichment_data
"""


def merge_enrichment_key(existing: Optional[Dict[str, Any]], key: str, value: Any) -> Dict[str, Any]:
    """In-memory equivalent of the SQL merge for one key"""
    merged = dict(existing or {})
    merged[key] = value
    return merged


def _float_or_none(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


class PlotStore:
    """
    Thin data access layer over a psycopg2 connection pool.

    Methods taking `conn` run on a caller-held connection (see
    connection()); the caller's context manager commits or rolls back.
    """

    def __init__(
        self,
        dsn: Optional[str] = None,
        pool: Optional[Any] = None,
        config: Optional[DatabaseConfig] = None,
    ):
        self.config = config or get_config().database
        if pool is None:
            dsn = dsn or self.config.url
            if not dsn:
                raise ValueError("DATABASE_URL is required for PlotStore")
            pool = ThreadedConnectionPool(
                self.config.min_connections,
                self.config.max_connections,
                dsn,
                sslmode=self.config.sslmode,
            )
        self.pool = pool
        self.plots_table = sql.Identifier(self.config.plots_table)
        self.source_table = sql.Identifier(self.config.source_table)

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """Borrow a pooled connection; commit on success, roll back on error"""
        conn = self.pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self.pool.putconn(conn)

    def close(self) -> None:
        self.pool.closeall()

    # ============================================================
    # Plots
    # ============================================================

    def get_real_coordinates(self, conn, plot_id: str) -> Optional[Tuple[Optional[float], Optional[float]]]:
        """(real_latitude, real_longitude), or None if the plot has no row"""
        query = sql.SQL("SELECT real_latitude, real_longitude FROM {table} WHERE id = %s").format(table=self.plots_table)
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(query, (plot_id,))
            row = cur.fetchone()
        if row is None:
            return None
        return _float_or_none(row["real_latitude"]), _float_or_none(row["real_longitude"])

    def upsert_enrichment(
        self,
        conn,
        plot_id: str,
        lat: float,
        lon: float,
        municipality_id: Optional[int],
        data: Dict[str, Any],
        update_real_coords: bool,
    ) -> None:
        """Insert or merge enrichment_data; real coordinates only when asked"""
        if update_real_coords:
            query = sql.SQL(_UPSERT_WITH_REAL_COORDS).format(table=self.plots_table)
            params = (plot_id, lat, lon, lat, lon, municipality_id, Json(data))
        else:
            query = sql.SQL(_UPSERT_KEEP_REAL_COORDS).format(table=self.plots_table)
            params = (plot_id, lat, lon, municipality_id, Json(data))
        with conn.cursor() as cur:
            cur.execute(query, params)

    def get_existing_enrichment_map(self, conn, ids: List[str]) -> Dict[str, Dict[str, Any]]:
        if not ids:
            return {}
        query = sql.SQL("SELECT id, enrichment_data FROM {table} WHERE id = ANY(%s)").format(table=self.plots_table)
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(query, (list(ids),))
            rows = cur.fetchall()
        return {row["id"]: row["enrichment_data"] or {} for row in rows}

    def fetch_plot_batch(self, conn, limit: int, offset: int) -> List[Dict[str, Any]]:
        """Source plots ordered by id, one page at a time"""
        query = sql.SQL("SELECT id, latitude, longitude FROM {table} ORDER BY id OFFSET %s LIMIT %s").format(
            table=self.source_table
        )
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(query, (offset, limit))
            return [dict(row) for row in cur.fetchall()]

    # ============================================================
    # Municipalities
    # ============================================================

    def find_municipality_by_name(self, conn, name: str) -> Optional[Dict[str, Any]]:
        """Exact name match, then case-insensitive"""
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            for operator in ("=", "ILIKE"):
                cur.execute(
                    f"SELECT id, name, district, country FROM municipalities WHERE name {operator} %s LIMIT 1",
                    (name,),
                )
                row = cur.fetchone()
                if row:
                    return dict(row)
        return None

    def insert_municipality(
        self,
        conn,
        name: str,
        district: Optional[str] = None,
        country: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                INSERT INTO municipalities (name, district, country, created_at, updated_at)
                VALUES (%s, %s, %s, NOW(), NOW())
                ON CONFLICT (name) DO UPDATE SET
                    district = COALESCE(EXCLUDED.district, municipalities.district),
                    country = COALESCE(EXCLUDED.country, municipalities.country),
                    updated_at = NOW()
                RETURNING id, name, district, country
                """,
                (name, district, country),
            )
            row = cur.fetchone()
        return dict(row) if row else None

    def find_portugal_municipality(self, name: Optional[str], caop_id: Optional[str]) -> Optional[MunicipalityRecord]:
        """
        Portugal municipality with REN/RAN service config.

        Tries the name first, then the first 4 digits of the CAOP code
        (DDCC of a DDCCFF parish code).
        """
        lookups = []
        if name:
            lookups.append(("name", name))
        if caop_id:
            lookups.append(("caop_id", str(caop_id)[:4]))
        if not lookups:
            return None

        with self.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                for column, value in lookups:
                    cur.execute(
                        sql.SQL(
                            "SELECT id, name, caop_id, district, ren_service, ran_service, gis_verified "
                            "FROM portugal_municipalities WHERE {column} = %s LIMIT 1"
                        ).format(column=sql.Identifier(column)),
                        (value,),
                    )
                    row = cur.fetchone()
                    if row:
                        return MunicipalityRecord(
                            id=row["id"],
                            name=row["name"],
                            caopId=row["caop_id"],
                            district=row["district"],
                            renService=row["ren_service"],
                            ranService=row["ran_service"],
                            gisVerified=bool(row["gis_verified"]),
                        )
        return None


def connect_store(config: Optional[DatabaseConfig] = None) -> Optional[PlotStore]:
    """PlotStore from config, or None when no DATABASE_URL is set"""
    config = config or get_config().database
    if not config.url:
        logger.warning("DATABASE_URL not set; results will not be stored")
        return None
    try:
        return PlotStore(config=config)
    except psycopg2.Error as e:
        logger.error(f"Could not open database pool: {e}")
        raise
