"""
Location enrichment orchestrator

Runs a fixed sequence of stages for one coordinate:

  1. Municipality resolution (always; sole source of the country)
  2. Layer aggregation (PT and ES)
  3. Amenities (always)
  4. Country-specific cadastre and zoning, with optional translation
  5. Persistence (when storing with a plot id)

Each stage is isolated: a failure is recorded and the pipeline moves
on. Every stage name ends up in exactly one of enrichments_run,
enrichments_skipped or enrichments_failed.
"""

from contextlib import ExitStack
from typing import Any, Callable, Dict, Optional

from loguru import logger

from .amenities import enrich_amenities
from .config import EnrichConfig, get_config
from .connectors.germany_zoning import get_german_zoning_for_point
from .connectors.municipality import get_municipality_from_coordinates
from .connectors.portugal_cadastre import resolve_portugal_cadastre
from .connectors.portugal_zoning import get_portugal_zoning_data
from .connectors.spain_cadastre import get_spanish_cadastral_info
from .connectors.spain_zoning import get_spanish_zoning_for_point
from .exceptions import EnrichmentValidationError
from .geometry import is_valid_coordinate
from .http_client import HttpClient
from .layers import query_all_layers, transform_layers_to_enrichment
from .models import Coordinate, LocationEnrichmentResponse, MunicipalityInfo
from .persistence import PlotStore, connect_store, merge_enrichment_key
from .translation import translate_zoning

COUNTRY_STAGES = ["portugal-cadastre", "portugal-zoning", "spain-cadastre", "spain-zoning", "germany-zoning"]
LAYER_COUNTRIES = ("PT", "ES")


def _has_portugal_zoning(zoning: Optional[Dict[str, Any]]) -> bool:
    return bool(zoning) and any(zoning.get(k) for k in ("crus", "land_cover", "parish"))


def _has_label(zoning: Optional[Dict[str, Any]]) -> bool:
    return bool(zoning) and bool(zoning.get("label"))


def _has_reference(cadastre: Optional[Dict[str, Any]]) -> bool:
    return bool(cadastre) and cadastre.get("cadastral_reference") is not None


class EnrichmentPipeline:
    """
    Enrichment pipeline for a single coordinate

    Usage:
        pipeline = EnrichmentPipeline()
        response = pipeline.run(38.7223, -9.1393, store_results=False)
    """

    def __init__(
        self,
        config: Optional[EnrichConfig] = None,
        http: Optional[HttpClient] = None,
        store: Optional[PlotStore] = None,
    ):
        self.config = config or get_config()
        self.http = http
        self.store = store

    def _stage(
        self,
        response: LocationEnrichmentResponse,
        name: str,
        call: Callable[[], Any],
        present: Callable[[Any], bool] = lambda result: result is not None,
    ) -> Any:
        """Run one stage; returns its result when it ran, else None"""
        try:
            result = call()
        except Exception as e:
            logger.error(f"✗ {name} failed: {e}")
            response.mark(name, "failed")
            return None
        if present(result):
            response.mark(name, "run")
            logger.info(f"✓ {name} complete")
            return result
        response.mark(name, "skipped")
        logger.info(f"○ No {name} data found")
        return None

    def _translate(
        self,
        zoning: Dict[str, Any],
        country: str,
        target_language: str,
        response: LocationEnrichmentResponse,
        http: HttpClient,
    ) -> Dict[str, Any]:
        source_lang = self.config.country_languages.get(country, "en")
        municipality = response.municipality.name if response.municipality else None
        return translate_zoning(zoning, source_lang, target_language, municipality, http=http)

    def run(
        self,
        latitude: float,
        longitude: float,
        plot_id: Optional[str] = None,
        store_results: bool = True,
        translate: bool = False,
        target_language: str = "en",
    ) -> LocationEnrichmentResponse:
        """
        Run every applicable enrichment for a location

        Args:
            latitude: Plot latitude (EPSG:4326)
            longitude: Plot longitude (EPSG:4326)
            plot_id: Plot id; required when store_results is True
            store_results: Upsert results into enriched_plots_stage
            translate: Translate zoning labels
            target_language: Translation target language

        Returns:
            LocationEnrichmentResponse; check its `error` field for total failure

        Raises:
            EnrichmentValidationError: Before any I/O, for a missing plot_id
                when storing or an invalid coordinate
        """
        if store_results and not plot_id:
            raise EnrichmentValidationError("plot_id is required when store_results is true")
        if not is_valid_coordinate(latitude, longitude):
            raise EnrichmentValidationError(f"Invalid coordinates: {latitude}, {longitude}")

        response = LocationEnrichmentResponse(location=Coordinate(latitude=latitude, longitude=longitude))
        enrichment_data: Dict[str, Any] = {}

        with ExitStack() as stack:
            try:
                if self.http is not None:
                    http = self.http
                else:
                    http = HttpClient()
                    stack.callback(http.close)

                store = self.store
                if store_results and store is None:
                    store = connect_store(self.config.database)
                    if store is not None:
                        stack.callback(store.close)
                conn = stack.enter_context(store.connection()) if (store_results and store is not None) else None

                # ============================================================
                # STAGE 1: Municipality (determines country)
                # ============================================================
                logger.info("Running municipality enrichment...")
                try:
                    municipality = get_municipality_from_coordinates(latitude, longitude, http=http)
                except Exception as e:
                    logger.error(f"✗ Municipality enrichment failed: {e}")
                    municipality = None
                    response.mark("municipalities", "failed")
                else:
                    if not municipality:
                        response.mark("municipalities", "failed")
                        logger.warning("✗ Could not determine municipality")

                if municipality:
                    response.municipality = MunicipalityInfo(
                        name=municipality["name"],
                        district=municipality.get("district"),
                        country=municipality.get("country"),
                    )
                    response.country = municipality.get("country")
                    response.mark("municipalities", "run")
                    logger.info(f"✓ Municipality: {municipality['name']} ({response.country})")
                    if conn is not None:
                        response.municipality.id = self._municipality_id(store, conn, municipality)

                country = response.country

                # ============================================================
                # STAGE 2: Layers (PT and ES only)
                # ============================================================
                if country in LAYER_COUNTRIES:
                    logger.info(f"Running layers enrichment for {country}...")
                    lookup = store.find_portugal_municipality if store is not None else None
                    layers = self._stage(
                        response,
                        "layers",
                        lambda: transform_layers_to_enrichment(
                            query_all_layers(latitude, longitude, country, http=http, municipality_lookup=lookup)
                        ),
                    )
                    if layers is not None:
                        response.layers = layers
                        enrichment_data = merge_enrichment_key(enrichment_data, "layers", layers)
                else:
                    response.mark("layers", "skipped")
                    logger.info("○ Layers enrichment skipped (country not PT or ES)")

                # ============================================================
                # STAGE 3: Amenities (always)
                # ============================================================
                logger.info("Running amenities enrichment...")
                amenities = self._stage(response, "amenities", lambda: enrich_amenities(latitude, longitude, http=http))
                if amenities is not None:
                    response.amenities = amenities
                    enrichment_data = merge_enrichment_key(enrichment_data, "amenities", amenities)

                # ============================================================
                # STAGE 4: Country-specific cadastre and zoning
                # ============================================================
                cadastre: Optional[Dict[str, Any]] = None
                zoning: Optional[Dict[str, Any]] = None

                if country == "PT":
                    logger.info("Running Portugal-specific enrichments...")
                    cadastre = self._stage(
                        response, "portugal-cadastre", lambda: resolve_portugal_cadastre(longitude, latitude, http=http)
                    )
                    parcel_geometry = cadastre.get("geometry") if cadastre else None
                    if parcel_geometry:
                        logger.debug("Parcel geometry available for zoning query")
                    zoning = self._stage(
                        response,
                        "portugal-zoning",
                        lambda: get_portugal_zoning_data(latitude, longitude, parcel_geometry, http=http),
                        present=_has_portugal_zoning,
                    )
                elif country == "ES":
                    logger.info("Running Spain-specific enrichments...")
                    cadastre = self._stage(
                        response,
                        "spain-cadastre",
                        lambda: get_spanish_cadastral_info(longitude, latitude, http=http),
                        present=_has_reference,
                    )
                    zoning = self._stage(
                        response,
                        "spain-zoning",
                        lambda: get_spanish_zoning_for_point(longitude, latitude, http=http),
                        present=_has_label,
                    )
                elif country == "DE":
                    logger.info("Running Germany-specific enrichments...")
                    zoning = self._stage(
                        response,
                        "germany-zoning",
                        lambda: get_german_zoning_for_point(longitude, latitude, http=http),
                        present=_has_label,
                    )
                else:
                    logger.info(f"○ Country {country!r}: skipping country-specific enrichments")
                    for name in COUNTRY_STAGES:
                        response.mark(name, "skipped")

                if cadastre is not None:
                    response.cadastre = cadastre
                    enrichment_data = merge_enrichment_key(enrichment_data, "cadastral", cadastre)

                if zoning is not None:
                    if translate:
                        zoning = self._translate(zoning, country, target_language, response, http)
                    response.zoning = zoning
                    enrichment_data = merge_enrichment_key(enrichment_data, "zoning", zoning)

                response.enrichment_data = enrichment_data

                # ============================================================
                # STAGE 5: Persistence
                # ============================================================
                if conn is not None and plot_id:
                    self._persist(store, conn, plot_id, latitude, longitude, response, enrichment_data)
                elif store_results:
                    logger.info("○ Persistence skipped (no database configured)")

            except Exception as e:
                logger.exception(f"Error in location enrichment: {e}")
                response.error = str(e) or type(e).__name__

        return response

    def _municipality_id(self, store: PlotStore, conn, municipality: Dict[str, Any]) -> Optional[int]:
        """
        Find or insert the municipality row.

        A database error rolls the shared connection back so later
        statements on it still run; the plot is then stored without a
        municipality id.
        """
        try:
            record = store.find_municipality_by_name(conn, municipality["name"])
            if record is None:
                record = store.insert_municipality(
                    conn, municipality["name"], municipality.get("district"), municipality.get("country")
                )
            return record["id"] if record else None
        except Exception as e:
            logger.error(f"✗ Municipality lookup failed for {municipality['name']}: {e}")
            conn.rollback()
            return None

    def _persist(
        self,
        store: PlotStore,
        conn,
        plot_id: str,
        latitude: float,
        longitude: float,
        response: LocationEnrichmentResponse,
        enrichment_data: Dict[str, Any],
    ) -> None:
        """
        Upsert the merged enrichment.

        Real coordinates are rewritten when the plot is new or the stored
        pair differs from this run's coordinates. Failure is logged only.
        """
        logger.info(f"Storing enrichment results for plot {plot_id}...")
        try:
            existing = store.get_real_coordinates(conn, plot_id)
            update_real = existing is None or existing != (latitude, longitude)
            municipality_id = response.municipality.id if response.municipality else None
            store.upsert_enrichment(conn, plot_id, latitude, longitude, municipality_id, enrichment_data, update_real)
            suffix = "real coordinates updated" if update_real else "real coordinates unchanged"
            logger.info(f"✓ Results stored for plot {plot_id} ({suffix})")
        except Exception as e:
            logger.error(f"✗ Failed to store results for plot {plot_id}: {e}")
            conn.rollback()


def enrich_location(
    latitude: float,
    longitude: float,
    plot_id: Optional[str] = None,
    store_results: bool = True,
    translate: bool = False,
    target_language: str = "en",
    *,
    http: Optional[HttpClient] = None,
    store: Optional[PlotStore] = None,
    config: Optional[EnrichConfig] = None,
) -> LocationEnrichmentResponse:
    """Run the enrichment pipeline for one location"""
    pipeline = EnrichmentPipeline(config=config, http=http, store=store)
    return pipeline.run(latitude, longitude, plot_id, store_results, translate, target_language)
