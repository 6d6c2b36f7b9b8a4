"""
Configuration settings for plot enrichment
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
import os

from dotenv import load_dotenv
from loguru import logger


@dataclass
class RetryConfig:
    """Bounded retry policy for outbound HTTP calls"""
    max_attempts: int = 3
    base_delay_s: float = 0.5
    jitter_s: float = 0.2
    retry_statuses: List[int] = field(default_factory=lambda: [429, 500, 502, 503, 504])


@dataclass
class APIConfig:
    """API endpoints and configuration"""
    # DGT OGC API Features (CAOP, cadastro, CRUS, COS2023)
    dgt_ogc_url: str = "https://ogcapi.dgterritorio.gov.pt"
    # DGT WMS GetFeatureInfo
    dgt_wms_base: str = "https://geo2.dgterritorio.gov.pt/geoserver"

    # BUPi property boundaries
    bupi_wfs_url: str = "https://geo.bupi.gov.pt/arcgis/services/opendata/RGG_DadosGovPT/MapServer/WFSServer"
    bupi_wfs_typename: str = "RGG_DadosGovPT:Dados_Abertos_-_RGG_Continente"
    bupi_rest_continental: str = "https://geo.bupi.gov.pt/arcgis/rest/services/opendata/RGG_DadosGovPT/MapServer/0/query"
    bupi_rest_madeira: str = "https://geo.bupi.gov.pt/arcgis/rest/services/opendata/RGG_DadosGovPT_Madeira/MapServer/0/query"

    # Spanish Catastro INSPIRE services
    catastro_wfs_parcels: str = "http://ovc.catastro.meh.es/INSPIRE/wfsCP.aspx"
    catastro_wfs_addresses: str = "http://ovc.catastro.meh.es/INSPIRE/wfsAD.aspx"
    catastro_wfs_buildings: str = "http://ovc.catastro.meh.es/INSPIRE/wfsBU.aspx"
    catastro_wms: str = "http://ovc.catastro.meh.es/cartografia/INSPIRE/spadgcwms.aspx"

    # Germany
    nrw_bplan_api: str = "https://ogc-api.nrw.de/inspire-lu-bplan/api"
    berlin_wfs_url: str = "https://fbinter.stadt-berlin.de/fb/wfs/data"
    berlin_typenames: List[str] = field(default_factory=lambda: ["fis:re_bplan"])
    hamburg_wfs_url: str = "https://geodienste.hamburg.de/HH_WFS_FNP"
    bw_wfs_url: str = "https://www.geoportal-raumordnung-bw.de/ows/services/org.1.7c61f5dd-b978-476c-8f95-64839e68bc71_wfs"
    # Niedersachsen has no state-wide plan service; municipal endpoints are configured
    ni_wfs_seeds: List[str] = field(default_factory=list)
    ni_landuse_wfs_url: str = ""

    # Open-Elevation API
    open_elevation_url: str = "https://api.open-elevation.com/api/v1/lookup"

    # Nominatim (reverse geocoding)
    nominatim_url: str = "https://nominatim.openstreetmap.org"

    # Gemini translation
    gemini_url: str = "https://generativelanguage.googleapis.com/v1beta/models"

    # Request settings (seconds)
    request_timeout: int = 15
    cadastre_timeout: int = 30
    bupi_rest_timeout: int = 45
    germany_timeout: int = 9

    # User agent for API requests
    user_agent: str = "plot-enrich/1.0"


@dataclass
class AmenitiesConfig:
    """Overpass amenities settings"""
    radius_m: int = 10000
    query_timeout_s: int = 60
    request_timeout: int = 30
    overpass_mirrors: List[str] = field(default_factory=lambda: [
        "https://overpass-api.de/api/interpreter",
        "https://maps.mail.ru/osm/tools/overpass/api/interpreter",
        "https://overpass.kumi.systems/api/interpreter",
    ])
    # Per-mirror retry: 1s, 2s, 4s
    retry: RetryConfig = field(default_factory=lambda: RetryConfig(max_attempts=3, base_delay_s=1.0, jitter_s=0.0))


@dataclass
class TranslationConfig:
    """LLM translation of zoning labels"""
    api_key: str = ""
    model: str = "gemini-1.5-pro"
    temperature: float = 0.2
    timeout: int = 30


@dataclass
class DatabaseConfig:
    """Postgres connection settings"""
    url: str = ""
    min_connections: int = 1
    # Each worker may hold two connections (plot upsert + municipality lookup)
    max_connections: int = 8
    sslmode: str = "require"
    plots_table: str = "enriched_plots_stage"
    source_table: str = "plots_stage"


@dataclass
class BatchConfig:
    """Batch enrichment runner"""
    batch_size: int = 50
    concurrency: int = 2
    inter_plot_delay_ms: int = 1000
    dry_run: bool = False
    dry_run_limit: Optional[int] = None
    force_refresh: bool = False
    # Plots whose enrichment_data already has this key are skipped
    target_key: str = "amenities"


@dataclass
class EnrichConfig:
    """Top-level enrichment configuration"""
    api: APIConfig = field(default_factory=APIConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    amenities: AmenitiesConfig = field(default_factory=AmenitiesConfig)
    translation: TranslationConfig = field(default_factory=TranslationConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)

    # Countries with dedicated connector sets
    layer_countries: List[str] = field(default_factory=lambda: ["PT", "ES"])

    # Source language per country, used as translation hint
    country_languages: Dict[str, str] = field(default_factory=lambda: {
        "PT": "pt",
        "ES": "es",
        "DE": "de",
    })


# Global config instance
config = EnrichConfig()


def get_config() -> EnrichConfig:
    """Get global configuration"""
    return config


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={value!r}")
        return default


def clamp_concurrency(value: Optional[int], default: int = 2) -> int:
    """Clamp worker count to 1..3"""
    if value is None:
        return default
    return max(1, min(3, value))


def load_config_from_env(env_file: Optional[Path] = None) -> EnrichConfig:
    """
    Build configuration from environment variables.

    A .env file is loaded first (project root, then current directory)
    without overriding variables that are already set.
    """
    env_paths = [env_file] if env_file else [
        Path(__file__).parent.parent / ".env",
        Path.cwd() / ".env",
    ]
    for env_path in env_paths:
        if env_path and env_path.exists():
            load_dotenv(env_path, override=False)
            logger.debug(f"Loaded .env file from {env_path}")
            break

    cfg = EnrichConfig()
    cfg.database.url = os.getenv("DATABASE_URL", "")
    cfg.translation.api_key = os.getenv("GOOGLE_API_KEY", "")
    cfg.translation.model = (
        os.getenv("CRUS_TRANSLATE_MODEL")
        or os.getenv("GEMINI_MODEL")
        or cfg.translation.model
    )

    seeds = os.getenv("NI_WFS_SEEDS", "")
    cfg.api.ni_wfs_seeds = [s.strip() for s in seeds.split(",") if s.strip()]
    cfg.api.ni_landuse_wfs_url = os.getenv("NI_LANDUSE_WFS_BASE", cfg.api.ni_landuse_wfs_url)

    cfg.batch.batch_size = _env_int("BATCH_SIZE", cfg.batch.batch_size)
    cfg.batch.concurrency = clamp_concurrency(_env_int("CONCURRENCY", None), cfg.batch.concurrency)
    cfg.batch.inter_plot_delay_ms = max(0, _env_int("INTER_PLOT_DELAY_MS", cfg.batch.inter_plot_delay_ms))
    cfg.batch.dry_run = _env_bool("DRY_RUN")
    cfg.batch.dry_run_limit = _env_int("DRY_RUN_LIMIT", None)
    cfg.batch.force_refresh = _env_bool("FORCE_REFRESH")
    return cfg


def set_config(new_config: EnrichConfig) -> None:
    """Replace the global configuration"""
    global config
    config = new_config


def validate_config(config: EnrichConfig, require_database: bool = False) -> None:
    """
    Validate that all required configuration values are set.
    Raises ValueError if any required value is missing or invalid.
    """
    errors = []

    if config.api is None:
        errors.append("api configuration is required but not set")
    else:
        if not config.api.dgt_ogc_url:
            errors.append("api.dgt_ogc_url is required but not set")
        if config.api.request_timeout <= 0:
            errors.append(f"api.request_timeout must be positive, got {config.api.request_timeout}")

    if config.retry.max_attempts < 1:
        errors.append(f"retry.max_attempts must be >= 1, got {config.retry.max_attempts}")
    if config.retry.base_delay_s < 0:
        errors.append(f"retry.base_delay_s must be >= 0, got {config.retry.base_delay_s}")

    if not config.amenities.overpass_mirrors:
        errors.append("amenities.overpass_mirrors must list at least one endpoint")
    if config.amenities.radius_m <= 0:
        errors.append(f"amenities.radius_m must be positive, got {config.amenities.radius_m}")

    if not 1 <= config.batch.concurrency <= 3:
        errors.append(f"batch.concurrency must be between 1 and 3, got {config.batch.concurrency}")
    if config.batch.batch_size <= 0:
        errors.append(f"batch.batch_size must be positive, got {config.batch.batch_size}")

    if require_database and not config.database.url:
        errors.append("DATABASE_URL is required but not set")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ValueError(error_msg)
