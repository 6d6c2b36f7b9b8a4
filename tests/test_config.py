import pytest

from plot_enrich.config import EnrichConfig, clamp_concurrency, load_config_from_env, validate_config

ENV_VARS = [
    "DATABASE_URL",
    "GOOGLE_API_KEY",
    "CRUS_TRANSLATE_MODEL",
    "GEMINI_MODEL",
    "NI_WFS_SEEDS",
    "NI_LANDUSE_WFS_BASE",
    "BATCH_SIZE",
    "CONCURRENCY",
    "INTER_PLOT_DELAY_MS",
    "DRY_RUN",
    "DRY_RUN_LIMIT",
    "FORCE_REFRESH",
]


@pytest.fixture
def env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    def load(**values):
        for name, value in values.items():
            monkeypatch.setenv(name, value)
        return load_config_from_env(tmp_path / "missing.env")

    return load


@pytest.mark.parametrize("value, expected", [(None, 2), (0, 1), (-4, 1), (1, 1), (3, 3), (9, 3)])
def test_clamp_concurrency(value, expected):
    assert clamp_concurrency(value) == expected


def test_defaults(env):
    cfg = env()
    assert cfg.database.url == ""
    assert cfg.batch.concurrency == 2
    assert cfg.batch.batch_size == 50
    assert cfg.batch.inter_plot_delay_ms == 1000
    assert cfg.batch.dry_run is False
    assert cfg.batch.dry_run_limit is None
    assert cfg.translation.model == "gemini-1.5-pro"
    assert cfg.api.ni_wfs_seeds == []


def test_batch_settings_from_env(env):
    cfg = env(
        DATABASE_URL="postgresql://u:p@db/plots",
        CONCURRENCY="8",
        BATCH_SIZE="10",
        INTER_PLOT_DELAY_MS="-50",
        DRY_RUN="true",
        DRY_RUN_LIMIT="5",
        FORCE_REFRESH="1",
    )
    assert cfg.database.url == "postgresql://u:p@db/plots"
    assert cfg.batch.concurrency == 3
    assert cfg.batch.batch_size == 10
    assert cfg.batch.inter_plot_delay_ms == 0
    assert cfg.batch.dry_run is True
    assert cfg.batch.dry_run_limit == 5
    assert cfg.batch.force_refresh is True


def test_non_integer_values_fall_back(env):
    cfg = env(CONCURRENCY="many", BATCH_SIZE="lots")
    assert cfg.batch.concurrency == 2
    assert cfg.batch.batch_size == 50


def test_translation_model_precedence(env):
    assert env(GEMINI_MODEL="gemini-x").translation.model == "gemini-x"
    assert env(CRUS_TRANSLATE_MODEL="crus-model").translation.model == "crus-model"


def test_niedersachsen_endpoints(env):
    cfg = env(NI_WFS_SEEDS=" https://a.example/wfs, https://b.example/wfs,, ", NI_LANDUSE_WFS_BASE="https://ni.example/wfs")
    assert cfg.api.ni_wfs_seeds == ["https://a.example/wfs", "https://b.example/wfs"]
    assert cfg.api.ni_landuse_wfs_url == "https://ni.example/wfs"


def test_validate_config():
    cfg = EnrichConfig()
    validate_config(cfg)

    with pytest.raises(ValueError, match="DATABASE_URL"):
        validate_config(cfg, require_database=True)

    cfg.batch.concurrency = 7
    cfg.amenities.overpass_mirrors = []
    with pytest.raises(ValueError) as exc:
        validate_config(cfg)
    assert "batch.concurrency" in str(exc.value)
    assert "overpass_mirrors" in str(exc.value)
