import pytest

from domain.errors import INVALID_PARAMETER, AppError
from domain.settings import (
    DEFAULT_PARAMS,
    PARAMETER_RANGES,
    PRESETS,
    RECOMMENDED_PARAMS,
    ScoringParameters,
    preset,
)
from services.config import settings_from_config


def test_presets_are_within_ranges():
    for params in PRESETS.values():
        params.validate()


def test_preset_lookup_is_case_insensitive():
    assert preset("Recommended") is RECOMMENDED_PARAMS
    assert preset(" default ") is DEFAULT_PARAMS
    assert preset("aggressive") is RECOMMENDED_PARAMS


def test_unknown_preset_raises():
    with pytest.raises(AppError) as excinfo:
        preset("yolo")
    assert excinfo.value.code == INVALID_PARAMETER


def test_from_mapping_accepts_camel_and_snake_keys():
    camel = ScoringParameters.from_mapping(DEFAULT_PARAMS.as_dict())
    snake = ScoringParameters.from_mapping(
        {name: getattr(DEFAULT_PARAMS, name) for name in PARAMETER_RANGES}
    )
    assert camel == DEFAULT_PARAMS
    assert snake == DEFAULT_PARAMS


def test_as_dict_uses_camel_case():
    data = RECOMMENDED_PARAMS.as_dict()
    assert data["dropSensitivity"] == 18.0
    assert data["volatilityThreshold"] == 2.5
    assert len(data) == 8


def test_from_mapping_reports_missing_parameters():
    data = DEFAULT_PARAMS.as_dict()
    del data["trendBoundary"]
    with pytest.raises(AppError) as excinfo:
        ScoringParameters.from_mapping(data)
    assert "trendBoundary" in excinfo.value.detail


@pytest.mark.parametrize(
    "key, value",
    [
        ("dropSensitivity", 9.99),
        ("dropMaxScore", 81),
        ("downtrendPenalty", 0.8),
        ("trendBoundary", float("nan")),
        ("stableMultiplier", True),
        ("uptrendMultiplier", "fast"),
    ],
)
def test_from_mapping_rejects_bad_values(key, value):
    data = DEFAULT_PARAMS.as_dict()
    data[key] = value
    with pytest.raises(AppError) as excinfo:
        ScoringParameters.from_mapping(data)
    assert excinfo.value.code == INVALID_PARAMETER
    assert key in excinfo.value.detail


def test_range_bounds_are_inclusive():
    data = {camel: high for camel, _low, high in PARAMETER_RANGES.values()}
    params = ScoringParameters.from_mapping(data)
    assert params.drop_sensitivity == 25.0


def test_settings_from_config_reads_sections(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text(
        "store:\n"
        "  duckdb_path: custom.duckdb\n"
        "scoring:\n"
        "  preset: recommended\n"
        "  batch_size: 25\n"
        "prices:\n"
        "  days_per_period: 7\n"
        "  stale_after_hours: oops\n"
        "  retry:\n"
        "    max_attempts: 4\n",
        encoding="utf-8",
    )
    settings = settings_from_config(config)
    assert settings.duckdb_path.name == "custom.duckdb"
    assert settings.batch_size == 25
    assert settings.scoring_params() is RECOMMENDED_PARAMS
    assert settings.days_per_period == 7
    assert settings.period_count == 4
    assert settings.stale_after_hours == 24.0
    assert settings.retry_attempts == 4


def test_settings_from_config_falls_back_on_unknown_preset(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text("scoring:\n  preset: turbo\n", encoding="utf-8")
    assert settings_from_config(config).preset == "default"


def test_settings_from_config_missing_file(tmp_path):
    settings = settings_from_config(tmp_path / "absent.yaml")
    assert settings.batch_size == 100
    assert settings.scoring_params() is DEFAULT_PARAMS
