"""config.yaml からサービス設定を読み込む。"""
from __future__ import annotations

import logging
from pathlib import Path

import yaml

from domain.settings import PRESETS, ServiceSettings

logger = logging.getLogger(__name__)


def _safe_int(value, fallback: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return fallback


def _safe_float(value, fallback: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return fallback


def _section(raw: dict, name: str) -> dict:
    value = raw.get(name)
    return value if isinstance(value, dict) else {}


def settings_from_config(config_path: Path = Path("config.yaml")) -> ServiceSettings:
    defaults = ServiceSettings()
    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    except Exception:
        logger.debug("Failed to load service settings from %s", config_path)
        return defaults
    if not isinstance(raw, dict):
        return defaults

    store_cfg = _section(raw, "store")
    scoring_cfg = _section(raw, "scoring")
    prices_cfg = _section(raw, "prices")
    retry_cfg = _section(prices_cfg, "retry")

    preset_name = str(scoring_cfg.get("preset", defaults.preset)).strip().lower()
    if preset_name not in PRESETS:
        logger.warning("Unknown scoring preset '%s' in %s; using default", preset_name, config_path)
        preset_name = defaults.preset

    return ServiceSettings(
        duckdb_path=Path(store_cfg.get("duckdb_path", defaults.duckdb_path)),
        batch_size=_safe_int(scoring_cfg.get("batch_size"), defaults.batch_size),
        preset=preset_name,
        days_per_period=_safe_int(prices_cfg.get("days_per_period"), defaults.days_per_period),
        period_count=_safe_int(prices_cfg.get("period_count"), defaults.period_count),
        stale_after_hours=_safe_float(prices_cfg.get("stale_after_hours"), defaults.stale_after_hours),
        retry_attempts=_safe_int(retry_cfg.get("max_attempts"), defaults.retry_attempts),
        retry_backoff=_safe_float(retry_cfg.get("backoff"), defaults.retry_backoff),
    )
