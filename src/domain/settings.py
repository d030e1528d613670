"""スコアパラメータとサービス設定の定義。"""
from __future__ import annotations

import math
from dataclasses import dataclass, fields
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from domain.errors import INVALID_PARAMETER, app_error


# フィールド名 -> (camelCase, 下限, 上限)
PARAMETER_RANGES: Mapping[str, tuple[str, float, float]] = MappingProxyType(
    {
        "drop_sensitivity": ("dropSensitivity", 10.0, 25.0),
        "drop_max_score": ("dropMaxScore", 60.0, 80.0),
        "volatility_threshold": ("volatilityThreshold", 1.0, 5.0),
        "volatility_max_bonus": ("volatilityMaxBonus", 20.0, 40.0),
        "downtrend_penalty": ("downtrendPenalty", 0.3, 0.7),
        "stable_multiplier": ("stableMultiplier", 0.5, 0.8),
        "uptrend_multiplier": ("uptrendMultiplier", 0.8, 1.2),
        "trend_boundary": ("trendBoundary", 2.0, 5.0),
    }
)


@dataclass(frozen=True, slots=True)
class ScoringParameters:
    """ホットネススコアの計算パラメータ。

    既定値は持たない。スコア計算には毎回すべての値を明示的に渡す。
    """

    drop_sensitivity: float
    drop_max_score: float
    volatility_threshold: float
    volatility_max_bonus: float
    downtrend_penalty: float
    stable_multiplier: float
    uptrend_multiplier: float
    trend_boundary: float

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ScoringParameters":
        """camelCase / snake_case どちらのキーでも受け付け、範囲を検証する。"""

        if not isinstance(data, Mapping):
            raise app_error(INVALID_PARAMETER, detail="params must be an object")
        values: dict[str, float] = {}
        missing: list[str] = []
        for name, (camel, _low, _high) in PARAMETER_RANGES.items():
            raw = data.get(camel, data.get(name))
            if raw is None:
                missing.append(camel)
                continue
            if isinstance(raw, bool):
                raise app_error(INVALID_PARAMETER, detail=f"{camel} must be a number")
            try:
                values[name] = float(raw)
            except (TypeError, ValueError):
                raise app_error(INVALID_PARAMETER, detail=f"{camel} must be a number") from None
        if missing:
            raise app_error(INVALID_PARAMETER, detail=f"missing parameters: {', '.join(missing)}")
        params = cls(**values)
        params.validate()
        return params

    def validate(self) -> None:
        for name, (camel, low, high) in PARAMETER_RANGES.items():
            value = getattr(self, name)
            if not math.isfinite(value) or value < low or value > high:
                raise app_error(
                    INVALID_PARAMETER,
                    detail=f"{camel} must be between {low:g} and {high:g} (got {value:g})",
                )

    def as_dict(self) -> dict[str, float]:
        return {PARAMETER_RANGES[f.name][0]: getattr(self, f.name) for f in fields(self)}


DEFAULT_PARAMS = ScoringParameters(
    drop_sensitivity=15.0,
    drop_max_score=70.0,
    volatility_threshold=2.0,
    volatility_max_bonus=30.0,
    downtrend_penalty=0.5,
    stable_multiplier=0.7,
    uptrend_multiplier=1.0,
    trend_boundary=3.0,
)

# トレーダー向け推奨値（下落感度を高め、下降トレンドを強めに減点）
RECOMMENDED_PARAMS = ScoringParameters(
    drop_sensitivity=18.0,
    drop_max_score=70.0,
    volatility_threshold=2.5,
    volatility_max_bonus=30.0,
    downtrend_penalty=0.4,
    stable_multiplier=0.7,
    uptrend_multiplier=1.0,
    trend_boundary=3.0,
)

PRESETS: Mapping[str, ScoringParameters] = MappingProxyType(
    {
        "default": DEFAULT_PARAMS,
        "recommended": RECOMMENDED_PARAMS,
        "aggressive": RECOMMENDED_PARAMS,
    }
)


def preset(name: str) -> ScoringParameters:
    """名前付きプリセットを返す。"""

    key = (name or "").strip().lower()
    try:
        return PRESETS[key]
    except KeyError:
        raise app_error(
            INVALID_PARAMETER,
            detail=f"unknown preset '{name}' (expected one of: {', '.join(PRESETS)})",
        ) from None


MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 1000


@dataclass(slots=True)
class ServiceSettings:
    duckdb_path: Path = Path("data/hotness.duckdb")
    batch_size: int = 100
    preset: str = "default"
    days_per_period: int = 5
    period_count: int = 4
    stale_after_hours: float = 24.0
    retry_attempts: int = 2
    retry_backoff: float = 1.6

    def scoring_params(self) -> ScoringParameters:
        return preset(self.preset)
