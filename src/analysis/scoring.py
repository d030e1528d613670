"""期間平均価格の列からホットネススコア（0〜100）を算出する。"""
from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from numbers import Real

from domain.errors import INVALID_INPUT, app_error
from domain.settings import ScoringParameters

SCORE_MIN = 0.0
SCORE_MAX = 100.0
VOLATILITY_CAP_PERCENT = 10.0

HOT_THRESHOLD = 70
COLD_THRESHOLD = 30


@dataclass(frozen=True, slots=True)
class HotnessBreakdown:
    """丸め前のスコアと途中計算値。"""

    score: float
    sample_size: int
    historical_average: float
    drop_percent: float
    drop_score: float = 0.0
    volatility_percent: float | None = None
    trend_percent: float | None = None
    multiplier: float | None = None
    volatility_score: float = 0.0

    @property
    def rounded(self) -> float:
        """API表示用（小数2桁）。"""
        return _round_half_up(self.score, 2)

    def as_int(self) -> int:
        """永続化用（整数）。"""
        return int(_round_half_up(self.score, 0))

    def as_dict(self) -> dict[str, float | int | None]:
        return {
            "score": self.rounded,
            "persistedScore": self.as_int(),
            "rawScore": self.score,
            "sampleSize": self.sample_size,
            "historicalAverage": self.historical_average,
            "dropPercent": self.drop_percent,
            "dropScore": self.drop_score,
            "volatilityPercent": self.volatility_percent,
            "trendPercent": self.trend_percent,
            "multiplier": self.multiplier,
            "volatilityScore": self.volatility_score,
        }


def valid_prices(prices: Iterable[object]) -> list[float]:
    """有限な実数だけを順序を保って取り出す。"""
    return [
        float(price)
        for price in prices
        if isinstance(price, Real) and not isinstance(price, bool) and math.isfinite(price)
    ]


def compute_hotness(prices: Iterable[object], params: ScoringParameters) -> HotnessBreakdown:
    """新しい順の平均価格列からスコアを計算する。

    ``prices`` が ``NewestFirstSeries`` でない場合は、呼び出し側が新しい順を
    保証しているものとして扱う。
    """

    values = valid_prices(prices)
    n = len(values)
    if n < 2:
        raise app_error(INVALID_INPUT, detail=f"at least 2 valid prices required (got {n})")

    latest = values[0]
    historical_average = sum(values[1:]) / (n - 1)
    _ensure_finite(historical_average=historical_average)
    if historical_average <= 0:
        raise app_error(INVALID_INPUT, detail="historical average must be positive")

    drop_percent = (historical_average - latest) / historical_average * 100
    _ensure_finite(drop_percent=drop_percent)
    if drop_percent <= 0:
        return HotnessBreakdown(
            score=SCORE_MIN,
            sample_size=n,
            historical_average=historical_average,
            drop_percent=drop_percent,
        )

    drop_score = min(params.drop_max_score, drop_percent * params.drop_sensitivity)

    mean = sum(values) / n
    _ensure_finite(mean=mean)
    if mean <= 0:
        raise app_error(INVALID_INPUT, detail="mean price must be positive")
    variance = sum((price - mean) * (price - mean) for price in values) / n
    volatility_percent = math.sqrt(variance) / mean * 100
    _ensure_finite(volatility_percent=volatility_percent)

    # 最古価格が0のときは変化率を持たず、最新価格の符号で方向だけを決める
    oldest = values[-1]
    trend_percent: float | None = None
    if oldest != 0:
        trend_percent = (latest - oldest) / oldest * 100
        _ensure_finite(trend_percent=trend_percent)

    multiplier: float | None = None
    volatility_score = 0.0
    if volatility_percent >= params.volatility_threshold:
        normalized = min(1.0, volatility_percent / VOLATILITY_CAP_PERCENT)
        multiplier = _trend_multiplier(trend_percent, latest, params)
        volatility_score = normalized * params.volatility_max_bonus * multiplier

    score = max(SCORE_MIN, min(SCORE_MAX, drop_score + volatility_score))
    return HotnessBreakdown(
        score=score,
        sample_size=n,
        historical_average=historical_average,
        drop_percent=drop_percent,
        drop_score=drop_score,
        volatility_percent=volatility_percent,
        trend_percent=trend_percent,
        multiplier=multiplier,
        volatility_score=volatility_score,
    )


def hotness_score(prices: Iterable[object], params: ScoringParameters) -> float:
    """小数2桁に丸めたスコア。"""
    return compute_hotness(prices, params).rounded


def to_persisted_score(prices: Iterable[object], params: ScoringParameters) -> int:
    """保存用の整数スコア。"""
    return compute_hotness(prices, params).as_int()


def categorize_score(score: float | None) -> tuple[str | None, str]:
    """スコアを表示用のカテゴリとラベルに変換する。"""

    if score is None:
        return None, "—"
    if score > HOT_THRESHOLD:
        return "Hot", f"↑↑ Hot ({score:g})"
    if score < COLD_THRESHOLD:
        return "Cold", f"↓ Cold ({score:g})"
    return "Warm", f"↑ Warm ({score:g})"


def _round_half_up(value: float, digits: int) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def _trend_multiplier(trend_percent: float | None, latest: float, params: ScoringParameters) -> float:
    if trend_percent is None:
        if latest > 0:
            return params.uptrend_multiplier
        if latest < 0:
            return params.downtrend_penalty
        return params.stable_multiplier
    if trend_percent < -params.trend_boundary:
        return params.downtrend_penalty
    if trend_percent > params.trend_boundary:
        return params.uptrend_multiplier
    return params.stable_multiplier


def _ensure_finite(**values: float) -> None:
    for name, value in values.items():
        if not math.isfinite(value):
            raise app_error(INVALID_INPUT, detail=f"{name} is not finite")
