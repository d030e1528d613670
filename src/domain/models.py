"""共通で利用するドメインモデル定義。"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Iterator, Mapping, Optional, Sequence

from domain.errors import INVALID_INPUT, app_error
from domain.settings import ScoringParameters


@dataclass(frozen=True, slots=True)
class PricePeriod:
    """1銘柄・1期間分の価格統計。オフセットは「今日」からの日数。"""

    label: str
    start_offset_days: int
    end_offset_days: int
    average_price: float
    high_price: float
    low_price: float
    change_percent: float | None = None
    change_absolute: float | None = None
    direction: str | None = None

    def __post_init__(self) -> None:
        if self.start_offset_days < 0 or self.start_offset_days >= self.end_offset_days:
            raise ValueError(
                f"invalid period window {self.start_offset_days}..{self.end_offset_days}"
            )
        if not (0 <= self.low_price <= self.average_price <= self.high_price):
            raise ValueError(
                "expected 0 <= low <= average <= high, got "
                f"{self.low_price}/{self.average_price}/{self.high_price}"
            )
        if self.direction not in (None, "up", "down"):
            raise ValueError(f"invalid direction: {self.direction}")

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "label": self.label,
            "startOffsetDays": self.start_offset_days,
            "endOffsetDays": self.end_offset_days,
            "averagePrice": self.average_price,
            "highPrice": self.high_price,
            "lowPrice": self.low_price,
        }
        if self.change_percent is not None:
            data["changePercent"] = self.change_percent
        if self.change_absolute is not None:
            data["changeAbsolute"] = self.change_absolute
        if self.direction is not None:
            data["direction"] = self.direction
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PricePeriod":
        """保存済みJSONから復元する。旧形式のキー名（name / startDaysAgo 等）も受け付ける。"""

        def pick(*keys: str) -> Any:
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return None

        def optional_float(value: Any) -> float | None:
            return None if value is None else float(value)

        return cls(
            label=str(pick("label", "name") or ""),
            start_offset_days=int(pick("startOffsetDays", "startDaysAgo", "start_offset_days")),
            end_offset_days=int(pick("endOffsetDays", "endDaysAgo", "end_offset_days")),
            average_price=float(pick("averagePrice", "average_price")),
            high_price=float(pick("highPrice", "highestPrice", "high_price")),
            low_price=float(pick("lowPrice", "lowestPrice", "low_price")),
            change_percent=optional_float(pick("changePercent", "change_percent")),
            change_absolute=optional_float(pick("changeAbsolute", "change_absolute")),
            direction=pick("direction"),
        )


@dataclass(frozen=True, slots=True)
class NewestFirstSeries(Sequence[float]):
    """新しい順に並んでいることが保証された期間平均価格の列。"""

    prices: tuple[float, ...]

    @classmethod
    def from_periods(cls, periods: Iterable[PricePeriod]) -> "NewestFirstSeries":
        """保存順に依存せず、開始オフセットの昇順（＝新しい順）に並べ替える。"""

        ordered = sorted(periods, key=lambda p: p.start_offset_days)
        for newer, older in zip(ordered, ordered[1:]):
            if older.start_offset_days < newer.end_offset_days:
                raise app_error(
                    INVALID_INPUT,
                    detail=(
                        "overlapping price periods "
                        f"{newer.start_offset_days}-{newer.end_offset_days} / "
                        f"{older.start_offset_days}-{older.end_offset_days}"
                    ),
                )
        return cls(tuple(p.average_price for p in ordered))

    def __getitem__(self, index):  # type: ignore[override]
        return self.prices[index]

    def __len__(self) -> int:
        return len(self.prices)

    def __iter__(self) -> Iterator[float]:
        return iter(self.prices)


@dataclass(slots=True)
class Instrument:
    """銘柄レコード。price_history は常に新しい順。"""

    id: str
    code: str
    exchange: str = ""
    price_history: Sequence[PricePeriod] = field(default_factory=tuple)
    prices_updated_at: Optional[datetime] = None
    hotness_score: int | None = None
    score_computed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "exchange": self.exchange,
            "priceHistory": [p.as_dict() for p in self.price_history],
            "pricesUpdatedAt": _iso(self.prices_updated_at),
            "hotnessScore": self.hotness_score,
            "scoreComputedAt": _iso(self.score_computed_at),
        }


@dataclass(slots=True)
class ScoringCandidate:
    """バッチ再計算の対象として読み出した銘柄。

    price_history は保存形式のまま保持し、``periods()`` で銘柄ごとに復元する。
    JSON文字列・デコード済みのリスト・``{"periods": [...]}`` 形式のいずれも可。
    """

    id: str
    code: str
    price_history: Any = ()

    def periods(self) -> list[PricePeriod]:
        raw = self.price_history
        if isinstance(raw, (str, bytes)):
            raw = json.loads(raw)
        if isinstance(raw, Mapping):
            raw = raw.get("periods") or ()
        return [p if isinstance(p, PricePeriod) else PricePeriod.from_dict(p) for p in raw]


@dataclass(frozen=True, slots=True)
class ScoreUpdate:
    instrument_id: str
    score: int
    computed_at: datetime


@dataclass(slots=True)
class BatchResult:
    """1回分のバッチ再計算の結果。"""

    processed_count: int
    has_more: bool
    resume_token: str | None
    params: ScoringParameters
    skipped_count: int = 0
    failed_count: int = 0
    errors: Sequence[str] = field(default_factory=tuple)

    @property
    def message(self) -> str:
        return f"Successfully processed {self.processed_count} symbols"


@dataclass(slots=True)
class DashboardStats:
    total_symbols: int = 0
    outdated_symbols: int = 0
    recent_symbols: int = 0
    symbols_with_hotness_score: int = 0
    average_hotness_score: float = 0.0
    hot_symbols: int = 0
    cold_symbols: int = 0

    def as_dict(self) -> dict[str, int | float]:
        return {
            "totalSymbols": self.total_symbols,
            "outdatedSymbols": self.outdated_symbols,
            "recentSymbols": self.recent_symbols,
            "symbolsWithHotnessScore": self.symbols_with_hotness_score,
            "averageHotnessScore": self.average_hotness_score,
            "hotSymbols": self.hot_symbols,
            "coldSymbols": self.cold_symbols,
        }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
