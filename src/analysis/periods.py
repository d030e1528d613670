"""日足終値から期間ごとの平均・高値・安値を集計するユーティリティ。"""
from __future__ import annotations

from datetime import datetime, timezone

import numpy as np
import pandas as pd

from domain.errors import app_error
from domain.models import PricePeriod

_SECONDS_PER_DAY = 24 * 60 * 60


def summarize_periods(
    closes: pd.Series,
    days_per_period: int,
    period_count: int,
    *,
    now: datetime | None = None,
) -> list[PricePeriod]:
    """終値系列（インデックスは日時）を新しい順の ``PricePeriod`` リストへ変換する。

    データのない期間は飛ばす。変化率は1つ新しい期間に対する値で、最新期間には付かない。
    """

    cleaned = _clean_closes(closes)
    if len(cleaned) < days_per_period:
        raise app_error(
            "E-PRICE-INSUFFICIENT",
            detail=f"{len(cleaned)} closes for {days_per_period}-day periods",
        )

    now_ts = pd.Timestamp(now or datetime.now(timezone.utc))
    if now_ts.tzinfo is None:
        now_ts = now_ts.tz_localize("UTC")
    days_ago = (now_ts - cleaned.index).total_seconds() / _SECONDS_PER_DAY
    days_ago = pd.Series(np.asarray(days_ago), index=cleaned.index)

    windows: list[dict[str, float | int | str]] = []
    for i in range(period_count):
        start = i * days_per_period
        end = (i + 1) * days_per_period
        in_window = cleaned[(days_ago >= start) & (days_ago < end)]
        if in_window.empty:
            continue
        if i == 0:
            label = f"{days_per_period} days ago to today"
        else:
            label = f"{end} days ago to {start} days ago"
        windows.append(
            {
                "label": label,
                "start": start,
                "end": end,
                "average": round(float(in_window.mean()), 2),
                "high": round(float(in_window.max()), 2),
                "low": round(float(in_window.min()), 2),
            }
        )

    # windows[i] は windows[i - 1] より古い。変化率は1つ新しい期間に対する値
    changes: list[tuple[float, float, str] | None] = [None] * len(windows)
    for i in range(1, len(windows)):
        newer = float(windows[i - 1]["average"])
        current = float(windows[i]["average"])
        change_absolute = current - newer
        change_percent = change_absolute / newer * 100 if newer else 0.0
        changes[i] = (
            round(change_percent, 4),
            round(change_absolute, 4),
            "up" if change_percent >= 0 else "down",
        )

    periods: list[PricePeriod] = []
    for window, change in zip(windows, changes):
        periods.append(
            PricePeriod(
                label=str(window["label"]),
                start_offset_days=int(window["start"]),
                end_offset_days=int(window["end"]),
                average_price=float(window["average"]),
                high_price=float(window["high"]),
                low_price=float(window["low"]),
                change_percent=change[0] if change else None,
                change_absolute=change[1] if change else None,
                direction=change[2] if change else None,
            )
        )
    return periods


def _clean_closes(closes: pd.Series) -> pd.Series:
    series = pd.to_numeric(closes, errors="coerce").dropna()
    index = pd.DatetimeIndex(pd.to_datetime(series.index))
    if index.tz is None:
        index = index.tz_localize("UTC")
    else:
        index = index.tz_convert("UTC")
    series = pd.Series(series.to_numpy(dtype=float), index=index)
    return series.sort_index()
