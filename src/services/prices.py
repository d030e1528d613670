"""価格履歴の取得と、スコア無効化を伴う置き換えを行うサービス層。"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Sequence

import pandas as pd
import yfinance as yf

from analysis.periods import summarize_periods
from data.store import InstrumentRepo
from domain.errors import AppError, app_error
from domain.models import Instrument, PricePeriod
from domain.settings import ServiceSettings
from io_utils.markets import normalize_code, normalize_exchange, to_yahoo_symbol
from services.config import settings_from_config

logger = logging.getLogger(__name__)

MAX_PERIOD_COUNT = 10


@dataclass(slots=True)
class PriceRefreshResult:
    instrument: Instrument
    updated: bool
    periods: Sequence[PricePeriod] = field(default_factory=tuple)

    @property
    def message(self) -> str:
        if self.updated:
            return "Recent prices updated successfully"
        return "Recent prices are already up to date"


class PriceHistoryService:
    """銘柄の期間平均価格を取得し、古くなっていれば保存済みの履歴を置き換える。"""

    def __init__(
        self,
        repo: InstrumentRepo | None = None,
        settings: ServiceSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or settings_from_config()
        self.repo = repo or InstrumentRepo(self.settings.duckdb_path)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # -- 公開API -----------------------------------------------------------------
    def update_recent_prices(
        self,
        code: str,
        exchange: str = "",
        days_per_period: int | None = None,
        period_count: int | None = None,
        *,
        force: bool = False,
    ) -> PriceRefreshResult:
        days = self.settings.days_per_period if days_per_period is None else days_per_period
        count = self.settings.period_count if period_count is None else period_count
        _validate_period_args(days, count)
        code = normalize_code(code)
        exchange = normalize_exchange(exchange)
        if not code:
            raise app_error("E-PRICE-PARAM", detail="symbol is required")

        instrument = self.repo.get_by_code(code)
        if instrument is None:
            instrument = self.repo.create_instrument(code, exchange)
            logger.info("Created instrument %s (%s)", code, exchange or "-")

        if not force and self._is_fresh(instrument):
            return PriceRefreshResult(instrument, False, tuple(instrument.price_history))

        periods = self.fetch_periods(code, exchange or instrument.exchange, days, count)
        refreshed = self.repo.replace_price_history(instrument.id, periods, self._clock())
        logger.info("Replaced price history for %s with %d periods", code, len(periods))
        return PriceRefreshResult(refreshed, True, tuple(refreshed.price_history))

    def fetch_periods(
        self,
        code: str,
        exchange: str,
        days_per_period: int,
        period_count: int,
    ) -> list[PricePeriod]:
        symbol = to_yahoo_symbol(code, exchange)
        closes = self._download_closes(symbol, days_per_period * period_count)
        if closes is None or closes.empty:
            raise app_error("E-PRICE-NODATA", symbol=code)
        try:
            return summarize_periods(closes, days_per_period, period_count, now=self._clock())
        except AppError as err:
            raise err.with_symbol(code)

    # -- 内部処理 -----------------------------------------------------------------
    def _is_fresh(self, instrument: Instrument) -> bool:
        if instrument.prices_updated_at is None or not instrument.price_history:
            return False
        stale_after = timedelta(hours=self.settings.stale_after_hours)
        return instrument.prices_updated_at >= self._clock() - stale_after

    def _download_closes(self, symbol: str, total_days: int) -> pd.Series | None:
        df = self._download_with_retry(symbol, total_days)
        if df is None or df.empty:
            logger.info("yfinance returned no data for %s", symbol)
            return None
        # MultiIndexカラムをフラット化
        if isinstance(df.columns, pd.MultiIndex):
            df.columns = df.columns.get_level_values(0)
        column = next((c for c in ("Close", "Adj Close", "close") if c in df.columns), None)
        if column is None:
            logger.warning("No close column for %s: %s", symbol, list(df.columns))
            return None
        closes = pd.to_numeric(df[column], errors="coerce").dropna()
        return closes[closes > 0]

    def _download_with_retry(self, symbol: str, total_days: int) -> pd.DataFrame | None:
        start = (self._clock() - timedelta(days=total_days)).date()
        attempt = 0
        delay = 1.0
        last_exc: Exception | None = None
        while attempt <= self.settings.retry_attempts:
            try:
                return yf.download(
                    symbol,
                    start=start.isoformat(),
                    interval="1d",
                    auto_adjust=False,
                    progress=False,
                    threads=False,
                )
            except Exception as exc:
                last_exc = exc
                attempt += 1
                if attempt > self.settings.retry_attempts:
                    break
                logger.warning("yfinance download failed for %s (attempt %d): %s", symbol, attempt, exc)
                time.sleep(delay)
                delay *= self.settings.retry_backoff
        if last_exc:
            raise app_error("E-PRICE-FETCH", detail=str(last_exc) or None, symbol=symbol) from last_exc
        return None


def _validate_period_args(days_per_period: object, period_count: object) -> None:
    if isinstance(days_per_period, bool) or not isinstance(days_per_period, int) or days_per_period <= 0:
        raise app_error("E-PRICE-PARAM", detail="numberOfDaysInPeriod must be a positive integer")
    if isinstance(period_count, bool) or not isinstance(period_count, int) or period_count <= 0:
        raise app_error("E-PRICE-PARAM", detail="amountOfPeriods must be a positive integer")
    if period_count > MAX_PERIOD_COUNT:
        raise app_error("E-PRICE-PARAM", detail=f"amountOfPeriods cannot exceed {MAX_PERIOD_COUNT}")
