"""DuckDBを利用した銘柄・価格履歴・スコアの永続化層。"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Lock
from typing import ClassVar, Iterable, Optional, Sequence

import duckdb
import pandas as pd
import yaml

from domain.errors import app_error
from domain.models import DashboardStats, Instrument, PricePeriod, ScoreUpdate, ScoringCandidate
from analysis.scoring import COLD_THRESHOLD, HOT_THRESHOLD

logger = logging.getLogger(__name__)

_INSTRUMENT_COLUMNS = (
    "id, code, exchange, price_history, prices_updated_at, hotness_score, "
    "score_computed_at, created_at, updated_at, deleted_at"
)


@dataclass(slots=True)
class InstrumentRepo:
    db_path: Path
    _schema_lock: ClassVar[Lock] = Lock()
    _initialized: bool = field(default=False, init=False, repr=False)

    @classmethod
    def from_config(cls, config_path: Path = Path("config.yaml")) -> "InstrumentRepo":
        try:
            cfg = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except Exception:
            logger.exception("Failed to read config file: %s", config_path)
            raise
        try:
            db_path = Path(cfg["store"]["duckdb_path"])
        except (KeyError, TypeError):
            logger.error("store.duckdb_path is not set in %s", config_path)
            raise
        return cls(db_path)

    # ------------------------------------------------------------------
    def _conn(self) -> duckdb.DuckDBPyConnection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            con = duckdb.connect(str(self.db_path))
        except Exception:
            logger.exception("Failed to connect to DuckDB: %s", self.db_path)
            raise
        try:
            self._ensure_table(con)
        except Exception:
            logger.exception("Failed to initialize instruments table in %s", self.db_path)
            con.close()
            raise
        return con

    def init_schema(self) -> None:
        con = self._conn()
        con.close()

    def _ensure_table(self, con: duckdb.DuckDBPyConnection) -> None:
        if self._initialized:
            return
        with self._schema_lock:
            if self._initialized:
                return
            con.execute(
                "CREATE TABLE IF NOT EXISTS instruments ("
                "id TEXT PRIMARY KEY, code TEXT NOT NULL, exchange TEXT, "
                "price_history TEXT, prices_updated_at TIMESTAMP, "
                "hotness_score INTEGER, score_computed_at TIMESTAMP, "
                "created_at TIMESTAMP, updated_at TIMESTAMP, deleted_at TIMESTAMP)"
            )
            self._initialized = True

    # -- 銘柄 ------------------------------------------------------------
    def create_instrument(self, code: str, exchange: str = "") -> Instrument:
        if self.get_by_code(code) is not None:
            raise app_error("E-INSTRUMENT-DUPLICATE", detail=code)
        now = _utc_naive(_now())
        instrument_id = str(uuid.uuid4())
        con = self._conn()
        try:
            con.execute(
                "INSERT INTO instruments(id, code, exchange, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                [instrument_id, code, exchange, now, now],
            )
        except Exception:
            logger.exception("Failed to create instrument %s", code)
            raise
        finally:
            con.close()
        created = self.get_instrument(instrument_id)
        if created is None:
            raise app_error("E-INSTRUMENT-NOTFOUND", detail=instrument_id)
        return created

    def get_instrument(self, instrument_id: str) -> Optional[Instrument]:
        return self._fetch_one("id", instrument_id)

    def get_by_code(self, code: str) -> Optional[Instrument]:
        return self._fetch_one("code", code)

    def soft_delete_instrument(self, instrument_id: str) -> None:
        now = _utc_naive(_now())
        con = self._conn()
        try:
            con.execute(
                "UPDATE instruments SET deleted_at=?, updated_at=? WHERE id=? AND deleted_at IS NULL",
                [now, now, instrument_id],
            )
        except Exception:
            logger.exception("Failed to soft delete instrument %s", instrument_id)
            raise
        finally:
            con.close()

    def replace_price_history(
        self,
        instrument_id: str,
        periods: Sequence[PricePeriod],
        fetched_at: datetime | None = None,
    ) -> Instrument:
        """価格履歴を丸ごと置き換え、同じ更新でスコアを無効化する。"""

        fetched = _utc_naive(fetched_at or _now())
        payload = json.dumps([p.as_dict() for p in periods])
        con = self._conn()
        try:
            updated = con.execute(
                "UPDATE instruments SET price_history=?, prices_updated_at=?, "
                "hotness_score=NULL, score_computed_at=NULL, updated_at=? "
                "WHERE id=? AND deleted_at IS NULL RETURNING id",
                [payload, fetched, fetched, instrument_id],
            ).fetchall()
        except Exception:
            logger.exception("Failed to replace price history for %s", instrument_id)
            raise
        finally:
            con.close()
        if not updated:
            raise app_error("E-INSTRUMENT-NOTFOUND", detail=instrument_id)
        instrument = self.get_instrument(instrument_id)
        if instrument is None:
            raise app_error("E-INSTRUMENT-NOTFOUND", detail=instrument_id)
        return instrument

    # -- スコア再計算 ----------------------------------------------------
    def fetch_scoring_candidates(self, after_id: str | None, limit: int) -> list[ScoringCandidate]:
        """価格履歴を持つ未削除の銘柄を id 昇順で ``after_id`` より後から取得する。"""

        sql = (
            "SELECT id, code, price_history FROM instruments "
            "WHERE deleted_at IS NULL AND price_history IS NOT NULL AND price_history <> '[]'"
        )
        params: list[object] = []
        if after_id:
            sql += " AND id > ?"
            params.append(after_id)
        sql += " ORDER BY id LIMIT ?"
        params.append(int(limit))
        con = self._conn()
        try:
            rows = con.execute(sql, params).fetchall()
        except Exception:
            logger.exception("Failed to fetch scoring candidates after %s", after_id)
            raise
        finally:
            con.close()
        return [ScoringCandidate(id=row[0], code=row[1], price_history=row[2]) for row in rows]

    def apply_score_updates(self, updates: Iterable[ScoreUpdate]) -> int:
        """スコアを1トランザクションで書き込む。失敗時はすべてロールバックする。"""

        records = [
            (int(u.score), _utc_naive(u.computed_at), u.instrument_id) for u in updates
        ]
        if not records:
            return 0
        con = self._conn()
        try:
            con.begin()
            try:
                con.executemany(
                    "UPDATE instruments SET hotness_score=?, score_computed_at=? WHERE id=?",
                    records,
                )
                con.commit()
            except Exception:
                con.rollback()
                raise
        except Exception:
            logger.exception("Failed to apply %d score updates", len(records))
            raise
        finally:
            con.close()
        return len(records)

    # -- 集計 ------------------------------------------------------------
    def hotness_overview(self) -> pd.DataFrame:
        con = self._conn()
        try:
            df = con.execute(
                "SELECT code, exchange, hotness_score FROM instruments "
                "WHERE deleted_at IS NULL ORDER BY code"
            ).df()
        except Exception:
            logger.exception("Failed to load hotness overview")
            raise
        finally:
            con.close()
        return df

    def dashboard_stats(
        self,
        now: datetime | None = None,
        stale_after: timedelta = timedelta(hours=24),
    ) -> DashboardStats:
        cutoff = _utc_naive((now or _now()) - stale_after)
        con = self._conn()
        try:
            row = con.execute(
                "SELECT count(*), "
                "count(*) FILTER (WHERE prices_updated_at >= ?), "
                "count(hotness_score), avg(hotness_score), "
                "count(*) FILTER (WHERE hotness_score > ?), "
                "count(*) FILTER (WHERE hotness_score < ?) "
                "FROM instruments WHERE deleted_at IS NULL",
                [cutoff, HOT_THRESHOLD, COLD_THRESHOLD],
            ).fetchone()
        except Exception:
            logger.exception("Failed to compute dashboard stats")
            raise
        finally:
            con.close()
        total, recent, scored, average, hot, cold = row or (0, 0, 0, None, 0, 0)
        return DashboardStats(
            total_symbols=int(total),
            outdated_symbols=int(total) - int(recent),
            recent_symbols=int(recent),
            symbols_with_hotness_score=int(scored),
            average_hotness_score=round(float(average), 1) if average is not None else 0.0,
            hot_symbols=int(hot),
            cold_symbols=int(cold),
        )

    # ------------------------------------------------------------------
    def _fetch_one(self, column: str, value: str) -> Optional[Instrument]:
        con = self._conn()
        try:
            row = con.execute(
                f"SELECT {_INSTRUMENT_COLUMNS} FROM instruments "
                f"WHERE {column}=? AND deleted_at IS NULL",
                [value],
            ).fetchone()
        except Exception:
            logger.exception("Failed to fetch instrument by %s=%s", column, value)
            raise
        finally:
            con.close()
        return _row_to_instrument(row) if row else None


def _row_to_instrument(row: tuple) -> Instrument:
    (
        instrument_id,
        code,
        exchange,
        history,
        prices_updated_at,
        hotness_score,
        score_computed_at,
        created_at,
        updated_at,
        deleted_at,
    ) = row
    periods = ScoringCandidate(instrument_id, code, history or ()).periods()
    return Instrument(
        id=instrument_id,
        code=code,
        exchange=exchange or "",
        price_history=tuple(sorted(periods, key=lambda p: p.start_offset_days)),
        prices_updated_at=_as_utc(prices_updated_at),
        hotness_score=int(hotness_score) if hotness_score is not None else None,
        score_computed_at=_as_utc(score_computed_at),
        created_at=_as_utc(created_at),
        updated_at=_as_utc(updated_at),
        deleted_at=_as_utc(deleted_at),
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _utc_naive(value: datetime) -> datetime:
    """DuckDB の TIMESTAMP 列にはUTCのnaive datetimeで保存する。"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _as_utc(value):
    if value is None:
        return None
    if isinstance(value, pd.Timestamp):
        value = value.to_pydatetime()
    if isinstance(value, datetime):
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value
    return None
