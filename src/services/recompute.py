"""ホットネススコアを再開可能なバッチで再計算するサービス層。"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Protocol, Sequence

from analysis.scoring import compute_hotness
from data.store import InstrumentRepo
from domain.errors import (
    INSTRUMENT_FAILURE,
    INVALID_PARAMETER,
    PERSISTENCE_FAILURE,
    STORE_READ_FAILURE,
    AppError,
    app_error,
    ensure_app_error,
)
from domain.models import BatchResult, NewestFirstSeries, ScoreUpdate, ScoringCandidate
from domain.settings import MAX_BATCH_SIZE, MIN_BATCH_SIZE, ScoringParameters, ServiceSettings
from services.config import settings_from_config

logger = logging.getLogger(__name__)

MIN_PERIODS = 2


class ScoreStore(Protocol):
    def fetch_scoring_candidates(self, after_id: str | None, limit: int) -> list[ScoringCandidate]: ...

    def apply_score_updates(self, updates: Sequence[ScoreUpdate]) -> int: ...


@dataclass(slots=True)
class SweepResult:
    """複数バッチにまたがる全件再計算の集計。"""

    batches: int = 0
    processed_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    resume_token: str | None = None
    complete: bool = False
    errors: Sequence[str] = field(default_factory=tuple)


class HotnessRecomputeService:
    """銘柄コレクションのスコアを id 順のページ単位で再計算する。

    カーソルは呼び出し側が保持する。``run_batch`` が返す ``resume_token`` を次回の
    ``resume_after`` に渡すと、取りこぼしや重複なしに全件を巡回できる。
    同一プロセス内の呼び出しはロックで直列化するが、複数プロセスからの同時巡回は保護しない。
    """

    def __init__(
        self,
        repo: ScoreStore | None = None,
        settings: ServiceSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings or settings_from_config()
        self.repo = repo or InstrumentRepo(self.settings.duckdb_path)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._errors: list[AppError] = []
        self._lock = Lock()

    # -- 公開API -----------------------------------------------------------------
    def run_batch(
        self,
        batch_size: int | None = None,
        params: ScoringParameters | None = None,
        resume_after: str | None = None,
    ) -> BatchResult:
        size = _validate_batch_size(self.settings.batch_size if batch_size is None else batch_size)
        params = self.settings.scoring_params() if params is None else params
        if not isinstance(params, ScoringParameters):
            raise app_error(INVALID_PARAMETER, detail="params must be a ScoringParameters")
        cursor = resume_after or None

        with self._lock:
            self._errors.clear()
            logger.info("Recomputing hotness scores (batch_size=%d, resume_after=%s)", size, cursor)

            # 1件多く読み、次ページの有無を正確に判定する
            candidates = self._fetch_candidates(cursor, size + 1)
            has_more = len(candidates) > size
            page = candidates[:size]

            updates: list[ScoreUpdate] = []
            skipped = 0
            for candidate in page:
                try:
                    update = self.score_candidate(candidate, params)
                except Exception as exc:
                    self._record_error(
                        ensure_app_error(exc, code=INSTRUMENT_FAILURE).with_symbol(candidate.code)
                    )
                    continue
                if update is None:
                    skipped += 1
                    continue
                updates.append(update)

            if updates:
                try:
                    self.repo.apply_score_updates(updates)
                except Exception as exc:
                    raise app_error(
                        PERSISTENCE_FAILURE,
                        detail=str(exc) or None,
                        payload={"resume_after": cursor, "staged": len(updates)},
                    ) from exc

            resume_token = page[-1].id if has_more and page else None
            logger.info(
                "Batch finished: %d scored, %d skipped, %d failed (has_more=%s, resume_token=%s)",
                len(updates),
                skipped,
                len(self._errors),
                has_more,
                resume_token,
            )
            return BatchResult(
                processed_count=len(updates),
                has_more=has_more,
                resume_token=resume_token,
                params=params,
                skipped_count=skipped,
                failed_count=len(self._errors),
                errors=self._formatted_errors(),
            )

    def run_sweep(
        self,
        batch_size: int | None = None,
        params: ScoringParameters | None = None,
        *,
        resume_after: str | None = None,
        max_batches: int | None = None,
        progress_callback: Callable[[BatchResult, int], None] | None = None,
    ) -> SweepResult:
        """``has_more`` が偽になるまで ``run_batch`` を繰り返す。"""

        sweep = SweepResult(resume_token=resume_after)
        errors: list[str] = []
        while max_batches is None or sweep.batches < max_batches:
            result = self.run_batch(batch_size, params, sweep.resume_token)
            sweep.batches += 1
            sweep.processed_count += result.processed_count
            sweep.skipped_count += result.skipped_count
            sweep.failed_count += result.failed_count
            sweep.resume_token = result.resume_token
            errors.extend(result.errors)
            if progress_callback:
                progress_callback(result, sweep.batches)
            if not result.has_more:
                sweep.complete = True
                break
        sweep.errors = tuple(errors)
        return sweep

    def score_candidate(
        self, candidate: ScoringCandidate, params: ScoringParameters
    ) -> ScoreUpdate | None:
        """1銘柄のスコア更新を組み立てる。期間が2件未満なら対象外として None を返す。"""

        periods = candidate.periods()
        if len(periods) < MIN_PERIODS:
            logger.warning("%s: insufficient price data (%d periods)", candidate.code, len(periods))
            return None
        series = NewestFirstSeries.from_periods(periods)
        breakdown = compute_hotness(series, params)
        return ScoreUpdate(
            instrument_id=candidate.id,
            score=breakdown.as_int(),
            computed_at=self._clock(),
        )

    @property
    def errors(self) -> Sequence[str]:
        return self._formatted_errors()

    # -- 内部処理 -----------------------------------------------------------------
    def _fetch_candidates(self, cursor: str | None, limit: int) -> list[ScoringCandidate]:
        try:
            return list(self.repo.fetch_scoring_candidates(cursor, limit))
        except Exception as exc:
            raise app_error(STORE_READ_FAILURE, detail=str(exc) or None) from exc

    def _record_error(self, err: AppError) -> None:
        self._errors.append(err)
        logger.error(err.for_log())

    def _formatted_errors(self) -> tuple[str, ...]:
        return tuple(str(err) for err in self._errors)


def _validate_batch_size(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise app_error(INVALID_PARAMETER, detail=f"batchSize must be an integer (got {value!r})")
    if value < MIN_BATCH_SIZE or value > MAX_BATCH_SIZE:
        raise app_error(
            INVALID_PARAMETER,
            detail=f"batchSize must be between {MIN_BATCH_SIZE} and {MAX_BATCH_SIZE}",
        )
    return value
