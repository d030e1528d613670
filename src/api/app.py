"""Hotness Analyzer - FastAPI surface over the scoring engine."""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

import pandas as pd
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from analysis.scoring import compute_hotness
from api.models import (
    ErrorResponse,
    HotnessEntry,
    HotnessListResponse,
    PreviewRequest,
    RecentPricesRequest,
    RecentPricesResponse,
    RecomputeRequest,
    RecomputeResponse,
)
from data.store import InstrumentRepo
from domain.errors import AppError, ensure_app_error
from domain.settings import PRESETS, ScoringParameters, ServiceSettings, preset
from services.config import settings_from_config
from services.logging_setup import recent_log_lines
from services.prices import PriceHistoryService
from services.recompute import HotnessRecomputeService

logger = logging.getLogger(__name__)

_ERROR_RESPONSES: Dict[int | str, Dict[str, Any]] = {
    400: {"model": ErrorResponse, "description": "Invalid parameter or input"},
    500: {"model": ErrorResponse, "description": "Store read/write failure"},
}


def resolve_params(
    params: Optional[Dict[str, Any]],
    preset_name: Optional[str],
    fallback: ScoringParameters,
) -> ScoringParameters:
    """Explicit params win over a preset name; otherwise the configured preset is used."""
    if params is not None:
        return ScoringParameters.from_mapping(params)
    if preset_name:
        return preset(preset_name)
    return fallback


def create_app(
    settings: Optional[ServiceSettings] = None,
    repo: Optional[InstrumentRepo] = None,
    recompute_service: Optional[HotnessRecomputeService] = None,
    price_service: Optional[PriceHistoryService] = None,
) -> FastAPI:
    """Build the API. Collaborators can be injected for tests."""
    settings = settings or settings_from_config()
    repo = repo or InstrumentRepo(settings.duckdb_path)
    recompute_service = recompute_service or HotnessRecomputeService(repo=repo, settings=settings)
    price_service = price_service or PriceHistoryService(repo=repo, settings=settings)

    app = FastAPI(
        title="Hotness Analyzer",
        description="Bounded 0-100 hotness scores from periodic price snapshots",
        version="1.0.0",
    )
    app.state.settings = settings
    app.state.repo = repo
    app.state.recompute_service = recompute_service
    app.state.price_service = price_service

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
        if exc.http_status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.for_log())
        else:
            logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.http_status, content=exc.as_response())

    @app.post("/scores/recompute", response_model=RecomputeResponse, responses=_ERROR_RESPONSES)
    def recompute_scores(payload: Optional[RecomputeRequest] = None) -> RecomputeResponse:
        """Score the next page of instruments after continueFromId."""
        payload = payload or RecomputeRequest()
        params = resolve_params(payload.params, payload.preset, settings.scoring_params())
        batch_size = settings.batch_size if payload.batch_size is None else payload.batch_size
        try:
            result = recompute_service.run_batch(batch_size, params, payload.continue_from_id)
        except AppError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while recomputing hotness scores")
            raise ensure_app_error(exc) from exc
        return RecomputeResponse(
            message=result.message,
            processed=result.processed_count,
            has_more=result.has_more,
            last_processed_id=result.resume_token,
            params_used=result.params.as_dict(),
            skipped=result.skipped_count,
            failed=result.failed_count,
            errors=list(result.errors),
        )

    @app.get("/scores/presets")
    def list_presets() -> Dict[str, Dict[str, Dict[str, float]]]:
        """Return the named parameter presets."""
        return {"presets": {name: params.as_dict() for name, params in PRESETS.items()}}

    @app.post("/scores/preview", responses=_ERROR_RESPONSES)
    def preview_score(payload: PreviewRequest) -> Dict[str, Any]:
        """Score an ad-hoc newest-first price list without touching the store."""
        params = resolve_params(payload.params, payload.preset, settings.scoring_params())
        breakdown = compute_hotness(payload.prices, params)
        return {**breakdown.as_dict(), "paramsUsed": params.as_dict()}

    @app.get("/symbols/hotness", response_model=HotnessListResponse)
    def hotness_data() -> HotnessListResponse:
        """Code, exchange and latest score of every live instrument."""
        try:
            df = repo.hotness_overview()
        except Exception as exc:
            raise ensure_app_error(exc, code="E-STORE-READ") from exc
        entries = [
            HotnessEntry(
                code=row["code"],
                exchange=row["exchange"] or "",
                hotness_score=None if pd.isna(row["hotness_score"]) else int(row["hotness_score"]),
            )
            for row in df.to_dict(orient="records")
        ]
        return HotnessListResponse(symbols=entries)

    @app.get("/symbols/stats")
    def dashboard_stats() -> Dict[str, Any]:
        try:
            stats = repo.dashboard_stats(stale_after=timedelta(hours=settings.stale_after_hours))
        except Exception as exc:
            raise ensure_app_error(exc, code="E-STORE-READ") from exc
        return stats.as_dict()

    @app.post("/symbols/recent-prices", response_model=RecentPricesResponse)
    def update_recent_prices(payload: RecentPricesRequest) -> RecentPricesResponse:
        """Refresh an instrument's price periods when stale; a refresh clears its score."""
        try:
            result = price_service.update_recent_prices(
                payload.symbol,
                payload.exchange,
                payload.number_of_days_in_period,
                payload.amount_of_periods,
                force=payload.force,
            )
        except AppError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while refreshing prices for %s", payload.symbol)
            raise ensure_app_error(exc, symbol=payload.symbol) from exc
        return RecentPricesResponse(
            message=result.message,
            symbol=result.instrument.code,
            updated=result.updated,
            data=[period.as_dict() for period in result.periods],
        )

    @app.get("/logs/recent")
    def recent_logs() -> Dict[str, Any]:
        return {"lines": list(recent_log_lines())}

    @app.get("/health")
    def health_check() -> Dict[str, str]:
        return {"status": "healthy", "service": "hotness-analyzer"}

    return app
