"""Pydantic models for the hotness score API."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RecomputeRequest(_CamelModel):
    """Request body for POST /scores/recompute."""

    batch_size: Optional[int] = Field(
        default=None,
        alias="batchSize",
        description="Instruments per call (1-1000). Range is checked by the service so that violations map to 400.",
    )
    params: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Full ScoringParameters object (camelCase keys). Takes precedence over preset.",
    )
    preset: Optional[str] = Field(default=None, description="Named preset: default, recommended, aggressive")
    continue_from_id: Optional[str] = Field(
        default=None,
        alias="continueFromId",
        description="Resume token returned as lastProcessedId by the previous call",
    )


class RecomputeResponse(_CamelModel):
    """Response body for POST /scores/recompute."""

    message: str
    processed: int = Field(..., ge=0, description="Instruments scored and persisted in this call")
    has_more: bool = Field(..., alias="hasMore")
    last_processed_id: Optional[str] = Field(default=None, alias="lastProcessedId")
    params_used: Dict[str, float] = Field(..., alias="paramsUsed")
    skipped: int = Field(default=0, ge=0, description="Instruments with fewer than 2 periods")
    failed: int = Field(default=0, ge=0, description="Instruments that raised while scoring")
    errors: List[str] = Field(default_factory=list)


class PreviewRequest(_CamelModel):
    """Request body for POST /scores/preview."""

    prices: List[Optional[float]] = Field(..., description="Period average prices, newest first")
    params: Optional[Dict[str, Any]] = None
    preset: Optional[str] = None


class RecentPricesRequest(_CamelModel):
    """Request body for POST /symbols/recent-prices."""

    symbol: str = Field(..., min_length=1, max_length=50)
    exchange: str = Field(default="", max_length=10)
    number_of_days_in_period: Optional[int] = Field(default=None, alias="numberOfDaysInPeriod")
    amount_of_periods: Optional[int] = Field(default=None, alias="amountOfPeriods")
    force: bool = False


class RecentPricesResponse(_CamelModel):
    message: str
    symbol: str
    updated: bool
    data: List[Dict[str, Any]]


class HotnessEntry(_CamelModel):
    code: str
    exchange: str = ""
    hotness_score: Optional[int] = Field(default=None, alias="hotnessScore")


class HotnessListResponse(_CamelModel):
    symbols: List[HotnessEntry]


class ErrorResponse(BaseModel):
    """Error body produced for AppError."""

    error: str
    code: str
    detail: Optional[str] = None
