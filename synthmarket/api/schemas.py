"""
Request/response models for the HTTP API.

Responses use the envelope {success, data?, error?, message?}, except
/history which returns the bare charting-library shape.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

from ..config.constants import DEFAULT_MANUAL_INTENSITY, DEFAULT_MANUAL_SPEED


class ApiResponse(BaseModel):
    """Standard response envelope."""

    success: bool
    data: Any = None
    error: str | None = None
    message: str | None = None


class HistoryResponse(BaseModel):
    """Response for GET /api/tradingview/history."""

    s: Literal["ok", "no_data"]
    t: list[int]  # Unix timestamps (seconds)
    o: list[float]
    h: list[float]
    l: list[float]
    c: list[float]
    v: list[float]


class ManualControlRequest(BaseModel):
    """Body of POST /api/tradingview/manual-control."""

    # Range checks are done by validate_manual_control so they follow config
    direction: str
    speed: float = DEFAULT_MANUAL_SPEED
    intensity: float = DEFAULT_MANUAL_INTENSITY
    duration_seconds: int | None = Field(None, description="Defaults to MANUAL_DEFAULT_DURATION")


class ParametersRequest(BaseModel):
    """Body of PUT /api/tradingview/parameters."""

    base_price: float | None = None
    volatility: float | None = None
    trend_strength: float | None = None
    volume_base: float | None = None
    persist: bool = False


class PriceData(BaseModel):
    symbol: str
    price: float
    timestamp: int


class ModeData(BaseModel):
    mode: Literal["auto", "manual"]
    lastUpdated: str
