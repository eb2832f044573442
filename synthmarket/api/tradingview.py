"""
Datafeed and control API endpoints.

Mounted under /api/tradingview. Handlers are async so they run on the event
loop thread, the same thread that runs the engine timers; engine state is
therefore never touched concurrently.
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from ..config.constants import (
    EXCHANGE_CODE,
    INSTRUMENT_NAME,
    MIN_MOVEMENT,
    SUPPORTED_RESOLUTIONS,
    VOLUME_PRECISION,
)
from ..data.history import to_history_response
from ..engine.manual_control import ManualControlValidationError
from ..utils.logger import get_logger
from .schemas import ApiResponse, HistoryResponse, ManualControlRequest, ModeData, ParametersRequest, PriceData

router = APIRouter(prefix="/tradingview", tags=["tradingview"])


def _engine(request: Request):
    return request.app.state.application.engine


def _error(status_code: int, error: str, detail: str | None = None) -> JSONResponse:
    body = ApiResponse(success=False, error=error, data={"error": detail} if detail else None)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def _ok(data=None, message: str | None = None) -> dict:
    return ApiResponse(success=True, data=data, message=message).model_dump(exclude_none=True)


# ==================== Datafeed discovery ====================

@router.get("/config")
async def get_datafeed_config() -> dict:
    """Charting-library datafeed configuration."""
    return _ok({
        "supports_search": True,
        "supports_group_request": False,
        "supports_marks": False,
        "supports_timescale_marks": False,
        "supports_time": True,
        "exchanges": [
            {"value": EXCHANGE_CODE, "name": INSTRUMENT_NAME, "desc": f"{INSTRUMENT_NAME} ({EXCHANGE_CODE}) Trading Data"},
        ],
        "symbols_types": [{"name": "Crypto", "value": "crypto"}],
        "supported_resolutions": list(SUPPORTED_RESOLUTIONS),
    })


@router.get("/symbols")
async def get_symbol_info(request: Request) -> dict:
    """Symbol metadata for the single synthetic instrument."""
    engine = _engine(request)
    return _ok({
        "name": INSTRUMENT_NAME,
        "ticker": engine.symbol,
        "type": "crypto",
        "session": "24x7",
        "timezone": "Etc/UTC",
        "pricescale": engine.config.market.price_scale,
        "minmov": MIN_MOVEMENT,
        "fractional": False,
        "has_intraday": True,
        "has_weekly_and_monthly": False,
        "supported_resolutions": list(SUPPORTED_RESOLUTIONS),
        "volume_precision": VOLUME_PRECISION,
        "data_status": "streaming",
    })


@router.get("/time")
async def get_server_time() -> dict:
    """Server time in Unix seconds."""
    return _ok(int(time.time()))


# ==================== History ====================

@router.get("/history", response_model=HistoryResponse)
async def get_history(
    request: Request,
    symbol: str | None = Query(None, description="Symbol (defaults to the engine symbol)"),
    resolution: str = Query("1", description="1, 5, 15, 60 or 1D"),
    from_: int | None = Query(None, alias="from", description="Range start (Unix seconds)"),
    to: int | None = Query(None, description="Range end (Unix seconds)"),
    countback: int = Query(1000, ge=1, description="Max bars"),
):
    """
    OHLCV history in the charting-library shape.

    An empty range returns s="no_data" with empty arrays.
    """
    if from_ is None or to is None:
        return _error(400, "from and to parameters are required")

    engine = _engine(request)
    try:
        candles = engine.get_historical_candles(
            symbol or engine.symbol,
            resolution,
            from_ * 1000,
            to * 1000,
            countback,
        )
    except ValueError as e:
        return _error(400, str(e))
    except Exception as e:
        get_logger().error(f"History request failed: {e}")
        return _error(500, "Failed to get historical data", str(e))

    return to_history_response(candles)


# ==================== Live state ====================

@router.get("/price")
async def get_price(request: Request) -> dict:
    engine = _engine(request)
    price = PriceData(symbol=engine.symbol, price=engine.get_current_price(), timestamp=int(time.time() * 1000))
    return _ok(price.model_dump())


@router.get("/status")
async def get_status(request: Request) -> dict:
    return _ok(_engine(request).get_system_status().to_dict())


@router.get("/mode")
async def get_mode(request: Request) -> dict:
    mode = ModeData(
        mode=_engine(request).get_mode().value,
        lastUpdated=datetime.now(timezone.utc).isoformat(),
    )
    return _ok(mode.model_dump())


@router.get("/generator")
async def get_generator_state(request: Request) -> dict:
    """Internal generator state for debugging."""
    return _ok(_engine(request).get_generator_state())


@router.get("/debug-candles")
async def debug_candles(request: Request):
    """Stored candle range (None without a store) and the in-progress candle."""
    engine = _engine(request)
    store = request.app.state.application.store
    try:
        stored = store.get_candle_range(engine.symbol, engine.resolution) if store is not None else None
    except Exception as e:
        get_logger().error(f"Candle range query failed: {e}")
        return _error(500, "Debug failed", str(e))

    now_ms = int(time.time() * 1000)
    return _ok({
        "symbol": engine.symbol,
        "resolution": engine.resolution,
        "stored": stored,
        "liveCandle": engine.get_live_candle(),
        "currentTime": now_ms,
        "currentTimeSeconds": now_ms // 1000,
    })


# ==================== Manual control ====================

@router.get("/manual-control")
async def get_manual_control(request: Request) -> dict:
    control = _engine(request).get_active_manual_control()
    return _ok(control.to_dict() if control is not None else None)


@router.post("/manual-control")
async def create_manual_control(request: Request, body: ManualControlRequest):
    try:
        control = _engine(request).create_manual_control(
            body.direction,
            body.speed,
            body.intensity,
            body.duration_seconds,
        )
    except ManualControlValidationError as e:
        return _error(400, str(e))
    except Exception as e:
        get_logger().error(f"Manual control request failed: {e}")
        return _error(500, "Failed to create manual control", str(e))

    return _ok(control.to_dict(), "Manual control created successfully")


@router.delete("/manual-control")
async def cancel_manual_control(request: Request) -> dict:
    control = _engine(request).cancel_manual_control()
    if control is None:
        return _ok(None, "No active manual control")
    return _ok(control.to_dict(), "Manual control cancelled")


# ==================== Generator parameters ====================

@router.put("/parameters")
async def update_parameters(request: Request, body: ParametersRequest):
    try:
        state = _engine(request).update_parameters(
            base_price=body.base_price,
            volatility=body.volatility,
            trend_strength=body.trend_strength,
            volume_base=body.volume_base,
            persist=body.persist,
        )
    except ValueError as e:
        return _error(400, str(e))
    return _ok(state, "Generator parameters updated")


@router.post("/reset-trend")
async def reset_trend(request: Request) -> dict:
    _engine(request).reset_trend()
    return _ok(message="Trend reset")


# ==================== Engine lifecycle ====================

@router.post("/start")
async def start_engine(request: Request):
    try:
        _engine(request).start()
    except Exception as e:
        get_logger().error(f"Engine start failed: {e}")
        return _error(500, "Failed to start trading service", str(e))
    return _ok(message="Trading service started successfully")


@router.post("/stop")
async def stop_engine(request: Request):
    try:
        _engine(request).stop()
    except Exception as e:
        get_logger().error(f"Engine stop failed: {e}")
        return _error(500, "Failed to stop trading service", str(e))
    return _ok(message="Trading service stopped successfully")
