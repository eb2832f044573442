"""
FastAPI server for the synthetic market feed.

Usage:
    python market_cli.py serve --port 8765
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from ..config.config import get_config
from ..core.application import Application
from ..utils.logger import get_logger


def create_app(application: Optional[Application] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        application: Pre-built Application (tests inject one with a
            simulated scheduler). When omitted, one is built at start-up
            on the asyncio scheduler.
    """
    config = application.config if application is not None else get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        from ..engine.scheduler import AsyncioScheduler
        from .stream import ConnectionManager

        logger = get_logger()
        owned = app.state.application is None
        if owned:
            app.state.application = Application(config, scheduler=AsyncioScheduler())
        market_app = app.state.application
        if not market_app.is_initialized and not market_app.initialize():
            raise RuntimeError(f"Application failed to initialize: {market_app.get_status().error}")

        stream = ConnectionManager()
        stream.bind_loop(asyncio.get_running_loop())
        stream.attach(market_app.engine)
        app.state.stream = stream

        if config.engine.auto_start:
            market_app.start()
        logger.info(f"Server ready: {config.summary_short()}")

        try:
            yield
        finally:
            market_app.stop()
            if owned:
                app.state.application = None

    app = FastAPI(
        title="Synthetic Market Feed",
        description="Synthetic OHLCV generator with a charting-library datafeed",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.application = application

    # CORS middleware for chart front-ends
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Envelope errors instead of FastAPI's default 422 / bare 500
    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        messages = [f"{'.'.join(str(p) for p in err['loc'][1:])}: {err['msg']}" for err in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "; ".join(messages) or "Invalid request"},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        get_logger().error(f"Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error", "data": {"error": str(exc)}},
        )

    # Register API routers
    from .tradingview import router as tradingview_router
    from .stream import router as stream_router

    app.include_router(tradingview_router, prefix="/api")
    app.include_router(stream_router)

    # Health check endpoint
    @app.get("/api/health")
    async def health_check() -> dict:
        """Health check endpoint."""
        application_ = app.state.application
        engine = application_.engine if application_ is not None else None
        stream = getattr(app.state, "stream", None)
        return {
            "status": "ok",
            "service": "synthmarket",
            "engine_running": bool(engine and engine.is_running),
            "store_connected": bool(application_ and application_.store is not None),
            "websocket_clients": stream.connection_count if stream is not None else 0,
        }

    return app


def run_server(
    host: Optional[str] = None,
    port: Optional[int] = None,
    reload: bool = False,
) -> None:
    """
    Run the feed server.

    Args:
        host: Host to bind to (defaults to SERVER_HOST)
        port: Port to listen on (defaults to SERVER_PORT)
        reload: Enable auto-reload for development
    """
    import uvicorn

    config = get_config()
    host = host or config.server.host
    port = port or config.server.port

    print(f"\n  Synthetic Market Feed ({config.market.symbol})")
    print(f"  Server: http://{host}:{port}")
    print(f"  WebSocket: ws://{host}:{port}/ws")
    print(f"  API Docs: http://{host}:{port}/docs")
    print(f"  Press Ctrl+C to stop\n")

    uvicorn.run(
        "synthmarket.api.server:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level="info",
    )
