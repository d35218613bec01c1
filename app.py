"""
signal-trader — operator API around the signal-driven FOK execution agent.

The FastAPI lifespan boots a `TraderRuntime` (connectors, boot market,
Redis consumer, status board) and shuts it down in reverse order. The HTTP
surface is for operators only: health, Prometheus metrics, a status
snapshot and live retargeting of the Redis event source.

Run with:
  uvicorn app:app --port 8080
"""

from contextlib import asynccontextmanager
from typing import Callable

import structlog
import uvicorn
from fastapi import FastAPI

from signal_trader.api.errors import trader_error_handler
from signal_trader.api.system import router as system_router
from signal_trader.config import TraderSettings, get_settings
from signal_trader.errors import SignalTraderError
from signal_trader.logging import setup_logging
from signal_trader.observability import setup_tracing
from signal_trader.runtime import TraderRuntime
from signal_trader.version import APP_NAME, VERSION

logger = structlog.get_logger(__name__)

RuntimeFactory = Callable[[TraderSettings], TraderRuntime]


def create_app(
    runtime_factory: RuntimeFactory = TraderRuntime,
    settings_loader: Callable[[], TraderSettings] = get_settings,
) -> FastAPI:
    """Build the app. Tests pass a factory that injects fake collaborators."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = settings_loader()
        setup_logging(settings.log_level, json_output=settings.json_logs)
        if settings.tracing_enabled:
            setup_tracing()

        runtime = runtime_factory(settings)
        app.state.runtime = runtime
        await runtime.start()
        logger.info("api_ready", version=VERSION, port=settings.port)

        yield

        await runtime.stop()
        app.state.runtime = None

    app = FastAPI(
        title=f"{APP_NAME} — operator API",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url=None,
    )
    app.add_exception_handler(SignalTraderError, trader_error_handler)
    app.include_router(system_router)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("app:app", host="0.0.0.0", port=get_settings().port)
