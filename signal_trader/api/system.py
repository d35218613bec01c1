from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field

from signal_trader.errors import (
    EventSourceConnectionError,
    EventSourceUpdateRejectedError,
    TraderNotReadyError,
)
from signal_trader.observability import get_metrics, get_metrics_content_type
from signal_trader.runtime import TraderRuntime
from signal_trader.version import APP_NAME, VERSION

router = APIRouter()


def get_runtime(request: Request) -> TraderRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None or not runtime.started:
        raise TraderNotReadyError("Trader runtime is not running")
    return runtime


class HealthResponse(BaseModel):
    status: str
    version: str
    app: str
    event_source: str
    market_slug: str | None
    connectors: dict[str, bool]


class EventSourceUpdate(BaseModel):
    """Partial target. Omitted fields keep their current value."""

    host: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)
    channel: str | None = None
    password: str | None = None


class EventSourceUpdateResponse(BaseModel):
    status: str
    event_source: dict


@router.get("/health", response_model=HealthResponse, tags=["System"])
async def health(runtime: TraderRuntime = Depends(get_runtime)):
    connectors = await runtime.registry.health_check_all()
    consumer = runtime.consumer.get_stats()
    healthy = consumer["connected"] and all(connectors.values())
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        version=VERSION,
        app=APP_NAME,
        event_source=consumer["state"],
        market_slug=runtime.state.slug,
        connectors=connectors,
    )


@router.get("/", tags=["System"])
async def root():
    return {"api": f"{APP_NAME} operator API", "version": VERSION, "status": "online"}


@router.get("/metrics", tags=["System"])
async def metrics():
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


@router.get("/api/status", tags=["Trader"])
async def status(runtime: TraderRuntime = Depends(get_runtime)):
    return runtime.get_stats()


@router.put(
    "/api/event-source", response_model=EventSourceUpdateResponse, tags=["Trader"]
)
async def update_event_source(
    update: EventSourceUpdate, runtime: TraderRuntime = Depends(get_runtime)
):
    """Retarget the event source without restarting the trader.

    Host, port or password changes reconnect first and keep the current
    connection if the new one fails. Channel-only changes resubscribe in place.
    """
    consumer = runtime.consumer
    fields = update.model_dump(exclude_none=True)
    candidate = consumer.target.merged(**fields)
    if candidate is None:
        raise EventSourceUpdateRejectedError(
            "Invalid event-source target", detail=", ".join(sorted(fields))
        )
    if candidate == consumer.target:
        return EventSourceUpdateResponse(status="unchanged", event_source=consumer.get_stats())

    if not await consumer.update_target(**fields):
        raise EventSourceConnectionError(
            "Could not switch event source; previous target kept",
            target=candidate.describe(),
        )
    return EventSourceUpdateResponse(status="applied", event_source=consumer.get_stats())
