"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import Depends, FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ride_dispatch.config import get_settings
from ride_dispatch.core import DispatchCore, get_dispatch_core
from ride_dispatch.errors import DispatchError
from ride_dispatch.realtime.bus import RedisEventBus
from ride_dispatch.utils.logging import get_logger, setup_logging

# Setup logging first
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    logger.info("application_starting")

    core = await get_dispatch_core()
    if isinstance(core.bus, RedisEventBus):
        core.bus.start()
    logger.info("dispatch_core_initialized", event_bus=type(core.bus).__name__)

    yield

    # Shutdown
    logger.info("application_shutting_down")
    if isinstance(core.bus, RedisEventBus):
        await core.bus.stop()
    await core.state.disconnect()


# Create FastAPI app
app = FastAPI(
    title="Ride Dispatch Core",
    description="Real-time ride matching, live tracking and safety escalation",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    """Structured rejection for every dispatch error."""
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.code, message=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, **exc.to_dict()},
    )


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": "ride-dispatch"}


# Import and include routers
from ride_dispatch.api.deps import get_core
from ride_dispatch.api.routes import router
from ride_dispatch.api.websocket import handle_websocket_session

app.include_router(router, prefix="/api/v1", tags=["api"])


# WebSocket endpoint
@app.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    core: DispatchCore = Depends(get_core),
) -> None:
    """WebSocket endpoint for live ride sessions."""
    await handle_websocket_session(websocket, core)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ride_dispatch.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.environment == "development",
    )
