"""Main FastAPI application."""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.dependencies import get_orchestrator
from app.core.logging import setup_logging
from app.api import calls, health, messages
from app.api.webhooks import voice

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    orchestrator = app.dependency_overrides.get(get_orchestrator, get_orchestrator)()
    eviction_task = asyncio.create_task(
        orchestrator.run_eviction(settings.eviction_interval_seconds)
    )
    yield
    # Shutdown
    eviction_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await eviction_task
    # Give calls placed after a timeout a chance to be hung up
    try:
        await asyncio.wait_for(
            orchestrator.wait_for_background_tasks(),
            timeout=settings.provider_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning("[SHUTDOWN] Late call cleanup did not finish before shutdown")


app = FastAPI(
    title="Caller ID Call Broker",
    description="Places caller-ID calls and SMS through Twilio and tracks call sessions",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Reject malformed request bodies with 400 and the client-facing error shape."""
    errors = [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    logger.info(f"[VALIDATION] Rejected request - Path: {request.url.path}, Errors: {errors}")
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Invalid request", "errors": errors},
    )


app.include_router(health.router, tags=["health"])
app.include_router(calls.router, prefix="/api/spoof", tags=["calls"])
app.include_router(messages.router, prefix="/api/spoof", tags=["sms"])
app.include_router(voice.router, prefix="/api/spoof/webhook", tags=["webhooks"])
