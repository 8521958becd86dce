"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.api.db.database import async_session_factory
from backend.api.dependencies import get_settings
from backend.api.routers import achievements, events
from backend.api.services.achievement_engine import seed_achievements
from backend.api.services.reconciliation import sweep_once
from funraise.errors import ContractViolationError, EntityNotFoundError

logger = logging.getLogger(__name__)


async def _time_sweep_loop(interval_s: float) -> None:
    """Re-check TIME conditions every ``interval_s`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval_s)
        try:
            result = await sweep_once(async_session_factory)
            if result.transitions:
                logger.info("Time sweep transitions: %s", result.transitions)
        except Exception:
            logger.exception("Time sweep failed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    logging.basicConfig(level=logging.INFO)

    if settings.seed_achievements_on_startup:
        async with async_session_factory() as db:
            n = await seed_achievements(db)
            await db.commit()
        if n:
            logger.info("Seeded %d achievement(s) on startup", n)

    sweep_task: asyncio.Task[None] | None = None
    if settings.time_check_interval_s > 0:
        sweep_task = asyncio.create_task(_time_sweep_loop(settings.time_check_interval_s))
        logger.info("Time sweep every %.0fs", settings.time_check_interval_s)

    yield

    if sweep_task is not None:
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task


load_dotenv()  # Populate os.environ from .env before reading settings
settings = get_settings()

app = FastAPI(
    title="Funraise API",
    description="Event end-condition and achievement evaluation",
    version="0.1.0",
    lifespan=lifespan,
    redirect_slashes=False,
)


# -- Exception handlers --------------------------------------------------------


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unhandled exceptions.

    Logs the full traceback server-side but returns a safe generic message
    to the client (no internal details leaked).
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """Return 422 for ValueError (bad input data that passed validation)."""
    logger.warning("ValueError on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc)},
    )


@app.exception_handler(ContractViolationError)
async def contract_violation_handler(request: Request, exc: ContractViolationError) -> JSONResponse:
    """Return 409 when a request asks for a forbidden state transition."""
    logger.warning("Rejected transition on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc)},
    )


@app.exception_handler(EntityNotFoundError)
async def not_found_handler(request: Request, exc: EntityNotFoundError) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"detail": str(exc)},
    )


# -- Middleware ----------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -- Routers -------------------------------------------------------------------

app.include_router(events.router, prefix="/api/events", tags=["events"])
app.include_router(achievements.router, prefix="/api/users", tags=["achievements"])


# -- Health --------------------------------------------------------------------


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Return a simple health-check response."""
    return {"status": "ok"}
