"""LedgerMatch API - FastAPI application."""

import asyncio
import time
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from typing import Any
from uuid import uuid4

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ledgermatch import __version__
from ledgermatch.config import settings
from ledgermatch.logger import configure_logging, get_logger
from ledgermatch.routers import reconciliation, recurring
from ledgermatch.services.jobs import run_recurring_supervisor

# Initialize logging early
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the recurring-pattern supervisor for the lifetime of the app."""
    stop_event = asyncio.Event()
    supervisor_task: asyncio.Task[None] | None = None
    if settings.recurring_job_enabled:
        supervisor_task = asyncio.create_task(run_recurring_supervisor(stop_event))
    logger.info("Application started", version=__version__, recurring_job=settings.recurring_job_enabled)
    yield
    stop_event.set()
    if supervisor_task is not None:
        supervisor_task.cancel()
        with suppress(asyncio.CancelledError):
            await supervisor_task
    logger.info("Application shutting down")


app = FastAPI(
    title="LedgerMatch API",
    description="Bank statement reconciliation and recurring payment detection",
    version=__version__,
    lifespan=lifespan,
)


@app.middleware("http")
async def logging_middleware(request: Request, call_next: Any) -> Response:
    """Middleware to inject Request-ID and log request details."""
    request_id = request.headers.get("X-Request-ID", str(uuid4()))

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    start_time = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as exc:
        logger.exception(
            "HTTP Request Failed",
            duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            error=str(exc),
        )
        raise

    logger.info(
        "HTTP Request",
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler to ensure JSON response."""
    if settings.debug:
        detail = str(exc)
        trace = traceback.format_exc()
    else:
        detail = "An internal server error occurred. Please try again later."
        trace = None

    return JSONResponse(
        status_code=500,
        content={
            "detail": detail,
            "trace": trace,
            "request_id": structlog.contextvars.get_contextvars().get("request_id"),
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
)

app.include_router(reconciliation.router)
app.include_router(recurring.router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": __version__}
