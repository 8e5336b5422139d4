"""lifesync - Local-first habit and goal tracking core."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from email.utils import format_datetime

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from src.core.document_store import SqliteDocumentStore
from src.core.local_store import RedisLocalStore, create_local_store
from src.core.logging import configure_logfire, instrument_fastapi
from src.core.scheduler import scheduler, start_scheduler, stop_scheduler
from src.core.trusted_clock import TrustedClock
from src.services.workspace import WorkspaceRegistry


logger = logging.getLogger(__name__)


async def check_local_store_connectivity(local_store: object) -> None:
    """Verify Redis connectivity when the Redis backend is configured.

    Logs a warning if unavailable but doesn't fail; the backup is a cache.
    """
    if not isinstance(local_store, RedisLocalStore):
        logger.info("startup_validation", extra={"service": "redis", "status": "disabled"})
        return

    if await local_store.ping():
        logger.info("startup_validation", extra={"service": "redis", "status": "ok"})
    else:
        logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable"})


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Startup
    configure_logfire()

    app.state.document_store = SqliteDocumentStore()
    app.state.local_store = create_local_store()
    app.state.workspaces = WorkspaceRegistry()
    await check_local_store_connectivity(app.state.local_store)

    app.state.clock = TrustedClock.from_settings()
    await app.state.clock.resolve()

    start_scheduler(clock=app.state.clock, registry=app.state.workspaces)
    yield
    # Shutdown
    stop_scheduler()
    for workspace in app.state.workspaces:
        await workspace.close()
    await app.state.document_store.close()
    if isinstance(app.state.local_store, RedisLocalStore):
        await app.state.local_store.close()


app = FastAPI(
    title="lifesync",
    description="Local-first habit and goal tracking core",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)


@app.api_route("/", methods=["GET", "HEAD"])
async def origin_time() -> Response:
    """Same-origin time probe: clients read the Date header to correct their clock."""
    return Response(
        status_code=204,
        headers={
            "Date": format_datetime(datetime.now(UTC), usegmt=True),
            "Cache-Control": "no-store",
        },
    )


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "healthy"}, status_code=200)


@app.get("/health/clock")
async def clock_health_check(request: Request) -> JSONResponse:
    """Trusted clock status: whether the offset was resolved and from which source."""
    clock: TrustedClock = request.app.state.clock
    status = clock.status()
    return JSONResponse(
        content={"status": "healthy" if status.resolved else "degraded", "clock": status.model_dump(mode="json")},
        status_code=200,
    )


@app.get("/health/scheduler")
async def scheduler_health_check() -> JSONResponse:
    """Scheduler health check endpoint with job statuses."""
    jobs = {
        job.id: {
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
        }
        for job in scheduler.get_jobs()
    }
    return JSONResponse(
        content={"status": "healthy" if scheduler.running else "stopped", "jobs": jobs},
        status_code=200,
    )


def run() -> None:
    """Serve the app with uvicorn.

    The Date header is set by the origin time route, so uvicorn's own is disabled.
    """
    uvicorn.run(app, host="0.0.0.0", port=8000, date_header=False)  # noqa: S104
