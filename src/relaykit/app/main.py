"""FastAPI application entry point for the RelayKit API."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from relaykit.app.config import get_settings
from relaykit.infra.database import async_session, close_db, init_db
from relaykit.services.estimate_orchestrator import build_orchestrator
from relaykit.services.estimate_queue import EstimateQueue, estimate_worker_loop

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database, start the estimate worker."""
    await init_db()

    worker = None
    settings = get_settings()
    if settings.estimate_worker_enabled:
        queue = EstimateQueue(async_session, build_orchestrator(async_session))
        worker = asyncio.create_task(
            estimate_worker_loop(queue, settings.estimate_worker_poll_seconds)
        )
    yield
    if worker is not None:
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker
    await close_db()


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="RelayKit API",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS middleware; debug mode allows all origins
_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from relaykit.app.routes.auth import router as auth_router
from relaykit.app.routes.internal import router as internal_router
from relaykit.app.routes.invites import router as invites_router
from relaykit.app.routes.jobs import router as jobs_router
from relaykit.app.routes.pricing import router as pricing_router
from relaykit.app.routes.templates import packages_router, router as templates_router
from relaykit.app.routes.trials import router as trials_router
from relaykit.app.routes.uploads import files_router, router as uploads_router
from relaykit.app.routes.workspaces import customers_router, router as workspaces_router

app.include_router(auth_router)
app.include_router(workspaces_router)
app.include_router(customers_router)
app.include_router(jobs_router)
app.include_router(templates_router)
app.include_router(packages_router)
app.include_router(invites_router)
app.include_router(trials_router)
app.include_router(uploads_router)
app.include_router(files_router)
app.include_router(pricing_router)
app.include_router(internal_router)


@app.get("/health", tags=["health"])
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "relaykit"}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "relaykit.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
