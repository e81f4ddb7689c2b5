"""
FastAPI application entry point.

Run it with: uvicorn frontbase.main:app --reload  (from the backend/ directory)

Key concepts:
- Lifespan: migrates the database, then builds the service graph
  (services/container.py) and stores it on app.state
- Exception handlers: translate pipeline errors (errors.py) into HTTP
  responses so routers can simply let them propagate
- Routers: one module per resource under routers/
"""

import logging
import os
from contextlib import asynccontextmanager

from alembic import command
from alembic.config import Config
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from frontbase.config import DATABASE_URL, FRONTEND_URL, LOG_LEVEL
from frontbase.database import create_engine, create_session_factory
from frontbase.errors import (
    ArtifactError,
    FrontbaseError,
    IntegrityViolationError,
    PipelineBusyError,
    ProvisioningError,
    RepositoryAccessError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
    WorkflowDispatchError,
)
from frontbase.routers import auth, deployments, env_vars, repositories, upload, workflows
from frontbase.services.container import build_services

logging.basicConfig(
    level=LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

PASSTHROUGH_STATUSES = {403, 404, 422}


def _run_migrations() -> None:
    """Run Alembic migrations on startup.

    Finds the alembic.ini relative to this file (in the backend/ directory)
    and upgrades the database to the latest migration.
    """
    backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    alembic_cfg = Config(os.path.join(backend_dir, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(backend_dir, "alembic"))
    # Keep the logging set up by basicConfig above.
    alembic_cfg.attributes["configure_logger"] = False
    command.upgrade(alembic_cfg, "head")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: migrate, create the engine and services.
    Shutdown: cancel background deployments, close the HTTP client and
    the connection pool.
    """
    _run_migrations()

    engine = create_engine(DATABASE_URL)
    app.state.session_factory = create_session_factory(engine)
    app.state.services = build_services(app.state.session_factory)
    logger.info("Frontbase API started")

    yield

    await app.state.services.aclose()
    await engine.dispose()


def status_for(exc: Exception) -> tuple[int, str]:
    """HTTP status and client-facing message for a pipeline error."""
    if isinstance(exc, (ProvisioningError, WorkflowDispatchError)):
        status, _ = status_for(exc.cause)
        return status, str(exc)
    if isinstance(exc, UpstreamRejectedError):
        status = exc.status_code if exc.status_code in PASSTHROUGH_STATUSES else 400
        return status, exc.message
    if isinstance(exc, UpstreamUnavailableError):
        return 500, f"{exc.service} is unavailable, please try again later"
    if isinstance(exc, RepositoryAccessError):
        return 403, str(exc)
    if isinstance(exc, PipelineBusyError):
        return 409, str(exc)
    if isinstance(exc, ArtifactError):
        return 422, str(exc)
    if isinstance(exc, IntegrityViolationError):
        return 500, str(exc)
    return 500, "Internal server error"


def create_app() -> FastAPI:
    app = FastAPI(title="Frontbase", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(FrontbaseError)
    async def frontbase_error_handler(request: Request, exc: FrontbaseError):
        status, detail = status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.info("%s %s rejected (%d): %s", request.method, request.url.path, status, exc)
        return JSONResponse(status_code=status, content={"detail": detail})

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        logger.warning("Constraint violation on %s %s: %s", request.method, request.url.path, exc.orig)
        return JSONResponse(status_code=409, content={"detail": "Conflicts with an existing record"})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch unhandled exceptions so the response still gets CORS headers."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    # The dashboard runs on another origin and authenticates with a cookie.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth.router)
    app.include_router(repositories.router)
    app.include_router(env_vars.router)
    app.include_router(workflows.router)
    app.include_router(deployments.router)
    app.include_router(upload.router)

    @app.get("/api/health")
    async def health():
        """Simple health check endpoint. Returns {"status": "ok"} if the server is running."""
        return {"status": "ok"}

    return app


app = create_app()
