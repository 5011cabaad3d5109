"""FastAPI application entry point."""

import hmac
import logging
import os
from collections.abc import Awaitable, Callable

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S")

# Apply the same format to Uvicorn's loggers so they also show timestamps.
for _uvicorn_logger in ("uvicorn", "uvicorn.error", "uvicorn.access"):
    _log = logging.getLogger(_uvicorn_logger)
    _log.handlers.clear()
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"))
    _log.addHandler(_handler)
    _log.propagate = False

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from src.db import create_tables, session_factory
from src.schemas.job import ErrorResponse

logger = logging.getLogger(__name__)

app = FastAPI(title="Playlist Cover Worker")

app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["*"])

_AUTH_EXEMPT_PATHS = ("/health",)


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Require ``Authorization: Bearer $WORKER_AUTH_TOKEN`` on every non-exempt path."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if request.url.path in _AUTH_EXEMPT_PATHS:
            return await call_next(request)
        expected = os.environ.get("WORKER_AUTH_TOKEN", "").strip()
        if not expected:
            logger.error("WORKER_AUTH_TOKEN environment variable is not set; rejecting request")
            return JSONResponse(
                status_code=503,
                content=ErrorResponse(error="not_configured", detail="Worker auth is not configured").model_dump(),
            )
        supplied = request.headers.get("authorization", "")
        if not hmac.compare_digest(supplied, f"Bearer {expected}"):
            return JSONResponse(
                status_code=401,
                content=ErrorResponse(error="unauthorized", detail="Missing or invalid bearer token").model_dump(),
            )
        return await call_next(request)


app.add_middleware(BearerAuthMiddleware)


@app.on_event("startup")
def startup() -> None:
    create_tables()
    # Workers do not survive a restart; release whatever they left behind.
    from src.services.orchestrator import recover_stale_jobs

    db = session_factory()
    try:
        recovered = recover_stale_jobs(db)
    finally:
        db.close()
    if recovered.expired_jobs or recovered.released_playlists:
        logger.warning(
            "startup: expired %d stale jobs, released %d playlists",
            recovered.expired_jobs,
            recovered.released_playlists,
        )


@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Import here to avoid circular imports at module level.
    from src.services.orchestrator import (
        JobAlreadyActiveError,
        JobNotFoundError,
        NoEligibleTargetsError,
        StyleNotFoundError,
        UserNotFoundError,
    )
    from src.services.replicate import GenerationError
    from src.services.spotify import SpotifyError
    from src.services.storage import StorageError

    if isinstance(exc, JobAlreadyActiveError):
        return JSONResponse(
            status_code=409,
            content=ErrorResponse(error="job_already_active", detail=str(exc)).model_dump(),
        )
    if isinstance(exc, (JobNotFoundError, UserNotFoundError)):
        return JSONResponse(
            status_code=404,
            content=ErrorResponse(error="not_found", detail=str(exc)).model_dump(),
        )
    if isinstance(exc, (NoEligibleTargetsError, StyleNotFoundError)):
        return JSONResponse(
            status_code=422,
            content=ErrorResponse(error="unprocessable", detail=str(exc)).model_dump(),
        )
    if isinstance(exc, (GenerationError, SpotifyError, StorageError)):
        return JSONResponse(
            status_code=502,
            content=ErrorResponse(error="upstream_error", detail=str(exc)).model_dump(),
        )
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="internal_error", detail=str(exc)).model_dump(),
    )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# Import and register routers after app is defined to avoid circular imports.
from src.api import jobs, styles  # noqa: E402

app.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
app.include_router(styles.router, prefix="/styles", tags=["styles"])
