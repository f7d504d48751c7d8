"""
FastAPI Application — Entry Point

Thin HTTP surface over the ingestion pipeline:
  - All routes are versioned under /api/v1/
  - Job submission goes through the JobQueueHandle stored on app.state
  - Structured JSON error responses on all 4xx/5xx

Middleware stack (innermost → outermost):
  1. Request ID injection — X-Request-ID header on every response
  2. Request logging — structured log per request with latency
  3. CORS — open in development, closed otherwise
  4. Gzip — compress responses > 1 KB (page bodies)
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from bookpipe import __version__
from bookpipe.api.v1.books import router as books_router
from bookpipe.api.v1.jobs import router as jobs_router
from bookpipe.core.config import Settings, get_settings
from bookpipe.core.exceptions import (
    BookNotFoundError,
    BookStillProcessingError,
    PageNotFoundError,
)
from bookpipe.core.logging import configure_logging
from bookpipe.db.session import check_db_health, get_engine
from bookpipe.schemas.books import ErrorDetail, ErrorResponse, ProcessingStatus
from bookpipe.workers.queue import JobQueueHandle, create_job_queue

logger = logging.getLogger(__name__)


def _error(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    **extra,
) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
    body = ErrorResponse(
        error_code=error_code,
        message=message,
        request_id=request_id,
        **extra,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
    )


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    *,
    job_queue: JobQueueHandle | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: validate DB connectivity, build the queue handle if none
        was injected. Shutdown: close what we own, dispose the pool.
        """
        logger.info("Starting book ingestion API | env=%s", settings.app_env)

        db_health = await check_db_health()
        if db_health["status"] != "ok":
            logger.critical("Database health check failed at startup: %s", db_health)
            raise RuntimeError(f"DB unavailable: {db_health}")

        owned_queue = app.state.job_queue is None
        if owned_queue:
            app.state.job_queue = create_job_queue(settings)

        yield

        logger.info("Shutting down book ingestion API")
        if owned_queue:
            app.state.job_queue.close()
        await get_engine().dispose()

    app = FastAPI(
        title="Book Ingestion Pipeline",
        description=(
            "Asynchronous conversion of uploaded books (PDF, EPUB, DOCX, text) "
            "into numbered reading pages."
        ),
        version=__version__,
        docs_url="/api/docs" if not settings.is_production else None,
        redoc_url="/api/redoc" if not settings.is_production else None,
        openapi_url="/api/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.job_queue = job_queue

    # ----------------------------------------------------------------
    # Middleware (applied in reverse order — last added = outermost)
    # ----------------------------------------------------------------

    app.add_middleware(GZipMiddleware, minimum_size=1024)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.app_env == "development" else [],
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "HTTP %s %s %d %.1fms | request_id=%s",
            request.method, request.url.path, response.status_code, duration_ms, request_id,
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers — uniform structured error responses
    # ----------------------------------------------------------------

    @app.exception_handler(BookNotFoundError)
    async def book_not_found_handler(request: Request, exc: BookNotFoundError):
        return _error(request, status.HTTP_404_NOT_FOUND, "BOOK_NOT_FOUND", str(exc))

    @app.exception_handler(PageNotFoundError)
    async def page_not_found_handler(request: Request, exc: PageNotFoundError):
        return _error(request, status.HTTP_404_NOT_FOUND, "PAGE_NOT_FOUND", str(exc))

    @app.exception_handler(BookStillProcessingError)
    async def still_processing_handler(request: Request, exc: BookStillProcessingError):
        return _error(
            request,
            status.HTTP_409_CONFLICT,
            "BOOK_NOT_READY",
            "Book is still being processed. Poll the status endpoint until it is completed.",
            status=ProcessingStatus(exc.status),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Convert Pydantic/FastAPI validation errors to structured ErrorResponse."""
        details = [
            ErrorDetail(
                field=" → ".join(str(loc) for loc in err["loc"]),
                message=err["msg"],
                code="VALIDATION_ERROR",
            )
            for err in exc.errors()
        ]
        return _error(
            request,
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "VALIDATION_ERROR",
            "Request validation failed.",
            details=details,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions — never expose stack traces."""
        logger.exception("Unhandled exception | path=%s", request.url.path)
        return _error(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_ERROR",
            "An unexpected error occurred.",
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(books_router, prefix="/api/v1")
    app.include_router(jobs_router,  prefix="/api/v1")

    # ----------------------------------------------------------------
    # Health & readiness endpoints (used by load balancer)
    # ----------------------------------------------------------------

    @app.get("/health", tags=["Operations"], summary="Liveness check")
    async def health() -> dict:
        return {"status": "ok", "service": "bookpipe-api"}

    @app.get("/ready", tags=["Operations"], summary="Readiness check")
    async def readiness() -> JSONResponse:
        db_status = await check_db_health()
        if db_status["status"] != "ok":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not_ready", "database": db_status},
            )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ready", "database": db_status},
        )

    return app


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

configure_logging(get_settings())
app = create_app()


# ---------------------------------------------------------------------------
# Local development entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "bookpipe.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.app_env == "development",
        log_level="debug" if settings.debug else "info",
        access_log=True,
    )
