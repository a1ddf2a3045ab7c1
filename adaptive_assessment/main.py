"""
Adaptive Assessment Engine

FastAPI application entry point.
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from adaptive_assessment.ai.completion import is_configured_key
from adaptive_assessment.api.deps import get_generation_queue, get_lease_store
from adaptive_assessment.api.middleware.request_id import REQUEST_ID_HEADER, RequestIdMiddleware
from adaptive_assessment.api.v1 import router as api_v1_router
from adaptive_assessment.config import get_settings
from adaptive_assessment.database import close_db, init_db
from adaptive_assessment.engines.selection.lease_store import run_lease_sweeper
from adaptive_assessment.exceptions import AssessmentError
from adaptive_assessment.logging_config import configure_logging, get_logger
from adaptive_assessment.schemas.common import HealthResponse

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan handler.

    Starts the generation lease sweeper; on shutdown drains the generation
    queue before closing the database.
    """
    configure_logging(
        log_level=settings.log_level,
        environment=settings.environment,
        debug=settings.debug,
    )

    logger.info("Starting %s v%s", settings.project_name, settings.version)
    await init_db()
    logger.info("Database initialized")

    sweeper = asyncio.create_task(
        run_lease_sweeper(
            get_lease_store(),
            interval_seconds=settings.generation_sweep_interval_seconds,
            max_age_seconds=settings.generation_lease_max_age_seconds,
        )
    )

    yield

    logger.info("Shutting down...")
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper
    await get_generation_queue().shutdown()
    await close_db()
    logger.info("Database connections closed")


app = FastAPI(
    title=settings.project_name,
    description="""
    Adaptive Assessment Engine

    ## Features

    - **Sessions**: adaptive item selection, per-item grading, scoring
    - **Grading**: exact, edit-distance, LLM-assisted semantic, pair and sequence checks
    - **Mastery**: per-topic competence updated after every graded answer
    - **Proctoring**: violation ingestion, risk scoring, automatic invalidation, overrides
    - **Item bank**: authoring plus AI-generated batches with publish workflow
    """,
    version=settings.version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


_cors_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
]

app.add_middleware(RequestIdMiddleware)
# Added last = outermost, so error responses get CORS headers too
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_headers(request: Request) -> dict:
    req_id = getattr(request.state, "request_id", None)
    return {REQUEST_ID_HEADER: req_id} if req_id else {}


@app.exception_handler(AssessmentError)
async def assessment_error_handler(request: Request, exc: AssessmentError):
    """Typed engine errors -> {detail, code}."""
    req_id = getattr(request.state, "request_id", None)
    content = {"detail": exc.message, "code": exc.code, "request_id": req_id}
    if exc.context:
        content["context"] = jsonable_encoder(exc.context)
    if exc.status_code >= 500:
        logger.warning("Request failed", extra={"code": exc.code, "detail": exc.message})
    return JSONResponse(status_code=exc.status_code, content=content, headers=_error_headers(request))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    req_id = getattr(request.state, "request_id", None)
    content = {"detail": exc.detail}
    if req_id and exc.status_code >= 500:
        content["request_id"] = req_id
    headers = _error_headers(request)
    if exc.headers:
        headers.update(exc.headers)
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
):
    """Handle request validation errors."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })
    content = {"detail": "Validation error", "code": "validation_error", "errors": errors}
    req_id = getattr(request.state, "request_id", None)
    if req_id:
        content["request_id"] = req_id
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=content,
        headers=_error_headers(request),
    )


@app.exception_handler(Exception)
async def general_exception_handler(
    request: Request,
    exc: Exception,
):
    """Handle unexpected exceptions."""
    logger.exception("Unhandled exception: %s", exc)
    req_id = getattr(request.state, "request_id", None)
    if settings.debug:
        content = {
            "detail": str(exc),
            "type": type(exc).__name__,
            "request_id": req_id,
        }
    else:
        content = {"detail": "Internal server error", "request_id": req_id}
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=content,
        headers=_error_headers(request),
    )


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Check application health."""
    return HealthResponse(
        status="ok",
        version=settings.version,
        database="connected",
        ai_configured=is_configured_key(settings.openai_api_key),
        generation_jobs_pending=get_generation_queue().pending_count,
    )


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.project_name,
        "version": settings.version,
        "docs": "/docs" if settings.debug else "disabled",
        "api": {
            "v1": settings.api_v1_prefix,
        },
    }


app.include_router(
    api_v1_router,
    prefix=settings.api_v1_prefix,
)


# Main entry point for development
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "adaptive_assessment.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
