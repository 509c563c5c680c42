"""FastAPI application entry point."""
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from settlement import __version__
from settlement.config import settings
from settlement.database import engine
from settlement.exceptions import SettlementError
from settlement.logging_config import setup_logging
from settlement.schemas.error import ErrorBody, ErrorResponse, error_response

# Setup structured logging
setup_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    logger.info("application_starting", env=settings.app_env, paypal_mode=settings.paypal_mode)
    yield
    await engine.dispose()
    logger.info("application_shutting_down")


app = FastAPI(
    title="Payment Settlement Service",
    description="PayPal settlement with at-most-once capture and encrypted audit records",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount Prometheus metrics endpoint
app.mount("/metrics", make_asgi_app())

if settings.app_env == "production":
    from settlement.tracing import setup_tracing

    setup_tracing(app)


@app.exception_handler(SettlementError)
async def settlement_exception_handler(request: Request, exc: SettlementError) -> JSONResponse:
    """Render domain errors into the standard error envelope."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "settlement_error",
        path=request.url.path,
        method=request.method,
        error_code=exc.error_code,
        status_code=exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render malformed request bodies as 400 validation errors."""
    fields = sorted({".".join(str(loc) for loc in error["loc"]) for error in exc.errors()})
    logger.warning("validation_error", path=request.url.path, method=request.method, fields=fields)
    body = ErrorResponse(
        error=ErrorBody(message=f"Invalid request: {', '.join(fields)}", statusCode=status.HTTP_400_BAD_REQUEST)
    )
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle all other uncaught exceptions.

    Logs the exception but returns a safe message to the client.
    """
    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        exception_type=type(exc).__name__,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response(exc).model_dump(),
    )


@app.get("/", tags=["Root"])
async def root() -> dict:
    """Root endpoint with API information."""
    return {
        "service": "Payment Settlement Service",
        "version": __version__,
        "provider": "PayPal",
        "endpoints": {"health": "/health", "payments": "/v1/payments"},
    }


# Include routers
from settlement.api.v1 import health, payments  # noqa: E402

app.include_router(health.router, tags=["Health"])
app.include_router(payments.router, prefix="/v1", tags=["Payments"])
