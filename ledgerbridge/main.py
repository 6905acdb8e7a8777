"""
FastAPI application factory with middleware, CORS, and request tracing.
"""

import os
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ledgerbridge import __version__, services
from ledgerbridge.config import get_settings
from ledgerbridge.connectors.ingestion_service import IngestionError
from ledgerbridge.connectors.qbo_client import QBOAPIError, QBOAuthError
from ledgerbridge.routers import (
    accounts,
    analysis,
    auth,
    category_mapping,
    connection,
    ingestion,
    transactions,
)
from ledgerbridge.storage import StorageError
from ledgerbridge.utils.logging import configure_logging, get_logger

# Configure logging at module level
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    settings = get_settings()

    logger.info(
        "application_startup",
        version=app.version,
        environment=settings.intuit_env,
        dev_mode=settings.dev_mode,
    )

    db_dir = os.path.dirname(settings.db_path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)

    yield

    await services.get_qbo_client().aclose()
    await services.get_llm_client().aclose()
    logger.info("application_shutdown")


def _error_response(request: Request, status_code: int, message: str) -> JSONResponse:
    request_id = structlog.contextvars.get_contextvars().get("request_id")
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "request_id": request_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Translate domain errors into HTTP responses."""

    @app.exception_handler(QBOAuthError)
    async def qbo_auth_error_handler(request: Request, exc: QBOAuthError):
        logger.warning("qbo_auth_error", path=request.url.path, error=str(exc))
        return _error_response(request, 401, str(exc))

    @app.exception_handler(QBOAPIError)
    async def qbo_api_error_handler(request: Request, exc: QBOAPIError):
        logger.error(
            "qbo_api_error",
            path=request.url.path,
            error=str(exc),
            status_code=exc.status_code,
        )
        return _error_response(request, 502, str(exc))

    @app.exception_handler(IngestionError)
    async def ingestion_error_handler(request: Request, exc: IngestionError):
        logger.error("ingestion_error", path=request.url.path, error=str(exc))
        return _error_response(request, 502, str(exc))

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error("storage_error", path=request.url.path, error=str(exc))
        return _error_response(request, 500, "Storage error")


def create_app() -> FastAPI:
    """
    Application factory.
    Creates and configures FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="LedgerBridge API",
        description="QuickBooks Online sync, categorization and push-back",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    # Request tracing middleware
    @app.middleware("http")
    async def request_tracing_middleware(request: Request, call_next):
        """Add request ID to all requests and log their outcome."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
            )

            return response
        except Exception as e:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": "Internal server error",
                    "request_id": request_id,
                },
                headers={"X-Request-ID": request_id},
            )

    register_exception_handlers(app)

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for load balancers and monitoring."""
        return {
            "status": "healthy",
            "version": app.version,
            "environment": settings.intuit_env,
        }

    app.include_router(auth.router, prefix="/api/v1/auth", tags=["Authentication"])
    app.include_router(connection.router, prefix="/api/v1/connection", tags=["Connection"])
    app.include_router(ingestion.router, prefix="/api/v1/ingestion", tags=["Ingestion"])
    app.include_router(transactions.router, prefix="/api/v1/transactions", tags=["Transactions"])
    app.include_router(
        category_mapping.router, prefix="/api/v1/category-mapping", tags=["Category Mapping"]
    )
    app.include_router(accounts.router, prefix="/api/v1/accounts", tags=["Accounts"])
    app.include_router(analysis.router, prefix="/api/v1/analysis", tags=["Analysis"])

    logger.info("application_configured", routers_count=7)

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "ledgerbridge.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
    )
