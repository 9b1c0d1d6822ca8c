from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
import logging
import os

from .core.config import settings
from .core.database import create_db_and_tables
from .core.cache import cache
from .core.session_store import get_session_store
from .api.v1.api import api_router
from .middleware.performance import PerformanceMiddleware
from .middleware.timezone import TimezoneMiddleware

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

VERIFY_PATH = "/api/v1/certificates/verify"

app = FastAPI(
    title="Certificate Testing Platform API",
    description="Timed certification tests with verifiable PDF certificates",
    version="1.0.0",
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None
)

app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(TimezoneMiddleware)

app.add_middleware(
    PerformanceMiddleware,
    slow_request_threshold=settings.slow_request_threshold
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # public verification keeps its own response shape for bad input
    if request.url.path == VERIFY_PATH:
        return JSONResponse(
            status_code=400,
            content={"success": False, "is_valid": False, "error": "Invalid input data"}
        )
    return JSONResponse(status_code=422, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred. Please try again later.",
            "request_id": getattr(request.state, 'request_id', 'unknown')
        }
    )


@app.on_event("startup")
async def startup_event():
    logger.info("Starting Certificate Testing Platform API...")

    os.makedirs(settings.certificate_storage_dir, exist_ok=True)
    logger.info(f"Certificate storage at {settings.certificate_storage_dir}")

    create_db_and_tables()
    logger.info("Database initialized")

    get_session_store()

    if settings.session_store_backend == "redis":
        if await cache.ahealth_check():
            logger.info("Redis connection established")
        else:
            logger.warning("Redis is unreachable - test sessions cannot be stored until it comes back")

    logger.info("Certificate Testing Platform API startup completed")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Shutting down Certificate Testing Platform API...")
    await cache.aclose()
    logger.info("Cache connections closed")


app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": "1.0.0"}


@app.get("/")
async def read_root():
    return {
        "message": "Welcome to the Certificate Testing Platform API!",
        "version": "1.0.0",
    }
