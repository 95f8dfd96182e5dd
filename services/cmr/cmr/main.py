"""
CMR Delivery Microservice
Milestone ledger, delivery state machine and exception handling for CMR shipments
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import subprocess
import os

from shared.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from cmr.api.routes import router as cmr_router
from cmr.application.service import workflow_metrics
from cmr.core_settings import get_settings
from cmr.domain.errors import DeliveryError
from cmr.infrastructure.db import engine, init_models

settings = get_settings()

# Service configuration
SERVICE_NAME = "cmr-service"
SERVICE_VERSION = settings.SERVICE_VERSION
SERVICE_DESCRIPTION = "CMR delivery milestone and exception workflow"
REQUIRED_TABLES = ("cmr_records", "cmr_exception_records", "delivery_log")

# Setup structured logging
setup_logging(
    service_name=SERVICE_NAME,
    level=settings.LOG_LEVEL,
    version=SERVICE_VERSION,
    log_file=os.getenv("LOG_FILE"),
)

logger = get_logger(__name__)

def run_migrations() -> None:
    logger.info("Running database migrations")
    result = subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=os.path.join(os.path.dirname(__file__), ".."),
        capture_output=True,
        text=True,
        check=False
    )
    if result.returncode != 0:
        logger.warning(f"Migration output: {result.stderr}")
    else:
        logger.info("Database migrations completed")

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")

    if settings.RUN_MIGRATIONS:
        try:
            run_migrations()
        except OSError as e:
            logger.error(f"Migration error: {e}")

    # create_all covers tables the migrations did not create
    try:
        init_models()
        logger.info("Database models initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database models: {e}")
        raise

    logger.info(f"{SERVICE_NAME} started successfully")

    yield

    logger.info(f"Shutting down {SERVICE_NAME}")

# Create FastAPI application
app = FastAPI(
    title=SERVICE_NAME,
    description=SERVICE_DESCRIPTION,
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)

@app.exception_handler(DeliveryError)
async def delivery_error_handler(request: Request, exc: DeliveryError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

# Initialize health checks
health_service = ServiceHealth(
    SERVICE_NAME,
    SERVICE_VERSION,
    engine=engine,
    redis_url=settings.REDIS_URL,
    required_tables=REQUIRED_TABLES,
    metrics_provider=workflow_metrics.snapshot,
)
health_router = health_service.create_health_router()
app.include_router(health_router)

# Include business logic routes
app.include_router(cmr_router)

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "running",
        "docs": "/api/docs"
    }

@app.get("/info")
async def info():
    """Service information endpoint"""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "description": SERVICE_DESCRIPTION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "endpoints": {
            "health": "/health",
            "ready": "/health/ready",
            "live": "/health/live",
            "metrics": "/metrics",
            "docs": "/api/docs",
            "cmr": "/cmr/"
        }
    }
