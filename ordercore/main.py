from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ordercore.config import settings
from ordercore.api.errors import register_exception_handlers
from ordercore.api.v1.router import api_router
from ordercore.database import init_db, async_session_factory
from ordercore.jobs.scheduler import start_scheduler, shutdown_scheduler, get_job_status


logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: create missing tables, start the final-invoice retry scheduler.
    Shutdown: stop the scheduler.
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await init_db()

    if settings.SCHEDULER_ENABLED:
        start_scheduler()

    yield

    shutdown_scheduler()
    logger.info("Shutting down...")


OPENAPI_TAGS = [
    {"name": "Orders", "description": "Order placement, fulfillment status and timeline"},
    {"name": "COD Settlement", "description": "Cash-on-delivery custody confirmations"},
    {"name": "Payments", "description": "Payment-confirmed facts from checkout"},
    {"name": "Invoices", "description": "Proforma and final GST invoices"},
    {"name": "Accounting", "description": "Revenue, tax and collection rollups by date window"},
    {"name": "Products", "description": "Catalog data needed for orders and profit"},
    {"name": "Raw Materials", "description": "Raw material balances moved through the ledger"},
    {"name": "Ledger", "description": "Append-only balance history and replay"},
    {"name": "Health", "description": "Liveness and database connectivity"},
]

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Order fulfillment, COD settlement and GST invoicing back office.",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=OPENAPI_TAGS,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include API router
app.include_router(api_router)


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint with database validation."""
    health_status = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": "unknown"
        },
        "jobs": get_job_status(),
    }

    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
            health_status["checks"]["database"] = "connected"
    except SQLAlchemyError as e:
        logger.error(f"Health check database probe failed: {e}")
        health_status["status"] = "unhealthy"
        health_status["checks"]["database"] = f"error: {str(e)}"

    # Return 503 if unhealthy
    if health_status["status"] == "unhealthy":
        return JSONResponse(status_code=503, content=health_status)

    return health_status


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }
