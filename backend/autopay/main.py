"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from autopay.core.config import settings
from autopay.core.logging import setup_logging
from autopay.core.middleware import access_log_middleware, global_exception_handler
from autopay.db.session import init_db
from autopay.services.gateway_client import GatewayClientCache
from autopay.utils.encryption import get_codec

# Import routers
from autopay.api import configs, subscriptions

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Fail at boot on a missing or malformed encryption key
    get_codec()

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info(
        f"Razorpay checkouts use '{settings.gateway_environment}' configs "
        f"(ENVIRONMENT={settings.ENVIRONMENT})"
    )

    yield

    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI app
app = FastAPI(
    title="Autopay Backend",
    description="Razorpay UPI Autopay subscriptions",
    version="1.0.0",
    lifespan=lifespan
)

# One Razorpay client per (app_name, environment) for the life of the process
app.state.gateway_cache = GatewayClientCache()

# Include routers
app.include_router(subscriptions.router)
app.include_router(configs.router)

app.middleware("http")(access_log_middleware)
app.add_exception_handler(Exception, global_exception_handler)


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
