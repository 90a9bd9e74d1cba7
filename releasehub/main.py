"""
ReleaseHub - Multi-tenant release tracking

FastAPI application entry point.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import observability modules
from releasehub.config import settings
from releasehub.exceptions import ReleaseHubError
from releasehub.logging_config import configure_logging, get_logger
from releasehub.sentry_config import configure_sentry
from releasehub.middleware.logging import LoggingMiddleware
from releasehub.routes.metrics import router as metrics_router

# Import route modules
from releasehub.routes.deployments import router as deployments_router
from releasehub.routes.webhooks import router as webhooks_router
from releasehub.services.dispatch import ArqDispatcher, InProcessDispatcher, get_dispatcher

# Initialize logging first
configure_logging()

# Initialize Sentry (if SENTRY_DSN is set)
configure_sentry()

logger = get_logger(component="api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Let in-flight webhook work finish and release the queue connection
    dispatcher = get_dispatcher()
    if isinstance(dispatcher, InProcessDispatcher):
        await dispatcher.drain()
    elif isinstance(dispatcher, ArqDispatcher):
        await dispatcher.close()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Multi-tenant release tracking: deployments, promotions and signed webhooks",
    lifespan=lifespan,
)

# Add logging middleware FIRST (runs before other middleware)
app.add_middleware(LoggingMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ReleaseHubError)
async def release_hub_error_handler(request: Request, exc: ReleaseHubError):
    """Render domain errors as {code, message, timestamp} with the mapped status."""
    logger.info(
        "request_rejected",
        path=request.url.path,
        code=exc.code,
        status_code=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "code": exc.code,
            "message": exc.message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


# Include metrics endpoint FIRST (so it's always available)
app.include_router(metrics_router)

# Include deployment routes
app.include_router(deployments_router)

# Include webhook routes
app.include_router(webhooks_router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    return {
        "status": "healthy",
        "database": "connected"
    }
