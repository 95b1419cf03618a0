"""
Main FastAPI application for the Smart Farm Advisory API.

This module contains the application instance, the error handlers that
render every failure as ``{"error", "detail", "status_code"}``, and the
root and health endpoints.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from agriadvisor.config import settings
from agriadvisor.core.exceptions import AdvisorError, MalformedInputError
from agriadvisor.dependencies.services import get_services
from agriadvisor.routers.analytics import router as analytics_router
from agriadvisor.routers.farm import router as farm_router
from agriadvisor.routers.iot import router as iot_router
from agriadvisor.routers.market import router as market_router
from agriadvisor.routers.ml import router as ml_router
from agriadvisor.routers.notifications import router as notifications_router
from agriadvisor.routers.weather import router as weather_router
from agriadvisor.services import ServiceContainer, build_services
from agriadvisor.utils.logging_config import get_logger, setup_logging

# Initialize logging
setup_logging()
logger = get_logger(__name__)

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.

    Builds the service container once; request handlers reach it through
    ``get_services``.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"{settings.SERVER_NAME} - Application starting up")
    logger.info(f"Environment: {'Development' if settings.DEBUG else 'Production'}")
    logger.info(f"Key-value store: redis://{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}")
    logger.info("=" * 60)

    app.state.services = build_services(settings)

    yield

    # Shutdown
    logger.info("=" * 60)
    logger.info(f"{settings.SERVER_NAME} - Application shutting down")
    logger.info("=" * 60)


app = FastAPI(
    title=settings.SERVER_NAME,
    description="Weather, IoT, market and crop advisory backend for farm dashboards",
    version=settings.VERSION,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


def error_response(kind: str, detail, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": kind, "detail": detail, "status_code": status_code},
    )


@app.exception_handler(AdvisorError)
async def advisor_exception_handler(request: Request, exc: AdvisorError):
    """Render domain errors with their own kind and status."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies, paths and queries."""
    return error_response(
        MalformedInputError.kind,
        jsonable_encoder(exc.errors()),
        422,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return error_response(
        AdvisorError.kind,
        "Internal server error",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


# Set up CORS
if settings.BACKEND_CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.BACKEND_CORS_ORIGINS],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.get("/")
@limiter.limit(f"{settings.RATE_LIMIT_REQUESTS}/{settings.RATE_LIMIT_WINDOW}seconds")
async def root(request: Request):
    """
    Root endpoint returning API information.

    Rate limit: RATE_LIMIT_REQUESTS requests per RATE_LIMIT_WINDOW seconds
    """
    return {
        "message": f"Welcome to the {settings.SERVER_NAME}",
        "version": settings.VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
    }


@app.get("/health")
@limiter.limit("60/minute")  # More generous limit for health checks
async def health_check(request: Request, services: ServiceContainer = Depends(get_services)):
    """
    Health check endpoint.

    Reports the key-value store connection and the active weather source.
    The API stays ``healthy`` without the store; it serves fallbacks.

    Rate limit: 60 requests per minute
    """
    return {
        "status": "healthy",
        "services": {
            "kvStore": services.store.health_check(),
            "weather": services.weather.provider.name,
            "iot": "active",
            "market": "active",
            "ml": "active",
            "notifications": "active",
        },
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# Include routers
app.include_router(weather_router, prefix=settings.API_PREFIX)
app.include_router(ml_router, prefix=settings.API_PREFIX)
app.include_router(iot_router, prefix=settings.API_PREFIX)
app.include_router(market_router, prefix=settings.API_PREFIX)
app.include_router(farm_router, prefix=settings.API_PREFIX)
app.include_router(notifications_router, prefix=settings.API_PREFIX)
app.include_router(analytics_router, prefix=settings.API_PREFIX)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    description = """
## Smart Farm Advisory API

Backend for the farm-advisory dashboard.

### Features

- **Weather**: current conditions, forecasts and agronomic indices (GDD, chill hours, ET₀, pest and disease risk)
- **IoT Sensors**: soil and climate telemetry with threshold alerts, daily aggregates and a farm health score
- **Market Intelligence**: crop prices, trends and demand/supply analysis
- **Crop Intelligence**: crop recommendations, disease diagnosis and yield prediction
- **Notifications**: subscriptions with quiet hours, push/email/SMS fan-out and per-user inboxes

All responses use camelCase field names. Errors are returned as
`{"error": kind, "detail": ..., "status_code": code}`.
    """

    openapi_schema = get_openapi(
        title=settings.SERVER_NAME,
        version=settings.VERSION,
        description=description,
        routes=app.routes,
    )

    openapi_schema["tags"] = [
        {"name": "Weather", "description": "Weather observations, forecasts and agronomic indices"},
        {"name": "IoT Sensors", "description": "Sensor ingest, latest readings, history and simulation"},
        {"name": "Market Intelligence", "description": "Synthetic market prices and trend analysis"},
        {"name": "Crop Intelligence", "description": "Crop recommendations, diagnosis and yield prediction"},
        {"name": "Farm Profiles", "description": "Farm profile storage"},
        {"name": "Notifications", "description": "Subscriptions, alerts and inboxes"},
        {"name": "Analytics", "description": "Per-farm dashboard summary"},
    ]

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi
