"""FastAPI application setup and configuration."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from bus_booking_platform.config import settings
from bus_booking_platform.api import api_router
from bus_booking_platform.database import init_database, close_database
from bus_booking_platform.middleware import ErrorHandlerMiddleware, LoggingMiddleware
from bus_booking_platform.services.payment_gateway import PaynowGateway
from bus_booking_platform.utils.logging_config import setup_logging

# Set up logging
setup_logging(
    log_level="DEBUG" if settings.debug else settings.log_level,
    log_file="logs/bus_booking.log" if settings.environment == "production" else None,
    enable_json_logging=settings.enable_json_logging or settings.environment == "production",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    # Startup
    logger.info("Starting Bus Booking Platform")
    await init_database()
    app.state.payment_gateway = PaynowGateway.from_settings(settings)
    if not app.state.payment_gateway.is_configured:
        logger.warning("Paynow credentials missing; payment initiation will be refused")
    yield
    # Shutdown
    logger.info("Shutting down Bus Booking Platform")
    await app.state.payment_gateway.aclose()
    await close_database()
    logger.info("Database connections closed")

app = FastAPI(
    title="Bus Booking Platform API",
    description="""
    ## Bus Booking Platform

    Bus seat booking with mobile-money payments (EcoCash, OneMoney) through Paynow.

    ### Payment flow

    1. Book a seat: `POST /api/v1/tickets` creates a PENDING ticket. The seat is not held.
    2. Pay: `POST /api/v1/payments/initiate` sends a prompt to the customer's phone.
    3. Settle: the gateway calls `POST /api/v1/payments/webhook`; the service also polls.
       Whichever reports first wins, and the seat is claimed only then.
    4. Check: `GET /api/v1/payments/{reference}/status`.

    ### Authentication

    Send a JWT issued by the identity provider in the header
    `Authorization: Bearer <token>`.

    ### Error Handling

    ```json
    {
      "error": {
        "error_code": "ERROR_CODE",
        "message": "Human readable error message",
        "details": {},
        "suggestions": []
      },
      "error_id": "...",
      "timestamp": "..."
    }
    ```
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {
            "name": "tickets",
            "description": "Seat booking and ticket lookup"
        },
        {
            "name": "payments",
            "description": "Mobile-money payments, status checks and gateway callbacks"
        },
        {
            "name": "health",
            "description": "System health and monitoring endpoints"
        }
    ],
    lifespan=lifespan,
)

# Middleware (order matters: the last added runs first)

# 1. Logging middleware (first to capture all requests)
app.add_middleware(
    LoggingMiddleware,
    log_requests=settings.enable_request_logging,
    log_responses=settings.enable_request_logging,
)

# 2. Error handling middleware (catch all errors)
app.add_middleware(
    ErrorHandlerMiddleware,
    debug=settings.debug
)

# 3. CORS middleware
if settings.debug:
    # Development: Allow all origins
    cors_origins = ["*"]
    cors_allow_credentials = False  # Cannot use credentials with wildcard origins
else:
    cors_origins = settings.cors_origins
    cors_allow_credentials = settings.cors_allow_credentials

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=settings.cors_expose_headers
)

# Include API routes
app.include_router(api_router)


@app.get("/", tags=["health"])
async def root():
    """Basic information about the API."""
    return {
        "message": "Bus Booking Platform API",
        "version": "1.0.0",
        "docs_url": "/docs",
        "status": "operational"
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Basic health check for uptime monitoring."""
    return {"status": "healthy", "service": "bus-booking-platform"}


@app.get("/health/detailed", tags=["health"])
async def detailed_health_check(request: Request):
    """
    Detailed health check with service dependencies:
    database, Redis cache and the payment gateway circuit.
    """
    from bus_booking_platform.utils.health_check import get_health_status
    return await get_health_status(getattr(request.app.state, "payment_gateway", None))


@app.get("/metrics", tags=["health"])
async def get_metrics():
    """Circuit breaker statistics."""
    from bus_booking_platform.utils.circuit_breaker import get_circuit_breaker_registry

    return {"circuit_breakers": get_circuit_breaker_registry().get_all_stats()}
