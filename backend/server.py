from fastapi import FastAPI, APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import logging
import time
from pathlib import Path
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import traceback

# Load environment variables first
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Import configuration
from config import Settings, get_settings, get_cors_config, validate_environment

# Import logging and error tracking
from logging_config import setup_logging, set_request_context, clear_request_context
from sentry_integration import init_sentry, capture_exception

# Import storage, SMS services and routers
from database import init_db, close_db, get_engine, get_session_factory
from services.audit import AuditLogger
from services.sms_notifications import SMSNotificationService
from services.sms_webhooks import SMSWebhookService
from services.sql_storage import SQLAlchemyStorage
from services.storage import InMemoryStorage
from sms_integration import SMSGateway, TokenBucket
from routers import sms_router, webhooks_router

logger = logging.getLogger(__name__)


async def build_services(app: FastAPI, settings: Settings, storage=None, gateway: Optional[SMSGateway] = None):
    """
    Wire storage, gateway and SMS services onto app.state.

    Storage is PostgreSQL when DATABASE_URL is set, in-memory otherwise.
    """
    if storage is None:
        if settings.DATABASE_URL:
            await init_db()
            storage = SQLAlchemyStorage(get_session_factory())
            logger.info("PostgreSQL storage initialized")
        else:
            storage = InMemoryStorage()
            logger.warning("DATABASE_URL not set - using in-memory storage")

    gateway = gateway or SMSGateway()
    audit = AuditLogger(storage)
    rate_limiter = TokenBucket(
        rate=settings.SMS_RATE_LIMIT_PER_SECOND,
        capacity=settings.SMS_RATE_LIMIT_BURST,
    )
    notifications = SMSNotificationService(storage, gateway, audit, rate_limiter=rate_limiter, env=settings)

    app.state.settings = settings
    app.state.storage = storage
    app.state.gateway = gateway
    app.state.audit = audit
    app.state.notifications = notifications
    app.state.webhooks = SMSWebhookService(storage, gateway, audit)

    if await notifications.initialize_provider():
        logger.info(f"SMS provider ready: {gateway.get_provider_type().value}")
    else:
        logger.warning("SMS provider not initialized - sending disabled until configured")


def create_app(
    settings: Optional[Settings] = None,
    storage=None,
    gateway: Optional[SMSGateway] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use (cached environment settings when omitted)
        storage: Storage backend override
        gateway: SMS gateway override

    Returns:
        Configured FastAPI app
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler"""
        # Startup
        logger.info("=" * 60)
        logger.info("Starting ShiftConnect SMS Gateway...")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"Debug Mode: {settings.debug_enabled}")
        logger.info("=" * 60)

        # Validate environment
        env_status = validate_environment(settings)
        if not env_status["valid"]:
            for error in env_status["errors"]:
                logger.error(f"Configuration Error: {error}")
            if settings.is_production:
                raise RuntimeError("Cannot start in production with invalid configuration")

        for warning in env_status.get("warnings", []):
            logger.warning(f"Configuration Warning: {warning}")

        await build_services(app, settings, storage=storage, gateway=gateway)
        logger.info("ShiftConnect SMS Gateway started successfully")

        yield

        # Shutdown
        logger.info("Shutting down ShiftConnect SMS Gateway...")
        await app.state.gateway.dispose()
        if settings.DATABASE_URL and storage is None:
            await close_db()

    app = FastAPI(
        title=settings.API_TITLE,
        description="""
        SMS gateway for ShiftConnect shift notifications.

        ## Features

        ### SMS Admin (/api/sms)
        - Provider status and test sends
        - Direct and bulk sends
        - Shift reminder pass
        - Template management and preview
        - RingCentral subscriptions

        ### Carrier Webhooks (/api/webhooks)
        - Delivery status callbacks
        - Inbound commands (YES/NO/STATUS/SHIFTS/CONFIRM/CANCEL/HELP/STOP/START)
        """,
        version=settings.API_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs" if settings.debug_enabled else None,
        redoc_url="/api/redoc" if settings.debug_enabled else None,
    )

    # Create a router with the /api prefix
    api_router = APIRouter(prefix="/api")

    # ==================== HEALTH CHECK ENDPOINTS ====================

    @api_router.get("/", tags=["Health"])
    async def root():
        """Basic health check - returns 200 if service is running"""
        return {
            "message": "ShiftConnect SMS Gateway",
            "status": "healthy",
            "version": settings.API_VERSION,
            "environment": settings.ENVIRONMENT,
        }

    @api_router.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """
        Detailed health check for load balancers and uptime monitors.

        Returns:
        - 200: All systems operational
        - 503: Database unavailable
        """
        health_status = {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": settings.API_VERSION,
            "environment": settings.ENVIRONMENT,
            "checks": {}
        }

        if settings.DATABASE_URL and storage is None:
            try:
                from sqlalchemy import text

                async with get_engine().begin() as conn:
                    await conn.execute(text("SELECT 1"))

                health_status["checks"]["database"] = {"status": "connected", "type": "postgresql"}
            except Exception as e:
                logger.error(f"Database health check failed: {e}")
                health_status["status"] = "unhealthy"
                health_status["checks"]["database"] = {"status": "disconnected", "error": str(e)}
        else:
            health_status["checks"]["database"] = {"status": "in_memory"}

        gateway_state = getattr(request.app.state, "gateway", None)
        provider_type = gateway_state.get_provider_type() if gateway_state else None
        health_status["checks"]["sms_provider"] = {
            "status": "ready" if gateway_state and gateway_state.is_ready() else "not_initialized",
            "provider": provider_type.value if provider_type else None,
        }

        env_status = validate_environment(settings)
        health_status["checks"]["configuration"] = {
            "status": "valid" if env_status["valid"] else "invalid",
            "warnings": len(env_status.get("warnings", [])),
            "errors": len(env_status.get("errors", []))
        }

        if health_status["status"] == "unhealthy":
            raise HTTPException(status_code=503, detail=health_status)

        return health_status

    @api_router.get("/health/live", tags=["Health"])
    async def liveness_check():
        """
        Kubernetes liveness probe.
        Returns 200 if the process is running (doesn't check dependencies).
        """
        return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}

    @api_router.get("/config/status", tags=["Health"])
    async def config_status():
        """Configuration status check (non-sensitive)."""
        env_status = validate_environment(settings)

        return {
            "environment": settings.ENVIRONMENT,
            "debug": settings.debug_enabled,
            "cors_origins_count": len(settings.cors_origins_list),
            "configuration_valid": env_status["valid"],
            "warnings": env_status.get("warnings", []),
            "variables": env_status.get("variables", {}),
            # Don't expose actual errors in production
            "errors": env_status.get("errors", []) if not settings.is_production else ["Hidden in production"]
        }

    api_router.include_router(sms_router)
    api_router.include_router(webhooks_router)

    app.include_router(api_router)

    # ==================== MIDDLEWARE ====================

    app.add_middleware(CORSMiddleware, **get_cors_config(settings))

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing information"""
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID", f"req-{int(start_time * 1000)}")
        set_request_context(request_id)

        if settings.debug_enabled:
            logger.debug(f"[{request_id}] {request.method} {request.url.path}")

        try:
            response = await call_next(request)

            process_time = time.time() - start_time
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))

            if settings.debug_enabled or response.status_code >= 400:
                logger.info(f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({process_time:.3f}s)")

            return response
        except Exception as e:
            logger.error(f"[{request_id}] Request failed: {str(e)}")
            raise
        finally:
            clear_request_context()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions"""
        logger.error(f"Unhandled exception: {exc}")
        if settings.debug_enabled:
            logger.error(traceback.format_exc())
        if settings.SENTRY_DSN:
            capture_exception(exc, path=request.url.path, method=request.method)

        # Don't expose internal errors in production
        if settings.is_production:
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal server error"}
            )
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "type": type(exc).__name__,
                "traceback": traceback.format_exc() if settings.debug_enabled else None
            }
        )

    return app


# Get settings
settings = get_settings()

# Configure structured logging
# Use JSON format in production, plain text in development
setup_logging(
    level=settings.LOG_LEVEL,
    json_format=settings.is_production,
)

# Initialize Sentry error tracking
if settings.SENTRY_DSN:
    init_sentry(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=0.1 if settings.is_production else 0.0,
    )

app = create_app(settings)
