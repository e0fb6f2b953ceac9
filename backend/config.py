"""
ShiftConnect SMS - Configuration Management

Centralized configuration for environment variables, carrier credentials,
CORS, and deployment settings.

Organization settings stored in the database (see services.sms_notifications)
take precedence over these values at runtime; the environment provides the
defaults.
"""

from typing import List, Optional
from pydantic import Field
from pydantic_settings import BaseSettings
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="",
        description="PostgreSQL connection URL (postgresql+asyncpg://...). In-memory storage when unset"
    )
    DATABASE_SSL: bool = Field(
        default=True,
        description="Require SSL for the database connection"
    )

    # ==================== ADMIN API ====================
    SMS_ADMIN_API_KEY: str = Field(
        default="",
        description="API key required in X-Admin-Api-Key for /api/sms admin routes"
    )

    # ==================== SMS PROVIDER ====================
    SMS_PROVIDER: str = Field(
        default="twilio",
        description="Active carrier: twilio or ringcentral"
    )
    SMS_ENABLED: bool = Field(
        default=False,
        description="Master switch for outbound SMS notifications"
    )

    # Twilio
    TWILIO_ACCOUNT_SID: str = Field(default="")
    TWILIO_AUTH_TOKEN: str = Field(default="")
    TWILIO_FROM_NUMBER: str = Field(default="")
    TWILIO_MESSAGING_SERVICE_SID: str = Field(
        default="",
        description="Optional Messaging Service used instead of the from number"
    )

    # RingCentral
    RINGCENTRAL_CLIENT_ID: str = Field(default="")
    RINGCENTRAL_CLIENT_SECRET: str = Field(default="")
    RINGCENTRAL_SERVER_URL: str = Field(default="https://platform.ringcentral.com")
    RINGCENTRAL_JWT: str = Field(default="")
    RINGCENTRAL_FROM_NUMBER: str = Field(default="")
    RINGCENTRAL_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="HTTP timeout for RingCentral API calls"
    )

    # ==================== SMS BEHAVIOUR ====================
    APP_URL: str = Field(
        default="",
        description="Public app URL used for claim links in messages"
    )
    WEBHOOK_BASE_URL: str = Field(
        default="",
        description="Public base URL carriers call back on (status callbacks, subscriptions)"
    )
    SMS_QUIET_HOURS_START: str = Field(default="22:00")
    SMS_QUIET_HOURS_END: str = Field(default="07:00")
    SMS_RESPECT_QUIET_HOURS: bool = Field(default=True)
    SMS_MAX_RETRIES: int = Field(
        default=3,
        description="Retries after the first attempt for high-value sends"
    )
    SMS_RETRY_INITIAL_DELAY_MS: int = Field(default=1000)
    SMS_RATE_LIMIT_PER_SECOND: float = Field(
        default=20.0,
        description="Token refill rate for broadcast and bulk sends"
    )
    SMS_RATE_LIMIT_BURST: int = Field(default=5)
    SHIFT_REMINDER_HOURS: int = Field(default=24)

    # ==================== CORS ====================
    CORS_ORIGINS: str = Field(
        default="",
        description="Comma-separated list of allowed origins"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(
        default="ShiftConnect SMS Gateway",
        description="API title for OpenAPI docs"
    )
    API_VERSION: str = Field(
        default="1.0.0",
        description="API version"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Parse CORS_ORIGINS into a list with environment-aware defaults.

        Development/Staging also allow localhost origins.
        """
        if self.CORS_ORIGINS and self.CORS_ORIGINS != "*":
            origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
        else:
            origins = []

        dev_origins = [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://localhost:5000",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ]

        all_origins = set(origins)
        if not self.is_production:
            all_origins.update(dev_origins)

        return sorted(all_origins)

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    @property
    def provider_credentials_missing(self) -> List[str]:
        """Names of credentials the selected provider still needs."""
        if self.SMS_PROVIDER == "ringcentral":
            required = [
                ("RINGCENTRAL_CLIENT_ID", self.RINGCENTRAL_CLIENT_ID),
                ("RINGCENTRAL_CLIENT_SECRET", self.RINGCENTRAL_CLIENT_SECRET),
                ("RINGCENTRAL_JWT", self.RINGCENTRAL_JWT),
                ("RINGCENTRAL_FROM_NUMBER", self.RINGCENTRAL_FROM_NUMBER),
            ]
        else:
            required = [
                ("TWILIO_ACCOUNT_SID", self.TWILIO_ACCOUNT_SID),
                ("TWILIO_AUTH_TOKEN", self.TWILIO_AUTH_TOKEN),
                ("TWILIO_FROM_NUMBER", self.TWILIO_FROM_NUMBER),
            ]
        return [name for name, value in required if not value]

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if self.SMS_PROVIDER not in ("twilio", "ringcentral"):
            errors.append(f"SMS_PROVIDER must be twilio or ringcentral, got '{self.SMS_PROVIDER}'")

        if self.is_production:
            if not self.DATABASE_URL:
                errors.append("DATABASE_URL is required in production")

            if not self.SMS_ADMIN_API_KEY:
                errors.append("SMS_ADMIN_API_KEY is required in production")
            elif len(self.SMS_ADMIN_API_KEY) < 32:
                errors.append("SMS_ADMIN_API_KEY should be at least 32 characters")

            if not self.WEBHOOK_BASE_URL:
                errors.append("WEBHOOK_BASE_URL is required in production")

            if self.CORS_ORIGINS == "*":
                errors.append("CORS_ORIGINS cannot be '*' in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"SMS provider: {settings.SMS_PROVIDER} (enabled: {settings.SMS_ENABLED})")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


# ==================== CORS CONFIGURATION ====================

def get_cors_config(settings: Optional[Settings] = None) -> dict:
    """
    Get CORS middleware configuration.

    Returns configuration dict for CORSMiddleware.
    """
    settings = settings or get_settings()

    return {
        "allow_origins": settings.cors_origins_list,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        "allow_headers": [
            "Content-Type",
            "Accept",
            "Origin",
            "X-Requested-With",
            "X-Request-ID",
            "X-Admin-Api-Key",
        ],
        "expose_headers": ["X-Request-ID"],
        "max_age": 600,  # Cache preflight for 10 minutes
    }


# ==================== ENVIRONMENT VALIDATION ====================

def validate_environment(settings: Optional[Settings] = None) -> dict:
    """
    Validate environment variables.

    Returns a status dict with validation results.
    """
    settings = settings or get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
        "variables": {}
    }

    missing = settings.provider_credentials_missing
    if settings.SMS_ENABLED and missing:
        status["errors"].append(
            f"SMS is enabled but {settings.SMS_PROVIDER} credentials are incomplete: {', '.join(missing)}"
        )
        status["valid"] = False
    elif missing:
        status["warnings"].append(f"{settings.SMS_PROVIDER} credentials incomplete - SMS sending unavailable")

    optional_vars = [
        ("DATABASE_URL", settings.DATABASE_URL, "Using in-memory storage"),
        ("SMS_ADMIN_API_KEY", settings.SMS_ADMIN_API_KEY, "Admin SMS routes are locked"),
        ("WEBHOOK_BASE_URL", settings.WEBHOOK_BASE_URL, "Delivery status callbacks disabled"),
        ("APP_URL", settings.APP_URL, "Claim links will be empty"),
        ("SENTRY_DSN", settings.SENTRY_DSN, "Error tracking disabled"),
    ]

    for name, value, warning in optional_vars:
        if not value:
            status["warnings"].append(warning)
            status["variables"][name] = "⚠ Not set"
        else:
            status["variables"][name] = "✓ Set"

    errors = settings.validate_production_config()
    if errors:
        status["errors"].extend(errors)
        status["valid"] = False

    return status
