"""
Admin API Key Authentication

Protects the /api/sms admin routes with a shared API key. The key is
compared in constant time; several comma-separated keys may be configured
to allow rotation.

Environment Variables:
    SMS_ADMIN_API_KEY: Admin key, or comma-separated keys during rotation

Usage:
    from middleware.admin_auth import require_admin

    @router.post("/sms/test")
    async def send_test(actor: AuditActor = Depends(require_admin)):
        # actor.name is taken from X-Admin-Name for the audit trail
        pass

Headers:
    X-Admin-Api-Key: <api_key>
    X-Admin-Name: <display name> (optional, for audit logs)
"""

import secrets
import logging
from typing import Optional, Set

from fastapi import Request, HTTPException, status, Depends
from fastapi.security import APIKeyHeader

from config import Settings, get_settings
from services.audit import AuditActor

logger = logging.getLogger(__name__)

# Header names
API_KEY_HEADER = "X-Admin-Api-Key"
ADMIN_NAME_HEADER = "X-Admin-Name"


def get_valid_api_keys(settings: Settings) -> Set[str]:
    keys = {key.strip() for key in settings.SMS_ADMIN_API_KEY.split(",") if key.strip()}
    if not keys:
        logger.warning("No admin API key configured - admin SMS routes are locked")
    return keys


def validate_admin_key(api_key: Optional[str], settings: Settings) -> bool:
    """
    Validate an admin API key.

    Args:
        api_key: The API key to validate
        settings: Settings holding SMS_ADMIN_API_KEY

    Returns:
        True if valid, False otherwise
    """
    if not api_key:
        return False

    for valid_key in get_valid_api_keys(settings):
        if secrets.compare_digest(api_key.encode(), valid_key.encode()):
            return True
    return False


def generate_admin_api_key(length: int = 48) -> str:
    """Generate a new random admin API key."""
    return secrets.token_urlsafe(length)


# FastAPI dependency for API key header
api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


async def require_admin(
    request: Request,
    api_key: Optional[str] = Depends(api_key_header)
) -> AuditActor:
    """
    FastAPI dependency authenticating admin requests.

    Returns:
        AuditActor for the audit trail

    Raises:
        HTTPException: 401 if the key is missing or wrong
    """
    settings = getattr(request.app.state, "settings", None) or get_settings()
    admin_name = request.headers.get(ADMIN_NAME_HEADER, "Admin")

    if not api_key:
        logger.warning(f"Missing admin API key ({admin_name})")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing admin API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    if not validate_admin_key(api_key, settings):
        logger.warning(f"Invalid admin API key ({admin_name}), key ending: ...{api_key[-4:]}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    return AuditActor(id=f"apikey:...{api_key[-4:]}", name=admin_name)
