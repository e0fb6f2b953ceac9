"""
Audit Logging for ShiftConnect SMS

Records business-relevant SMS events for operators:
- Outbound sends and failures, delivery confirmations
- Inbound replies and opt-in/opt-out changes
- Shift interest, confirmation and cancellation made over SMS
- Admin test sends and bulk sends

The logger is a side-effect sink: a failure to persist an entry is logged
and swallowed, it never reaches the caller.

Storage: the configured SMSStorage (audit_logs table / in-memory list)
"""

from typing import Optional, Dict, Any, Union
import logging
from enum import Enum
from pydantic import BaseModel

from models import AuditLog

logger = logging.getLogger(__name__)


# ==================== ENUMS ====================

class AuditAction(str, Enum):
    """Auditable SMS actions"""

    # Outbound / delivery
    SMS_SENT = "sms_sent"
    SMS_BULK_SENT = "sms_bulk_sent"
    SMS_DELIVERED = "sms_delivered"
    SMS_FAILED = "sms_failed"
    SMS_TEST = "sms_test"

    # Inbound
    SMS_INBOUND = "sms_inbound"
    SMS_OPT_IN = "sms_opt_in"
    SMS_OPT_OUT = "sms_opt_out"

    # Shift actions taken by SMS reply
    SHIFT_INTEREST_VIA_SMS = "shift_interest_via_sms"
    SHIFT_INTEREST_DECLINED_VIA_SMS = "shift_interest_declined_via_sms"
    SHIFT_CONFIRMED_VIA_SMS = "shift_confirmed_via_sms"
    SHIFT_INTEREST_CANCELLED_VIA_SMS = "shift_interest_cancelled_via_sms"
    SHIFT_CANCELLED_VIA_SMS = "shift_cancelled_via_sms"

    # Admin
    SETTING_UPDATED = "setting_updated"


class TargetType(str, Enum):
    """What an audit entry is about"""
    SHIFT = "shift"
    EMPLOYEE = "employee"
    MESSAGE = "message"
    SETTING = "setting"
    SMS_PROVIDER = "sms_provider"


class AuditActor(BaseModel):
    """The admin user behind an action. None means the system did it."""
    id: Optional[str] = None
    name: str = "System"


# ==================== AUDIT LOGGER ====================

class AuditLogger:
    """
    Audit sink backed by the SMS storage.

    Usage:
        audit = AuditLogger(storage)
        await audit.log(
            action=AuditAction.SMS_OPT_OUT,
            target_type=TargetType.EMPLOYEE,
            target_id=employee.id,
            target_name=employee.name,
            details={"method": "sms"},
        )
    """

    def __init__(self, storage):
        self.storage = storage

    async def log(
        self,
        action: Union[AuditAction, str],
        target_type: Union[TargetType, str],
        actor: Optional[AuditActor] = None,
        target_id: Optional[str] = None,
        target_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        request: Optional[Any] = None  # FastAPI Request
    ) -> Optional[AuditLog]:
        """
        Record an audit entry. Never raises.

        Args:
            action: The action performed
            target_type: Type of the affected record
            actor: Admin who performed it (None for system/SMS actions)
            target_id: ID of the affected record
            target_name: Human-readable label for the affected record
            details: Extra context
            ip_address: Client IP (taken from request when omitted)
            request: FastAPI Request

        Returns:
            The stored entry, or None if persisting failed
        """
        action_str = action.value if isinstance(action, AuditAction) else action
        target_type_str = target_type.value if isinstance(target_type, TargetType) else target_type

        if request is not None and not ip_address:
            ip_address = get_client_ip(request)

        try:
            entry = AuditLog(
                action=action_str,
                actor_id=actor.id if actor else None,
                actor_name=actor.name if actor else "System",
                target_type=target_type_str,
                target_id=str(target_id) if target_id else None,
                target_name=target_name,
                details=details,
                ip_address=ip_address,
            )
            stored = await self.storage.create_audit_log(entry)
        except Exception as e:
            logger.error(f"Failed to create audit log for {action_str}: {e}")
            return None

        logger.info(
            f"AUDIT: {action_str} on {target_type_str}"
            f"{f'/{target_id}' if target_id else ''}"
            f" by {actor.name if actor else 'System'}"
        )
        return stored


def get_client_ip(request) -> Optional[str]:
    """Extract client IP from a request, honouring proxy headers."""
    try:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()

        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip

        if getattr(request, "client", None):
            return request.client.host
    except AttributeError:
        pass
    return None
