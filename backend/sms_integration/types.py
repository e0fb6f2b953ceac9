"""
SMS Integration - Shared Types

Value objects passed between the provider drivers, the gateway and the
services that sit on top of them. Every driver speaks in these types so
the orchestration code never sees carrier payloads.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any


class SMSProviderType(str, Enum):
    """Supported carrier drivers"""
    TWILIO = "twilio"
    RINGCENTRAL = "ringcentral"


class DeliveryStatus(str, Enum):
    """Carrier delivery status, normalized across providers"""
    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    UNDELIVERED = "undelivered"
    FAILED = "failed"
    CANCELED = "canceled"
    READ = "read"
    # Carrier status with no normalized equivalent
    UNKNOWN = "unknown"


class ErrorType(str, Enum):
    """How a carrier error code should be treated by the retry loop"""
    RECOVERABLE = "recoverable"
    RATE_LIMIT = "rate_limit"
    PERMANENT = "permanent"


# Error codes raised locally, before or instead of a carrier call
NOT_INITIALIZED = "NOT_INITIALIZED"
INVALID_PHONE = "INVALID_PHONE"
INVALID_FROM_NUMBER = "INVALID_FROM_NUMBER"
AUTH_FAILED = "AUTH_FAILED"
NO_PROVIDER = "NO_PROVIDER"
UNKNOWN_ERROR = "UNKNOWN"

NO_PROVIDER_MESSAGE = "No SMS provider initialized"


@dataclass
class ProviderConfig:
    """
    Carrier selection plus credentials.

    Only the fields for the selected provider are required; the rest
    stay None.
    """
    provider: SMSProviderType
    from_number: Optional[str] = None
    # Twilio
    account_sid: Optional[str] = None
    auth_token: Optional[str] = None
    messaging_service_sid: Optional[str] = None
    # RingCentral
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    server_url: Optional[str] = None
    jwt: Optional[str] = None

    def public_view(self) -> Dict[str, Any]:
        """Non-sensitive view for status endpoints and logs."""
        return {
            "provider": self.provider.value,
            "from_number": self.from_number,
            "server_url": self.server_url,
            "uses_messaging_service": bool(self.messaging_service_sid),
        }


@dataclass
class SendSMSResult:
    """Result of a single send attempt"""
    success: bool
    message_id: Optional[str] = None
    provider_message_id: Optional[str] = None
    status: Optional[str] = None
    segments: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PhoneValidationResult:
    valid: bool
    formatted: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class InboundMessage:
    """An SMS received from an employee, as parsed from a carrier webhook"""
    message_id: str
    from_number: str
    to_number: str
    body: str
    num_media: int = 0
    media_urls: List[str] = field(default_factory=list)


@dataclass
class DeliveryStatusUpdate:
    """A delivery callback for a previously sent message"""
    message_id: str
    status: DeliveryStatus
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    # Carrier event time, None when the carrier does not send one
    timestamp: Optional[datetime] = None
    raw_status: Optional[str] = None
