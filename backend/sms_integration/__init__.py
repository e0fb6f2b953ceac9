"""
SMS Integration Module

Carrier drivers (Twilio, RingCentral) behind a single gateway, plus the
pieces that do not need any I/O: inbound command parsing and the outbound
token-bucket limiter.

Usage:
    from sms_integration import SMSGateway, ProviderConfig, SMSProviderType

    gateway = SMSGateway()
    await gateway.initialize(ProviderConfig(
        provider=SMSProviderType.TWILIO,
        account_sid="AC...",
        auth_token="...",
        from_number="+15551234567",
    ))
    result = await gateway.send_sms_with_retry("+15557654321", "Hello!")

Environment Variables (see config.Settings):
    SMS_PROVIDER: twilio | ringcentral
    TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_FROM_NUMBER,
    TWILIO_MESSAGING_SERVICE_SID
    RINGCENTRAL_CLIENT_ID, RINGCENTRAL_CLIENT_SECRET, RINGCENTRAL_JWT,
    RINGCENTRAL_FROM_NUMBER, RINGCENTRAL_SERVER_URL
"""

from .types import (
    SMSProviderType,
    DeliveryStatus,
    ErrorType,
    ProviderConfig,
    SendSMSResult,
    PhoneValidationResult,
    InboundMessage,
    DeliveryStatusUpdate,
)
from .base import SMSProvider, normalize_phone_number, mask_phone
from .twilio_provider import TwilioProvider
from .ringcentral_provider import RingCentralProvider
from .gateway import SMSGateway, create_provider
from .rate_limiter import TokenBucket
from .commands import CommandType, ParsedCommand, parse_inbound_command

__all__ = [
    'SMSProviderType',
    'DeliveryStatus',
    'ErrorType',
    'ProviderConfig',
    'SendSMSResult',
    'PhoneValidationResult',
    'InboundMessage',
    'DeliveryStatusUpdate',
    'SMSProvider',
    'normalize_phone_number',
    'mask_phone',
    'TwilioProvider',
    'RingCentralProvider',
    'SMSGateway',
    'create_provider',
    'TokenBucket',
    'CommandType',
    'ParsedCommand',
    'parse_inbound_command',
]
