"""
SMS Integration - Twilio Driver

Sends through the Twilio REST API using the official SDK. The SDK is
synchronous, so carrier calls are pushed to a worker thread.

Webhooks from Twilio are form-encoded and expect a TwiML reply.
"""

import asyncio
import logging
from typing import Optional, Dict, Any
from xml.sax.saxutils import escape

from twilio.rest import Client as TwilioClient
from twilio.base.exceptions import TwilioRestException
from twilio.request_validator import RequestValidator

from sms_integration.base import SMSProvider, mask_phone
from sms_integration.types import (
    SMSProviderType,
    ProviderConfig,
    SendSMSResult,
    InboundMessage,
    DeliveryStatusUpdate,
    DeliveryStatus,
    ErrorType,
    NOT_INITIALIZED,
    INVALID_PHONE,
    INVALID_FROM_NUMBER,
    UNKNOWN_ERROR,
)

logger = logging.getLogger(__name__)

TWIML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>'
XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}

TWILIO_ERROR_TABLE: Dict[str, ErrorType] = {
    # Too many requests
    "20429": ErrorType.RATE_LIMIT,
    # Queue overflow, account suspended, unreachable handset, landline or
    # unreachable carrier, carrier violation
    "30001": ErrorType.RECOVERABLE,
    "30002": ErrorType.RECOVERABLE,
    "30003": ErrorType.RECOVERABLE,
    "30006": ErrorType.RECOVERABLE,
    "30007": ErrorType.RECOVERABLE,
    # Invalid To/From, region not enabled, unsubscribed recipient,
    # not a mobile number, blocked, unknown destination, unknown error
    "21211": ErrorType.PERMANENT,
    "21212": ErrorType.PERMANENT,
    "21408": ErrorType.PERMANENT,
    "21610": ErrorType.PERMANENT,
    "21614": ErrorType.PERMANENT,
    "30004": ErrorType.PERMANENT,
    "30005": ErrorType.PERMANENT,
    "30008": ErrorType.PERMANENT,
}

TWILIO_STATUS_MAP: Dict[str, DeliveryStatus] = {
    "accepted": DeliveryStatus.QUEUED,
    "scheduled": DeliveryStatus.QUEUED,
    "queued": DeliveryStatus.QUEUED,
    "sending": DeliveryStatus.SENDING,
    "sent": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "undelivered": DeliveryStatus.UNDELIVERED,
    "failed": DeliveryStatus.FAILED,
    "canceled": DeliveryStatus.CANCELED,
    "read": DeliveryStatus.READ,
}


def map_twilio_status(status: Optional[str]) -> DeliveryStatus:
    return TWILIO_STATUS_MAP.get((status or "").lower(), DeliveryStatus.UNKNOWN)


class TwilioProvider(SMSProvider):
    """
    Twilio driver.

    Required config: account_sid, auth_token, from_number.
    When messaging_service_sid is set it is used instead of from_number
    as the sender on outbound messages.
    """

    provider_type = SMSProviderType.TWILIO
    ERROR_TABLE = TWILIO_ERROR_TABLE

    def __init__(self, sleep=None, client_factory=None):
        super().__init__(sleep=sleep)
        self._client_factory = client_factory or TwilioClient
        self._client: Optional[TwilioClient] = None
        self._validator: Optional[RequestValidator] = None

    def initialize(self, config: ProviderConfig) -> bool:
        missing = [
            name for name in ("account_sid", "auth_token", "from_number")
            if not getattr(config, name)
        ]
        if missing:
            logger.error(f"Twilio configuration incomplete, missing: {', '.join(missing)}")
            self._initialized = False
            return False

        try:
            self._client = self._client_factory(config.account_sid, config.auth_token)
        except Exception as e:
            logger.error(f"Failed to initialize Twilio client: {e}")
            self._initialized = False
            return False

        self._validator = RequestValidator(config.auth_token)
        self.config = config
        self._initialized = True
        logger.info(f"Twilio provider initialized (from: {mask_phone(config.from_number)})")
        return True

    async def dispose(self) -> None:
        self._client = None
        self._validator = None
        self.config = None
        await super().dispose()

    async def send_sms(
        self,
        to: str,
        body: str,
        status_callback_url: Optional[str] = None
    ) -> SendSMSResult:
        if not self._initialized or not self._client:
            return SendSMSResult(
                success=False,
                error_code=NOT_INITIALIZED,
                error_message="Twilio provider not initialized"
            )

        destination = self.validate_phone_number(to)
        if not destination.valid:
            return SendSMSResult(
                success=False,
                error_code=INVALID_PHONE,
                error_message=f"Invalid destination number: {destination.error}"
            )

        sender = self.validate_phone_number(self.config.from_number)
        if not sender.valid:
            return SendSMSResult(
                success=False,
                error_code=INVALID_FROM_NUMBER,
                error_message="Configured from number is not a valid E.164 number"
            )

        params: Dict[str, Any] = {"body": body, "to": destination.formatted}
        if self.config.messaging_service_sid:
            params["messaging_service_sid"] = self.config.messaging_service_sid
        else:
            params["from_"] = sender.formatted
        if status_callback_url:
            params["status_callback"] = status_callback_url

        try:
            logger.info(f"Sending SMS via Twilio to {mask_phone(destination.formatted)}")
            message = await asyncio.to_thread(self._client.messages.create, **params)
        except TwilioRestException as e:
            logger.error(f"Twilio API error: {e.code} - {e.msg}")
            return SendSMSResult(
                success=False,
                error_code=str(e.code) if e.code is not None else UNKNOWN_ERROR,
                error_message=e.msg
            )
        except Exception as e:
            logger.error(f"Unexpected error sending SMS via Twilio: {e}")
            return SendSMSResult(
                success=False,
                error_code=UNKNOWN_ERROR,
                error_message=str(e)
            )

        logger.info(f"SMS accepted by Twilio: {message.sid}")
        return SendSMSResult(
            success=True,
            message_id=message.sid,
            provider_message_id=message.sid,
            status=message.status,
            segments=int(message.num_segments or 1)
        )

    def validate_webhook_signature(
        self,
        signature: Optional[str],
        url: str,
        params: Dict[str, Any]
    ) -> bool:
        if not self._validator or not signature:
            return False
        try:
            return bool(self._validator.validate(url, params, signature))
        except Exception as e:
            logger.warning(f"Twilio signature validation error: {e}")
            return False

    def parse_inbound_message(self, raw: Dict[str, Any]) -> Optional[InboundMessage]:
        try:
            num_media = int(raw.get("NumMedia") or 0)
            media_urls = [
                raw[f"MediaUrl{i}"] for i in range(num_media)
                if raw.get(f"MediaUrl{i}")
            ]
            return InboundMessage(
                message_id=raw.get("MessageSid") or raw.get("SmsSid") or "",
                from_number=raw.get("From", ""),
                to_number=raw.get("To", ""),
                body=raw.get("Body", ""),
                num_media=num_media,
                media_urls=media_urls,
            )
        except (TypeError, ValueError, AttributeError) as e:
            logger.error(f"Failed to parse Twilio inbound payload: {e}")
            return None

    def parse_delivery_status(self, raw: Dict[str, Any]) -> Optional[DeliveryStatusUpdate]:
        try:
            message_id = raw.get("MessageSid") or raw.get("SmsSid")
            if not message_id:
                return None
            error_code = raw.get("ErrorCode")
            raw_status = raw.get("MessageStatus") or raw.get("SmsStatus")
            # Status callbacks carry no event time
            return DeliveryStatusUpdate(
                message_id=message_id,
                status=map_twilio_status(raw_status),
                error_code=str(error_code) if error_code else None,
                error_message=raw.get("ErrorMessage") or None,
                raw_status=raw_status,
            )
        except AttributeError as e:
            logger.error(f"Failed to parse Twilio status payload: {e}")
            return None

    def generate_response(self, text: Optional[str] = None) -> str:
        if not text:
            return f"{TWIML_HEADER}<Response></Response>"
        return f"{TWIML_HEADER}<Response><Message>{escape(text, XML_ENTITIES)}</Message></Response>"

    async def get_message_status(self, message_id: str) -> Optional[str]:
        if not self._initialized or not self._client:
            return None
        try:
            message = await asyncio.to_thread(self._client.messages(message_id).fetch)
            return map_twilio_status(message.status).value
        except TwilioRestException as e:
            logger.error(f"Failed to get Twilio message status: {e.msg}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error getting Twilio message status: {e}")
            return None
