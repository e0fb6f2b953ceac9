"""
SMS Integration - Provider Contract

Every carrier driver subclasses SMSProvider. Phone normalization and the
retry loop live here so both drivers share the exact same behaviour; the
carrier-specific pieces (send, webhook parsing, error tables) are abstract.
"""

import asyncio
import logging
import random
import re
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, Callable, Awaitable

from sms_integration.types import (
    SMSProviderType,
    ProviderConfig,
    SendSMSResult,
    PhoneValidationResult,
    InboundMessage,
    DeliveryStatusUpdate,
    ErrorType,
)

logger = logging.getLogger(__name__)

E164_PATTERN = re.compile(r'^\+[1-9]\d{1,14}$')

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY_MS = 1000

SleepFunc = Callable[[float], Awaitable[Any]]


def mask_phone(phone: Optional[str]) -> str:
    """Mask a phone number for log output."""
    if not phone:
        return "<none>"
    return f"{phone[:5]}***"


def normalize_phone_number(raw: str) -> PhoneValidationResult:
    """
    Normalize a phone number to E.164.

    A bare 10-digit number is treated as US (+1). An 11-digit number
    starting with 1 just gets the leading +. Everything else gets a +
    and must then pass the E.164 pattern.
    """
    if raw is None:
        return PhoneValidationResult(valid=False, error="Invalid phone number format")

    cleaned = re.sub(r'[^\d+]', '', str(raw))

    if cleaned.startswith('+'):
        formatted = '+' + cleaned[1:].replace('+', '')
    else:
        digits = cleaned.replace('+', '')
        if len(digits) == 10:
            formatted = '+1' + digits
        elif len(digits) == 11 and digits.startswith('1'):
            formatted = '+' + digits
        else:
            formatted = '+' + digits

    if not E164_PATTERN.match(formatted):
        return PhoneValidationResult(valid=False, error="Invalid phone number format")

    return PhoneValidationResult(valid=True, formatted=formatted)


class SMSProvider(ABC):
    """
    Base class for carrier drivers.

    Subclasses provide the carrier calls and a static ERROR_TABLE mapping
    error codes to ErrorType. Codes missing from the table are permanent.
    """

    provider_type: SMSProviderType
    ERROR_TABLE: Dict[str, ErrorType] = {}

    def __init__(self, sleep: Optional[SleepFunc] = None):
        self._sleep: SleepFunc = sleep or asyncio.sleep
        self._initialized = False
        self.config: Optional[ProviderConfig] = None

    # ==================== LIFECYCLE ====================

    @abstractmethod
    def initialize(self, config: ProviderConfig) -> bool:
        """Validate credentials and mark the driver ready. No network I/O."""

    def is_initialized(self) -> bool:
        return self._initialized

    async def dispose(self) -> None:
        self._initialized = False

    # ==================== PHONE NUMBERS ====================

    def validate_phone_number(self, raw: str) -> PhoneValidationResult:
        return normalize_phone_number(raw)

    # ==================== SENDING ====================

    @abstractmethod
    async def send_sms(
        self,
        to: str,
        body: str,
        status_callback_url: Optional[str] = None
    ) -> SendSMSResult:
        """Send one SMS. Carrier errors come back as a failed result."""

    async def send_sms_with_retry(
        self,
        to: str,
        body: str,
        status_callback_url: Optional[str] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS,
        jitter: float = 0.0
    ) -> SendSMSResult:
        """
        Send with exponential backoff.

        Only rate_limit and recoverable errors are retried. The delay
        doubles after every failed attempt; up to max_retries retries
        are made after the first attempt.

        Args:
            to: Destination number
            body: Message text
            status_callback_url: Delivery callback URL passed to the carrier
            max_retries: Retries after the first attempt
            initial_delay_ms: Delay before the first retry
            jitter: Fraction of the delay to randomize (0 disables)

        Returns:
            SendSMSResult: The first success, the first permanent failure,
            or the last failure once retries run out
        """
        delay_ms = float(initial_delay_ms)
        result = SendSMSResult(success=False)

        for attempt in range(max_retries + 1):
            result = await self.send_sms(to, body, status_callback_url)
            if result.success:
                if attempt:
                    logger.info(f"SMS to {mask_phone(to)} succeeded after {attempt} retries")
                return result

            error_type = self.classify_error(result.error_code)
            if error_type == ErrorType.PERMANENT:
                logger.warning(
                    f"Permanent SMS error {result.error_code} for {mask_phone(to)}, not retrying"
                )
                return result

            if attempt >= max_retries:
                break

            wait_ms = delay_ms
            if jitter:
                wait_ms += delay_ms * jitter * random.random()
            logger.info(
                f"SMS attempt {attempt + 1} failed ({result.error_code}, {error_type.value}); "
                f"retrying in {wait_ms:.0f}ms"
            )
            await self._sleep(wait_ms / 1000.0)
            delay_ms *= 2

        logger.error(f"SMS to {mask_phone(to)} failed after {max_retries + 1} attempts")
        return result

    # ==================== WEBHOOKS ====================

    @abstractmethod
    def validate_webhook_signature(
        self,
        signature: Optional[str],
        url: str,
        params: Dict[str, Any]
    ) -> bool:
        ...

    @abstractmethod
    def parse_inbound_message(self, raw: Dict[str, Any]) -> Optional[InboundMessage]:
        ...

    @abstractmethod
    def parse_delivery_status(self, raw: Dict[str, Any]) -> Optional[DeliveryStatusUpdate]:
        ...

    @abstractmethod
    def generate_response(self, text: Optional[str] = None) -> str:
        """Wire-format acknowledgment the carrier expects from a webhook."""

    # ==================== ERRORS ====================

    def classify_error(self, code: Optional[str]) -> ErrorType:
        if code is None:
            return ErrorType.PERMANENT
        return self.ERROR_TABLE.get(str(code), ErrorType.PERMANENT)

    def is_recoverable_error(self, code: Optional[str]) -> bool:
        return self.classify_error(code) in (ErrorType.RECOVERABLE, ErrorType.RATE_LIMIT)

    @abstractmethod
    async def get_message_status(self, message_id: str) -> Optional[str]:
        ...
