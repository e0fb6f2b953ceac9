"""
SMS Integration - Provider Gateway

SMSGateway holds the single active driver and exposes a carrier-agnostic
API. Operators can switch carriers or rotate credentials at runtime
without restarting anything that holds a reference to the gateway.

Driver swaps happen under an asyncio.Lock. Every delegating call reads
the driver reference once, so an in-flight send finishes against the
driver it started with; the old driver is disposed only after the new
one has been published.

Usage:
    gateway = SMSGateway()
    await gateway.initialize(ProviderConfig(provider=SMSProviderType.TWILIO, ...))
    result = await gateway.send_sms("+15551234567", "Hello")
"""

import asyncio
import logging
from typing import Optional, Dict, Any, Callable

from sms_integration.base import SMSProvider
from sms_integration.twilio_provider import TwilioProvider
from sms_integration.ringcentral_provider import RingCentralProvider
from sms_integration.types import (
    SMSProviderType,
    ProviderConfig,
    SendSMSResult,
    PhoneValidationResult,
    InboundMessage,
    DeliveryStatusUpdate,
    NO_PROVIDER,
    NO_PROVIDER_MESSAGE,
)

logger = logging.getLogger(__name__)

PROVIDER_CLASSES = {
    SMSProviderType.TWILIO: TwilioProvider,
    SMSProviderType.RINGCENTRAL: RingCentralProvider,
}


def create_provider(provider_type: SMSProviderType, **kwargs) -> SMSProvider:
    """Construct an uninitialized driver for the given carrier."""
    try:
        provider_class = PROVIDER_CLASSES[SMSProviderType(provider_type)]
    except (KeyError, ValueError):
        raise ValueError(f"Unsupported SMS provider: {provider_type}")
    return provider_class(**kwargs)


class SMSGateway:
    """Holds exactly one active driver plus its type tag."""

    def __init__(self, provider_factory: Callable[[SMSProviderType], SMSProvider] = create_provider):
        self._provider_factory = provider_factory
        self._driver: Optional[SMSProvider] = None
        self._provider_type: Optional[SMSProviderType] = None
        self._config: Optional[ProviderConfig] = None
        self._lock = asyncio.Lock()

    # ==================== LIFECYCLE ====================

    async def initialize(self, config: ProviderConfig) -> bool:
        """
        Apply a provider configuration.

        A different provider type replaces the driver and disposes the old
        one. The same type re-initializes the existing driver in place.

        Returns:
            bool: True if the driver accepted the configuration
        """
        async with self._lock:
            previous = self._driver

            if previous is not None and self._provider_type == config.provider:
                success = previous.initialize(config)
                self._config = config
                logger.info(f"SMS provider {config.provider.value} re-initialized (ok={success})")
                return success

            driver = self._provider_factory(config.provider)
            success = driver.initialize(config)

            self._driver = driver
            self._provider_type = config.provider
            self._config = config

            if previous is not None:
                logger.info(f"Switching SMS provider to {config.provider.value}")
                await self._dispose_quietly(previous)

            logger.info(f"SMS provider {config.provider.value} initialized (ok={success})")
            return success

    async def dispose(self) -> None:
        async with self._lock:
            driver = self._driver
            self._driver = None
            self._provider_type = None
            self._config = None
        if driver is not None:
            await self._dispose_quietly(driver)

    @staticmethod
    async def _dispose_quietly(driver: SMSProvider) -> None:
        try:
            await driver.dispose()
        except Exception as e:
            logger.error(f"Error disposing SMS provider {driver.provider_type.value}: {e}")

    # ==================== INTROSPECTION ====================

    def get_driver(self) -> Optional[SMSProvider]:
        return self._driver

    def get_provider_type(self) -> Optional[SMSProviderType]:
        return self._provider_type

    def is_ready(self) -> bool:
        driver = self._driver
        return driver is not None and driver.is_initialized()

    def get_config(self) -> Optional[Dict[str, Any]]:
        """Non-sensitive view of the active configuration."""
        config = self._config
        return config.public_view() if config else None

    # ==================== DELEGATION ====================

    async def send_sms(
        self,
        to: str,
        body: str,
        status_callback_url: Optional[str] = None
    ) -> SendSMSResult:
        driver = self._driver
        if driver is None:
            return SendSMSResult(success=False, error_code=NO_PROVIDER, error_message=NO_PROVIDER_MESSAGE)
        return await driver.send_sms(to, body, status_callback_url)

    async def send_sms_with_retry(
        self,
        to: str,
        body: str,
        status_callback_url: Optional[str] = None,
        max_retries: int = 3,
        initial_delay_ms: int = 1000
    ) -> SendSMSResult:
        driver = self._driver
        if driver is None:
            return SendSMSResult(success=False, error_code=NO_PROVIDER, error_message=NO_PROVIDER_MESSAGE)
        return await driver.send_sms_with_retry(
            to, body, status_callback_url,
            max_retries=max_retries,
            initial_delay_ms=initial_delay_ms
        )

    def validate_phone_number(self, raw: str) -> PhoneValidationResult:
        driver = self._driver
        if driver is None:
            return PhoneValidationResult(valid=False, error=NO_PROVIDER_MESSAGE)
        return driver.validate_phone_number(raw)

    def validate_webhook_signature(
        self,
        signature: Optional[str],
        url: str,
        params: Dict[str, Any]
    ) -> bool:
        driver = self._driver
        if driver is None:
            return False
        return driver.validate_webhook_signature(signature, url, params)

    def parse_inbound_message(self, raw: Dict[str, Any]) -> Optional[InboundMessage]:
        driver = self._driver
        return driver.parse_inbound_message(raw) if driver else None

    def parse_delivery_status(self, raw: Dict[str, Any]) -> Optional[DeliveryStatusUpdate]:
        driver = self._driver
        return driver.parse_delivery_status(raw) if driver else None

    def generate_response(self, text: Optional[str] = None) -> str:
        driver = self._driver
        return driver.generate_response(text) if driver else ""

    def is_recoverable_error(self, code: Optional[str]) -> bool:
        driver = self._driver
        return driver.is_recoverable_error(code) if driver else False

    async def get_message_status(self, message_id: str) -> Optional[str]:
        driver = self._driver
        if driver is None:
            return None
        return await driver.get_message_status(message_id)
