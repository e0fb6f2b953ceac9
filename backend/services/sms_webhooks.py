"""
SMS Webhook Service - Carrier callbacks

Handles the three kinds of carrier callbacks:
- Delivery status updates for messages we sent
- Inbound messages from employees (commands)
- RingCentral push events (inbound, delivery, opt-in/opt-out consent)

Payloads are parsed with the driver matching the webhook's provider. The
parse methods are pure, so a webhook for a provider that is not currently
active is still understood.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable

from models import Message, MessageStatus, TERMINAL_MESSAGE_STATUSES
from services.audit import AuditLogger, AuditAction, TargetType
from services.sms_commands import InboundCommandProcessor, find_employee_by_phone, UNKNOWN_SENDER_REPLY
from sms_integration import (
    SMSGateway, SMSProvider, SMSProviderType, DeliveryStatus, DeliveryStatusUpdate, create_provider,
    parse_inbound_command, mask_phone,
)

logger = logging.getLogger(__name__)

# Carrier delivery status -> Message.status. Anything else leaves status alone.
MESSAGE_STATUS_FOR_DELIVERY = {
    DeliveryStatus.DELIVERED: MessageStatus.delivered.value,
    DeliveryStatus.FAILED: MessageStatus.failed.value,
    DeliveryStatus.UNDELIVERED: MessageStatus.failed.value,
    DeliveryStatus.SENT: MessageStatus.sent.value,
    DeliveryStatus.READ: MessageStatus.read.value,
}

# Statuses that later callbacks may not move back to an in-flight one
SETTLED_STATUSES = TERMINAL_MESSAGE_STATUSES | {MessageStatus.read.value}

CONSENT_EVENT_MARKER = "sms/consents"
INSTANT_EVENT_MARKER = "message-store/instant"
MESSAGE_STORE_MARKER = "message-store"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _may_leave_settled(message: Message, new_status: Optional[str], update: DeliveryStatusUpdate) -> bool:
    """
    Whether a callback may change the status of a delivered, failed or read message.

    A read receipt may follow delivery. Otherwise only a newer carrier event
    time can replace one terminal status with another.
    """
    if new_status is None or new_status == message.status:
        return False
    if message.status == MessageStatus.delivered.value and new_status == MessageStatus.read.value:
        return True
    if new_status not in TERMINAL_MESSAGE_STATUSES:
        return False
    carrier_time = _as_utc(update.timestamp)
    previous = _as_utc(message.delivery_timestamp)
    return carrier_time is not None and (previous is None or carrier_time > previous)


def _delivery_status_label(update: DeliveryStatusUpdate) -> str:
    if update.status == DeliveryStatus.UNKNOWN and update.raw_status:
        return str(update.raw_status)[:20]
    return update.status.value


class SMSWebhookService:
    """
    Processes carrier webhooks against storage.

    Args:
        storage: SMSStorage implementation
        gateway: Active provider gateway (used for replies and signatures)
        audit: Audit sink
        processor_factory: Builds an InboundCommandProcessor for a provider
    """

    def __init__(
        self,
        storage,
        gateway: SMSGateway,
        audit: AuditLogger,
        processor_factory: Optional[Callable[[SMSProviderType], InboundCommandProcessor]] = None
    ):
        self.storage = storage
        self.gateway = gateway
        self.audit = audit
        self.processor_factory = processor_factory or (
            lambda provider: InboundCommandProcessor(storage, audit, provider)
        )
        self._parsers: Dict[SMSProviderType, SMSProvider] = {}

    def driver_for(self, provider: SMSProviderType) -> SMSProvider:
        """Active driver when it matches, otherwise a parse-only driver."""
        driver = self.gateway.get_driver()
        if driver is not None and driver.provider_type == provider:
            return driver
        if provider not in self._parsers:
            self._parsers[provider] = create_provider(provider)
        return self._parsers[provider]

    def verify_signature(
        self,
        provider: SMSProviderType,
        signature: Optional[str],
        url: str,
        params: Dict[str, Any]
    ) -> bool:
        if self.gateway.get_provider_type() != provider:
            logger.warning(f"Webhook for inactive provider {provider.value}, cannot verify")
            return False
        return self.gateway.validate_webhook_signature(signature, url, params)

    def generate_response(self, provider: SMSProviderType, text: Optional[str] = None) -> str:
        return self.driver_for(provider).generate_response(text)

    # ==================== DELIVERY STATUS ====================

    async def handle_delivery_status(
        self,
        provider: SMSProviderType,
        raw: Dict[str, Any]
    ) -> Optional[Message]:
        """
        Apply a delivery status callback to the matching outbound message.

        Returns:
            The updated message, or None when nothing was changed
        """
        update = self.driver_for(provider).parse_delivery_status(raw)
        if not update:
            logger.warning(f"Unparseable {provider.value} status callback")
            return None

        message = await self.storage.get_message_by_provider_message_id(update.message_id)
        if not message:
            logger.info(f"Status callback for unknown message {update.message_id}")
            return None

        new_status = MESSAGE_STATUS_FOR_DELIVERY.get(update.status)
        if message.status in SETTLED_STATUSES and not _may_leave_settled(message, new_status, update):
            logger.debug(f"Ignoring status {_delivery_status_label(update)} for settled message {message.id}")
            return None

        changes = {
            "delivery_status": _delivery_status_label(update),
            "delivery_timestamp": _as_utc(update.timestamp) or datetime.now(timezone.utc),
            "error_code": update.error_code,
            "error_message": update.error_message,
        }
        if new_status:
            changes["status"] = new_status
        updated = await self.storage.update_message(message.id, changes)

        if new_status != message.status and new_status in TERMINAL_MESSAGE_STATUSES:
            delivered = new_status == MessageStatus.delivered.value
            await self.audit.log(
                action=AuditAction.SMS_DELIVERED if delivered else AuditAction.SMS_FAILED,
                target_type=TargetType.MESSAGE,
                target_id=message.id,
                details={
                    "provider": provider.value,
                    "providerMessageId": update.message_id,
                    "deliveryStatus": update.status.value,
                    "errorCode": update.error_code,
                },
            )
        return updated

    # ==================== INBOUND ====================

    async def handle_inbound(
        self,
        provider: SMSProviderType,
        raw: Dict[str, Any],
        ip_address: Optional[str] = None
    ) -> Optional[str]:
        """
        Run an inbound message as a command.

        Returns:
            Reply text, or None when no reply should be sent
        """
        inbound = self.driver_for(provider).parse_inbound_message(raw)
        if not inbound or not inbound.from_number:
            return None

        employee = await find_employee_by_phone(self.storage, inbound.from_number)
        if not employee:
            logger.info(f"Inbound SMS from unknown number {mask_phone(inbound.from_number)}")
            if provider == SMSProviderType.RINGCENTRAL:
                return None
            return UNKNOWN_SENDER_REPLY

        parsed = parse_inbound_command(inbound.body)
        processor = self.processor_factory(provider)
        return await processor.process(employee, parsed, inbound, ip_address)

    # ==================== RINGCENTRAL EVENTS ====================

    async def handle_ringcentral_event(
        self,
        raw: Dict[str, Any],
        ip_address: Optional[str] = None
    ) -> None:
        """Dispatch a RingCentral push event by its event filter."""
        event = str(raw.get("event") or "")
        provider = SMSProviderType.RINGCENTRAL

        if CONSENT_EVENT_MARKER in event:
            await self._apply_consent(raw, ip_address)
            return

        body = raw.get("body") if isinstance(raw.get("body"), dict) else {}
        is_inbound = INSTANT_EVENT_MARKER in event or body.get("direction") == "Inbound"

        if is_inbound or not event:
            inbound = self.driver_for(provider).parse_inbound_message(raw)
            reply = await self.handle_inbound(provider, raw, ip_address)
            if reply and inbound:
                result = await self.gateway.send_sms(inbound.from_number, reply)
                if not result.success:
                    logger.warning(f"Failed to send SMS reply: {result.error_code} {result.error_message}")
            return

        if MESSAGE_STORE_MARKER in event:
            await self.handle_delivery_status(provider, raw)
            return

        logger.info(f"Ignoring RingCentral event {event}")

    async def _apply_consent(self, raw: Dict[str, Any], ip_address: Optional[str]) -> None:
        driver = self.driver_for(SMSProviderType.RINGCENTRAL)
        for record in driver.parse_consent_records(raw):
            phone = record.get("from") or record.get("phoneNumber") or ""
            employee = await find_employee_by_phone(self.storage, phone)
            if not employee:
                logger.info(f"Consent change for unknown number {mask_phone(phone)}")
                continue

            opt_in = record.get("optStatus") == "OptIn"
            if employee.sms_opt_in == opt_in:
                continue
            await self.storage.update_employee(employee.id, {"sms_opt_in": opt_in})
            await self.audit.log(
                action=AuditAction.SMS_OPT_IN if opt_in else AuditAction.SMS_OPT_OUT,
                target_type=TargetType.EMPLOYEE,
                target_id=employee.id,
                target_name=employee.name,
                details={"method": "carrier_consent", "provider": SMSProviderType.RINGCENTRAL.value},
                ip_address=ip_address,
            )
