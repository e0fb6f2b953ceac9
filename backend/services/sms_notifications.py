"""
SMS Notification Service - Business-level outbound messages

Every notifier follows the same shape:
1. Check the feature flag and quiet hours (reminders ignore quiet hours)
2. Keep only active, opted-in recipients
3. Render the category template, or fall back to a built-in message
4. Per recipient: take a rate-limit token, create a pending Message row,
   send through the gateway, write the result back, audit the outcome
5. Return sent/failed counts

Single-recipient, higher-value sends (assignment, unassignment, reminder,
admin direct send) use send_sms_with_retry; broadcasts use plain send_sms.

Settings are read from organization settings in storage first, then the
environment (config.Settings).
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Callable

from config import Settings, get_settings
from models import Employee, Shift, Area, Message, MessageDirection, MessageStatus, MessageType
from services.audit import AuditLogger, AuditAction, TargetType, AuditActor
from services.sms_templates import TemplateContext, get_rendered_template
from sms_integration import (
    SMSGateway, ProviderConfig, SMSProviderType, SendSMSResult, TokenBucket, mask_phone,
)

logger = logging.getLogger(__name__)

QUIET_HOURS = "QUIET_HOURS"
NOTIFICATIONS_DISABLED = "NOTIFICATIONS_DISABLED"
OPTED_OUT = "OPTED_OUT"
PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"


# ==================== SETTINGS ====================

@dataclass
class SMSSettings:
    provider: SMSProviderType = SMSProviderType.TWILIO
    sms_enabled: bool = False
    # Twilio
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""
    twilio_messaging_service_sid: str = ""
    # RingCentral
    ringcentral_client_id: str = ""
    ringcentral_client_secret: str = ""
    ringcentral_server_url: str = "https://platform.ringcentral.com"
    ringcentral_jwt: str = ""
    ringcentral_from_number: str = ""
    # Behaviour
    notify_on_new_shift: bool = True
    notify_on_shift_claimed: bool = True
    shift_reminder_enabled: bool = True
    shift_reminder_hours: int = 24
    quiet_hours_start: str = "22:00"
    quiet_hours_end: str = "07:00"
    respect_quiet_hours: bool = True
    webhook_base_url: str = ""
    max_retries: int = 3
    retry_initial_delay_ms: int = 1000

    @property
    def from_number(self) -> str:
        if self.provider == SMSProviderType.RINGCENTRAL:
            return self.ringcentral_from_number
        return self.twilio_from_number


SMS_SETTING_KEYS = {
    "sms_provider", "sms_enabled",
    "twilio_account_sid", "twilio_auth_token", "twilio_from_number", "twilio_messaging_service_sid",
    "ringcentral_client_id", "ringcentral_client_secret", "ringcentral_server_url",
    "ringcentral_jwt", "ringcentral_from_number",
    "notify_on_new_shift", "notify_on_shift_claimed",
    "shift_reminder_enabled", "shift_reminder_hours",
    "sms_quiet_hours_start", "sms_quiet_hours_end", "sms_respect_quiet_hours",
    "webhook_base_url", "app_url",
}

SECRET_SETTING_KEYS = {"twilio_auth_token", "ringcentral_client_secret", "ringcentral_jwt"}

CLOCK_SETTING_KEYS = {"sms_quiet_hours_start", "sms_quiet_hours_end"}


def _as_bool(value: str) -> bool:
    return str(value).strip().lower() == "true"


def _is_clock_time(value: str) -> bool:
    try:
        hours, minutes = value.split(":")
        return 0 <= int(hours) < 24 and 0 <= int(minutes) < 60
    except ValueError:
        return False


def setting_value_error(key: str, value: str) -> Optional[str]:
    """Why `value` is not acceptable for organization setting `key`, or None."""
    if key == "sms_provider" and value not in [p.value for p in SMSProviderType]:
        return f"Unsupported SMS provider: {value}"
    if key in CLOCK_SETTING_KEYS and not _is_clock_time(value):
        return f"{key} must be a time of day as HH:MM"
    if key == "shift_reminder_hours":
        try:
            hours = int(value)
        except ValueError:
            hours = 0
        if hours <= 0:
            return "shift_reminder_hours must be a positive number of hours"
    return None


async def load_sms_settings(storage, env: Optional[Settings] = None) -> SMSSettings:
    """
    Merge organization settings (storage) over environment settings.

    Organization setting keys are the lowercase names, e.g. sms_provider,
    twilio_from_number, sms_quiet_hours_start.
    """
    env = env or get_settings()

    async def value(key: str, default: Any) -> str:
        stored = await storage.get_setting(key)
        if stored is not None and stored != "":
            return stored
        return "" if default is None else str(default)

    async def checked(key: str, default: Any) -> str:
        current = await value(key, default)
        if setting_value_error(key, current):
            logger.warning(f"Ignoring malformed {key} setting '{current}', using {default}")
            return str(default)
        return current

    provider_name = await value("sms_provider", env.SMS_PROVIDER)
    try:
        provider = SMSProviderType(provider_name)
    except ValueError:
        logger.warning(f"Unknown sms_provider '{provider_name}', falling back to twilio")
        provider = SMSProviderType.TWILIO

    return SMSSettings(
        provider=provider,
        sms_enabled=_as_bool(await value("sms_enabled", str(env.SMS_ENABLED).lower())),
        twilio_account_sid=await value("twilio_account_sid", env.TWILIO_ACCOUNT_SID),
        twilio_auth_token=await value("twilio_auth_token", env.TWILIO_AUTH_TOKEN),
        twilio_from_number=await value("twilio_from_number", env.TWILIO_FROM_NUMBER),
        twilio_messaging_service_sid=await value(
            "twilio_messaging_service_sid", env.TWILIO_MESSAGING_SERVICE_SID
        ),
        ringcentral_client_id=await value("ringcentral_client_id", env.RINGCENTRAL_CLIENT_ID),
        ringcentral_client_secret=await value("ringcentral_client_secret", env.RINGCENTRAL_CLIENT_SECRET),
        ringcentral_server_url=await value("ringcentral_server_url", env.RINGCENTRAL_SERVER_URL),
        ringcentral_jwt=await value("ringcentral_jwt", env.RINGCENTRAL_JWT),
        ringcentral_from_number=await value("ringcentral_from_number", env.RINGCENTRAL_FROM_NUMBER),
        notify_on_new_shift=_as_bool(await value("notify_on_new_shift", "true")),
        notify_on_shift_claimed=_as_bool(await value("notify_on_shift_claimed", "true")),
        shift_reminder_enabled=_as_bool(await value("shift_reminder_enabled", "true")),
        shift_reminder_hours=int(await checked("shift_reminder_hours", env.SHIFT_REMINDER_HOURS)),
        quiet_hours_start=await checked("sms_quiet_hours_start", env.SMS_QUIET_HOURS_START),
        quiet_hours_end=await checked("sms_quiet_hours_end", env.SMS_QUIET_HOURS_END),
        respect_quiet_hours=_as_bool(
            await value("sms_respect_quiet_hours", str(env.SMS_RESPECT_QUIET_HOURS).lower())
        ),
        webhook_base_url=(await value("webhook_base_url", env.WEBHOOK_BASE_URL)).rstrip("/"),
        max_retries=env.SMS_MAX_RETRIES,
        retry_initial_delay_ms=env.SMS_RETRY_INITIAL_DELAY_MS,
    )


def build_provider_config(sms_settings: SMSSettings) -> ProviderConfig:
    if sms_settings.provider == SMSProviderType.RINGCENTRAL:
        return ProviderConfig(
            provider=SMSProviderType.RINGCENTRAL,
            from_number=sms_settings.ringcentral_from_number or None,
            client_id=sms_settings.ringcentral_client_id or None,
            client_secret=sms_settings.ringcentral_client_secret or None,
            server_url=sms_settings.ringcentral_server_url or None,
            jwt=sms_settings.ringcentral_jwt or None,
        )
    return ProviderConfig(
        provider=SMSProviderType.TWILIO,
        from_number=sms_settings.twilio_from_number or None,
        account_sid=sms_settings.twilio_account_sid or None,
        auth_token=sms_settings.twilio_auth_token or None,
        messaging_service_sid=sms_settings.twilio_messaging_service_sid or None,
    )


def is_provider_configured(sms_settings: SMSSettings) -> bool:
    if sms_settings.provider == SMSProviderType.RINGCENTRAL:
        return all([
            sms_settings.ringcentral_client_id,
            sms_settings.ringcentral_client_secret,
            sms_settings.ringcentral_jwt,
            sms_settings.ringcentral_from_number,
        ])
    return all([
        sms_settings.twilio_account_sid,
        sms_settings.twilio_auth_token,
        sms_settings.twilio_from_number,
    ])


# ==================== HELPERS ====================

def _to_minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def is_quiet_hours(start: str, end: str, now: Optional[datetime] = None) -> bool:
    """
    True when `now` falls inside the quiet window [start, end).

    start > end means the window wraps midnight (e.g. 22:00-07:00).
    """
    now = now or datetime.now()
    current = now.hour * 60 + now.minute
    start_minutes = _to_minutes(start)
    end_minutes = _to_minutes(end)

    if start_minutes > end_minutes:
        return current >= start_minutes or current < end_minutes
    return start_minutes <= current < end_minutes


def format_shift_details(shift: Shift, area: Optional[Area] = None) -> str:
    area_label = f" ({area.name})" if area else ""
    return f"{shift.date} {shift.start_time}-{shift.end_time} at {shift.location}{area_label}"


@dataclass
class NotificationResult:
    sent: int = 0
    failed: int = 0
    skipped_reason: Optional[str] = None
    results: List[SendSMSResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sent": self.sent,
            "failed": self.failed,
            "skipped_reason": self.skipped_reason,
        }


# ==================== SERVICE ====================

class SMSNotificationService:
    """
    Outbound notifications about shifts.

    Args:
        storage: SMSStorage implementation
        gateway: Active provider gateway
        audit: Audit sink
        rate_limiter: Token bucket shared by broadcast loops
        env: Environment settings (defaults to get_settings())
        clock: Returns local "now", used for quiet hours
    """

    def __init__(
        self,
        storage,
        gateway: SMSGateway,
        audit: AuditLogger,
        rate_limiter: Optional[TokenBucket] = None,
        env: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.gateway = gateway
        self.audit = audit
        self.env = env or get_settings()
        self.rate_limiter = rate_limiter or TokenBucket(
            rate=self.env.SMS_RATE_LIMIT_PER_SECOND,
            capacity=self.env.SMS_RATE_LIMIT_BURST,
        )
        self.clock = clock or datetime.now
        self._applied_config: Optional[ProviderConfig] = None

    # ==================== PROVIDER ====================

    async def get_sms_settings(self) -> SMSSettings:
        return await load_sms_settings(self.storage, self.env)

    async def initialize_provider(self, sms_settings: Optional[SMSSettings] = None) -> bool:
        """
        Apply the current settings to the gateway.

        The gateway is only re-initialized when the provider config changed
        since the last successful call.
        """
        sms_settings = sms_settings or await self.get_sms_settings()
        if not sms_settings.sms_enabled:
            return False
        if not is_provider_configured(sms_settings):
            logger.warning(f"{sms_settings.provider.value} configuration incomplete")
            return False

        config = build_provider_config(sms_settings)
        if config == self._applied_config and self.gateway.is_ready():
            return True

        success = await self.gateway.initialize(config)
        self._applied_config = config if success else None
        return success

    async def is_sms_configured(self) -> bool:
        sms_settings = await self.get_sms_settings()
        return sms_settings.sms_enabled and is_provider_configured(sms_settings)

    async def get_current_provider(self) -> Optional[SMSProviderType]:
        sms_settings = await self.get_sms_settings()
        return sms_settings.provider if sms_settings.sms_enabled else None

    def status_callback_url(self, sms_settings: SMSSettings) -> Optional[str]:
        if not sms_settings.webhook_base_url:
            return None
        return f"{sms_settings.webhook_base_url}/api/webhooks/{sms_settings.provider.value}/status"

    def in_quiet_hours(self, sms_settings: SMSSettings) -> bool:
        return sms_settings.respect_quiet_hours and is_quiet_hours(
            sms_settings.quiet_hours_start, sms_settings.quiet_hours_end, self.clock()
        )

    async def _prepare(self, flag: bool, sms_settings: SMSSettings, urgent: bool = False) -> Optional[str]:
        """Reason to skip sending, or None when clear to send."""
        if not sms_settings.sms_enabled or not flag:
            return NOTIFICATIONS_DISABLED
        if not urgent and self.in_quiet_hours(sms_settings):
            logger.info("Skipping SMS notification during quiet hours")
            return QUIET_HOURS
        if not await self.initialize_provider(sms_settings):
            logger.info("SMS provider not initialized, skipping notifications")
            return PROVIDER_UNAVAILABLE
        return None

    # ==================== DELIVERY ====================

    async def deliver(
        self,
        employee: Employee,
        body: str,
        message_type: str,
        sms_settings: SMSSettings,
        shift_id: Optional[str] = None,
        with_retry: bool = False,
        throttle: bool = False
    ) -> SendSMSResult:
        """Send one message to one employee with a Message row around it."""
        if throttle:
            await self.rate_limiter.acquire()

        record = await self.storage.create_message(Message(
            employee_id=employee.id,
            direction=MessageDirection.outbound.value,
            content=body,
            status=MessageStatus.pending.value,
            message_type=message_type,
            related_shift_id=shift_id,
            thread_id=str(uuid.uuid4()),
        ))

        callback = self.status_callback_url(sms_settings)
        if with_retry:
            result = await self.gateway.send_sms_with_retry(
                employee.phone, body, callback,
                max_retries=sms_settings.max_retries,
                initial_delay_ms=sms_settings.retry_initial_delay_ms,
            )
        else:
            result = await self.gateway.send_sms(employee.phone, body, callback)

        result.message_id = result.message_id or record.id
        await self.storage.update_message(record.id, {
            "provider_message_id": result.provider_message_id,
            "sms_provider": sms_settings.provider.value,
            "status": MessageStatus.sent.value if result.success else MessageStatus.failed.value,
            "delivery_status": result.status,
            "error_code": result.error_code,
            "error_message": result.error_message,
            "segments": result.segments or 1,
        })

        if not result.success:
            logger.warning(
                f"SMS to {mask_phone(employee.phone)} failed: {result.error_code} {result.error_message}"
            )
        return result

    async def _broadcast(
        self,
        shift: Shift,
        area: Optional[Area],
        recipients: List[Employee],
        body: str,
        message_type: str,
        sms_settings: SMSSettings,
        audit_type: str
    ) -> NotificationResult:
        outcome = NotificationResult()
        for employee in recipients:
            try:
                result = await self.deliver(
                    employee, body, message_type, sms_settings,
                    shift_id=shift.id, throttle=True,
                )
            except Exception as e:
                logger.error(f"Failed to send {audit_type} to {employee.name}: {e}")
                outcome.failed += 1
                continue
            outcome.results.append(result)
            if result.success:
                outcome.sent += 1
            else:
                outcome.failed += 1

        if recipients:
            await self.audit.log(
                action=AuditAction.SMS_SENT,
                target_type=TargetType.SHIFT,
                target_id=shift.id,
                target_name=format_shift_details(shift, area),
                details={
                    "type": audit_type,
                    "provider": sms_settings.provider.value,
                    "recipientCount": len(recipients),
                    "sent": outcome.sent,
                    "failed": outcome.failed,
                },
            )
        return outcome

    async def _send_single(
        self,
        shift: Shift,
        employee: Employee,
        body: str,
        message_type: str,
        audit_type: str,
        sms_settings: SMSSettings,
        with_retry: bool
    ) -> NotificationResult:
        try:
            result = await self.deliver(
                employee, body, message_type, sms_settings,
                shift_id=shift.id, with_retry=with_retry,
            )
        except Exception as e:
            logger.error(f"Failed to send {audit_type} to {employee.name}: {e}")
            return NotificationResult(failed=1)

        await self.audit.log(
            action=AuditAction.SMS_SENT if result.success else AuditAction.SMS_FAILED,
            target_type=TargetType.MESSAGE,
            target_id=result.message_id,
            target_name=employee.name,
            details={
                "type": audit_type,
                "provider": sms_settings.provider.value,
                "shiftId": shift.id,
                "messageId": result.provider_message_id,
                "errorCode": result.error_code,
            },
        )
        return NotificationResult(
            sent=1 if result.success else 0,
            failed=0 if result.success else 1,
            results=[result],
        )

    @staticmethod
    def _eligible(recipients: List[Employee]) -> List[Employee]:
        return [e for e in recipients if e.status == "active" and e.sms_opt_in]

    async def _context(self, shift: Shift, employee: Optional[Employee] = None):
        area = await self.storage.get_area(shift.area_id)
        position = await self.storage.get_position(shift.position_id)
        return area, TemplateContext(shift=shift, employee=employee, area=area, position=position)

    async def _app_url(self) -> str:
        return (await self.storage.get_setting("app_url")) or self.env.APP_URL

    # ==================== NOTIFIERS ====================

    async def notify_new_shift(self, shift: Shift, recipients: List[Employee]) -> NotificationResult:
        """Broadcast a newly posted shift to eligible employees."""
        sms_settings = await self.get_sms_settings()
        reason = await self._prepare(sms_settings.notify_on_new_shift, sms_settings)
        if reason:
            return NotificationResult(skipped_reason=reason)

        eligible = self._eligible(recipients)
        area, context = await self._context(shift)
        body = await get_rendered_template(self.storage, "shift_notification", context)
        if not body:
            app_url = await self._app_url()
            body = (
                f"[ShiftConnect] New shift available!\n{format_shift_details(shift, area)}\n"
                f"Code: {shift.sms_code}\n\nTap to claim: {app_url}/shift/{shift.sms_code}\n\n"
                f"Or reply YES {shift.sms_code}"
            )

        outcome = await self._broadcast(
            shift, area, eligible, body, MessageType.shift_notification.value,
            sms_settings, "shift_notification",
        )
        await self.storage.update_shift(shift.id, {
            "last_notified_at": datetime.now(timezone.utc),
            "notification_count": outcome.sent,
        })
        return outcome

    async def notify_reposted_shift(self, shift: Shift, recipients: List[Employee]) -> NotificationResult:
        """Re-broadcast a shift that is still open."""
        sms_settings = await self.get_sms_settings()
        reason = await self._prepare(sms_settings.notify_on_new_shift, sms_settings)
        if reason:
            return NotificationResult(skipped_reason=reason)

        eligible = self._eligible(recipients)
        area, context = await self._context(shift)
        body = await get_rendered_template(self.storage, "shift_repost", context)
        if not body:
            body = await get_rendered_template(self.storage, "shift_notification", context)
        if not body:
            bonus = f" - ${shift.bonus_amount} bonus!" if shift.bonus_amount else ""
            body = (
                f"[ShiftConnect] Shift available!\n{format_shift_details(shift, area)}{bonus}\n"
                f"Reply YES {shift.sms_code} to express interest."
            )

        outcome = await self._broadcast(
            shift, area, eligible, body, MessageType.shift_notification.value,
            sms_settings, "shift_repost",
        )
        await self.storage.update_shift(shift.id, {
            "last_notified_at": datetime.now(timezone.utc),
            "notification_count": outcome.sent,
        })
        return outcome

    async def notify_shift_assigned(self, shift: Shift, employee: Employee) -> NotificationResult:
        sms_settings = await self.get_sms_settings()
        if not employee.sms_opt_in:
            return NotificationResult(skipped_reason=OPTED_OUT)
        reason = await self._prepare(sms_settings.notify_on_shift_claimed, sms_settings)
        if reason:
            return NotificationResult(skipped_reason=reason)

        area, context = await self._context(shift, employee)
        body = await get_rendered_template(self.storage, "shift_confirmation", context) or (
            f"[ShiftConnect] Shift Confirmed!\nYou're scheduled for:\n"
            f"{format_shift_details(shift, area)}\nQuestions? Contact your supervisor."
        )
        return await self._send_single(
            shift, employee, body, MessageType.shift_confirmation.value,
            "shift_confirmation", sms_settings, with_retry=True,
        )

    async def notify_shift_unassigned(self, shift: Shift, employee: Employee) -> NotificationResult:
        sms_settings = await self.get_sms_settings()
        if not employee.sms_opt_in:
            return NotificationResult(skipped_reason=OPTED_OUT)
        reason = await self._prepare(sms_settings.notify_on_shift_claimed, sms_settings)
        if reason:
            return NotificationResult(skipped_reason=reason)

        area, context = await self._context(shift, employee)
        body = await get_rendered_template(self.storage, "shift_cancellation", context) or (
            f"[ShiftConnect] Shift Update\nYou have been unassigned from the shift on "
            f"{shift.date} at {shift.location} ({shift.start_time}-{shift.end_time}).\n"
            f"Please contact your supervisor if you have questions."
        )
        return await self._send_single(
            shift, employee, body, MessageType.general.value,
            "shift_unassigned", sms_settings, with_retry=True,
        )

    async def send_shift_reminder(self, shift: Shift, employee: Employee) -> NotificationResult:
        """Reminders are urgent and go out during quiet hours too."""
        sms_settings = await self.get_sms_settings()
        if not employee.sms_opt_in:
            return NotificationResult(skipped_reason=OPTED_OUT)
        reason = await self._prepare(sms_settings.shift_reminder_enabled, sms_settings, urgent=True)
        if reason:
            return NotificationResult(skipped_reason=reason)

        area, context = await self._context(shift, employee)
        body = await get_rendered_template(self.storage, "shift_reminder", context) or (
            f"[ShiftConnect] Reminder: Your shift starts soon!\n"
            f"{format_shift_details(shift, area)}\nPlease arrive on time."
        )
        return await self._send_single(
            shift, employee, body, MessageType.shift_reminder.value,
            "shift_reminder", sms_settings, with_retry=True,
        )

    async def notify_shift_filled_to_others(self, shift: Shift, assigned_employee_id: str) -> NotificationResult:
        """Tell everyone else who expressed interest that the shift is gone."""
        sms_settings = await self.get_sms_settings()
        reason = await self._prepare(True, sms_settings)
        if reason:
            return NotificationResult(skipped_reason=reason)

        interests = await self.storage.get_shift_interests(shift.id)
        other_ids = {i.employee_id for i in interests if i.employee_id != assigned_employee_id}
        if not other_ids:
            return NotificationResult()

        employees = await self.storage.get_employees()
        recipients = self._eligible([e for e in employees if e.id in other_ids])
        if not recipients:
            return NotificationResult()

        area = await self.storage.get_area(shift.area_id)
        area_label = f" ({area.name})" if area else ""
        body = (
            f"[ShiftConnect] Update: The shift on {shift.date} ({shift.start_time}-{shift.end_time}) "
            f"at {shift.location}{area_label} has been filled.\n\n"
            f"You'll be notified of new available shifts. Reply SHIFTS to see current openings."
        )
        return await self._broadcast(
            shift, area, recipients, body, MessageType.general.value,
            sms_settings, "shift_filled_notification",
        )

    async def notify_shift_interest_confirmation(self, shift: Shift, employee: Employee) -> NotificationResult:
        sms_settings = await self.get_sms_settings()
        if not employee.sms_opt_in:
            return NotificationResult(skipped_reason=OPTED_OUT)
        reason = await self._prepare(True, sms_settings)
        if reason:
            return NotificationResult(skipped_reason=reason)

        area, context = await self._context(shift, employee)
        body = await get_rendered_template(self.storage, "shift_interest", context) or (
            f"[ShiftConnect] Interest Received!\nWe got your interest for:\n"
            f"{format_shift_details(shift, area)}\nYou'll be notified if assigned."
        )
        return await self._send_single(
            shift, employee, body, MessageType.general.value,
            "shift_interest", sms_settings, with_retry=False,
        )

    # ==================== ADMIN SENDS ====================

    async def send_direct(
        self,
        employee: Employee,
        body: str,
        message_type: str = MessageType.general.value,
        actor: Optional[AuditActor] = None,
        ip_address: Optional[str] = None
    ) -> SendSMSResult:
        """Admin "send one". Quiet hours apply unless this is a reminder."""
        sms_settings = await self.get_sms_settings()
        urgent = message_type == MessageType.shift_reminder.value
        reason = await self._prepare(True, sms_settings, urgent=urgent)
        if reason:
            return SendSMSResult(success=False, error_code=reason, error_message=_reason_text(reason))
        if not employee.sms_opt_in:
            return SendSMSResult(success=False, error_code=OPTED_OUT, error_message="Employee opted out of SMS")

        result = await self.deliver(employee, body, message_type, sms_settings, with_retry=True)
        await self.audit.log(
            action=AuditAction.SMS_SENT if result.success else AuditAction.SMS_FAILED,
            target_type=TargetType.EMPLOYEE,
            actor=actor,
            target_id=employee.id,
            target_name=employee.name,
            details={
                "provider": sms_settings.provider.value,
                "messageType": message_type,
                "messageId": result.provider_message_id,
                "errorCode": result.error_code,
            },
            ip_address=ip_address,
        )
        return result

    async def send_bulk(
        self,
        employees: List[Employee],
        body: str,
        actor: Optional[AuditActor] = None,
        ip_address: Optional[str] = None
    ) -> Dict[str, Any]:
        """Admin "send bulk". Returns per-recipient results."""
        sms_settings = await self.get_sms_settings()
        reason = await self._prepare(True, sms_settings)
        if reason:
            return {"total": 0, "successful": 0, "failed": 0, "skipped_reason": reason, "results": []}

        results = []
        for employee in self._eligible(employees):
            try:
                result = await self.deliver(
                    employee, body, MessageType.bulk.value, sms_settings, throttle=True,
                )
            except Exception as e:
                logger.error(f"Bulk send to {employee.name} failed: {e}")
                result = SendSMSResult(success=False, error_message=str(e))
            results.append({"employeeId": employee.id, **result.to_dict()})

        successful = sum(1 for r in results if r["success"])
        await self.audit.log(
            action=AuditAction.SMS_BULK_SENT,
            target_type=TargetType.MESSAGE,
            actor=actor,
            target_name=f"Bulk SMS to {len(results)} employees",
            details={
                "provider": sms_settings.provider.value,
                "total": len(results),
                "successful": successful,
                "failed": len(results) - successful,
            },
            ip_address=ip_address,
        )
        return {
            "total": len(results),
            "successful": successful,
            "failed": len(results) - successful,
            "results": results,
        }


def _reason_text(reason: str) -> str:
    return {
        QUIET_HOURS: "Quiet hours are in effect",
        NOTIFICATIONS_DISABLED: "SMS notifications are disabled",
        PROVIDER_UNAVAILABLE: "SMS provider not initialized",
    }.get(reason, reason)
