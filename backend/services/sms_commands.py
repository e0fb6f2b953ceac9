"""
Inbound SMS Command Processor

Executes a ParsedCommand for a known employee and returns the reply text.
Every handler commits its storage mutation first and composes the reply
afterwards. A return value of None means "send no reply".
"""

import logging
import re
from datetime import date, datetime
from typing import Optional, List, Callable

from models import Employee, Shift, Message, MessageDirection, MessageStatus, MessageType
from services.audit import AuditLogger, AuditAction, TargetType
from sms_integration import CommandType, ParsedCommand, InboundMessage, SMSProviderType, mask_phone

logger = logging.getLogger(__name__)

MAX_LISTED = 5

UNKNOWN_SENDER_REPLY = "Sorry, we couldn't identify your number. Please contact your supervisor."

HELP_REPLY = (
    "[ShiftConnect] Commands:\n"
    "YES - Express interest in a shift\n"
    "YES <code> - Interest in specific shift\n"
    "NO - Decline a shift\n"
    "CONFIRM - Confirm assigned shift\n"
    "CANCEL - Withdraw interest/cancel shift\n"
    "STATUS - Your shifts & interests\n"
    "SHIFTS - View available shifts\n"
    "STOP - Unsubscribe\n"
    "START - Subscribe"
)


# ==================== HELPERS ====================

def _digits(phone: str) -> str:
    return re.sub(r"[^\d+]", "", phone or "")


def phones_match(a: str, b: str) -> bool:
    left, right = _digits(a), _digits(b)
    if not left or not right:
        return False
    if left == right:
        return True
    left_tail = re.sub(r"\D", "", left)[-10:]
    right_tail = re.sub(r"\D", "", right)[-10:]
    return len(left_tail) == 10 and left_tail == right_tail


async def find_employee_by_phone(storage, phone: str) -> Optional[Employee]:
    """Match on the normalized number, or on the last ten digits."""
    for employee in await storage.get_employees():
        if phones_match(employee.phone, phone):
            return employee
    return None


def format_date_for_sms(date_str: str) -> str:
    """2024-01-15 -> "Mon, Jan 15". Unparseable dates are returned as-is."""
    try:
        parsed = datetime.strptime(date_str, "%Y-%m-%d")
    except ValueError:
        return date_str
    return f"{parsed.strftime('%a, %b')} {parsed.day}"


def _shift_label(shift: Shift) -> str:
    return f"{shift.date} {shift.start_time}-{shift.end_time}"


class InboundCommandProcessor:
    """
    Runs SMS commands for one provider.

    Args:
        storage: SMSStorage implementation
        audit: Audit sink
        provider_type: Provider the message arrived on. RingCentral handles
            STOP at the carrier, so no STOP confirmation is sent there.
        today: Returns the current local date, used for "upcoming" filters
    """

    def __init__(
        self,
        storage,
        audit: AuditLogger,
        provider_type: SMSProviderType,
        today: Optional[Callable[[], date]] = None
    ):
        self.storage = storage
        self.audit = audit
        self.provider_type = provider_type
        self.today = today or date.today

    async def process(
        self,
        employee: Employee,
        parsed: ParsedCommand,
        inbound: InboundMessage,
        ip_address: Optional[str] = None
    ) -> Optional[str]:
        logger.info(f"SMS command {parsed.type.value} from {mask_phone(inbound.from_number)}")

        if parsed.type == CommandType.STOP:
            return await self._handle_opt(employee, opt_in=False, ip_address=ip_address)
        if parsed.type == CommandType.START:
            return await self._handle_opt(employee, opt_in=True, ip_address=ip_address)
        if parsed.type == CommandType.HELP:
            return HELP_REPLY
        if parsed.type == CommandType.STATUS:
            return await self.handle_status(employee)
        if parsed.type == CommandType.SHIFTS:
            return await self.handle_shifts(employee)
        if parsed.type == CommandType.INTEREST_YES:
            return await self.handle_interest_yes(employee, parsed.shift_code, ip_address)
        if parsed.type == CommandType.INTEREST_NO:
            return await self.handle_interest_no(employee, ip_address)
        if parsed.type == CommandType.CONFIRM:
            return await self.handle_confirm(employee, ip_address)
        if parsed.type == CommandType.CANCEL:
            return await self.handle_cancel(employee, ip_address)
        return await self.handle_unknown(employee, inbound, ip_address)

    # ==================== LOOKUPS ====================

    async def _last_notified_shift(self, employee: Employee) -> Optional[Shift]:
        messages = await self.storage.get_employee_messages(employee.id)
        notifications = [
            m for m in messages
            if m.message_type == MessageType.shift_notification.value and m.related_shift_id
        ]
        if not notifications:
            return None
        latest = max(notifications, key=lambda m: m.created_at)
        return await self.storage.get_shift(latest.related_shift_id)

    async def _pending_interests(self, employee: Employee) -> List[tuple]:
        """(interest, shift) pairs on shifts that are still available, newest first."""
        pairs = []
        for interest in await self.storage.get_employee_interests(employee.id):
            shift = await self.storage.get_shift(interest.shift_id)
            if shift and shift.status == "available":
                pairs.append((interest, shift))
        pairs.sort(key=lambda pair: pair[0].created_at, reverse=True)
        return pairs

    async def _assigned_shifts(self, employee: Employee, upcoming_only: bool = True) -> List[Shift]:
        today = self.today().isoformat()
        shifts = [
            s for s in await self.storage.get_shifts()
            if s.assigned_employee_id == employee.id and s.status == "claimed"
            and (not upcoming_only or s.date >= today)
        ]
        shifts.sort(key=lambda s: (s.date, s.start_time))
        return shifts

    async def _audit_shift(self, action: AuditAction, shift: Shift, employee: Employee,
                           ip_address: Optional[str], **extra) -> None:
        await self.audit.log(
            action=action,
            target_type=TargetType.SHIFT,
            target_id=shift.id,
            target_name=_shift_label(shift),
            details={"employeeId": employee.id, "employeeName": employee.name, **extra},
            ip_address=ip_address,
        )

    # ==================== HANDLERS ====================

    async def handle_interest_yes(
        self,
        employee: Employee,
        shift_code: Optional[str] = None,
        ip_address: Optional[str] = None
    ) -> str:
        if shift_code:
            shift = await self.storage.get_shift_by_sms_code(shift_code)
            if not shift:
                return (
                    f"Sorry, we couldn't find a shift with code {shift_code}. "
                    f"Reply SHIFTS to see available shifts."
                )
        else:
            shift = await self._last_notified_shift(employee)

        if not shift:
            return "Sorry, we couldn't find a shift to match your reply. Reply SHIFTS to see available shifts."

        if shift.status != "available":
            return f"That shift has already been {shift.status}. Reply SHIFTS to see other available shifts."

        _, created = await self.storage.create_shift_interest(shift.id, employee.id)
        if not created:
            return "You've already expressed interest in this shift. A supervisor will review your request soon."

        await self._audit_shift(AuditAction.SHIFT_INTEREST_VIA_SMS, shift, employee, ip_address, method="sms")

        area = await self.storage.get_area(shift.area_id)
        area_label = f" ({area.name})" if area else ""
        return (
            f"Got it! You've expressed interest in the shift on {format_date_for_sms(shift.date)} "
            f"({shift.start_time}-{shift.end_time}) at {shift.location}{area_label}.\n\n"
            f"You'll be notified when assigned. Reply STATUS to see your requests."
        )

    async def handle_interest_no(self, employee: Employee, ip_address: Optional[str] = None) -> str:
        shift = await self._last_notified_shift(employee)
        if shift:
            await self._audit_shift(
                AuditAction.SHIFT_INTEREST_DECLINED_VIA_SMS, shift, employee, ip_address, method="sms"
            )
        return "No problem! We won't consider you for this shift. You'll still receive notifications for future shifts."

    async def handle_status(self, employee: Employee) -> str:
        assigned = (await self._assigned_shifts(employee))[:MAX_LISTED]
        pending = [shift for _, shift in await self._pending_interests(employee)][:MAX_LISTED]

        lines = ["[ShiftConnect] Your Status:", ""]
        if assigned:
            lines.append("ASSIGNED SHIFTS:")
            for shift in assigned:
                lines.append(
                    f"- {format_date_for_sms(shift.date)} {shift.start_time}-{shift.end_time} at {shift.location}"
                )
            lines.append("")

        if pending:
            lines.append("PENDING INTERESTS:")
            for shift in pending:
                lines.append(
                    f"- {format_date_for_sms(shift.date)} {shift.start_time}-{shift.end_time} at {shift.location}"
                )

        if not assigned and not pending:
            lines.append("No upcoming shifts or pending interests.")
            lines.append("")
            lines.append("Reply SHIFTS to see available shifts.")

        return "\n".join(lines).rstrip("\n")

    async def handle_shifts(self, employee: Employee) -> str:
        area_ids = set(employee.area_ids)
        available = [
            s for s in await self.storage.get_shifts()
            if s.status == "available"
            and (not area_ids or s.area_id in area_ids)
            and s.position_id == employee.position_id
        ]
        available.sort(key=lambda s: (s.date, s.start_time))
        available = available[:MAX_LISTED]

        if not available:
            return (
                "[ShiftConnect] No available shifts matching your position right now.\n\n"
                "You'll be notified when new shifts are posted."
            )

        response = "[ShiftConnect] Available Shifts:\n\n"
        for shift in available:
            area = await self.storage.get_area(shift.area_id)
            area_label = f" ({area.name})" if area else ""
            response += f"{format_date_for_sms(shift.date)} {shift.start_time}-{shift.end_time}\n"
            response += f"  {shift.location}{area_label}\n"
            response += f"  Code: {shift.sms_code or 'N/A'}\n\n"

        response += "Reply YES <code> to express interest."
        return response

    async def handle_confirm(self, employee: Employee, ip_address: Optional[str] = None) -> str:
        assigned = await self._assigned_shifts(employee, upcoming_only=False)
        if not assigned:
            return "You don't have any pending shift assignments to confirm. Reply STATUS to see your shifts."

        shift = max(assigned, key=lambda s: s.created_at)
        await self._audit_shift(AuditAction.SHIFT_CONFIRMED_VIA_SMS, shift, employee, ip_address)
        return (
            f"Thanks for confirming! Your shift on {format_date_for_sms(shift.date)} "
            f"({shift.start_time}-{shift.end_time}) at {shift.location} is confirmed.\n\n"
            f"Please arrive 10 minutes early."
        )

    async def handle_cancel(self, employee: Employee, ip_address: Optional[str] = None) -> str:
        pending = await self._pending_interests(employee)
        if pending:
            interest, shift = pending[0]
            await self.storage.delete_shift_interest(interest.shift_id, interest.employee_id)
            await self._audit_shift(AuditAction.SHIFT_INTEREST_CANCELLED_VIA_SMS, shift, employee, ip_address)
            return (
                f"Your interest in the shift on {format_date_for_sms(shift.date)} "
                f"({shift.start_time}-{shift.end_time}) has been withdrawn."
            )

        assigned = await self._assigned_shifts(employee)
        if assigned:
            shift = assigned[0]
            await self.storage.update_shift(shift.id, {
                "assigned_employee_id": None,
                "status": "available",
            })
            await self._audit_shift(AuditAction.SHIFT_CANCELLED_VIA_SMS, shift, employee, ip_address)
            return (
                f"Your shift on {format_date_for_sms(shift.date)} ({shift.start_time}-{shift.end_time}) "
                f"has been cancelled. The shift is now available for others.\n\n"
                f"Please inform your supervisor if this cancellation was unexpected."
            )

        return "You don't have any shifts or pending interests to cancel. Reply STATUS to check your current status."

    async def _handle_opt(self, employee: Employee, opt_in: bool, ip_address: Optional[str] = None) -> Optional[str]:
        await self.storage.update_employee(employee.id, {"sms_opt_in": opt_in})
        await self.audit.log(
            action=AuditAction.SMS_OPT_IN if opt_in else AuditAction.SMS_OPT_OUT,
            target_type=TargetType.EMPLOYEE,
            target_id=employee.id,
            target_name=employee.name,
            details={"method": "sms_reply", "provider": self.provider_type.value},
            ip_address=ip_address,
        )

        if opt_in:
            return "You have been subscribed to SMS notifications. Reply STOP to unsubscribe."
        if self.provider_type == SMSProviderType.RINGCENTRAL:
            return None
        return "You have been unsubscribed from SMS notifications. Reply START to re-subscribe."

    async def handle_unknown(
        self,
        employee: Employee,
        inbound: InboundMessage,
        ip_address: Optional[str] = None
    ) -> str:
        await self.storage.create_message(Message(
            employee_id=employee.id,
            direction=MessageDirection.inbound.value,
            content=inbound.body,
            status=MessageStatus.delivered.value,
            provider_message_id=inbound.message_id or None,
            sms_provider=self.provider_type.value,
            message_type=MessageType.general.value,
        ))
        await self.audit.log(
            action=AuditAction.SMS_INBOUND,
            target_type=TargetType.MESSAGE,
            target_name=employee.name,
            details={
                "from": mask_phone(inbound.from_number),
                "body": inbound.body[:100],
                "provider": self.provider_type.value,
            },
            ip_address=ip_address,
        )
        return "Message received. A supervisor will respond shortly. Reply HELP for available commands."
