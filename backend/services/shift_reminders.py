"""
Shift reminder pass.

Sends one reminder per (shift, assigned employee) for claimed shifts that
start within the reminder window. Deciding when to run the pass belongs
to the caller (admin route or an external scheduler).
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from models import Shift, MessageType

logger = logging.getLogger(__name__)


@dataclass
class ReminderRunResult:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def shift_start(shift: Shift) -> Optional[datetime]:
    """Local start datetime from the YYYY-MM-DD date and HH:MM start time."""
    try:
        return datetime.strptime(f"{shift.date} {shift.start_time}", "%Y-%m-%d %H:%M")
    except ValueError:
        logger.warning(f"Shift {shift.id} has an unparseable start: {shift.date} {shift.start_time}")
        return None


async def reminder_already_sent(storage, shift_id: str, employee_id: str) -> bool:
    messages = await storage.get_employee_messages(employee_id)
    return any(
        m.message_type == MessageType.shift_reminder.value and m.related_shift_id == shift_id
        for m in messages
    )


async def _due_shifts(storage, hours: int, now: datetime):
    window_end = now + timedelta(hours=hours)
    due = []
    for shift in await storage.get_shifts():
        if shift.status != "claimed" or not shift.assigned_employee_id:
            continue
        start = shift_start(shift)
        if start is None or start <= now or start > window_end:
            continue
        due.append(shift)
    return due


async def process_shift_reminders(storage, notifications, now: Optional[datetime] = None) -> ReminderRunResult:
    """
    Send reminders for shifts starting within shift_reminder_hours.

    Args:
        storage: SMSStorage implementation
        notifications: SMSNotificationService
        now: Local "now" (defaults to datetime.now())

    Returns:
        ReminderRunResult with processed/sent/failed/skipped counts
    """
    result = ReminderRunResult()
    sms_settings = await notifications.get_sms_settings()
    if not (sms_settings.sms_enabled and sms_settings.shift_reminder_enabled):
        return result

    now = now or datetime.now()
    for shift in await _due_shifts(storage, sms_settings.shift_reminder_hours, now):
        result.processed += 1

        if await reminder_already_sent(storage, shift.id, shift.assigned_employee_id):
            result.skipped += 1
            continue

        employee = await storage.get_employee(shift.assigned_employee_id)
        if not employee:
            result.failed += 1
            continue

        outcome = await notifications.send_shift_reminder(shift, employee)
        if outcome.sent:
            result.sent += 1
        elif outcome.skipped_reason:
            result.skipped += 1
        else:
            result.failed += 1

    if result.sent or result.failed:
        logger.info(
            f"Reminder check: {result.sent} sent, {result.failed} failed, {result.skipped} skipped"
        )
    return result


async def get_reminder_status(storage, notifications, now: Optional[datetime] = None) -> Dict[str, Any]:
    sms_settings = await notifications.get_sms_settings()
    now = now or datetime.now()
    due = await _due_shifts(storage, sms_settings.shift_reminder_hours, now)
    return {
        "enabled": sms_settings.sms_enabled and sms_settings.shift_reminder_enabled,
        "hoursBeforeShift": sms_settings.shift_reminder_hours,
        "upcomingShifts": len(due),
    }
