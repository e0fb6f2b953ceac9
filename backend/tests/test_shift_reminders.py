"""
Unit Tests for the shift reminder pass

Run with: pytest tests/test_shift_reminders.py -v
"""

import pytest
import pytest_asyncio
from datetime import datetime

from models import Message
from services.shift_reminders import process_shift_reminders, get_reminder_status, shift_start


# 19 hours before shift-1 starts (2024-01-15 07:00)
DAY_BEFORE = datetime(2024, 1, 14, 12, 0)


@pytest_asyncio.fixture
async def claimed(storage, alice):
    await storage.update_shift("shift-1", {"status": "claimed", "assigned_employee_id": alice.id})


class TestShiftStart:
    """Test parsing a shift's local start."""

    def test_parse(self, shift):
        assert shift_start(shift) == datetime(2024, 1, 15, 7, 0)

    def test_unparseable(self, shift):
        assert shift_start(shift.model_copy(update={"start_time": "7am"})) is None


class TestProcessShiftReminders:
    """Test the reminder pass end to end against the in-memory store."""

    @pytest.mark.asyncio
    async def test_sends_once_per_assignment(self, storage, notifications, twilio_client, claimed):
        first = await process_shift_reminders(storage, notifications, now=DAY_BEFORE)
        second = await process_shift_reminders(storage, notifications, now=DAY_BEFORE)

        assert first.to_dict() == {"processed": 1, "sent": 1, "failed": 0, "skipped": 0}
        assert second.to_dict() == {"processed": 1, "sent": 0, "failed": 0, "skipped": 1}
        assert twilio_client.messages.create.call_count == 1

        messages = await storage.get_employee_messages("emp-alice")
        assert messages[0].message_type == "shift_reminder"
        assert messages[0].related_shift_id == "shift-1"

    @pytest.mark.asyncio
    async def test_failed_reminder_is_not_retried(self, storage, notifications, twilio_client, claimed):
        await storage.create_message(Message(
            employee_id="emp-alice", direction="outbound", content="Reminder",
            status="failed", message_type="shift_reminder", related_shift_id="shift-1",
        ))

        result = await process_shift_reminders(storage, notifications, now=DAY_BEFORE)

        assert result.skipped == 1
        twilio_client.messages.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_outside_window(self, storage, notifications, claimed):
        result = await process_shift_reminders(storage, notifications, now=datetime(2024, 1, 13, 12, 0))
        assert result.processed == 0

    @pytest.mark.asyncio
    async def test_started_shift_is_not_reminded(self, storage, notifications, claimed):
        result = await process_shift_reminders(storage, notifications, now=datetime(2024, 1, 15, 8, 0))
        assert result.processed == 0

    @pytest.mark.asyncio
    async def test_unclaimed_shift_is_ignored(self, storage, notifications):
        result = await process_shift_reminders(storage, notifications, now=DAY_BEFORE)
        assert result.processed == 0

    @pytest.mark.asyncio
    async def test_custom_window(self, storage, notifications, claimed):
        await storage.set_setting("shift_reminder_hours", "48")

        result = await process_shift_reminders(storage, notifications, now=datetime(2024, 1, 13, 12, 0))

        assert result.sent == 1

    @pytest.mark.asyncio
    async def test_disabled(self, storage, notifications, twilio_client, claimed):
        await storage.set_setting("shift_reminder_enabled", "false")

        result = await process_shift_reminders(storage, notifications, now=DAY_BEFORE)

        assert result.to_dict() == {"processed": 0, "sent": 0, "failed": 0, "skipped": 0}
        twilio_client.messages.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_opted_out_employee_is_skipped(self, storage, notifications, claimed):
        await storage.update_employee("emp-alice", {"sms_opt_in": False})

        result = await process_shift_reminders(storage, notifications, now=DAY_BEFORE)

        assert result.skipped == 1

    @pytest.mark.asyncio
    async def test_missing_employee_counts_as_failed(self, storage, notifications):
        await storage.update_shift("shift-1", {"status": "claimed", "assigned_employee_id": "emp-gone"})

        result = await process_shift_reminders(storage, notifications, now=DAY_BEFORE)

        assert result.failed == 1


class TestReminderStatus:
    """Test the reminder status summary."""

    @pytest.mark.asyncio
    async def test_status(self, storage, notifications, claimed):
        status = await get_reminder_status(storage, notifications, now=DAY_BEFORE)

        assert status == {"enabled": True, "hoursBeforeShift": 24, "upcomingShifts": 1}
