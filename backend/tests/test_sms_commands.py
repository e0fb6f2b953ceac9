"""
Unit Tests for inbound SMS commands

Tests:
- Keyword classification and shift code extraction
- Employee lookup by phone number
- Command handlers: YES/NO/STATUS/SHIFTS/CONFIRM/CANCEL/HELP/STOP/START
- Opt-out behaviour per provider

Run with: pytest tests/test_sms_commands.py -v
"""

import pytest
from datetime import datetime, timezone

from models import Message, MessageType
from services.sms_commands import (
    InboundCommandProcessor,
    find_employee_by_phone,
    format_date_for_sms,
    phones_match,
    HELP_REPLY,
)
from sms_integration import CommandType, InboundMessage, SMSProviderType, parse_inbound_command

from conftest import TODAY, audit_actions


def inbound(body, from_number="+15551234567"):
    return InboundMessage(message_id="SM-in-1", from_number=from_number, to_number="+15550001111", body=body)


class TestCommandParsing:
    """Test keyword classification."""

    @pytest.mark.parametrize("body,expected", [
        ("YES", CommandType.INTEREST_YES),
        ("y", CommandType.INTEREST_YES),
        ("  interested  ", CommandType.INTEREST_YES),
        ("Claim", CommandType.INTEREST_YES),
        ("no thanks", CommandType.INTEREST_NO),
        ("Can't make it", CommandType.INTEREST_NO),
        ("not interested", CommandType.INTEREST_NO),
        ("decline", CommandType.INTEREST_NO),
        ("confirm", CommandType.CONFIRM),
        ("CANCEL please", CommandType.CANCEL),
        ("status", CommandType.STATUS),
        ("shift", CommandType.SHIFTS),
        ("SHIFTS", CommandType.SHIFTS),
        ("help", CommandType.HELP),
        ("STOP", CommandType.STOP),
        ("unsubscribe", CommandType.STOP),
        ("start", CommandType.START),
        ("Subscribe", CommandType.START),
        ("Hello there", CommandType.UNKNOWN),
        ("", CommandType.UNKNOWN),
    ])
    def test_classification(self, body, expected):
        assert parse_inbound_command(body).type == expected

    def test_yes_extracts_shift_code(self):
        parsed = parse_inbound_command("yes abc123")
        assert parsed.shift_code == "ABC123"
        assert parsed.original_message == "yes abc123"

    def test_yes_without_valid_code(self):
        assert parse_inbound_command("YES ABC12").shift_code is None
        assert parse_inbound_command("YES").shift_code is None

    def test_only_yes_carries_code(self):
        assert parse_inbound_command("CANCEL ABC123").shift_code is None


class TestPhoneLookup:
    """Test matching inbound numbers to employees."""

    def test_phones_match(self):
        assert phones_match("+15557654321", "(555) 765-4321")
        assert phones_match("+1 555 765 4321", "+15557654321")
        assert not phones_match("+15557654321", "+15557654322")
        assert not phones_match("", "+15557654321")

    @pytest.mark.asyncio
    async def test_find_employee_by_last_ten_digits(self, storage):
        employee = await find_employee_by_phone(storage, "+15557654321")
        assert employee.id == "emp-bob"

    @pytest.mark.asyncio
    async def test_unknown_number(self, storage):
        assert await find_employee_by_phone(storage, "+19999999999") is None

    def test_format_date_for_sms(self):
        assert format_date_for_sms("2024-01-15") == "Mon, Jan 15"
        assert format_date_for_sms("soon") == "soon"


class TestInterestCommands:
    """Test YES / NO handling."""

    @pytest.fixture
    def processor(self, storage, audit):
        return InboundCommandProcessor(storage, audit, SMSProviderType.TWILIO, today=lambda: TODAY)

    @pytest.mark.asyncio
    async def test_yes_with_code_records_interest(self, processor, storage, alice):
        reply = await processor.process(alice, parse_inbound_command("YES ABC123"), inbound("YES ABC123"))

        assert reply.startswith(
            "Got it! You've expressed interest in the shift on Mon, Jan 15 (07:00-15:00) "
            "at Main Building (Emergency)."
        )
        interests = await storage.get_shift_interests("shift-1")
        assert [i.employee_id for i in interests] == ["emp-alice"]
        assert audit_actions(storage) == ["shift_interest_via_sms"]

    @pytest.mark.asyncio
    async def test_duplicate_yes(self, processor, storage, alice):
        await processor.handle_interest_yes(alice, "ABC123")

        reply = await processor.handle_interest_yes(alice, "ABC123")

        assert reply.startswith("You've already expressed interest in this shift.")
        assert len(await storage.get_shift_interests("shift-1")) == 1
        assert audit_actions(storage) == ["shift_interest_via_sms"]

    @pytest.mark.asyncio
    async def test_yes_unknown_code(self, processor, alice):
        reply = await processor.handle_interest_yes(alice, "XYZ999")
        assert reply == (
            "Sorry, we couldn't find a shift with code XYZ999. Reply SHIFTS to see available shifts."
        )

    @pytest.mark.asyncio
    async def test_yes_without_code_and_no_notification(self, processor, alice):
        reply = await processor.handle_interest_yes(alice)
        assert reply.startswith("Sorry, we couldn't find a shift to match your reply.")

    @pytest.mark.asyncio
    async def test_yes_without_code_uses_last_notification(self, processor, storage, alice):
        await storage.create_message(Message(
            employee_id=alice.id,
            direction="outbound",
            content="New shift",
            status="sent",
            message_type=MessageType.shift_notification.value,
            related_shift_id="shift-1",
        ))

        reply = await processor.handle_interest_yes(alice)

        assert reply.startswith("Got it!")
        assert len(await storage.get_shift_interests("shift-1")) == 1

    @pytest.mark.asyncio
    async def test_yes_on_claimed_shift(self, processor, storage, alice):
        await storage.update_shift("shift-1", {"status": "claimed", "assigned_employee_id": "emp-bob"})

        reply = await processor.handle_interest_yes(alice, "ABC123")

        assert reply == "That shift has already been claimed. Reply SHIFTS to see other available shifts."
        assert await storage.get_shift_interests("shift-1") == []

    @pytest.mark.asyncio
    async def test_no_audits_decline(self, processor, storage, alice):
        await storage.create_message(Message(
            employee_id=alice.id, direction="outbound", content="New shift",
            message_type=MessageType.shift_notification.value, related_shift_id="shift-1",
        ))

        reply = await processor.process(alice, parse_inbound_command("NO"), inbound("NO"))

        assert reply.startswith("No problem!")
        assert audit_actions(storage) == ["shift_interest_declined_via_sms"]


class TestStatusCommands:
    """Test STATUS / SHIFTS / HELP."""

    @pytest.fixture
    def processor(self, storage, audit):
        return InboundCommandProcessor(storage, audit, SMSProviderType.TWILIO, today=lambda: TODAY)

    @pytest.mark.asyncio
    async def test_status_empty(self, processor, alice):
        reply = await processor.handle_status(alice)
        assert reply == (
            "[ShiftConnect] Your Status:\n\n"
            "No upcoming shifts or pending interests.\n\n"
            "Reply SHIFTS to see available shifts."
        )

    @pytest.mark.asyncio
    async def test_status_lists_assigned_and_pending(self, processor, storage, alice, shift):
        other = shift.model_copy(update={"id": "shift-2", "sms_code": "DEF456", "date": "2024-01-16"})
        storage.add_shift(other)
        await storage.update_shift("shift-1", {"status": "claimed", "assigned_employee_id": alice.id})
        await storage.create_shift_interest("shift-2", alice.id)

        reply = await processor.handle_status(alice)

        assert "ASSIGNED SHIFTS:\n- Mon, Jan 15 07:00-15:00 at Main Building" in reply
        assert "PENDING INTERESTS:\n- Tue, Jan 16 07:00-15:00 at Main Building" in reply

    @pytest.mark.asyncio
    async def test_past_assignments_not_listed(self, storage, audit, alice):
        await storage.update_shift("shift-1", {"status": "claimed", "assigned_employee_id": alice.id})
        processor = InboundCommandProcessor(
            storage, audit, SMSProviderType.TWILIO, today=lambda: datetime(2024, 2, 1).date()
        )

        reply = await processor.handle_status(alice)

        assert "No upcoming shifts" in reply

    @pytest.mark.asyncio
    async def test_shifts_lists_matching_position(self, processor, alice):
        reply = await processor.handle_shifts(alice)

        assert reply.startswith("[ShiftConnect] Available Shifts:\n\n")
        assert "Mon, Jan 15 07:00-15:00\n  Main Building (Emergency)\n  Code: ABC123" in reply
        assert reply.endswith("Reply YES <code> to express interest.")

    @pytest.mark.asyncio
    async def test_shifts_none_for_other_position(self, processor, alice):
        nurse = alice.model_copy(update={"position_id": "pos-rn"})
        reply = await processor.handle_shifts(nurse)
        assert reply.startswith("[ShiftConnect] No available shifts matching your position right now.")

    @pytest.mark.asyncio
    async def test_help(self, processor, alice):
        reply = await processor.process(alice, parse_inbound_command("HELP"), inbound("HELP"))
        assert reply == HELP_REPLY


class TestAssignmentCommands:
    """Test CONFIRM / CANCEL."""

    @pytest.fixture
    def processor(self, storage, audit):
        return InboundCommandProcessor(storage, audit, SMSProviderType.TWILIO, today=lambda: TODAY)

    @pytest.mark.asyncio
    async def test_confirm_assigned_shift(self, processor, storage, alice):
        await storage.update_shift("shift-1", {"status": "claimed", "assigned_employee_id": alice.id})

        reply = await processor.handle_confirm(alice)

        assert reply.startswith("Thanks for confirming! Your shift on Mon, Jan 15 (07:00-15:00)")
        assert audit_actions(storage) == ["shift_confirmed_via_sms"]

    @pytest.mark.asyncio
    async def test_confirm_nothing_assigned(self, processor, alice):
        reply = await processor.handle_confirm(alice)
        assert reply.startswith("You don't have any pending shift assignments to confirm.")

    @pytest.mark.asyncio
    async def test_cancel_withdraws_pending_interest_first(self, processor, storage, alice):
        await storage.create_shift_interest("shift-1", alice.id)

        reply = await processor.handle_cancel(alice)

        assert reply == "Your interest in the shift on Mon, Jan 15 (07:00-15:00) has been withdrawn."
        assert await storage.get_shift_interests("shift-1") == []
        assert audit_actions(storage) == ["shift_interest_cancelled_via_sms"]

    @pytest.mark.asyncio
    async def test_cancel_unassigns_shift(self, processor, storage, alice):
        await storage.update_shift("shift-1", {"status": "claimed", "assigned_employee_id": alice.id})

        reply = await processor.handle_cancel(alice)

        shift = await storage.get_shift("shift-1")
        assert shift.status == "available"
        assert shift.assigned_employee_id is None
        assert reply.startswith("Your shift on Mon, Jan 15 (07:00-15:00) has been cancelled.")
        assert audit_actions(storage) == ["shift_cancelled_via_sms"]

    @pytest.mark.asyncio
    async def test_cancel_nothing(self, processor, alice):
        reply = await processor.handle_cancel(alice)
        assert reply.startswith("You don't have any shifts or pending interests to cancel.")


class TestOptCommands:
    """Test STOP / START per provider."""

    @pytest.mark.asyncio
    async def test_stop_on_twilio_confirms(self, storage, audit, alice):
        processor = InboundCommandProcessor(storage, audit, SMSProviderType.TWILIO)

        reply = await processor.process(alice, parse_inbound_command("STOP"), inbound("STOP"))

        assert reply == "You have been unsubscribed from SMS notifications. Reply START to re-subscribe."
        assert (await storage.get_employee(alice.id)).sms_opt_in is False
        assert audit_actions(storage) == ["sms_opt_out"]

    @pytest.mark.asyncio
    async def test_stop_on_ringcentral_sends_nothing(self, storage, audit, alice):
        processor = InboundCommandProcessor(storage, audit, SMSProviderType.RINGCENTRAL)

        reply = await processor.process(alice, parse_inbound_command("STOP"), inbound("STOP"))

        assert reply is None
        assert (await storage.get_employee(alice.id)).sms_opt_in is False
        assert audit_actions(storage) == ["sms_opt_out"]

    @pytest.mark.asyncio
    async def test_start_resubscribes(self, storage, audit, carol):
        processor = InboundCommandProcessor(storage, audit, SMSProviderType.RINGCENTRAL)

        reply = await processor.process(carol, parse_inbound_command("START"), inbound("START", carol.phone))

        assert reply == "You have been subscribed to SMS notifications. Reply STOP to unsubscribe."
        assert (await storage.get_employee(carol.id)).sms_opt_in is True
        assert audit_actions(storage) == ["sms_opt_in"]


class TestUnknownCommand:
    """Test free-text messages."""

    @pytest.mark.asyncio
    async def test_unknown_is_stored_for_supervisor(self, storage, audit, alice):
        processor = InboundCommandProcessor(storage, audit, SMSProviderType.TWILIO)

        reply = await processor.process(
            alice, parse_inbound_command("Running late today"), inbound("Running late today")
        )

        assert reply == "Message received. A supervisor will respond shortly. Reply HELP for available commands."
        messages = await storage.get_employee_messages(alice.id)
        assert len(messages) == 1
        assert messages[0].direction == "inbound"
        assert messages[0].content == "Running late today"
        assert messages[0].provider_message_id == "SM-in-1"
        assert audit_actions(storage) == ["sms_inbound"]
        assert storage.audit_logs[0].details["from"] == "+1555***"
