"""
Shared fixtures for the SMS gateway tests.

The Twilio driver is real; only the SDK client is mocked, so every test
goes through phone validation, error mapping and TwiML generation.
"""

import pytest
from datetime import date, datetime
from unittest.mock import AsyncMock, MagicMock

from config import Settings
from models import Area, Position, Employee, Shift
from services.audit import AuditLogger
from services.sms_commands import InboundCommandProcessor
from services.sms_notifications import SMSNotificationService
from services.sms_webhooks import SMSWebhookService
from services.storage import InMemoryStorage
from sms_integration import SMSGateway, SMSProviderType, TwilioProvider, TokenBucket

TWILIO_FROM = "+15550001111"
TWILIO_AUTH_TOKEN = "test-auth-token"
ADMIN_KEY = "test-admin-key"

# Monday 12:00 local, outside the default 22:00-07:00 quiet window
NOON = datetime(2024, 1, 15, 12, 0)
TODAY = date(2024, 1, 10)


@pytest.fixture
def settings():
    return Settings(
        ENVIRONMENT="development",
        SMS_ENABLED=True,
        SMS_PROVIDER="twilio",
        TWILIO_ACCOUNT_SID="AC_test",
        TWILIO_AUTH_TOKEN=TWILIO_AUTH_TOKEN,
        TWILIO_FROM_NUMBER=TWILIO_FROM,
        SMS_ADMIN_API_KEY=ADMIN_KEY,
        APP_URL="https://shifts.example.com",
        WEBHOOK_BASE_URL="",
        SMS_RETRY_INITIAL_DELAY_MS=1000,
        SMS_RATE_LIMIT_PER_SECOND=1000,
        SMS_RATE_LIMIT_BURST=100,
    )


@pytest.fixture
def twilio_client():
    """Mock of twilio.rest.Client; messages.create returns an accepted message."""
    client = MagicMock()
    client.messages.create.return_value = MagicMock(sid="SM0001", status="queued", num_segments="1")
    return client


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def gateway(twilio_client, sleep):
    def factory(provider_type):
        assert provider_type == SMSProviderType.TWILIO
        return TwilioProvider(sleep=sleep, client_factory=lambda sid, token: twilio_client)

    return SMSGateway(provider_factory=factory)


@pytest.fixture
def area():
    return Area(id="area-er", name="Emergency")


@pytest.fixture
def position():
    return Position(id="pos-dsp", title="DSP")


@pytest.fixture
def alice(area, position):
    return Employee(
        id="emp-alice", name="Alice Adams", phone="+15551234567",
        position_id=position.id, area_ids=[area.id],
    )


@pytest.fixture
def bob(area, position):
    return Employee(
        id="emp-bob", name="Bob Brown", phone="(555) 765-4321",
        position_id=position.id, area_ids=[area.id],
    )


@pytest.fixture
def carol(area, position):
    return Employee(
        id="emp-carol", name="Carol Clark", phone="+15550002222",
        position_id=position.id, area_ids=[area.id], sms_opt_in=False,
    )


@pytest.fixture
def dave(area, position):
    return Employee(
        id="emp-dave", name="Dave Davis", phone="+15550003333",
        position_id=position.id, area_ids=[area.id], status="inactive",
    )


@pytest.fixture
def shift(area, position):
    return Shift(
        id="shift-1", position_id=position.id, area_id=area.id,
        location="Main Building", date="2024-01-15",
        start_time="07:00", end_time="15:00", sms_code="ABC123",
    )


@pytest.fixture
def storage(area, position, alice, bob, carol, dave, shift):
    store = InMemoryStorage()
    store.add_area(area)
    store.add_position(position)
    for employee in (alice, bob, carol, dave):
        store.add_employee(employee)
    store.add_shift(shift)
    return store


@pytest.fixture
def audit(storage):
    return AuditLogger(storage)


@pytest.fixture
def notifications(storage, gateway, audit, settings):
    return SMSNotificationService(
        storage, gateway, audit,
        rate_limiter=TokenBucket(rate=1000, capacity=100),
        env=settings,
        clock=lambda: NOON,
    )


@pytest.fixture
def processor_factory(storage, audit):
    def factory(provider_type):
        return InboundCommandProcessor(storage, audit, provider_type, today=lambda: TODAY)

    return factory


@pytest.fixture
def webhooks(storage, gateway, audit, processor_factory):
    return SMSWebhookService(storage, gateway, audit, processor_factory=processor_factory)


def audit_actions(storage):
    return [entry.action for entry in storage.audit_logs]
