"""
HTTP tests for the SMS admin API, carrier webhooks and health endpoints

The app is built with the in-memory store and the mocked Twilio client
from conftest, and driven through FastAPI's TestClient.

Run with: pytest tests/test_sms_routes.py -v
"""

import pytest
from fastapi.testclient import TestClient
from twilio.request_validator import RequestValidator

from models import SmsTemplate
from server import create_app

from conftest import ADMIN_KEY, TWILIO_AUTH_TOKEN, audit_actions

INBOUND_URL = "http://testserver/api/webhooks/twilio/inbound"
STATUS_URL = "http://testserver/api/webhooks/twilio/status"


@pytest.fixture
def client(settings, storage, gateway):
    app = create_app(
        settings.model_copy(update={"SMS_RESPECT_QUIET_HOURS": False}),
        storage=storage,
        gateway=gateway,
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin():
    return {"X-Admin-Api-Key": ADMIN_KEY, "X-Admin-Name": "Pat Admin"}


def signed(url, params):
    return {"X-Twilio-Signature": RequestValidator(TWILIO_AUTH_TOKEN).compute_signature(url, params)}


class TestAdminAuth:
    """Test the admin API key guard."""

    def test_missing_key(self, client):
        response = client.get("/api/sms/status")
        assert response.status_code == 401
        assert response.json()["detail"] == "Missing admin API key"

    def test_wrong_key(self, client):
        response = client.get("/api/sms/status", headers={"X-Admin-Api-Key": "nope"})
        assert response.status_code == 401

    def test_rotated_keys(self, settings, storage, gateway):
        app = create_app(
            settings.model_copy(update={"SMS_ADMIN_API_KEY": f"old-key, {ADMIN_KEY}"}),
            storage=storage, gateway=gateway,
        )
        with TestClient(app) as test_client:
            for key in ("old-key", ADMIN_KEY):
                response = test_client.get("/api/sms/status", headers={"X-Admin-Api-Key": key})
                assert response.status_code == 200


class TestSMSRoutes:
    """Test the admin SMS endpoints."""

    def test_status(self, client, admin):
        data = client.get("/api/sms/status", headers=admin).json()

        assert data["provider"] == "twilio"
        assert data["ready"] is True
        assert data["active_provider"] == "twilio"
        assert data["from_number"] != "+15550001111"

    def test_test_send(self, client, admin, storage, twilio_client):
        response = client.post("/api/sms/test", json={"to": "(555) 123-4567"}, headers=admin)

        assert response.status_code == 200
        assert response.json()["provider_message_id"] == "SM0001"
        assert twilio_client.messages.create.call_args.kwargs["to"] == "+15551234567"
        entry = storage.audit_logs[-1]
        assert entry.action == "sms_test"
        assert entry.actor_name == "Pat Admin"

    def test_test_send_invalid_phone(self, client, admin, twilio_client):
        response = client.post("/api/sms/test", json={"to": "123"}, headers=admin)

        assert response.status_code == 400
        twilio_client.messages.create.assert_not_called()

    def test_send_unknown_employee(self, client, admin):
        response = client.post("/api/sms/send", json={"employee_id": "emp-x", "message": "Hi"}, headers=admin)
        assert response.status_code == 404

    def test_send(self, client, admin, storage):
        response = client.post(
            "/api/sms/send", json={"employee_id": "emp-alice", "message": "Hi"}, headers=admin
        )

        assert response.json()["success"] is True
        assert "sms_sent" in audit_actions(storage)

    def test_bulk_skips_unknown_and_opted_out(self, client, admin):
        response = client.post("/api/sms/bulk", json={
            "employee_ids": ["emp-alice", "emp-bob", "emp-carol", "emp-x"], "message": "Staff meeting",
        }, headers=admin)

        data = response.json()
        assert data["total"] == 2
        assert data["successful"] == 2

    def test_bulk_requires_recipients(self, client, admin):
        response = client.post("/api/sms/bulk", json={"employee_ids": [], "message": "x"}, headers=admin)
        assert response.status_code == 422

    def test_reminders_status(self, client, admin):
        data = client.get("/api/sms/reminders/status", headers=admin).json()
        assert data["hoursBeforeShift"] == 24

    def test_reminders_process(self, client, admin):
        data = client.post("/api/sms/reminders/process", headers=admin).json()
        assert set(data) == {"processed", "sent", "failed", "skipped"}


class TestSettingsRoutes:
    """Test updating SMS organization settings."""

    def test_unknown_key(self, client, admin):
        response = client.put("/api/sms/settings/favorite_color", json={"value": "blue"}, headers=admin)
        assert response.status_code == 400

    def test_unsupported_provider(self, client, admin):
        response = client.put("/api/sms/settings/sms_provider", json={"value": "carrier-pigeon"}, headers=admin)
        assert response.status_code == 400

    def test_secret_is_redacted(self, client, admin, storage):
        response = client.put(
            "/api/sms/settings/twilio_auth_token", json={"value": "new-secret"}, headers=admin
        )

        assert response.status_code == 200
        assert storage.settings["twilio_auth_token"] == "new-secret"
        entry = storage.audit_logs[-1]
        assert entry.action == "setting_updated"
        assert entry.details["value"] == "[REDACTED]"

    def test_plain_setting_is_logged(self, client, admin, storage):
        client.put("/api/sms/settings/shift_reminder_hours", json={"value": "12"}, headers=admin)

        assert storage.audit_logs[-1].details["value"] == "12"

    @pytest.mark.parametrize("key, value", [
        ("sms_quiet_hours_start", "22"),
        ("sms_quiet_hours_end", "25:00"),
        ("shift_reminder_hours", "soon"),
        ("shift_reminder_hours", "0"),
    ])
    def test_malformed_value_rejected(self, client, admin, storage, key, value):
        response = client.put(f"/api/sms/settings/{key}", json={"value": value}, headers=admin)

        assert response.status_code == 400
        assert key not in storage.settings

    def test_quiet_hours_accepted(self, client, admin, storage):
        response = client.put("/api/sms/settings/sms_quiet_hours_start", json={"value": "21:30"}, headers=admin)

        assert response.status_code == 200
        assert storage.settings["sms_quiet_hours_start"] == "21:30"


class TestTemplateRoutes:
    """Test template management."""

    def test_create_invalid(self, client, admin):
        response = client.post("/api/sms/templates", json={
            "name": "Bad", "category": "shift_reminder", "content": "{{claimLink}}",
        }, headers=admin)

        assert response.status_code == 400
        assert response.json()["detail"]["errors"]

    def test_create_and_fetch(self, client, admin):
        response = client.post("/api/sms/templates", json={
            "name": "Reminder", "category": "shift_reminder", "content": "See you {{date}} at {{startTime}}",
        }, headers=admin)

        assert response.status_code == 201
        template_id = response.json()["id"]
        assert client.get(f"/api/sms/templates/{template_id}", headers=admin).json()["name"] == "Reminder"

    def test_update_validates_merged_content(self, client, admin, storage):
        template = storage.add_template(SmsTemplate(name="Reminder", category="shift_reminder", content="{{date}}"))

        response = client.patch(
            f"/api/sms/templates/{template.id}", json={"category": "general"}, headers=admin
        )

        assert response.status_code == 400

    def test_variables(self, client, admin):
        data = client.get("/api/sms/templates/variables", headers=admin).json()
        assert "shift_notification" in data

    def test_preview(self, client, admin, storage):
        template = storage.add_template(SmsTemplate(name="Hi", category="general", content="Hi {{employeeName}}"))

        data = client.post(f"/api/sms/templates/{template.id}/preview", headers=admin).json()

        assert data["preview"] == "Hi John Smith"
        assert data["validation"]["valid"] is True

    def test_delete_system_template(self, client, admin, storage):
        template = storage.add_template(SmsTemplate(
            name="Default", category="general", content="{{message}}", is_system=True,
        ))

        response = client.delete(f"/api/sms/templates/{template.id}", headers=admin)

        assert response.status_code == 403

    def test_delete_missing_template(self, client, admin):
        assert client.delete("/api/sms/templates/nope", headers=admin).status_code == 404


class TestSubscriptionRoutes:
    """RingCentral subscriptions need RingCentral to be active."""

    def test_rejected_on_twilio(self, client, admin):
        response = client.post("/api/sms/subscriptions", json={}, headers=admin)

        assert response.status_code == 400
        assert response.json()["detail"] == "RingCentral is not the active SMS provider"


class TestWebhookRoutes:
    """Test the carrier webhook endpoints."""

    def test_twilio_inbound_signed(self, client):
        params = {"MessageSid": "SM-in-1", "From": "+15551234567", "To": "+15550001111", "Body": "YES ABC123"}

        response = client.post("/api/webhooks/twilio/inbound", data=params, headers=signed(INBOUND_URL, params))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/xml")
        assert "Got it!" in response.text

    def test_twilio_inbound_bad_signature(self, client):
        params = {"MessageSid": "SM-in-1", "From": "+15551234567", "Body": "STOP"}

        response = client.post("/api/webhooks/twilio/inbound", data=params, headers={"X-Twilio-Signature": "bad"})

        assert response.status_code == 403

    def test_twilio_status_requires_message_sid(self, client):
        params = {"MessageStatus": "delivered"}

        response = client.post("/api/webhooks/twilio/status", data=params, headers=signed(STATUS_URL, params))

        assert response.status_code == 400

    def test_twilio_status_unknown_message(self, client):
        params = {"MessageSid": "SM-unknown", "MessageStatus": "delivered"}

        response = client.post("/api/webhooks/twilio/status", data=params, headers=signed(STATUS_URL, params))

        assert response.status_code == 200
        assert "<Response></Response>" in response.text

    def test_ringcentral_validation_token(self, client):
        response = client.post("/api/webhooks/ringcentral/inbound", headers={"Validation-Token": "abc"})

        assert response.status_code == 200
        assert response.headers["Validation-Token"] == "abc"

    def test_ringcentral_garbage_body(self, client):
        response = client.post(
            "/api/webhooks/ringcentral/status", content=b"not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.text == "OK"

    def test_unknown_provider(self, client):
        assert client.post("/api/webhooks/nexmo/inbound").status_code == 404


class TestInactiveProviderWebhooks:
    """Webhooks for a provider that is not active are never processed."""

    @pytest.fixture
    def disabled_client(self, settings, storage, gateway, shift):
        storage.add_shift(shift.model_copy(update={"status": "claimed", "assigned_employee_id": "emp-alice"}))
        app = create_app(settings.model_copy(update={"SMS_ENABLED": False}), storage=storage, gateway=gateway)
        with TestClient(app) as test_client:
            yield test_client

    def test_unsigned_twilio_inbound_rejected(self, disabled_client, storage):
        params = {"MessageSid": "SM-in-9", "From": "+15551234567", "Body": "CANCEL"}

        response = disabled_client.post("/api/webhooks/twilio/inbound", data=params)

        assert response.status_code == 403
        assert storage.shifts["shift-1"].status == "claimed"
        assert storage.shifts["shift-1"].assigned_employee_id == "emp-alice"

    def test_signed_twilio_inbound_rejected(self, disabled_client, storage):
        params = {"MessageSid": "SM-in-9", "From": "+15551234567", "Body": "STOP"}

        response = disabled_client.post(
            "/api/webhooks/twilio/inbound", data=params, headers=signed(INBOUND_URL, params)
        )

        assert response.status_code == 403
        assert storage.employees["emp-alice"].sms_opt_in is True

    def test_ringcentral_push_ignored_while_twilio_active(self, client, storage):
        response = client.post("/api/webhooks/ringcentral/inbound", json={
            "event": "/restapi/v1.0/account/~/extension/~/message-store/instant?type=SMS",
            "body": {
                "id": "rc-in-1",
                "from": {"phoneNumber": "+15551234567"},
                "to": [{"phoneNumber": "+15550009999"}],
                "subject": "STOP",
                "direction": "Inbound",
            },
        })

        assert response.status_code == 200
        assert response.text == "OK"
        assert storage.employees["emp-alice"].sms_opt_in is True


class TestHealthRoutes:
    """Test health endpoints."""

    def test_liveness(self, client):
        assert client.get("/api/health/live").json()["status"] == "alive"

    def test_health(self, client):
        data = client.get("/api/health").json()

        assert data["status"] == "healthy"
        assert data["checks"]["database"] == {"status": "in_memory"}
        assert data["checks"]["sms_provider"] == {"status": "ready", "provider": "twilio"}
