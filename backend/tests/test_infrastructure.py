"""
Infrastructure Tests for the SMS gateway

Tests:
- Environment validation and production checks
- CORS configuration
- Phone masking in log output and Sentry events
- Admin API key validation and request context logging

Run with: pytest tests/test_infrastructure.py -v
"""

import json
import logging
import sys

import pytest

from config import Settings, get_cors_config, validate_environment
from logging_config import JSONFormatter, PlainFormatter, RequestContextFilter, mask_phone_numbers, setup_logging
from middleware.admin_auth import validate_admin_key, generate_admin_api_key
from sentry_integration import redact_dict, filter_sensitive_data


def make_record(message, exc_info=None):
    return logging.LogRecord(
        name="services.sms_notifications", level=logging.INFO, pathname=__file__,
        lineno=1, msg=message, args=(), exc_info=exc_info,
    )


class TestEnvironmentValidation:
    """Test validate_environment and production checks."""

    def test_enabled_without_credentials_is_invalid(self):
        status = validate_environment(Settings(SMS_ENABLED=True, SMS_PROVIDER="twilio"))

        assert status["valid"] is False
        assert "TWILIO_ACCOUNT_SID" in status["errors"][0]

    def test_disabled_without_credentials_warns(self):
        status = validate_environment(Settings(SMS_ENABLED=False))

        assert status["valid"] is True
        assert any("credentials incomplete" in w for w in status["warnings"])

    def test_ringcentral_credentials(self):
        settings = Settings(SMS_PROVIDER="ringcentral", RINGCENTRAL_CLIENT_ID="id")
        assert settings.provider_credentials_missing == [
            "RINGCENTRAL_CLIENT_SECRET", "RINGCENTRAL_JWT", "RINGCENTRAL_FROM_NUMBER",
        ]

    def test_unknown_provider(self):
        assert Settings(SMS_PROVIDER="nexmo").validate_production_config()

    def test_production_requirements(self):
        errors = Settings(ENVIRONMENT="production", SMS_ADMIN_API_KEY="short").validate_production_config()

        assert "DATABASE_URL is required in production" in errors
        assert "SMS_ADMIN_API_KEY should be at least 32 characters" in errors
        assert "WEBHOOK_BASE_URL is required in production" in errors

    def test_variables_never_expose_values(self, settings):
        status = validate_environment(settings)
        assert "test-admin-key" not in json.dumps(status)


class TestCorsConfig:
    """Test CORS origins per environment."""

    def test_development_adds_localhost(self):
        config = get_cors_config(Settings(CORS_ORIGINS="https://admin.example.com"))

        assert "https://admin.example.com" in config["allow_origins"]
        assert "http://localhost:3000" in config["allow_origins"]
        assert "X-Admin-Api-Key" in config["allow_headers"]
        assert "PUT" in config["allow_methods"]

    def test_production_only_configured(self):
        config = get_cors_config(Settings(ENVIRONMENT="production", CORS_ORIGINS="https://admin.example.com"))
        assert config["allow_origins"] == ["https://admin.example.com"]

    def test_wildcard_ignored(self):
        settings = Settings(ENVIRONMENT="production", CORS_ORIGINS="*")

        assert settings.cors_origins_list == []
        assert "CORS_ORIGINS cannot be '*' in production" in settings.validate_production_config()


class TestLogging:
    """Test log formatting and phone masking."""

    @pytest.mark.parametrize("text, expected", [
        ("Sending SMS to +15551234567", "Sending SMS to +15551***"),
        ("from 15551234567 ok", "from 15551*** ok"),
        ("shift ABC123 at 07:00", "shift ABC123 at 07:00"),
    ])
    def test_mask_phone_numbers(self, text, expected):
        assert mask_phone_numbers(text) == expected

    def test_json_formatter(self):
        context = RequestContextFilter()
        context.set_request_context("req-1")
        record = make_record("Sending SMS via Twilio to +15551234567")
        context.filter(record)

        data = json.loads(JSONFormatter().format(record))

        assert data["service"] == "shiftconnect-sms"
        assert data["message"] == "Sending SMS via Twilio to +15551***"
        assert data["request_id"] == "req-1"

    def test_request_context_cleared(self):
        context = RequestContextFilter()
        context.set_request_context("req-1")
        context.clear_request_context()
        record = make_record("done")
        context.filter(record)

        assert record.request_id is None

    def test_json_formatter_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = make_record("failed", exc_info=sys.exc_info())

        data = json.loads(JSONFormatter().format(record))
        assert data["exception"]["type"] == "ValueError"

    def test_plain_formatter_masks(self):
        assert "+15551234567" not in PlainFormatter().format(make_record("to +15551234567"))

    def test_setup_logging_single_handler(self):
        root = setup_logging(level="DEBUG", json_format=False)
        setup_logging(level="INFO", json_format=False)

        assert len(root.handlers) == 1
        assert root.level == logging.INFO


class TestSentryScrubbing:
    """Test redaction of carrier credentials and message data."""

    def test_redact_dict(self):
        redacted = redact_dict({
            "X-Twilio-Signature": "abc",
            "X-Admin-Api-Key": "secret",
            "From": "+15551234567",
            "Body": "YES ABC123",
            "nested": {"auth_token": "t", "count": 3},
            "records": [{"phoneNumber": "+15551234567"}],
        })

        assert redacted["X-Twilio-Signature"] == "[REDACTED]"
        assert redacted["X-Admin-Api-Key"] == "[REDACTED]"
        assert redacted["From"] == "+15551***"
        assert redacted["Body"] == "[REDACTED]"
        assert redacted["nested"] == {"auth_token": "[REDACTED]", "count": 3}
        assert redacted["records"] == [{"phoneNumber": "+15551***"}]

    def test_filter_event(self):
        event = filter_sensitive_data({
            "request": {"headers": {"Authorization": "Bearer x"}, "data": {"To": "+15557654321"}},
            "logentry": {"message": "Inbound SMS from +15557654321"},
        }, {})

        assert event["request"]["headers"]["Authorization"] == "[REDACTED]"
        assert event["request"]["data"]["To"] == "+15557***"
        assert event["logentry"]["message"] == "Inbound SMS from +15557***"


class TestAdminKey:
    """Test admin API key validation."""

    def test_valid_and_rotated(self):
        settings = Settings(SMS_ADMIN_API_KEY="new-key,old-key")

        assert validate_admin_key("new-key", settings)
        assert validate_admin_key("old-key", settings)
        assert not validate_admin_key("other", settings)
        assert not validate_admin_key(None, settings)

    def test_no_keys_locks_routes(self):
        assert not validate_admin_key("anything", Settings(SMS_ADMIN_API_KEY=""))

    def test_generated_keys_are_long(self):
        assert len(generate_admin_api_key()) >= 48
