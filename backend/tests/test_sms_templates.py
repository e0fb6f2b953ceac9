"""
Unit Tests for the SMS template engine

Tests:
- Placeholder rendering and unknown placeholders
- Validation against the per-category variable whitelist
- Stored template lookup with the organization app_url

Run with: pytest tests/test_sms_templates.py -v
"""

import pytest

from models import SmsTemplate
from services.sms_templates import (
    TemplateContext, render_template, validate_template, preview_template,
    get_rendered_template, list_template_variables, MAX_TEMPLATE_LENGTH,
)

APP_URL = "https://org.example.com"


@pytest.fixture
def context(shift, alice, area, position):
    return TemplateContext(
        shift=shift, employee=alice, area=area, position=position,
        custom={"appUrl": APP_URL},
    )


class TestRenderTemplate:
    """Test {{variable}} substitution."""

    def test_shift_variables(self, context):
        text = render_template(
            "Hi {{employeeName}}: {{position}}{{area}} on {{date}} {{startTime}}-{{endTime}}", context
        )
        assert text == "Hi Alice Adams: DSP (Emergency) on 2024-01-15 07:00-15:00"

    def test_bonus_only_when_positive(self, context, shift):
        assert render_template("[{{bonus}}]", context) == "[]"

        context.shift = shift.model_copy(update={"bonus_amount": 25})
        assert render_template("[{{bonus}}]", context) == "[$25 bonus]"

    def test_claim_link_uses_app_url(self, context):
        assert render_template("{{claimLink}}", context) == f"{APP_URL}/shift/ABC123"

    def test_unknown_placeholder_is_kept(self, context):
        assert render_template("Code {{smsCode}} {{nope}}", context) == "Code ABC123 {{nope}}"

    def test_message_variable(self):
        context = TemplateContext(message="Staff meeting at 3", custom={"appUrl": APP_URL})
        assert render_template("{{message}}", context) == "Staff meeting at 3"

    def test_missing_area_renders_empty(self, context):
        context.area = None
        assert render_template("DSP{{area}}", context) == "DSP"


class TestValidateTemplate:
    """Test template validation."""

    def test_valid(self):
        result = validate_template("New shift {{date}} reply YES {{smsCode}}", "shift_notification")
        assert result.valid
        assert result.errors == []

    def test_unknown_variable(self):
        result = validate_template("{{claimLink}}", "shift_reminder")

        assert not result.valid
        assert result.errors[0].startswith("Unknown variable: {{claimLink}}.")

    def test_mismatched_braces(self):
        result = validate_template("Hello {{employeeName}", "general")

        assert "Mismatched braces in template" in result.errors

    def test_long_template_warns(self):
        result = validate_template("x" * (MAX_TEMPLATE_LENGTH + 1), "general")

        assert result.valid
        assert result.warnings

    def test_unknown_category_allows_no_variables(self):
        assert not validate_template("{{message}}", "marketing").valid


class TestTemplateRegistry:
    """Test the variable whitelist listing and preview."""

    def test_list_variables(self):
        variables = list_template_variables()

        names = [v["name"] for v in variables["shift_notification"]]
        assert "claimLink" in names
        assert "claimLink" not in [v["name"] for v in variables["shift_confirmation"]]
        assert variables["general"][0] == {"name": "message", "description": "Custom message content"}

    def test_preview_uses_sample_data(self):
        assert preview_template("{{employeeName}} {{bonus}}", "shift_notification") == "John Smith $50 bonus"


class TestStoredTemplates:
    """Test rendering the active stored template for a category."""

    @pytest.mark.asyncio
    async def test_no_template(self, storage, shift):
        assert await get_rendered_template(storage, "shift_reminder", TemplateContext(shift=shift)) is None

    @pytest.mark.asyncio
    async def test_inactive_template_ignored(self, storage, shift):
        storage.add_template(SmsTemplate(
            name="Reminder", category="shift_reminder", content="{{date}}", is_active=False,
        ))
        assert await get_rendered_template(storage, "shift_reminder", TemplateContext(shift=shift)) is None

    @pytest.mark.asyncio
    async def test_app_url_setting(self, storage, shift):
        storage.add_template(SmsTemplate(
            name="New shift", category="shift_notification", content="Claim: {{claimLink}}",
        ))
        await storage.set_setting("app_url", APP_URL)

        text = await get_rendered_template(storage, "shift_notification", TemplateContext(shift=shift))

        assert text == f"Claim: {APP_URL}/shift/ABC123"
