"""
SMS Template Engine - Rendering, Validation and Preview

Templates are stored per category and use {{variable}} placeholders.
Each category has a whitelist of variables (TEMPLATE_VARIABLES).

Unknown placeholders are left in the output untouched so that a broken
template shows up in the delivered text instead of silently losing words.
"""

import re
import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, Any, List, Optional

from config import get_settings
from models import Shift, Employee, Area, Position

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{(\w+)\}\}")

# Roughly ten concatenated SMS segments
MAX_TEMPLATE_LENGTH = 1600


# ==================== TEMPLATE REGISTRY ====================

_SHIFT_VARIABLES = {
    "date": "Shift date",
    "startTime": "Shift start time",
    "endTime": "Shift end time",
    "location": "Shift location",
    "area": "Area name (with parentheses if present)",
    "position": "Position title",
    "shiftType": "Same as position - the type of shift (e.g., RN, CNA)",
}

_BROADCAST_VARIABLES = {
    **_SHIFT_VARIABLES,
    "bonus": "Bonus amount with $ sign (e.g., '$50 bonus') - empty if no bonus",
    "employeeName": "Employee's name",
    "smsCode": "Shift SMS code for replies (e.g., ABC123)",
    "appUrl": "Application URL for viewing shift details",
    "claimLink": "Direct link to claim shift via web (e.g., https://yourapp.com/shift/ABC123)",
}

_ASSIGNED_VARIABLES = {
    **_SHIFT_VARIABLES,
    "employeeName": "Employee's name",
    "smsCode": "Shift SMS code for replies (e.g., ABC123)",
}

_INTEREST_VARIABLES = {
    **_SHIFT_VARIABLES,
    "employeeName": "Employee's name",
}

_MESSAGE_VARIABLES = {
    "message": "Custom message content",
    "employeeName": "Employee's name",
}

TEMPLATE_VARIABLES: Dict[str, Dict[str, str]] = {
    "shift_notification": _BROADCAST_VARIABLES,
    "shift_repost": _BROADCAST_VARIABLES,
    "shift_confirmation": _ASSIGNED_VARIABLES,
    "shift_reminder": _ASSIGNED_VARIABLES,
    "shift_interest": _INTEREST_VARIABLES,
    "shift_cancellation": _INTEREST_VARIABLES,
    "training_reminder": {
        "trainingTitle": "Training session title",
        "date": "Training date",
        "time": "Training time",
        "location": "Training location",
        "employeeName": "Employee's name",
    },
    "welcome": {
        "employeeName": "Employee's name",
        "appUrl": "Application URL",
    },
    "general": _MESSAGE_VARIABLES,
    "bulk": _MESSAGE_VARIABLES,
}


def list_template_variables() -> Dict[str, List[Dict[str, str]]]:
    """Variable whitelist in the shape the admin UI consumes."""
    return {
        category: [{"name": name, "description": desc} for name, desc in variables.items()]
        for category, variables in TEMPLATE_VARIABLES.items()
    }


# ==================== RESULT TYPES ====================

@dataclass
class TemplateContext:
    """Values a template can draw from. Anything missing stays a placeholder."""
    shift: Optional[Shift] = None
    employee: Optional[Employee] = None
    area: Optional[Area] = None
    position: Optional[Position] = None
    message: Optional[str] = None
    custom: Dict[str, str] = field(default_factory=dict)


@dataclass
class TemplateValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ==================== RENDERING ====================

def build_variables(context: TemplateContext) -> Dict[str, str]:
    variables: Dict[str, str] = {}

    shift = context.shift
    if shift:
        variables["date"] = shift.date
        variables["startTime"] = shift.start_time
        variables["endTime"] = shift.end_time
        variables["location"] = shift.location
        variables["smsCode"] = shift.sms_code or ""
        if shift.bonus_amount and shift.bonus_amount > 0:
            variables["bonus"] = f"${shift.bonus_amount} bonus"
        else:
            variables["bonus"] = ""

    variables["area"] = f" ({context.area.name})" if context.area else ""

    if context.position:
        variables["position"] = context.position.title
        variables["shiftType"] = context.position.title

    app_url = context.custom.get("appUrl") or get_settings().APP_URL or ""
    variables["appUrl"] = app_url
    if shift and shift.sms_code and app_url:
        variables["claimLink"] = f"{app_url}/shift/{shift.sms_code}"
    else:
        variables["claimLink"] = ""

    if context.employee:
        variables["employeeName"] = context.employee.name

    if context.message is not None:
        variables["message"] = context.message

    variables.update(context.custom)
    return variables


def render_template(template: str, context: TemplateContext) -> str:
    """
    Substitute {{name}} placeholders from the context.

    Args:
        template: Template content
        context: Shift, employee, area, position, message and custom values

    Returns:
        Rendered text. Placeholders with no value are kept verbatim.
    """
    variables = build_variables(context)

    def replace_match(match):
        name = match.group(1)
        return variables[name] if name in variables else match.group(0)

    return PLACEHOLDER_PATTERN.sub(replace_match, template)


async def get_rendered_template(storage, category: str, context: TemplateContext) -> Optional[str]:
    """
    Render the active template for a category.

    Returns None when no active template exists so the caller can fall back
    to a hardcoded message.
    """
    template = await storage.get_sms_template_by_category(category)
    if not template:
        return None

    if "appUrl" not in context.custom:
        app_url = await storage.get_setting("app_url")
        if app_url:
            context.custom = {**context.custom, "appUrl": app_url}

    return render_template(template.content, context)


# ==================== VALIDATION ====================

def validate_template(content: str, category: str) -> TemplateValidationResult:
    errors: List[str] = []
    warnings: List[str] = []
    valid_variables = list(TEMPLATE_VARIABLES.get(category, {}).keys())

    for name in PLACEHOLDER_PATTERN.findall(content):
        if name not in valid_variables:
            errors.append(
                f"Unknown variable: {{{{{name}}}}}. "
                f"Valid variables for {category}: {', '.join(valid_variables)}"
            )

    if content.count("{{") != content.count("}}"):
        errors.append("Mismatched braces in template")

    if len(content) > MAX_TEMPLATE_LENGTH:
        warnings.append("Template is very long and may result in multiple SMS segments")

    return TemplateValidationResult(valid=not errors, errors=errors, warnings=warnings)


# ==================== PREVIEW ====================

def sample_context() -> TemplateContext:
    return TemplateContext(
        shift=Shift(
            id="sample",
            position_id="pos-1",
            area_id="area-1",
            location="Main Building",
            date="2024-01-15",
            start_time="07:00",
            end_time="15:00",
            posted_by_name="Admin",
            sms_code="ABC123",
            bonus_amount=50,
        ),
        employee=Employee(id="emp-sample", name="John Smith", phone="+15551234567"),
        area=Area(id="area-1", name="Emergency"),
        position=Position(id="pos-1", title="DSP"),
        message="This is a sample message.",
    )


def preview_template(content: str, category: str) -> str:
    """Render against fixed sample data for the admin editor."""
    return render_template(content, sample_context())
