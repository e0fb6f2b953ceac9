"""
SMS Gateway - Admin API Router

Provides REST API endpoints for operating the SMS gateway:
- GET /api/sms/status - Provider status
- POST /api/sms/test - Send a test SMS
- POST /api/sms/send - Send to one employee
- POST /api/sms/bulk - Send to many employees
- GET /api/sms/messages/{provider_message_id}/status - Carrier-side status
- PUT /api/sms/settings/{key} - Update an SMS organization setting
- GET/POST /api/sms/reminders/* - Reminder pass
- /api/sms/templates/* - Template management
- /api/sms/subscriptions/* - RingCentral push subscriptions

Permissions:
- all routes: admin API key (X-Admin-Api-Key)
"""

import logging
from dataclasses import replace
from typing import Optional, Dict, Any, List

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from config import Settings
from middleware.admin_auth import require_admin
from models import SmsTemplate, SmsTemplateCreate, SmsTemplateUpdate, MessageType
from routers.dependencies import (
    get_app_settings, get_storage, get_sms_gateway, get_audit_logger, get_notification_service,
)
from services.audit import AuditLogger, AuditAction, AuditActor, TargetType, get_client_ip
from services.shift_reminders import process_shift_reminders, get_reminder_status
from services.sms_notifications import (
    SMSNotificationService, SMS_SETTING_KEYS, SECRET_SETTING_KEYS, is_provider_configured,
    setting_value_error,
)
from services.sms_templates import (
    validate_template, preview_template, list_template_variables, MAX_TEMPLATE_LENGTH,
)
from sms_integration import SMSGateway, RingCentralProvider, mask_phone

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix="/sms", tags=["SMS Gateway"], dependencies=[Depends(require_admin)])


# ==================== REQUEST/RESPONSE MODELS ====================

class TestSMSRequest(BaseModel):
    """Request model for a test send"""
    to: str = Field(..., description="Recipient phone number (E.164 format preferred)")
    message: str = Field(
        "This is a test message from ShiftConnect.",
        description="Message content",
        max_length=MAX_TEMPLATE_LENGTH
    )


class SendSMSRequest(BaseModel):
    employee_id: str
    message: str = Field(..., max_length=MAX_TEMPLATE_LENGTH)
    message_type: MessageType = MessageType.general


class BulkSMSRequest(BaseModel):
    employee_ids: List[str] = Field(..., min_length=1)
    message: str = Field(..., max_length=MAX_TEMPLATE_LENGTH)


class SendSMSResponse(BaseModel):
    """Response model for SMS send operation"""
    success: bool
    message_id: Optional[str] = None
    provider_message_id: Optional[str] = None
    status: Optional[str] = None
    segments: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class SettingUpdateRequest(BaseModel):
    value: str


class TemplateValidateRequest(BaseModel):
    content: str
    category: str = "general"


class TemplatePreviewRequest(BaseModel):
    content: Optional[str] = Field(None, description="Unsaved content; defaults to the stored template")


class SubscriptionRequest(BaseModel):
    webhook_url: Optional[str] = Field(None, description="Defaults to {WEBHOOK_BASE_URL}/api/webhooks/ringcentral/inbound")


# ==================== STATUS ====================

@router.get("/status")
async def get_sms_status(
    notifications: SMSNotificationService = Depends(get_notification_service),
    gateway: SMSGateway = Depends(get_sms_gateway),
):
    """
    Get SMS gateway status.

    **Response:**
    - `provider`: Configured provider (twilio, ringcentral)
    - `enabled`: Whether SMS is switched on
    - `configured`: Whether the provider's credentials are complete
    - `ready`: Whether a driver is initialized
    - `from_number`: Masked sender number
    """
    sms_settings = await notifications.get_sms_settings()
    return {
        "provider": sms_settings.provider.value,
        "enabled": sms_settings.sms_enabled,
        "configured": is_provider_configured(sms_settings),
        "ready": gateway.is_ready(),
        "active_provider": gateway.get_provider_type().value if gateway.get_provider_type() else None,
        "from_number": mask_phone(sms_settings.from_number) if sms_settings.from_number else None,
    }


# ==================== SENDING ====================

@router.post("/test", response_model=SendSMSResponse)
async def send_test_sms(
    body: TestSMSRequest,
    request: Request,
    actor: AuditActor = Depends(require_admin),
    notifications: SMSNotificationService = Depends(get_notification_service),
    gateway: SMSGateway = Depends(get_sms_gateway),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """
    Send a test SMS to verify provider credentials.

    Quiet hours and the sms_enabled switch do not apply to test sends.
    """
    sms_settings = await notifications.get_sms_settings()
    if not is_provider_configured(sms_settings):
        raise HTTPException(status_code=400, detail=f"{sms_settings.provider.value} is not fully configured")

    if not await notifications.initialize_provider(replace(sms_settings, sms_enabled=True)):
        raise HTTPException(status_code=400, detail="SMS provider failed to initialize")

    validation = gateway.validate_phone_number(body.to)
    if not validation.valid:
        raise HTTPException(status_code=400, detail=validation.error)

    logger.info(f"Test SMS requested by {actor.name} to {mask_phone(validation.formatted)}")
    result = await gateway.send_sms_with_retry(
        validation.formatted,
        body.message,
        max_retries=sms_settings.max_retries,
        initial_delay_ms=sms_settings.retry_initial_delay_ms,
    )

    await audit.log(
        action=AuditAction.SMS_TEST,
        target_type=TargetType.SMS_PROVIDER,
        actor=actor,
        target_name=sms_settings.provider.value,
        details={
            "to": mask_phone(validation.formatted),
            "success": result.success,
            "messageId": result.provider_message_id,
            "errorCode": result.error_code,
        },
        request=request,
    )
    return SendSMSResponse(**result.to_dict())


@router.post("/send", response_model=SendSMSResponse)
async def send_sms(
    body: SendSMSRequest,
    request: Request,
    actor: AuditActor = Depends(require_admin),
    storage=Depends(get_storage),
    notifications: SMSNotificationService = Depends(get_notification_service),
):
    """Send one message to an employee."""
    employee = await storage.get_employee(body.employee_id)
    if not employee:
        raise HTTPException(status_code=404, detail="Employee not found")

    result = await notifications.send_direct(
        employee, body.message, body.message_type.value,
        actor=actor, ip_address=get_client_ip(request),
    )
    return SendSMSResponse(**result.to_dict())


@router.post("/bulk")
async def send_bulk_sms(
    body: BulkSMSRequest,
    request: Request,
    actor: AuditActor = Depends(require_admin),
    storage=Depends(get_storage),
    notifications: SMSNotificationService = Depends(get_notification_service),
):
    """
    Send the same message to several employees.

    Unknown ids, inactive and opted-out employees are skipped.
    """
    employees = []
    for employee_id in body.employee_ids:
        employee = await storage.get_employee(employee_id)
        if employee:
            employees.append(employee)

    return await notifications.send_bulk(
        employees, body.message, actor=actor, ip_address=get_client_ip(request),
    )


@router.get("/messages/{provider_message_id}/status")
async def get_message_status(
    provider_message_id: str,
    gateway: SMSGateway = Depends(get_sms_gateway),
):
    """Ask the carrier for a message's current status."""
    status = await gateway.get_message_status(provider_message_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Message status unavailable")
    return {"provider_message_id": provider_message_id, "status": status}


# ==================== SETTINGS ====================

@router.put("/settings/{key}")
async def update_sms_setting(
    key: str,
    body: SettingUpdateRequest,
    request: Request,
    actor: AuditActor = Depends(require_admin),
    storage=Depends(get_storage),
    notifications: SMSNotificationService = Depends(get_notification_service),
    audit: AuditLogger = Depends(get_audit_logger),
):
    """Update an SMS organization setting and re-apply the provider config."""
    if key not in SMS_SETTING_KEYS:
        raise HTTPException(status_code=400, detail=f"Unknown SMS setting: {key}")
    error = setting_value_error(key, body.value)
    if error:
        raise HTTPException(status_code=400, detail=error)

    await storage.set_setting(key, body.value)
    await audit.log(
        action=AuditAction.SETTING_UPDATED,
        target_type=TargetType.SETTING,
        actor=actor,
        target_id=key,
        target_name=key,
        details={"value": "[REDACTED]" if key in SECRET_SETTING_KEYS else body.value},
        request=request,
    )

    ready = await notifications.initialize_provider()
    return {"key": key, "updated": True, "provider_ready": ready}


# ==================== REMINDERS ====================

@router.get("/reminders/status")
async def reminders_status(
    storage=Depends(get_storage),
    notifications: SMSNotificationService = Depends(get_notification_service),
):
    return await get_reminder_status(storage, notifications)


@router.post("/reminders/process")
async def reminders_process(
    storage=Depends(get_storage),
    notifications: SMSNotificationService = Depends(get_notification_service),
):
    """Run one reminder pass now."""
    result = await process_shift_reminders(storage, notifications)
    return result.to_dict()


# ==================== TEMPLATES ====================

@router.get("/templates", response_model=List[SmsTemplate])
async def list_templates(storage=Depends(get_storage)):
    return await storage.get_sms_templates()


@router.get("/templates/variables")
async def template_variables() -> Dict[str, Any]:
    """Variables each template category may use."""
    return list_template_variables()


@router.post("/templates/validate")
async def validate_template_content(body: TemplateValidateRequest):
    return validate_template(body.content, body.category).to_dict()


@router.get("/templates/{template_id}", response_model=SmsTemplate)
async def get_template(template_id: str, storage=Depends(get_storage)):
    template = await storage.get_sms_template(template_id)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return template


@router.post("/templates", response_model=SmsTemplate, status_code=201)
async def create_template(body: SmsTemplateCreate, storage=Depends(get_storage)):
    validation = validate_template(body.content, body.category)
    if not validation.valid:
        raise HTTPException(status_code=400, detail={"errors": validation.errors})
    return await storage.create_sms_template(body)


@router.patch("/templates/{template_id}", response_model=SmsTemplate)
async def update_template(template_id: str, body: SmsTemplateUpdate, storage=Depends(get_storage)):
    existing = await storage.get_sms_template(template_id)
    if not existing:
        raise HTTPException(status_code=404, detail="Template not found")

    updates = body.model_dump(exclude_unset=True)
    content = updates.get("content", existing.content)
    category = updates.get("category", existing.category)
    validation = validate_template(content, category)
    if not validation.valid:
        raise HTTPException(status_code=400, detail={"errors": validation.errors})

    return await storage.update_sms_template(template_id, updates)


@router.delete("/templates/{template_id}")
async def delete_template(template_id: str, storage=Depends(get_storage)):
    template = await storage.get_sms_template(template_id)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    if template.is_system:
        raise HTTPException(status_code=403, detail="System templates cannot be deleted")

    await storage.delete_sms_template(template_id)
    return {"deleted": True, "id": template_id}


@router.post("/templates/{template_id}/preview")
async def preview_stored_template(
    template_id: str,
    body: Optional[TemplatePreviewRequest] = None,
    storage=Depends(get_storage),
):
    template = await storage.get_sms_template(template_id)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")

    content = body.content if body and body.content is not None else template.content
    return {
        "preview": preview_template(content, template.category),
        "validation": validate_template(content, template.category).to_dict(),
    }


# ==================== RINGCENTRAL SUBSCRIPTIONS ====================

def _ringcentral_driver(gateway: SMSGateway) -> RingCentralProvider:
    driver = gateway.get_driver()
    if not isinstance(driver, RingCentralProvider) or not driver.is_initialized():
        raise HTTPException(status_code=400, detail="RingCentral is not the active SMS provider")
    return driver


@router.post("/subscriptions", status_code=201)
async def create_subscription(
    body: SubscriptionRequest,
    gateway: SMSGateway = Depends(get_sms_gateway),
    settings: Settings = Depends(get_app_settings),
):
    """Create a RingCentral push subscription for inbound SMS and consent events."""
    driver = _ringcentral_driver(gateway)

    webhook_url = body.webhook_url
    if not webhook_url:
        if not settings.WEBHOOK_BASE_URL:
            raise HTTPException(status_code=400, detail="webhook_url or WEBHOOK_BASE_URL is required")
        webhook_url = f"{settings.WEBHOOK_BASE_URL.rstrip('/')}/api/webhooks/ringcentral/inbound"

    subscription_id = await driver.create_subscription(webhook_url)
    if not subscription_id:
        raise HTTPException(status_code=502, detail="RingCentral subscription could not be created")
    return {"id": subscription_id, "webhook_url": webhook_url}


@router.get("/subscriptions/{subscription_id}")
async def get_subscription(subscription_id: str, gateway: SMSGateway = Depends(get_sms_gateway)):
    driver = _ringcentral_driver(gateway)
    status = await driver.get_subscription_status(subscription_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return {"id": subscription_id, **status}


@router.post("/subscriptions/{subscription_id}/renew")
async def renew_subscription(subscription_id: str, gateway: SMSGateway = Depends(get_sms_gateway)):
    driver = _ringcentral_driver(gateway)
    return {"id": subscription_id, "renewed": await driver.renew_subscription(subscription_id)}


@router.delete("/subscriptions/{subscription_id}")
async def delete_subscription(subscription_id: str, gateway: SMSGateway = Depends(get_sms_gateway)):
    driver = _ringcentral_driver(gateway)
    return {"id": subscription_id, "deleted": await driver.delete_subscription(subscription_id)}
