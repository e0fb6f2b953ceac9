"""
FastAPI dependencies resolving the SMS services built in the app lifespan.
"""

from fastapi import Request

from config import Settings, get_settings
from services.audit import AuditLogger
from services.sms_notifications import SMSNotificationService
from services.sms_webhooks import SMSWebhookService
from sms_integration import SMSGateway


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_storage(request: Request):
    return request.app.state.storage


def get_sms_gateway(request: Request) -> SMSGateway:
    return request.app.state.gateway


def get_audit_logger(request: Request) -> AuditLogger:
    return request.app.state.audit


def get_notification_service(request: Request) -> SMSNotificationService:
    return request.app.state.notifications


def get_webhook_service(request: Request) -> SMSWebhookService:
    return request.app.state.webhooks
