"""
Carrier Webhooks Router

Endpoints called by the SMS carriers. No admin authentication. Webhooks
are only accepted for the active provider: Twilio requests must carry a
valid X-Twilio-Signature and RingCentral pushes must look like events from
one of our subscriptions. Anything else is rejected before processing.

Endpoints:
- POST /api/webhooks/{provider}/status - Delivery status callback
- POST /api/webhooks/{provider}/inbound - Inbound message / push event

Both answer 200 whatever happens internally so carriers do not back off,
except for the RingCentral validation handshake, a Twilio status callback
without MessageSid and a rejected Twilio signature (403). Ignored
RingCentral pushes still get 200 OK.
"""

import json
import logging
from typing import Optional, Dict, Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import PlainTextResponse

from config import Settings
from routers.dependencies import get_app_settings, get_webhook_service
from services.audit import get_client_ip
from services.sms_webhooks import SMSWebhookService
from sms_integration import SMSProviderType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Carrier Webhooks"])

VALIDATION_TOKEN_HEADER = "Validation-Token"
TWILIO_SIGNATURE_HEADER = "X-Twilio-Signature"
TWIML_MEDIA_TYPE = "text/xml"


# ==================== HELPERS ====================

def _resolve_provider(provider: str) -> SMSProviderType:
    try:
        return SMSProviderType(provider.lower())
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown SMS provider: {provider}")


def _validation_response(request: Request) -> Response:
    """Echo the RingCentral subscription validation token."""
    token = request.headers.get(VALIDATION_TOKEN_HEADER)
    return Response(status_code=200, headers={VALIDATION_TOKEN_HEADER: token})


def _public_url(request: Request, settings: Settings) -> str:
    """URL the carrier signed; uses WEBHOOK_BASE_URL when behind a proxy."""
    if settings.WEBHOOK_BASE_URL:
        url = f"{settings.WEBHOOK_BASE_URL.rstrip('/')}{request.url.path}"
        if request.url.query:
            url = f"{url}?{request.url.query}"
        return url
    return str(request.url)


async def _twilio_params(
    request: Request,
    webhooks: SMSWebhookService,
    settings: Settings
) -> Dict[str, Any]:
    form = await request.form()
    params = {key: value for key, value in form.items()}

    signature = request.headers.get(TWILIO_SIGNATURE_HEADER)
    if not webhooks.verify_signature(SMSProviderType.TWILIO, signature, _public_url(request, settings), params):
        logger.warning(f"Rejected Twilio webhook with invalid signature from {get_client_ip(request)}")
        raise HTTPException(status_code=403, detail="Invalid signature")
    return params


async def _ringcentral_payload(
    request: Request,
    webhooks: SMSWebhookService,
    settings: Settings
) -> Optional[Dict[str, Any]]:
    """Parsed push body, or None when it is not from a RingCentral subscription."""
    raw = await request.body()
    payload: Dict[str, Any] = {}
    if raw:
        try:
            decoded = json.loads(raw)
        except ValueError:
            logger.warning("RingCentral webhook body is not valid JSON")
            return None
        payload = decoded if isinstance(decoded, dict) else {}

    if not webhooks.verify_signature(SMSProviderType.RINGCENTRAL, None, _public_url(request, settings), payload):
        logger.warning(f"Ignored RingCentral webhook from {get_client_ip(request)}")
        return None
    return payload


# ==================== DELIVERY STATUS ====================

@router.post("/{provider}/status")
async def delivery_status_webhook(
    provider: str,
    request: Request,
    webhooks: SMSWebhookService = Depends(get_webhook_service),
    settings: Settings = Depends(get_app_settings),
):
    """
    Delivery status callback.

    **Twilio:** form-encoded, answered with empty TwiML.
    **RingCentral:** JSON push notification, answered with OK.
    """
    provider_type = _resolve_provider(provider)

    if provider_type == SMSProviderType.RINGCENTRAL:
        if request.headers.get(VALIDATION_TOKEN_HEADER):
            return _validation_response(request)
        payload = await _ringcentral_payload(request, webhooks, settings)
        if payload is None:
            return PlainTextResponse("OK")
        try:
            await webhooks.handle_delivery_status(provider_type, payload)
        except Exception as e:
            logger.error(f"Error processing RingCentral status webhook: {e}", exc_info=True)
        return PlainTextResponse("OK")

    params = await _twilio_params(request, webhooks, settings)
    if not params.get("MessageSid"):
        raise HTTPException(status_code=400, detail="Missing MessageSid")

    try:
        await webhooks.handle_delivery_status(provider_type, params)
    except Exception as e:
        logger.error(f"Error processing Twilio status webhook: {e}", exc_info=True)
    return Response(content=webhooks.generate_response(provider_type), media_type=TWIML_MEDIA_TYPE)


# ==================== INBOUND ====================

@router.post("/{provider}/inbound")
async def inbound_webhook(
    provider: str,
    request: Request,
    webhooks: SMSWebhookService = Depends(get_webhook_service),
    settings: Settings = Depends(get_app_settings),
):
    """
    Inbound SMS.

    **Twilio:** the command reply goes back inline as TwiML.
    **RingCentral:** push events (inbound SMS, message-store, consent);
    replies are sent through the REST API.
    """
    provider_type = _resolve_provider(provider)
    ip_address = get_client_ip(request)

    if provider_type == SMSProviderType.RINGCENTRAL:
        if request.headers.get(VALIDATION_TOKEN_HEADER):
            return _validation_response(request)
        payload = await _ringcentral_payload(request, webhooks, settings)
        if payload is None:
            return PlainTextResponse("OK")
        try:
            await webhooks.handle_ringcentral_event(payload, ip_address)
        except Exception as e:
            logger.error(f"Error processing RingCentral webhook: {e}", exc_info=True)
        return PlainTextResponse("OK")

    params = await _twilio_params(request, webhooks, settings)
    reply = None
    try:
        reply = await webhooks.handle_inbound(provider_type, params, ip_address)
    except Exception as e:
        logger.error(f"Error processing Twilio inbound webhook: {e}", exc_info=True)
    return Response(content=webhooks.generate_response(provider_type, reply), media_type=TWIML_MEDIA_TYPE)
