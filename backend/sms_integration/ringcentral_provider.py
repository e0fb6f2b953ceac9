"""
SMS Integration - RingCentral Driver

Talks to the RingCentral REST API over httpx using the JWT bearer grant.
Authentication is lazy: the first API call fetches an access token and it
is cached until shortly before it expires.

RingCentral has no webhook signature. Webhooks arrive through push
subscriptions, which this driver can create, renew and delete. A payload
is accepted when it references a subscription we created or looks like a
subscription event; that is a shape check, not a security guarantee.

Environment Variables (read by config.Settings):
    RINGCENTRAL_CLIENT_ID, RINGCENTRAL_CLIENT_SECRET, RINGCENTRAL_JWT,
    RINGCENTRAL_FROM_NUMBER, RINGCENTRAL_SERVER_URL
"""

import json
import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List, Set, Tuple

import httpx

from sms_integration.base import SMSProvider, mask_phone
from sms_integration.types import (
    SMSProviderType,
    ProviderConfig,
    SendSMSResult,
    InboundMessage,
    DeliveryStatusUpdate,
    DeliveryStatus,
    ErrorType,
    NOT_INITIALIZED,
    INVALID_PHONE,
    INVALID_FROM_NUMBER,
    AUTH_FAILED,
    UNKNOWN_ERROR,
)

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "https://platform.ringcentral.com"
DEFAULT_TIMEOUT_SECONDS = 30.0

TOKEN_PATH = "/restapi/oauth/token"
REVOKE_PATH = "/restapi/oauth/revoke"
SMS_PATH = "/restapi/v1.0/account/~/extension/~/sms"
MESSAGE_STORE_PATH = "/restapi/v1.0/account/~/extension/~/message-store"
SUBSCRIPTION_PATH = "/restapi/v1.0/subscription"

JWT_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"

# Refresh the token this long before RingCentral says it expires
TOKEN_EXPIRY_MARGIN_SECONDS = 60

INSTANT_SMS_EVENT = f"{MESSAGE_STORE_PATH}/instant?type=SMS"
MESSAGE_STORE_EVENT = MESSAGE_STORE_PATH
CONSENT_EVENT = "/restapi/v2/accounts/~/sms/consents"
DEFAULT_EVENT_FILTERS = [INSTANT_SMS_EVENT, MESSAGE_STORE_EVENT, CONSENT_EVENT]

RINGCENTRAL_ERROR_TABLE: Dict[str, ErrorType] = {
    # Request rate exceeded
    "CMN-301": ErrorType.RATE_LIMIT,
    "CMN-302": ErrorType.RATE_LIMIT,
    # Temporary send failures
    "MSG-240": ErrorType.RECOVERABLE,
    "MSG-245": ErrorType.RECOVERABLE,
    # Invalid numbers, blocked content, recipient opted out, sender not
    # SMS-enabled
    "MSG-241": ErrorType.PERMANENT,
    "MSG-242": ErrorType.PERMANENT,
    "MSG-243": ErrorType.PERMANENT,
    "MSG-244": ErrorType.PERMANENT,
    "MSG-246": ErrorType.PERMANENT,
    "MSG-247": ErrorType.PERMANENT,
    "MSG-304": ErrorType.PERMANENT,
    "MSG-324": ErrorType.PERMANENT,
    "MSG-331": ErrorType.PERMANENT,
    "MSG-402": ErrorType.PERMANENT,
}

RINGCENTRAL_STATUS_MAP: Dict[str, DeliveryStatus] = {
    "Queued": DeliveryStatus.QUEUED,
    "Sent": DeliveryStatus.SENT,
    "Delivered": DeliveryStatus.DELIVERED,
    "DeliveryFailed": DeliveryStatus.FAILED,
    "SendingFailed": DeliveryStatus.FAILED,
    "Received": DeliveryStatus.DELIVERED,
}

FAILED_SEND_STATUSES = {"SendingFailed", "DeliveryFailed"}


def map_ringcentral_status(status: Optional[str]) -> DeliveryStatus:
    return RINGCENTRAL_STATUS_MAP.get(status or "", DeliveryStatus.UNKNOWN)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable RingCentral timestamp: {value}")
        return None


def _unwrap_payload(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Push events nest the message under "body", sometimes as a JSON string."""
    body = raw.get("body")
    if isinstance(body, str):
        return json.loads(body)
    if isinstance(body, dict):
        return body
    return raw


class RingCentralProvider(SMSProvider):
    """
    RingCentral driver.

    Required config: client_id, client_secret, from_number, jwt.
    server_url defaults to the production platform.
    """

    provider_type = SMSProviderType.RINGCENTRAL
    ERROR_TABLE = RINGCENTRAL_ERROR_TABLE

    def __init__(
        self,
        sleep=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS
    ):
        super().__init__(sleep=sleep)
        self._transport = transport
        self._timeout = timeout
        self._http: Optional[httpx.AsyncClient] = None
        self._access_token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._subscriptions: Set[str] = set()

    # ==================== LIFECYCLE ====================

    def initialize(self, config: ProviderConfig) -> bool:
        missing = [
            name for name in ("client_id", "client_secret", "from_number", "jwt")
            if not getattr(config, name)
        ]
        if missing:
            logger.error(f"RingCentral configuration incomplete, missing: {', '.join(missing)}")
            self._initialized = False
            return False

        if not config.server_url:
            config = replace(config, server_url=DEFAULT_SERVER_URL)

        # Credentials may have rotated; force a fresh token
        self._access_token = None
        self._token_expires_at = None

        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=config.server_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        else:
            self._http.base_url = config.server_url

        self.config = config
        self._initialized = True
        logger.info(
            f"RingCentral provider initialized (server: {config.server_url}, "
            f"from: {mask_phone(config.from_number)})"
        )
        return True

    async def dispose(self) -> None:
        for subscription_id in list(self._subscriptions):
            await self.delete_subscription(subscription_id)

        if self._http is not None:
            if self._access_token:
                try:
                    await self._http.post(
                        REVOKE_PATH,
                        auth=(self.config.client_id, self.config.client_secret),
                        data={"token": self._access_token},
                    )
                except httpx.HTTPError as e:
                    logger.debug(f"RingCentral token revoke failed during dispose: {e}")
            await self._http.aclose()

        self._http = None
        self._access_token = None
        self._token_expires_at = None
        self._subscriptions.clear()
        self.config = None
        await super().dispose()

    # ==================== AUTH ====================

    def _token_valid(self) -> bool:
        return bool(
            self._access_token
            and self._token_expires_at
            and datetime.now(timezone.utc) < self._token_expires_at
        )

    async def _ensure_authenticated(self) -> bool:
        if self._token_valid():
            return True
        if not self._initialized or self._http is None:
            return False

        try:
            response = await self._http.post(
                TOKEN_PATH,
                auth=(self.config.client_id, self.config.client_secret),
                data={"grant_type": JWT_GRANT_TYPE, "assertion": self.config.jwt},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"RingCentral authentication failed: HTTP {e.response.status_code}")
            return False
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"RingCentral authentication error: {e}")
            return False

        expires_in = int(payload.get("expires_in", 3600))
        self._access_token = payload.get("access_token")
        self._token_expires_at = datetime.now(timezone.utc) + timedelta(
            seconds=max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0)
        )
        logger.info("RingCentral access token obtained")
        return bool(self._access_token)

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        response = await self._http.request(method, path, headers=self._auth_headers(), **kwargs)
        response.raise_for_status()
        return response

    def error_code_from_exception(self, error: Exception) -> Tuple[str, str]:
        """Map an httpx failure onto a RingCentral error code and message."""
        code = UNKNOWN_ERROR
        message = str(error) or "Unknown error"

        if isinstance(error, httpx.HTTPStatusError):
            response = error.response
            data: Dict[str, Any] = {}
            try:
                data = response.json()
            except ValueError:
                pass
            if data.get("errorCode"):
                code = data["errorCode"]
                message = data.get("message", message)
            elif response.status_code == 429:
                code = "CMN-301"
                message = "Rate limit exceeded"
            elif response.status_code == 401:
                code = AUTH_FAILED
                message = "Unauthorized"
        return code, message

    # ==================== SENDING ====================

    async def send_sms(
        self,
        to: str,
        body: str,
        status_callback_url: Optional[str] = None
    ) -> SendSMSResult:
        # Delivery updates come through the push subscription, so the
        # callback URL is not sent to RingCentral.
        if not self._initialized or self._http is None:
            return SendSMSResult(
                success=False,
                error_code=NOT_INITIALIZED,
                error_message="RingCentral provider not initialized"
            )

        destination = self.validate_phone_number(to)
        if not destination.valid:
            return SendSMSResult(
                success=False,
                error_code=INVALID_PHONE,
                error_message=f"Invalid destination number: {destination.error}"
            )

        sender = self.validate_phone_number(self.config.from_number)
        if not sender.valid:
            return SendSMSResult(
                success=False,
                error_code=INVALID_FROM_NUMBER,
                error_message="Configured from number is not a valid E.164 number"
            )

        if not await self._ensure_authenticated():
            return SendSMSResult(
                success=False,
                error_code=AUTH_FAILED,
                error_message="RingCentral authentication failed"
            )

        payload = {
            "from": {"phoneNumber": sender.formatted},
            "to": [{"phoneNumber": destination.formatted}],
            "text": body,
        }

        try:
            logger.info(f"Sending SMS via RingCentral to {mask_phone(destination.formatted)}")
            response = await self._request("POST", SMS_PATH, json=payload)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            code, message = self.error_code_from_exception(e)
            logger.error(f"RingCentral API error: {code} - {message}")
            return SendSMSResult(success=False, error_code=code, error_message=message)

        recipients = data.get("to") or [{}]
        raw_status = recipients[0].get("messageStatus") or data.get("messageStatus")
        message_id = str(data.get("id", "")) or None
        success = raw_status not in FAILED_SEND_STATUSES

        logger.info(f"SMS submitted to RingCentral: {message_id} ({raw_status})")
        return SendSMSResult(
            success=success,
            message_id=message_id,
            provider_message_id=message_id,
            status=map_ringcentral_status(raw_status).value if raw_status else None,
            segments=1,
            error_code=None if success else UNKNOWN_ERROR,
            error_message=None if success else f"Message status: {raw_status}",
        )

    async def get_message_status(self, message_id: str) -> Optional[str]:
        if not self._initialized or not await self._ensure_authenticated():
            return None
        try:
            response = await self._request("GET", f"{MESSAGE_STORE_PATH}/{message_id}")
            return map_ringcentral_status(response.json().get("messageStatus")).value
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to get RingCentral message status: {e}")
            return None

    # ==================== SUBSCRIPTIONS ====================

    async def create_subscription(
        self,
        webhook_url: str,
        event_filters: Optional[List[str]] = None
    ) -> Optional[str]:
        """
        Create a push subscription delivering SMS events to webhook_url.

        Returns:
            The subscription id, or None on failure
        """
        if not self._initialized or not await self._ensure_authenticated():
            return None

        body = {
            "eventFilters": event_filters or DEFAULT_EVENT_FILTERS,
            "deliveryMode": {"transportType": "WebHook", "address": webhook_url},
        }
        try:
            response = await self._request("POST", SUBSCRIPTION_PATH, json=body)
            subscription_id = response.json().get("id")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to create RingCentral subscription: {e}")
            return None

        if subscription_id:
            self._subscriptions.add(subscription_id)
            logger.info(f"RingCentral subscription created: {subscription_id}")
        return subscription_id

    async def renew_subscription(self, subscription_id: str) -> bool:
        if not self._initialized or not await self._ensure_authenticated():
            return False
        try:
            await self._request("POST", f"{SUBSCRIPTION_PATH}/{subscription_id}/renew")
            return True
        except httpx.HTTPError as e:
            logger.error(f"Failed to renew RingCentral subscription {subscription_id}: {e}")
            return False

    async def delete_subscription(self, subscription_id: str) -> bool:
        self._subscriptions.discard(subscription_id)
        if not self._initialized or not await self._ensure_authenticated():
            return False
        try:
            await self._request("DELETE", f"{SUBSCRIPTION_PATH}/{subscription_id}")
            logger.info(f"RingCentral subscription deleted: {subscription_id}")
            return True
        except httpx.HTTPError as e:
            logger.error(f"Failed to delete RingCentral subscription {subscription_id}: {e}")
            return False

    async def get_subscription_status(self, subscription_id: str) -> Optional[Dict[str, Any]]:
        if not self._initialized or not await self._ensure_authenticated():
            return None
        try:
            response = await self._request("GET", f"{SUBSCRIPTION_PATH}/{subscription_id}")
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to get RingCentral subscription {subscription_id}: {e}")
            return None
        return {
            "active": data.get("status") == "Active",
            "expiration_time": data.get("expirationTime"),
        }

    def is_known_subscription(self, subscription_id: Optional[str]) -> bool:
        return bool(subscription_id) and subscription_id in self._subscriptions

    # ==================== WEBHOOKS ====================

    def validate_webhook_signature(
        self,
        signature: Optional[str],
        url: str,
        params: Dict[str, Any]
    ) -> bool:
        if self.is_known_subscription(params.get("subscriptionId")):
            return True
        return "event" in params or "body" in params

    def parse_inbound_message(self, raw: Dict[str, Any]) -> Optional[InboundMessage]:
        try:
            payload = _unwrap_payload(raw)
            sender = payload.get("from") or {}
            recipients = payload.get("to") or [{}]
            attachments = payload.get("attachments") or []
            return InboundMessage(
                message_id=str(payload.get("id") or payload.get("uuid") or ""),
                from_number=sender.get("phoneNumber", "") if isinstance(sender, dict) else str(sender),
                to_number=recipients[0].get("phoneNumber", "") if recipients else "",
                body=payload.get("subject") or payload.get("text") or "",
                num_media=len(attachments),
                media_urls=[a["uri"] for a in attachments if a.get("uri")],
            )
        except (ValueError, TypeError, AttributeError, IndexError) as e:
            logger.error(f"Failed to parse RingCentral inbound payload: {e}")
            return None

    def parse_delivery_status(self, raw: Dict[str, Any]) -> Optional[DeliveryStatusUpdate]:
        try:
            payload = _unwrap_payload(raw)
            message_id = payload.get("id") or payload.get("messageId")
            if not message_id:
                return None
            raw_status = payload.get("messageStatus") or payload.get("status")
            return DeliveryStatusUpdate(
                message_id=str(message_id),
                status=map_ringcentral_status(raw_status),
                error_code=payload.get("errorCode"),
                error_message=payload.get("errorMessage"),
                timestamp=_parse_timestamp(payload.get("lastModifiedTime")),
                raw_status=raw_status,
            )
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"Failed to parse RingCentral status payload: {e}")
            return None

    def parse_consent_records(self, raw: Dict[str, Any]) -> List[Dict[str, str]]:
        """Opt-in/opt-out records from an sms/consents push event."""
        try:
            payload = _unwrap_payload(raw)
        except ValueError as e:
            logger.error(f"Failed to parse RingCentral consent payload: {e}")
            return []
        return [
            record for record in payload.get("records") or []
            if record.get("optStatus") in ("OptIn", "OptOut")
        ]

    def generate_response(self, text: Optional[str] = None) -> str:
        return text or "OK"
