"""
Green API inbound webhook.

The provider retries anything that is not a 2xx, so every event that
passes the shared-secret check is acknowledged with 200. The body only
reports the outcome for monitoring; the sender hears back over WhatsApp.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError

from legalnexus.auth import AuthenticationError
from legalnexus.config import Settings, get_settings
from legalnexus.models import GreenApiWebhook, WebhookAck
from legalnexus.services.webhook_dispatcher import WebhookDispatcher, classify, get_webhook_dispatcher
from legalnexus.utils.logging import get_logger
from legalnexus.utils.security import secrets_match

logger = get_logger(__name__)

INCOMING_MESSAGE = "incomingMessageReceived"

router = APIRouter(
    prefix="/v1/whatsapp",
    tags=["whatsapp"],
)


@router.post("/webhook", response_model=WebhookAck, response_model_exclude_none=True)
async def receive_webhook(
    request: Request,
    secret: Optional[str] = Query(None),
    settings: Settings = Depends(get_settings),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
):
    expected = settings.require("webhook_secret")
    if not secrets_match(secret, expected):
        logger.warning("Webhook rejected: invalid secret")
        raise AuthenticationError("Invalid webhook secret", "INVALID_WEBHOOK_SECRET")

    try:
        webhook = GreenApiWebhook.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        logger.warning(f"Webhook payload malformed: {type(e).__name__}")
        return WebhookAck(ok=False, skipped="malformed_payload")

    instance_id = settings.require("green_api_instance_id")
    received_instance = webhook.instance_data.id_instance if webhook.instance_data else None
    if received_instance != str(instance_id):
        logger.warning("Webhook skipped: instance mismatch")
        return WebhookAck(skipped="instance_mismatch")

    if webhook.type_webhook != INCOMING_MESSAGE:
        return WebhookAck(skipped=webhook.type_webhook)

    try:
        message = classify(webhook)
    except ValueError as e:
        logger.warning(f"Webhook payload malformed: {e}")
        return WebhookAck(ok=False, skipped="malformed_payload")

    outcome = await dispatcher.dispatch(message)
    return WebhookAck(outcome=outcome.value)
