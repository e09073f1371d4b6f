from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from salonbot.config import settings
from salonbot.database import get_db
from salonbot.dependencies import Services, get_services
from salonbot.logging_config import get_logger
from salonbot.models import Business
from salonbot.schemas.webhook import UazapiWebhook, WebhookResponse
from salonbot.services.gateway_service import normalize_phone
from salonbot.services.orchestrator import InboundMessage, TurnStatus

logger = get_logger("webhook")

router = APIRouter()


def _message_time(timestamp: int) -> datetime:
    # UazAPI sends seconds; some relays forward milliseconds
    if timestamp > 10**12:
        timestamp = timestamp // 1000
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


@router.post("/webhook", response_model=WebhookResponse)
def handle_webhook(
    payload: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    services: Services = Depends(get_services),
):
    """Entry point for UazAPI message deliveries."""
    try:
        envelope = UazapiWebhook.model_validate(payload)
    except ValidationError as e:
        logger.warning("Malformed webhook envelope", extra={"context": {"errors": e.errors()[:3]}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload")

    key = envelope.data.key
    if key.fromMe:
        return WebhookResponse(success=True, status=TurnStatus.IGNORED.value, message="Own message")

    business = db.query(Business).filter(Business.instance_name == envelope.instanceName).first()
    if business is None:
        logger.warning("Webhook for unknown instance", extra={"context": {"instance": envelope.instanceName}})
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown instance")
    if not business.ai_enabled:
        return WebhookResponse(success=True, status=TurnStatus.IGNORED.value, message="Assistant disabled")

    message_type, content = envelope.data.message.extract()
    inbound = InboundMessage(
        business_id=business.id,
        message_id=key.id,
        phone=normalize_phone(key.remoteJid, settings.default_country_code),
        content=content,
        message_type=message_type,
        client_name=envelope.data.pushName,
        timestamp=_message_time(envelope.data.messageTimestamp),
        from_me=key.fromMe,
    )
    result = services.orchestrator.handle(inbound)
    return WebhookResponse(
        success=result.success,
        status=result.status.value,
        message=result.error,
        intent=result.intent,
        bot_response=result.response,
    )


@router.get("/webhook/status")
def webhook_status():
    return {
        "status": "ok",
        "gateway_configured": bool(settings.uazapi_token and settings.uazapi_instance_id),
        "llm_configured": bool(settings.openai_api_key),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
