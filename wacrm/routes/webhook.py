import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from ..config import WHATSAPP_VERIFY_TOKEN
from ..database import get_db
from ..models import WhatsAppConfiguration
from ..security_utils import constant_time_compare
from ..services.inbound import InboundProcessor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/whatsapp-webhook", tags=["WhatsApp Webhook"])


def expected_verify_token(db: Session):
    """Deployment-wide token first, then any token stored with an active configuration"""
    if WHATSAPP_VERIFY_TOKEN:
        return WHATSAPP_VERIFY_TOKEN
    config = (
        db.query(WhatsAppConfiguration)
        .filter(WhatsAppConfiguration.is_active.is_(True), WhatsAppConfiguration.verify_token.isnot(None))
        .first()
    )
    return config.verify_token if config else None


@router.get("", response_class=PlainTextResponse)
async def verify_webhook(request: Request, db: Session = Depends(get_db)):
    """Meta subscription handshake"""
    params = request.query_params
    mode = params.get("hub.mode")
    token = params.get("hub.verify_token")
    challenge = params.get("hub.challenge")

    if mode == "subscribe" and token and challenge:
        expected = expected_verify_token(db)
        if not expected:
            logger.warning("Webhook verified without a configured verify token")
            return PlainTextResponse(challenge)
        if constant_time_compare(token, expected):
            logger.info("✅ WhatsApp webhook verified")
            return PlainTextResponse(challenge)
        logger.warning(f"Webhook verification failed, received token {token[:8]}...")
        return PlainTextResponse("Verification failed", status_code=403)

    if mode and challenge:
        return PlainTextResponse("Forbidden", status_code=403)

    return PlainTextResponse("WhatsApp Webhook Endpoint")


@router.post("", response_class=PlainTextResponse)
async def receive_webhook(request: Request, db: Session = Depends(get_db)):
    """Inbound messages and delivery statuses from the Cloud API"""
    try:
        payload = await request.json()
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e

    if not isinstance(payload, dict) or payload.get("object") != "whatsapp_business_account":
        raise HTTPException(status_code=400, detail="Invalid payload")

    processor = InboundProcessor(db)
    totals = {"messages": 0, "statuses": 0}
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value")
            if not value:
                continue
            handled = await processor.process_value(value)
            totals["messages"] += handled["messages"]
            totals["statuses"] += handled["statuses"]

    logger.debug(f"Webhook processed: {totals}")
    return PlainTextResponse("OK")
