"""
Telegram webhook — inbound updates are validated and handed to the bot router.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, status

from geoattend.api.v1.deps import get_services
from geoattend.schemas.attendance import WebhookAck
from geoattend.schemas.telegram import TelegramUpdate
from geoattend.services.container import Services

router = APIRouter(prefix="/bot", tags=["bot"])
logger = logging.getLogger(__name__)


@router.post("/webhook", response_model=WebhookAck)
async def telegram_webhook(
    update: TelegramUpdate,
    services: Services = Depends(get_services),
    secret_token: str | None = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
) -> WebhookAck:
    expected = services.settings.TELEGRAM_WEBHOOK_SECRET
    if expected and not hmac.compare_digest(secret_token or "", expected):
        logger.warning("Rejected webhook call with a bad secret token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")

    # Telegram redelivers non-2xx updates forever, so a crashing update is
    # logged and acknowledged.
    try:
        await services.bot.handle_update(update)
    except Exception:  # noqa: BLE001
        logger.exception("Unhandled error processing update %s", update.update_id)
    return WebhookAck()
