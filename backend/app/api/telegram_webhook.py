"""
Telegram Webhook API - Handles incoming updates from the Telegram bot.
"""

import logging
from collections import deque
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from ..services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/telegram", tags=["telegram"])

# Track processed update IDs to avoid duplicate processing on Telegram retries
_MAX_PROCESSED_UPDATES = 1000
_processed_updates: set = set()
_processed_order: deque = deque()


def _seen(update_id) -> bool:
    """Record an update id; True if it was already processed."""
    if update_id is None:
        return False
    if update_id in _processed_updates:
        return True
    _processed_updates.add(update_id)
    _processed_order.append(update_id)
    # Prevent unbounded growth, oldest first
    while len(_processed_order) > _MAX_PROCESSED_UPDATES:
        _processed_updates.discard(_processed_order.popleft())
    return False


@router.post("/webhook")
async def telegram_webhook(
    request: Request,
    services: Services = Depends(get_services),
    secret_token: Optional[str] = Header(None, alias="X-Telegram-Bot-Api-Secret-Token"),
):
    """
    Handle incoming Telegram updates.
    Text messages drive the recording state machine.
    """
    bot = services.bot
    if bot is None or services.handlers is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Telegram bot not configured")

    if not bot.verify_secret(secret_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")

    body = await request.json()
    event = bot.parse_update(body)

    if _seen(event.get("update_id")):
        return {"ok": True}

    if event["type"] != "message":
        return {"ok": True}

    try:
        await services.handlers.handle_update(event)
    except Exception:
        logger.exception(f"Error processing Telegram update {event.get('update_id')}")

    return {"ok": True}
