from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, HTTPException, Request, status

from ..config import get_settings
from ..telegram.bot import handle_update

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_webhook_secret(secret: str) -> None:
    # Unknown secrets look like a missing route so the webhook path stays hidden.
    expected = get_settings().telegram_webhook_secret
    if not expected or not hmac.compare_digest(secret.encode(), expected.encode()):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)


@router.post("/webhook/{secret}", status_code=status.HTTP_204_NO_CONTENT)
async def telegram_webhook(secret: str, request: Request) -> None:
    """Hand a Telegram update to the bot, which answers the chat itself."""
    _require_webhook_secret(secret)
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body is not JSON.") from exc
    if not isinstance(payload, dict):
        logger.warning("Ignoring Telegram webhook body of type %s", type(payload).__name__)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Expected a Telegram update.")
    await handle_update(payload)
