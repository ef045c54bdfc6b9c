from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, status

from ..config import get_settings
from ..db import SessionLocal
from ..models import Channel
from ..services.factory import answer_channel_message
from ..services.operations import GENERIC_FAILURE
from ..whatsapp.client import TwilioWhatsAppClient, strip_whatsapp_prefix, verify_twilio_signature

logger = logging.getLogger(__name__)

router = APIRouter()

_client: TwilioWhatsAppClient | None = None


def get_whatsapp_client() -> TwilioWhatsAppClient:
    global _client
    if _client is None:
        settings = get_settings()
        if not (
            settings.twilio_account_sid
            and settings.twilio_auth_token
            and settings.twilio_whatsapp_number
        ):
            raise RuntimeError("Twilio WhatsApp credentials are not configured.")
        _client = TwilioWhatsAppClient(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_whatsapp_number,
        )
    return _client


async def close_whatsapp_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def _signed_url(request: Request) -> str:
    settings = get_settings()
    if settings.backend_base_url:
        return str(settings.backend_base_url).rstrip("/") + request.url.path
    return str(request.url)


@router.post("/webhook", status_code=status.HTTP_204_NO_CONTENT)
async def whatsapp_webhook(request: Request) -> None:
    settings = get_settings()
    if not settings.twilio_auth_token:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)

    form = await request.form()
    params = {key: str(value) for key, value in form.items()}
    signature = request.headers.get("X-Twilio-Signature")
    if not verify_twilio_signature(settings.twilio_auth_token, _signed_url(request), params, signature):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")

    sender = strip_whatsapp_prefix(params.get("From", ""))
    text = params.get("Body", "").strip()
    if not sender or not text:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing sender or body")

    try:
        async with SessionLocal() as session:
            reply = await answer_channel_message(
                session, Channel.WHATSAPP, sender, text, params.get("ProfileName")
            )
        message = reply.message
    except Exception:
        logger.exception("WhatsApp message from %s could not be answered", sender)
        message = GENERIC_FAILURE

    await get_whatsapp_client().send_message(sender, message)
