from __future__ import annotations

import base64
import hashlib
import hmac
from collections.abc import Mapping
from typing import Any

import httpx

TWILIO_API_BASE_URL = "https://api.twilio.com/2010-04-01"
WHATSAPP_PREFIX = "whatsapp:"


def strip_whatsapp_prefix(address: str) -> str:
    return address[len(WHATSAPP_PREFIX) :] if address.startswith(WHATSAPP_PREFIX) else address


def compute_twilio_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    """Twilio signs the full URL followed by every POST field, sorted by name."""
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_twilio_signature(
    auth_token: str, url: str, params: Mapping[str, str], signature: str | None
) -> bool:
    if not signature:
        return False
    expected = compute_twilio_signature(auth_token, url, params)
    return hmac.compare_digest(expected, signature)


class TwilioWhatsAppClient:
    """HTTP client that sends WhatsApp replies through Twilio's Messages API."""

    def __init__(self, account_sid: str, auth_token: str, sender_number: str) -> None:
        self.sender = WHATSAPP_PREFIX + strip_whatsapp_prefix(sender_number)
        self.client = httpx.AsyncClient(
            base_url=f"{TWILIO_API_BASE_URL}/Accounts/{account_sid}",
            auth=(account_sid, auth_token),
            timeout=httpx.Timeout(timeout=30.0, connect=10.0),
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def send_message(self, to: str, body: str) -> dict[str, Any]:
        response = await self.client.post(
            "/Messages.json",
            data={
                "From": self.sender,
                "To": WHATSAPP_PREFIX + strip_whatsapp_prefix(to),
                "Body": body,
            },
        )
        response.raise_for_status()
        return response.json()
