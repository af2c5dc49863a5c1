"""
SMS gateway client.

Sends plain-text SMS through the iPAB SmartSMS HTTP API.
Contract: send(phone, text) -> SmsResult(success, error, message_id).
Transport errors are reported in the result, never raised.
"""

import re
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from skymap.app.core.config import settings

logger = logging.getLogger("skymap.sms")


@dataclass
class SmsResult:
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


def normalize_phone(phone: str) -> str:
    """
    Normalize a phone number for the SMS API.

    Strips everything but digits and rewrites the Tanzanian local format
    0XXXXXXXXX to 255XXXXXXXXX.
    """
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("0") and len(digits) == 10:
        digits = "255" + digits[1:]
    return digits


class SmsGateway:
    """
    Async HTTP client for the SMS API.

    Args:
        api_url, api_token, sender_id, timeout: Default to settings
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_token: Optional[str] = None,
        sender_id: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_url = api_url or settings.sms_api_url
        self.api_token = api_token if api_token is not None else settings.sms_api_token
        self.sender_id = sender_id or settings.sms_sender_id
        self.timeout = timeout or settings.sms_timeout_seconds
        self.transport = transport

    async def send(self, phone: str, text: str) -> SmsResult:
        if not self.api_token:
            logger.error("SMS_API_TOKEN is not configured")
            return SmsResult(success=False, error="SMS service not configured: missing API token")

        recipient = normalize_phone(phone)
        if not recipient:
            return SmsResult(success=False, error=f"Invalid phone number: {phone!r}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.api_url,
                    headers={
                        "Authorization": f"Bearer {self.api_token}",
                        "Accept": "application/json",
                    },
                    json={
                        "recipient": recipient,
                        "sender_id": self.sender_id,
                        "type": "plain",
                        "message": text,
                    },
                )
        except httpx.HTTPError as exc:
            logger.warning("SMS to %s failed: %s", recipient, exc)
            return SmsResult(success=False, error=str(exc) or type(exc).__name__)

        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text}

        if response.is_error:
            return SmsResult(
                success=False,
                error=f"SMS API returned {response.status_code}: {body}"
            )

        data = body.get("data") if isinstance(body, dict) else None
        message_id = None
        if isinstance(data, dict):
            message_id = data.get("id")
        if message_id is None and isinstance(body, dict):
            message_id = body.get("message_id") or body.get("id")

        logger.info("SMS sent to %s", recipient)
        return SmsResult(success=True, message_id=str(message_id) if message_id is not None else "unknown")
