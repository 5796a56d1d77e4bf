"""Voice-call transport.

Calls are placed through a Twilio-compatible REST endpoint with the spoken
script sent inline as TwiML, so no public callback URL is needed.
"""
from __future__ import annotations

import logging
import re
from xml.sax.saxutils import escape

import httpx

from app.core.config import get_settings
from app.core.exceptions import NotificationDeliveryError

logger = logging.getLogger(__name__)

FACULTY_CALL_SCRIPT = (
    "Hello professor. A student has applied for an outpass. "
    "Please check your QuickPass dashboard to review and approve the request."
)


def hod_summary_script(pending_count: int) -> str:
    return (
        f"Hello professor. You have {pending_count} student outpass requests awaiting approval in QuickPass. "
        "Please review them at your earliest convenience."
    )


class VoiceCallError(NotificationDeliveryError):
    pass


_PHONE_NOISE = re.compile(r"[\s\-()]")


def normalize_phone(raw: str | None, default_country_code: str) -> str | None:
    if not raw:
        return None
    cleaned = _PHONE_NOISE.sub("", raw)
    if cleaned.startswith("+") and cleaned[1:].isdigit():
        return cleaned
    if cleaned.isdigit() and len(cleaned) == 10:
        return f"{default_country_code}{cleaned}"
    return None


def build_twiml(script: str) -> str:
    return (
        "<Response>"
        f'<Say voice="alice" language="en-IN">{escape(script)}</Say>'
        '<Pause length="1"/>'
        '<Say voice="alice">Thank you.</Say>'
        "<Hangup/>"
        "</Response>"
    )


def place_voice_call(*, to_phone: str | None, script: str) -> str | None:
    settings = get_settings()
    if not (settings.voice_account_sid and settings.voice_auth_token and settings.voice_from_number):
        raise VoiceCallError("Voice calling is not configured")

    number = normalize_phone(to_phone, settings.voice_default_country_code)
    if number is None:
        raise VoiceCallError(f"Invalid phone number {to_phone!r}; expected E.164 or 10 digits")

    url = f"{settings.voice_api_base_url.rstrip('/')}/Accounts/{settings.voice_account_sid}/Calls.json"
    try:
        with httpx.Client(timeout=settings.voice_timeout_seconds) as client:
            response = client.post(
                url,
                data={
                    "To": number,
                    "From": settings.voice_from_number,
                    "Twiml": build_twiml(script),
                },
                auth=(settings.voice_account_sid, settings.voice_auth_token),
            )
            response.raise_for_status()
    except httpx.HTTPError as exc:
        raise VoiceCallError(f"Voice call to {number} failed") from exc

    logger.info("Voice call placed to %s", number)
    try:
        return response.json().get("sid")
    except ValueError:
        return None
