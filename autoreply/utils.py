"""
Utility functions for the auto-responder.
"""

import logging
from datetime import datetime, timezone
from typing import Mapping, Optional
from zoneinfo import ZoneInfo

from twilio.request_validator import RequestValidator

logger = logging.getLogger(__name__)


def normalize_identity(identity: Optional[str]) -> str:
    """
    Normalize a sender identity for comparison.

    Only surrounding whitespace and case are folded; country codes and
    formatting are left as they are ("whatsapp:+1555" != "+1555").
    """
    return (identity or "").strip().lower()


def local_now(tz_name: Optional[str] = None) -> datetime:
    """Current instant as an aware datetime in tz_name, or server local time."""
    if tz_name:
        return datetime.now(ZoneInfo(tz_name))
    return datetime.now().astimezone()


def format_iso_timestamp(instant: datetime) -> str:
    """UTC ISO-8601 with milliseconds and a Z suffix, e.g. 2025-01-15T10:00:00.000Z."""
    utc = instant.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def format_us_date(instant: datetime) -> str:
    """US short date without zero padding, e.g. 1/5/2025."""
    return f"{instant.month}/{instant.day}/{instant.year}"


def format_12h_time(instant: datetime) -> str:
    """12-hour time with seconds, e.g. 3:04:05 PM. Sheets parses this as a time value."""
    hours12 = instant.hour % 12 or 12
    ampm = "PM" if instant.hour >= 12 else "AM"
    return f"{hours12}:{instant.minute:02d}:{instant.second:02d} {ampm}"


def verify_twilio_signature(
    auth_token: str,
    url: str,
    params: Mapping[str, str],
    signature: Optional[str],
) -> bool:
    """
    Verify the X-Twilio-Signature header of an inbound webhook.

    Args:
        auth_token: Twilio auth token used to sign requests
        url: Full public URL Twilio posted to
        params: Form parameters of the request
        signature: Value of the X-Twilio-Signature header

    Returns:
        True if signature is valid, False otherwise
    """
    if not signature:
        logger.info("Twilio signature missing")
        return False

    is_valid = RequestValidator(auth_token).validate(url, dict(params), signature)
    logger.info(f"Twilio signature verification: {'valid' if is_valid else 'invalid'}")
    return is_valid
