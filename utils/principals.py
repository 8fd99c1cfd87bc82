"""Principal helpers - canonical form, channel detection and log masking.

A principal is either an email address (lowercased) or an E.164 phone number.
"""
import re
from typing import Optional

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")
PHONE_SEPARATORS = re.compile(r"[\s\-.()]")

CHANNEL_EMAIL = "email"
CHANNEL_SMS = "sms"


def normalize_phone(phone: str) -> str:
    """Strip spaces, dashes, dots and parentheses and convert a leading 00 to +.

    Any other character is left in place so the E.164 check rejects it. Does not guess country codes."""
    raw = PHONE_SEPARATORS.sub("", phone or "")
    if raw.startswith("00"):
        return "+" + raw[2:]
    return raw


def normalize_principal(principal: str) -> str:
    value = (principal or "").strip()
    if "@" in value:
        return value.lower()
    return normalize_phone(value)


def channel_for(principal: str) -> Optional[str]:
    """Return the delivery channel for an already-normalized principal, or None if malformed."""
    if EMAIL_PATTERN.match(principal or ""):
        return CHANNEL_EMAIL
    if E164_PATTERN.match(principal or ""):
        return CHANNEL_SMS
    return None


def mask_principal(principal: str) -> str:
    if not principal:
        return ""
    if "@" in principal:
        local, _, domain = principal.partition("@")
        return (local[:1] + "***@" + domain) if local else "***@" + domain
    if len(principal) <= 4:
        return "*" * len(principal)
    return "*" * (len(principal) - 4) + principal[-4:]


def mask_code(code: str) -> str:
    if not code:
        return ""
    if len(code) <= 2:
        return "*" * len(code)
    return "*" * (len(code) - 2) + code[-2:]
