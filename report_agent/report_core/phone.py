"""Phone number canonicalisation.

Every phone in the system (directory rows, shared contacts, typed input,
persisted registrations) goes through ``normalize_phone`` so the directory
index and incoming numbers are compared in the same canonical form:
``998`` followed by the 9-digit subscriber number.
"""

from __future__ import annotations

import re
from typing import Optional

COUNTRY_CODE = "998"
TRUNK_PREFIX = "8"
SUBSCRIBER_DIGITS = 9
MIN_PHONE_DIGITS = 9
MAX_PHONE_DIGITS = 15
DEFAULT_SUFFIX_LENGTH = 9

_NON_DIGITS = re.compile(r"\D+")


def digits_only(value: object) -> str:
    if value is None:
        return ""
    return _NON_DIGITS.sub("", str(value))


def is_phone_like(value: object) -> bool:
    digits = digits_only(value)
    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        return False
    # 000000000, 111111111 and the like are placeholders, not numbers.
    return len(set(digits)) > 1


def normalize_phone(value: object) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    digits = digits_only(value)
    if not is_phone_like(digits):
        return None

    if digits.startswith(COUNTRY_CODE) and len(digits) >= len(COUNTRY_CODE) + SUBSCRIBER_DIGITS:
        subscriber = digits[len(COUNTRY_CODE) : len(COUNTRY_CODE) + SUBSCRIBER_DIGITS]
    elif digits.startswith(TRUNK_PREFIX) and len(digits) >= SUBSCRIBER_DIGITS + 1:
        subscriber = digits[1 : 1 + SUBSCRIBER_DIGITS]
    elif len(digits) == SUBSCRIBER_DIGITS:
        subscriber = digits
    else:
        subscriber = digits[-SUBSCRIBER_DIGITS:]
    return f"{COUNTRY_CODE}{subscriber}"


def digit_suffix(value: object, length: int = DEFAULT_SUFFIX_LENGTH) -> str:
    digits = digits_only(value)
    if length <= 0 or len(digits) < length:
        return ""
    return digits[-length:]


def format_phone(phone: str) -> str:
    """Human-readable form of a canonical phone, e.g. ``+998 90 123-45-67``."""
    digits = digits_only(phone)
    if len(digits) != len(COUNTRY_CODE) + SUBSCRIBER_DIGITS or not digits.startswith(COUNTRY_CODE):
        return phone
    local = digits[len(COUNTRY_CODE) :]
    return f"+{COUNTRY_CODE} {local[:2]} {local[2:5]}-{local[5:7]}-{local[7:]}"
