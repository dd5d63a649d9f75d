"""Shared validation utilities"""

import re
from typing import Optional

from .timeutils import normalize_date, normalize_time

DEFAULT_COUNTRY_CODE = "218"


def validate_phone(phone: Optional[str]) -> Optional[str]:
    """
    Validate and normalize a phone number to E.164 format.

    Local Libyan numbers ("091 234 5678") get the country code; numbers
    already carrying a "+" prefix are kept as-is after stripping punctuation.

    Raises:
        ValueError: If phone number is invalid
    """
    if not phone:
        return phone

    has_plus = phone.strip().startswith("+")
    digits = re.sub(r"\D", "", phone)

    if not has_plus:
        if digits.startswith("00"):
            digits = digits[2:]
        elif digits.startswith("0"):
            digits = DEFAULT_COUNTRY_CODE + digits[1:]
        elif not digits.startswith(DEFAULT_COUNTRY_CODE):
            digits = DEFAULT_COUNTRY_CODE + digits

    if not 8 <= len(digits) <= 15:
        raise ValueError("Phone number must contain between 8 and 15 digits")

    return f"+{digits}"


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()

    email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

    if not re.match(email_pattern, email):
        raise ValueError("Invalid email format")

    return email


def validate_date_string(value: str) -> str:
    """Normalize to YYYY-MM-DD or raise ValueError"""
    return normalize_date(value)


def validate_time_string(value: str) -> str:
    """Normalize a 12h or 24h time of day to "h:mm AM/PM" or raise ValueError"""
    return normalize_time(value)
