"""
Identifier utilities for identity reconciliation.

Validates and normalizes the raw email / phone number of an observation once,
at the request boundary. Everything past this module works with plain
Optional[str] identifiers.
"""
import math
from dataclasses import dataclass
from typing import Any, Optional

from api.services.resilience import IdentityValidationError

PHONE_TYPE_ERROR = "Phone number must be a string"
EMAIL_TYPE_ERROR = "Email must be a string"
IDENTIFIER_REQUIRED_ERROR = "Phone number or email is required"


@dataclass(frozen=True)
class Observation:
    """A normalized (email, phone number) pair seen on one request."""
    email: Optional[str] = None
    phone_number: Optional[str] = None


def normalize_phone(raw: Any) -> Optional[str]:
    """
    Normalize a phone number to its canonical string form.

    Args:
        raw: Phone number as received (string, int or float)

    Returns:
        Trimmed string, or None if the value is absent or blank

    Raises:
        IdentityValidationError: if the value is not a string or number

    Examples:
        >>> normalize_phone(" 123456 ")
        '123456'
        >>> normalize_phone(123456)
        '123456'
        >>> normalize_phone(123456.0)
        '123456'
        >>> normalize_phone("")
        None
    """
    if raw is None:
        return None

    # bool is an int subclass but true/false is not a phone number
    if isinstance(raw, bool) or not isinstance(raw, (str, int, float)):
        raise IdentityValidationError(PHONE_TYPE_ERROR)

    if isinstance(raw, float):
        # NaN and Infinity are not phone numbers
        if not math.isfinite(raw):
            raise IdentityValidationError(PHONE_TYPE_ERROR)
        text = str(int(raw)) if raw.is_integer() else repr(raw)
    else:
        text = str(raw)

    text = text.strip()
    return text or None


def normalize_email(raw: Any) -> Optional[str]:
    """
    Normalize an email address.

    Matching is exact, so only surrounding whitespace is removed; case is kept.
    """
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise IdentityValidationError(EMAIL_TYPE_ERROR)
    text = raw.strip()
    return text or None


def parse_observation(email: Any = None, phone_number: Any = None) -> Observation:
    """
    Validate raw request fields and build an Observation.

    Checks run in a fixed order: phone type, email type, then presence.

    Raises:
        IdentityValidationError: with the message returned to the caller
    """
    phone = normalize_phone(phone_number)
    mail = normalize_email(email)

    if phone is None and mail is None:
        raise IdentityValidationError(IDENTIFIER_REQUIRED_ERROR)

    return Observation(email=mail, phone_number=phone)
