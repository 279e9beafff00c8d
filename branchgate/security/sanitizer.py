"""
Audit payload sanitization.

Every audit ``details`` payload passes through ``sanitize_details`` before it is
persisted. Field names on the deny list are redacted wherever they appear in
the structure; card-like fields keep their last four characters.

Usage:
    from branchgate.security.sanitizer import sanitize_details

    sanitize_details({"password": "x", "card_number": "4111111111111234"})
    # Returns: {"password": "[REDACTED]", "card_number": "****1234"}
"""
import re
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

REDACTED = "[REDACTED]"

# Masked to their last four characters
CARD_FIELDS = frozenset({
    "card_number",
    "cardnumber",
    "card_no",
    "pan",
    "account_number",
})

# Replaced entirely
SECRET_FIELDS = frozenset({
    "password",
    "new_password",
    "current_password",
    "password_hash",
    "token",
    "access_token",
    "refresh_token",
    "session_token",
    "reset_token",
    "verification_token",
    "secret",
    "client_secret",
    "api_key",
    "cvv",
    "cvv2",
    "cvc",
    "security_code",
})

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_CARD_SEPARATORS = re.compile(r"[\s-]")


def normalize_field_name(name: Any) -> str:
    """``cardNumber``, ``Card-Number`` and ``card_number`` all match the same entry."""
    text = _CAMEL_BOUNDARY.sub("_", str(name))
    return text.replace("-", "_").replace(" ", "_").lower()


def mask_card(value: Any) -> str:
    """Keep only the last four characters of a card-like value."""
    digits = _CARD_SEPARATORS.sub("", str(value))
    if len(digits) <= 4:
        return REDACTED
    return f"****{digits[-4:]}"


def _plain(value: Any) -> Any:
    """Coerce scalars to JSON-storable values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def sanitize_details(details: Any) -> Any:
    """
    Return a sanitized deep copy of ``details``.

    Dicts are walked recursively (lists and tuples too); the input is never
    mutated. Non-JSON scalars are converted to strings.
    """
    if isinstance(details, Mapping):
        sanitized = {}
        for key, value in details.items():
            field = normalize_field_name(key)
            if field in CARD_FIELDS and value is not None:
                sanitized[str(key)] = mask_card(value)
            elif field in SECRET_FIELDS and value is not None:
                sanitized[str(key)] = REDACTED
            else:
                sanitized[str(key)] = sanitize_details(value)
        return sanitized

    if isinstance(details, (list, tuple, set)):
        return [sanitize_details(item) for item in details]

    return _plain(details)
