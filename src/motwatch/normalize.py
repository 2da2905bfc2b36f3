"""Normalization helpers.

Centralizes parsing of caller input and upstream payload values.
"""

from __future__ import annotations

import re
from datetime import UTC, date, datetime
from typing import Any

from motwatch.exceptions import ValidationError

_WHITESPACE = re.compile(r"\s+")
#: UK registrations are at most 7 characters; older cherished plates are shorter.
_REGISTRATION = re.compile(r"^[A-Z0-9]{1,8}$")

# Formats seen in upstream MOT payloads besides ISO-8601.
_LEGACY_FORMATS = ("%Y.%m.%d %H:%M:%S", "%Y.%m.%d")


def safe_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def normalize_registration(value: Any) -> str:
    """Return the canonical registration: uppercase with whitespace removed.

    Raises :class:`ValidationError` for missing or malformed input so that bad
    registrations never reach the network or the store.
    """
    if value is None:
        raise ValidationError("Registration is required", code="MISSING_REGISTRATION")
    if not isinstance(value, str):
        raise ValidationError("Registration must be a string", code="INVALID_REGISTRATION_FORMAT")
    formatted = _WHITESPACE.sub("", value).upper()
    if not formatted:
        raise ValidationError("Registration is required", code="MISSING_REGISTRATION")
    if not _REGISTRATION.match(formatted):
        raise ValidationError(
            f"Invalid registration format: {value!r}",
            code="INVALID_REGISTRATION_FORMAT",
        )
    return formatted


def parse_timestamp(value: Any) -> datetime | None:
    """Convert an upstream or stored date value to an aware UTC datetime.

    Accepts datetimes, dates, ISO-8601 strings (``Z`` suffix included) and the
    dotted legacy format. Returns ``None`` for empty or unparsable values.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)

    text = safe_str(value)
    if text is None:
        return None

    parsed: datetime | None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        parsed = None
        for fmt in _LEGACY_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)  # noqa: DTZ007
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def isoformat_or_none(value: datetime | None) -> str | None:
    """Serialize a timestamp the way the HTTP surface reports dates."""
    if value is None:
        return None
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")
