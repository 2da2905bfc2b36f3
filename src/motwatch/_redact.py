"""Masking of credentials in DEBUG log output.

Three kinds of secret pass through motwatch's log lines: the OAuth client
secret and the bearer tokens it buys, the upstream API key header, and the
``p256dh``/``auth`` keys of Web Push subscriptions.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

_MASK = "<redacted>"

# Compared after lower-casing and dropping "-" and "_", so "X-API-Key",
# "api_key" and "apiKey" all match "xapikey"/"apikey".
_SENSITIVE_KEYS: frozenset[str] = frozenset(
    {
        "accesstoken",
        "refreshtoken",
        "idtoken",
        "clientsecret",
        "authorization",
        "xapikey",
        "apikey",
        "p256dh",
        "auth",
        "vapidprivatekey",
    }
)

_BEARER_RE = re.compile(r"(?i)\bbearer\s+[^\s\"',]+")


def _is_sensitive(key: object) -> bool:
    return re.sub(r"[-_]", "", str(key)).lower() in _SENSITIVE_KEYS


def redact_for_log(value: Any, *, max_string: int = 512) -> Any:
    """Return a copy of *value* safe to put in a DEBUG log line.

    Mappings are walked recursively and a sensitive key has its whole value
    masked. Bearer credentials echoed inside free text are masked too, and
    long strings are truncated.
    """
    if isinstance(value, Mapping):
        return {
            str(k): _MASK if _is_sensitive(k) else redact_for_log(v, max_string=max_string) for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact_for_log(v, max_string=max_string) for v in value]
    if isinstance(value, str):
        masked = _BEARER_RE.sub(f"Bearer {_MASK}", value)
        return masked if len(masked) <= max_string else f"{masked[:max_string]}…<truncated>"
    return value


def short_endpoint(url: str, *, keep: int = 60) -> str:
    """Shorten a push endpoint URL for log lines."""
    return url if len(url) <= keep else f"{url[:keep]}…"
