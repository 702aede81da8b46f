from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

REDACTED = "***REDACTED***"

# Order signatures and encoded order payloads are bearer material for a fill.
SENSITIVE_KEYS = {
    "SIGNATURE",
    "ENCODED_ORDER",
    "ENCODEDORDER",
    "AUTHORIZATION",
    "API_KEY",
    "X_API_KEY",
    "PASSWORD",
    "SECRET",
}

_SENSITIVE_COMPACT = {key.replace("_", "").casefold() for key in SENSITIVE_KEYS}

_PLAIN_SECRET_PATTERNS = (
    re.compile(r"(?im)(authorization\s*[:=]\s*)(bearer\s+)?([^\s,;]+)"),
    re.compile(r"(?im)(x-api-key\s*[:=]\s*)([^\s,;]+)"),
)
_JSON_KEY_VALUE_PATTERN = re.compile(
    r'("(?:signature|encodedOrder|encoded_order|api_key|apiKey|authorization)"\s*:\s*")([^"\\]*)(")',
    re.IGNORECASE,
)


def _is_sensitive_key(key: object) -> bool:
    compact = str(key).replace("-", "").replace("_", "").casefold()
    return compact in _SENSITIVE_COMPACT


def _mask_secret(value: str) -> str:
    if not value:
        return REDACTED
    if len(value) > 12:
        return f"{value[:6]}...{value[-4:]}"
    return "*" * len(value)


def redact_value(value: str) -> str:
    return _mask_secret(value)


def _redact_match(match: re.Match[str]) -> str:
    prefix = match.group(1)
    optional_scheme = ""
    if match.lastindex and match.lastindex >= 3:
        optional_scheme = match.group(2) or ""
    return f"{prefix}{optional_scheme}[REDACTED]"


def sanitize_text(text: str) -> str:
    redacted = str(text)
    for pattern in _PLAIN_SECRET_PATTERNS:
        redacted = pattern.sub(_redact_match, redacted)
    return _JSON_KEY_VALUE_PATTERN.sub(
        lambda m: f"{m.group(1)}{_mask_secret(m.group(2))}{m.group(3)}", redacted
    )


def sanitize_mapping(d: Mapping[str, Any]) -> dict[str, Any]:
    sanitized: dict[str, Any] = {}
    for key, value in d.items():
        key_str = str(key)
        if _is_sensitive_key(key_str):
            sanitized[key_str] = _mask_secret(str(value)) if value is not None else REDACTED
            continue
        sanitized[key_str] = redact_data(value)
    return sanitized


def redact_data(value: Any) -> Any:
    if isinstance(value, Mapping):
        return sanitize_mapping(value)
    if isinstance(value, list):
        return [redact_data(item) for item in value]
    if isinstance(value, tuple):
        return tuple(redact_data(item) for item in value)
    if isinstance(value, str):
        return sanitize_text(value)
    return value
