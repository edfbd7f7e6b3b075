"""Keep payment-provider credentials out of log output."""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping

REDACTED = "***REDACTED***"

_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"\b(sk|rk)_(live|test)_[A-Za-z0-9]{8,}"), rf"\1_\2_{REDACTED}"),
    (re.compile(r"\bwhsec_[A-Za-z0-9]{8,}"), f"whsec_{REDACTED}"),
    (re.compile(r"(?i)\bbearer\s+[A-Za-z0-9_\-.]{16,}"), f"Bearer {REDACTED}"),
    (re.compile(r"(?i)\b(stripe-signature|signature)\s*[:=]\s*\S+"), rf"\1={REDACTED}"),
    (re.compile(r"(?i)\b(password|secret)\s*[:=]\s*[\"']?[^\"'\s]{6,}[\"']?"), rf"\1={REDACTED}"),
    (re.compile(r"://([^:/@]+):([^@]+)@"), rf"://\1:{REDACTED}@"),
]

SENSITIVE_KEYS = frozenset(
    {"secret", "token", "password", "api_key", "apikey", "authorization", "signature", "client_secret"}
)


def redact_secrets(text: str) -> str:
    """Mask Stripe keys, webhook secrets, bearer tokens and DSN passwords in ``text``."""
    if not text:
        return text
    for pattern, replacement in _PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _redact_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return redact_dict(value)
    if isinstance(value, (list, tuple)):
        return [_redact_value(v) for v in value]
    if isinstance(value, str):
        return redact_secrets(value)
    return value


def redact_dict(data: Mapping[str, Any]) -> dict[str, Any]:
    """Copy of ``data`` with sensitive keys masked, recursing into nested objects."""
    return {
        key: REDACTED if any(s in str(key).lower() for s in SENSITIVE_KEYS) else _redact_value(value)
        for key, value in data.items()
    }


class RedactingFilter(logging.Filter):
    """Scrub secrets from a record's message and string arguments before it is emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_secrets(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(redact_secrets(a) if isinstance(a, str) else a for a in record.args)
        return True


def install_redaction(root: logging.Logger | None = None) -> None:
    """Attach ``RedactingFilter`` to every handler of the root logger."""
    root = root or logging.getLogger()
    for handler in root.handlers:
        if not any(isinstance(f, RedactingFilter) for f in handler.filters):
            handler.addFilter(RedactingFilter())
