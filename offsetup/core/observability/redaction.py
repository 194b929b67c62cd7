"""
Secret redaction for logs, receipts and the persisted report.

Two kinds of secrets are scrubbed:
    - passwords embedded in URIs (``scheme://user:pw@host``)
    - values registered at runtime (credentials resolved from ``$VAR``)
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Any

MASK = "***"

_URI_PASSWORD_RE = re.compile(r"(?P<prefix>[A-Za-z][A-Za-z0-9+.-]*://[^:/@\s]+:)(?P<pw>[^@\s]+)(?=@)")

_lock = threading.Lock()
_secrets: set[str] = set()


def register_secret(value: str | None) -> None:
    """Scrub ``value`` from everything redacted from now on."""
    if value and len(value) >= 3:
        with _lock:
            _secrets.add(value)


def clear_secrets() -> None:
    with _lock:
        _secrets.clear()


def redact_uri(value: str) -> str:
    """``postgresql://app:s3cret@db/app`` → ``postgresql://app:***@db/app``."""
    return _URI_PASSWORD_RE.sub(lambda m: m.group("prefix") + MASK, value)


def redact_text(value: str) -> str:
    text = redact_uri(value)
    with _lock:
        secrets = sorted(_secrets, key=len, reverse=True)
    for secret in secrets:
        text = text.replace(secret, MASK)
    return text


def redact(obj: Any) -> Any:
    """Recursively redact strings inside dicts/lists."""
    if isinstance(obj, str):
        return redact_text(obj)
    if isinstance(obj, dict):
        return {k: redact(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [redact(v) for v in obj]
    return obj


class RedactingFilter(logging.Filter):
    """Logging filter that scrubs secrets from the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        cleaned = redact_text(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True
