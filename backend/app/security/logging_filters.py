"""Logging filters that scrub credentials and member contact details."""

from __future__ import annotations

import logging
import re

_BEARER_PATTERN = re.compile(r"(Authorization:\s*Bearer\s+)[\w\.-]+", re.IGNORECASE)
_JWT_PATTERN = re.compile(r"eyJ[\w-]+\.[\w-]+\.[\w-]+")
_EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")

REDACTED = "**REDACTED**"


def scrub(text: str) -> str:
    text = _BEARER_PATTERN.sub(rf"\g<1>{REDACTED}", text)
    text = _JWT_PATTERN.sub(REDACTED, text)
    return _EMAIL_PATTERN.sub(REDACTED, text)


class SensitiveFilter(logging.Filter):
    """Redact bearer tokens and email addresses from log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = scrub(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(
                scrub(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        return True


__all__ = ["REDACTED", "SensitiveFilter", "scrub"]
