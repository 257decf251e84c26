"""Logging filters that scrub sensitive content."""

from __future__ import annotations

import logging
import re

_SENSITIVE_PATTERN = re.compile(
    r"(Authorization: Bearer\s+[\w\.-]+"
    r"|(?:sk|rk|whsec)_(?:live|test)?_?[A-Za-z0-9]+"
    r"|client_secret\"?\s*[:=]\s*\"?[\w-]+"
    r"|source_?id\"?\s*[:=]\s*\"?[\w:-]+)",
    re.IGNORECASE,
)


class SensitiveFilter(logging.Filter):
    """Replace secrets and card tokens in log messages with a redaction marker."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = _SENSITIVE_PATTERN.sub("**REDACTED**", record.msg)
        return True


__all__ = ["SensitiveFilter"]
