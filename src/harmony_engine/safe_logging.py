"""Credential-safe logging for harmony-engine.

Provider requests carry OAuth client secrets and bearer tokens, and the
MusicBrainz User-Agent carries a contact address. This module keeps those out
of log output:
- Sensitive field redaction in dictionaries
- Token, secret and email scrubbing in log messages
- Rich console logging setup for the CLI
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

# Fields that should be redacted in logs
REDACT_FIELDS = frozenset(
    {
        "password",
        "secret",
        "token",
        "authorization",
        "credential",
        "access_token",
        "client_secret",
    }
)

# Regex patterns for sensitive data
PATTERNS = {
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    "bearer": re.compile(r"\b(Bearer|Basic)\s+[A-Za-z0-9._~+/=-]+"),
    "query_secret": re.compile(r"\b(client_secret|access_token|refresh_token)=([^&\s]+)"),
}


def redact_value(value: str, visible_chars: int = 4) -> str:
    """Redact a sensitive value, showing only the first few characters.

    Args:
        value: Value to redact
        visible_chars: Number of characters to show

    Returns:
        Redacted string (e.g., "abcd***")
    """
    if len(value) <= visible_chars:
        return "***"
    return f"{value[:visible_chars]}***"


def redact_dict(
    data: Mapping[str, Any],
    redact_fields: frozenset[str] | None = None,
) -> dict[str, Any]:
    """Recursively redact sensitive fields in a mapping.

    A key is sensitive when it equals or contains one of ``redact_fields``
    (case-insensitive), so ``spotify_client_secret`` is caught too.
    """
    if redact_fields is None:
        redact_fields = REDACT_FIELDS

    result: dict[str, Any] = {}
    for key, value in data.items():
        key_lower = key.lower()
        should_redact = key_lower in redact_fields or any(
            field in key_lower for field in redact_fields
        )

        if should_redact and isinstance(value, str):
            result[key] = redact_value(value)
        elif isinstance(value, Mapping):
            result[key] = redact_dict(value, redact_fields)
        elif isinstance(value, list):
            result[key] = [
                redact_dict(item, redact_fields) if isinstance(item, Mapping) else item
                for item in value
            ]
        else:
            result[key] = value

    return result


def sanitize_message(message: str) -> str:
    """Scrub credentials and email addresses from a log message."""
    result = PATTERNS["bearer"].sub(lambda m: f"{m.group(1)} ***", message)
    result = PATTERNS["query_secret"].sub(lambda m: f"{m.group(1)}=***", result)
    result = PATTERNS["email"].sub("[EMAIL]", result)
    # MBIDs and provider ids are kept, they identify catalog entries only
    return result


class SafeLogFormatter(logging.Formatter):
    """Log formatter that scrubs credentials from messages and arguments."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        sanitize_messages: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.sanitize_messages = sanitize_messages

    def format(self, record: logging.LogRecord) -> str:
        # Copy so other handlers still see the original record
        record = logging.makeLogRecord(record.__dict__)

        if self.sanitize_messages:
            record.msg = sanitize_message(str(record.msg))
            if record.args:
                record.args = self._sanitize_args(record.args)

        return super().format(record)

    def _sanitize_args(self, args: tuple[Any, ...] | Mapping[str, Any]) -> Any:
        if isinstance(args, Mapping):
            return redact_dict(args)
        return tuple(sanitize_message(arg) if isinstance(arg, str) else arg for arg in args)


def configure_rich_logging(
    level: int = logging.WARNING,
    show_time: bool = True,
    show_path: bool = False,
    format_string: str = "%(message)s",
) -> Console:
    """Route logging through Rich on stderr, scrubbing credentials.

    Rich renders time and level itself, so ``format_string`` usually only
    shapes the message part.

    Replaces handlers installed by an earlier call, so invoking the CLI
    repeatedly in one process does not duplicate output.

    Returns:
        Console for command output (stdout)
    """
    handler = RichHandler(
        console=Console(stderr=True),
        show_time=show_time,
        show_path=show_path,
        rich_tracebacks=False,
        markup=False,
    )
    handler.setFormatter(SafeLogFormatter(fmt=format_string))

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if isinstance(existing, RichHandler):
            root_logger.removeHandler(existing)
    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    return Console()


## Tests


def test_redact_value():
    assert redact_value("0123456789abcdef") == "0123***"
    assert redact_value("abc") == "***"
    assert redact_value("abcdef", 3) == "abc***"


def test_redact_dict():
    data = {
        "client_id": "public-id",
        "spotify_client_secret": "s3cr3t-value",
        "nested": {"access_token": "BQDx-long-token", "token_type": "Bearer"},
        "items": [{"password": "hunter2"}, "plain"],
    }

    redacted = redact_dict(data)

    assert redacted["client_id"] == "public-id"
    assert redacted["spotify_client_secret"] == "s3cr***"
    assert redacted["nested"]["access_token"] == "BQDx***"
    # Key contains "token" so the value is redacted as well
    assert redacted["nested"]["token_type"] == "Bear***"
    assert redacted["items"] == [{"password": "hunt***"}, "plain"]


def test_sanitize_message():
    msg = (
        "POST https://accounts.spotify.com/api/token client_secret=abc123&grant_type=x "
        "Authorization: Bearer BQDxyz.123 contact me@example.com"
    )
    sanitized = sanitize_message(msg)

    assert "abc123" not in sanitized
    assert "client_secret=***" in sanitized
    assert "grant_type=x" in sanitized
    assert "BQDxyz.123" not in sanitized
    assert "Bearer ***" in sanitized
    assert "[EMAIL]" in sanitized


def test_sanitize_message_preserves_mbids():
    msg = "Fetched release 8f8e6a3a-1a2b-4c5d-9e0f-123456789abc"
    assert sanitize_message(msg) == msg


def test_safe_log_formatter():
    formatter = SafeLogFormatter(fmt="%(message)s")
    record = logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg="Token header: %s",
        args=("Bearer abc.def",),
        exc_info=None,
    )

    formatted = formatter.format(record)
    assert formatted == "Token header: Bearer ***"
    assert record.args == ("Bearer abc.def",)
