"""
Structured JSON logging for Prompt Forge.

Provides standardized logging with:
- JSON formatted output to stderr
- UTC timestamps with timezone info
- Structured context fields
- Secret redaction (provider API keys never reach the logs in full)

All logs use Python's standard logging module with custom formatting.
Log level defaults to INFO, use setup_logging(verbose=True) for DEBUG.

Examples:
    >>> from prompt_forge.utils.logging import setup_logging
    >>> setup_logging(verbose=True)
    >>> logger = logging.getLogger("prompt_forge.storage.migrations")
    >>> logger.info("Migration applied", extra={"context": {"unit": "20251110_014400_init.sql"}})

Security:
    - NEVER log full API keys or passphrases
    - Prompt content is not logged above DEBUG level
    - Only stderr is used (stdout reserved for user output)
"""

import json
import logging
import re
import sys
from typing import Any

from prompt_forge.utils.time import utc_timestamp


class JSONFormatter(logging.Formatter):
    """
    Custom formatter that outputs logs as JSON with structured fields.

    Each log record is formatted as a JSON object with:
    - timestamp: ISO 8601 UTC timestamp
    - level: Log level (INFO, WARNING, ERROR, DEBUG)
    - component: Module/component name (from logger name)
    - message: Human-readable log message
    - context: Additional structured data (from 'context' in extra)
    - record_id: Prompt record the entry is about (from 'record_id' in extra)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": utc_timestamp(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and isinstance(record.context, dict):
            log_entry["context"] = record.context

        if hasattr(record, "record_id"):
            log_entry["record_id"] = record.record_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


class SecretRedactingFilter(logging.Filter):
    """
    Logging filter that redacts potential secrets from log messages.

    Prevents accidental logging of:
    - Provider API keys (OpenAI sk-*, Anthropic sk-ant-*, xAI xai-*)
    - Bearer tokens

    There is no generic long-token rule: migration unit names and file paths
    must stay readable.

    Replaces full secrets with redacted versions showing only last 4 chars:
    "sk-proj-abcdef123456..." -> "sk-...3456"
    """

    SECRET_PATTERNS = [
        (re.compile(r"\bsk-[a-zA-Z0-9_-]{20,}\b"), "sk-...{last4}"),
        (re.compile(r"\bxai-[a-zA-Z0-9_-]{20,}\b"), "xai-...{last4}"),
        (re.compile(r"\bBearer\s+[a-zA-Z0-9_-]{20,}\b"), "Bearer ***{last4}"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._redact_secrets(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self._redact_secrets(str(v)) for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self._redact_secrets(str(arg)) for arg in record.args
                )

        if hasattr(record, "context") and isinstance(record.context, dict):
            record.context = self._redact_dict(record.context)

        return True

    def _redact_secrets(self, text: str) -> str:
        for pattern, template in self.SECRET_PATTERNS:

            def redact_match(match: re.Match) -> str:
                matched = match.group(0)
                return template.format(last4=matched[-4:])

            text = pattern.sub(redact_match, text)

        return text

    def _redact_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in data.items():
            if isinstance(value, str):
                result[key] = self._redact_secrets(value)
            elif isinstance(value, dict):
                result[key] = self._redact_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    self._redact_secrets(v) if isinstance(v, str) else v for v in value
                ]
            else:
                result[key] = value
        return result


def setup_logging(verbose: bool = False, quiet_logs: bool = False) -> None:
    """
    Configure structured JSON logging for the application.

    Sets up:
    - JSON formatter for structured output
    - Secret redaction filter
    - stderr output (stdout reserved for user-facing content)
    - Log level: DEBUG if verbose, WARNING if quiet_logs, INFO otherwise

    Args:
        verbose: If True, set log level to DEBUG (wins over quiet_logs).
        quiet_logs: If True, only WARNING and above are emitted. Used by the
            CLI in human mode so JSON lines do not interleave with Rich output.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet_logs:
        level = logging.WARNING
    else:
        level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove any existing handlers (prevents duplicate logs)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(SecretRedactingFilter())

    root_logger.addHandler(handler)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    record_id: int | None = None,
) -> None:
    """
    Log a message with structured context and optional prompt record id.

    Equivalent to logger.log(level, message, extra={'context': {...}, 'record_id': ...})

    Args:
        logger: Logger instance (from logging.getLogger)
        level: Log level (logging.INFO, logging.WARNING, etc.)
        message: Human-readable log message
        context: Optional dict with additional structured data
        record_id: Optional prompt record id to include in the entry

    Example:
        >>> log_with_context(
        ...     logger,
        ...     logging.INFO,
        ...     "Prompt saved",
        ...     context={"change_kind": "manual_edit", "version_number": 2},
        ...     record_id=7,
        ... )
    """
    extra = {}

    if context is not None:
        extra["context"] = context

    if record_id is not None:
        extra["record_id"] = record_id

    logger.log(level, message, extra=extra if extra else None)
