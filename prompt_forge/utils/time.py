"""
UTC timestamp utilities for Prompt Forge.

All timestamps MUST be in UTC with explicit timezone markers.

This module provides:
- utc_now(): Current time as timezone-aware datetime
- utc_timestamp(): ISO 8601 timestamp string with 'Z' suffix

Every created_at/updated_at column in the store uses the utc_timestamp()
format, including values written by SQL triggers
(strftime('%Y-%m-%dT%H:%M:%SZ', 'now')), so string ordering is time ordering.

Examples:
    >>> timestamp = utc_timestamp()
    >>> timestamp
    '2025-11-10T01:44:00Z'
"""

from datetime import UTC, datetime

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    """
    Return current time in UTC with timezone info.

    Returns:
        datetime: Current UTC time with tzinfo=timezone.utc

    Note:
        NEVER use datetime.now() without timezone parameter.
        NEVER use datetime.utcnow() (deprecated, returns naive datetime).
    """
    return datetime.now(UTC)


def utc_timestamp(dt: datetime | None = None) -> str:
    """
    Return ISO 8601 timestamp string with 'Z' suffix.

    Format: YYYY-MM-DDTHH:MM:SSZ

    Args:
        dt: Optional timezone-aware datetime. If None, uses utc_now().

    Returns:
        str: ISO 8601 formatted timestamp in UTC

    Raises:
        ValueError: If dt is provided but is naive (missing timezone)
    """
    if dt is None:
        dt = utc_now()

    if dt.tzinfo is None:
        raise ValueError(
            "Datetime must be timezone-aware (use timezone.utc). "
            "Got naive datetime. Use utc_now() or ensure dt has tzinfo set."
        )

    return dt.astimezone(UTC).strftime(TIMESTAMP_FORMAT)

