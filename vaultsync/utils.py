"""Utility functions for vaultsync."""

import re
from datetime import datetime, timezone
from typing import Optional

# =============================================================================
# Constants
# =============================================================================

# Retry configuration for transient transfer errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 0.5  # seconds, doubled per attempt

# Only files with this extension are synchronized
TRACKED_EXTENSION: str = ".md"

# Default poll interval for the remote poller
DEFAULT_POLL_INTERVAL: float = 30.0  # seconds

EPOCH_ISO: str = "1970-01-01T00:00:00.000Z"


# =============================================================================
# Timestamp utilities
# =============================================================================


def utc_now_iso() -> str:
    """Return the current UTC time as ISO 8601 with millisecond precision.

    Examples:
        >>> utc_now_iso()  # doctest: +SKIP
        '2025-01-15T10:30:00.123Z'
    """
    return format_iso_timestamp(datetime.now(timezone.utc))


def format_iso_timestamp(dt: datetime) -> str:
    """Format a datetime as a UTC ISO 8601 string ending in ``Z``."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse an ISO format timestamp into an aware UTC datetime.

    Args:
        timestamp_str: ISO format timestamp string (e.g., "2025-01-15T10:30:00.000Z")

    Returns:
        Timezone-aware datetime or None if parsing fails
    """
    if not timestamp_str:
        return None

    try:
        # fromisoformat() only understands 'Z' on 3.11+
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(timestamp_str)
        except ValueError:
            # Older interpreters reject fractional seconds that are not 3 or 6 digits
            if "." not in timestamp_str:
                raise
            timestamp_str = timestamp_str.split(".")[0] + "+00:00"
            dt = datetime.fromisoformat(timestamp_str)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except (ValueError, AttributeError):
        return None


# =============================================================================
# Interval parsing
# =============================================================================

_INTERVAL_RE = re.compile(r"^(\d+)(s|m|h)?$")


def parse_sync_interval(interval: Optional[str]) -> Optional[float]:
    """Parse a human-readable sync interval into seconds.

    Supports ``"30s"``, ``"5m"``, ``"1h"`` or a plain number of milliseconds.

    Args:
        interval: Interval string

    Returns:
        Interval in seconds, or None if empty or unparseable

    Examples:
        >>> parse_sync_interval("5m")
        300.0
        >>> parse_sync_interval("1500")
        1.5
        >>> parse_sync_interval("soon") is None
        True
    """
    if not interval:
        return None
    match = _INTERVAL_RE.match(interval.strip())
    if not match:
        return None
    value = int(match.group(1))
    unit = match.group(2)
    if unit == "s":
        return float(value)
    elif unit == "m":
        return float(value * 60)
    elif unit == "h":
        return float(value * 60 * 60)
    return value / 1000


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Render a byte count for display, e.g. ``"256 B"`` or ``"1.5 MB"``."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    size = size_bytes / 1024
    for unit in ("KB", "MB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"
