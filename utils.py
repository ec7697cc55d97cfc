#!/usr/bin/env python3
"""
Utility classes and functions shared by the fetcher, watcher and server.
"""

from asyncio import sleep
from datetime import datetime, timezone
from typing import Optional
import re
from urllib.parse import urlparse

from config import get_logger

# Module-specific logger
logger = get_logger("utils")


class RetryHelper:
    """Helper class for implementing retry logic with linear backoff.

    The delay before retry ``n`` (1-based) is ``n * base_delay``, capped at
    ``max_delay``.
    """

    def __init__(self, max_attempts: int = 3, base_delay: float = 3.0, max_delay: float = 60.0):
        """Initialize the retry helper.

        Args:
            max_attempts: Total number of attempts, including the first one
            base_delay: Delay unit in seconds
            max_delay: Maximum delay in seconds between attempts
        """
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay

    def calculate_delay(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        return min(attempt * self.base_delay, self.max_delay)

    async def sleep_for_attempt(self, attempt: int):
        delay = self.calculate_delay(attempt)
        if delay > 0:
            logger.debug(f"Retry delay: sleeping for {delay:.2f} seconds")
            await sleep(delay)


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted duration string (e.g., "1h 23m 45s")
    """
    if seconds < 0:
        return "0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")

    return " ".join(parts)


def format_timestamp(timestamp: Optional[float]) -> Optional[str]:
    """Render a unix timestamp as an ISO 8601 UTC string (None stays None)."""
    if timestamp is None:
        return None
    try:
        return datetime.fromtimestamp(float(timestamp), tz=timezone.utc).isoformat()
    except (OSError, OverflowError, ValueError, TypeError):
        return str(timestamp)


def mask_email(address: str) -> str:
    """Hide most of the local part of an e-mail address for display.

    >>> mask_email("someone@example.com")
    'so…@example.com'
    """
    if not address:
        return ""
    match = re.match(r"^(.{2})(.+)(@.+)$", address)
    if not match:
        return address
    return f"{match.group(1)}…{match.group(3)}"


def redact_url(url: Optional[str]) -> Optional[str]:
    """Reduce a URL to scheme://host[:port] so credentials never hit the logs."""
    if not url:
        return None
    try:
        parsed = urlparse(url)
        if parsed.scheme and parsed.hostname:
            host = parsed.hostname
            if parsed.port:
                host = f"{host}:{parsed.port}"
            return f"{parsed.scheme}://{host}"
    except ValueError:
        return url
    return url
