#!/usr/bin/env python3
"""Common error types shared across modules.

Kept free of imports from the rest of the project to avoid circular imports.
"""

from typing import Optional


class WatchError(Exception):
    """Base class for every failure the poll cycle knows how to record."""


class FetchError(WatchError):
    """A feed could not be retrieved. Subclasses are retried with backoff."""


class NetworkError(FetchError):
    """Connection, DNS or redirect-loop failure."""


class FetchTimeout(FetchError):
    """The request did not complete within the configured timeout."""


class HttpError(FetchError):
    """The server answered with a non-success status.

    Attributes:
        status: The HTTP status code of the final response.
    """

    def __init__(self, status: int, message: Optional[str] = None):
        super().__init__(message or f"HTTP {status}")
        self.status = status


class MalformedDocument(WatchError):
    """The payload failed the minimal feed shape check. Never retried."""


class ConfigError(WatchError):
    """Configuration could not be read or is invalid."""


class NotificationError(WatchError):
    """The notifier reported a delivery failure.

    Attributes:
        reason: Human-readable failure reason from the delivery channel.
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


__all__ = [
    "WatchError",
    "FetchError",
    "NetworkError",
    "FetchTimeout",
    "HttpError",
    "MalformedDocument",
    "ConfigError",
    "NotificationError",
]
