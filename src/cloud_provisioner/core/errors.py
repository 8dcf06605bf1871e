"""Remote API error classes.

Every ``CloudClient`` implementation maps its failures onto these two classes so
the engine can decide whether a call is worth retrying.
"""

from __future__ import annotations


class RemoteError(Exception):
    """Base class for failures reported by the remote cloud API."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RemoteTransientError(RemoteError):
    """Throttling, timeouts and transient network failures. Retried with backoff."""


class RemoteTerminalError(RemoteError):
    """Permission denied, invalid attribute values, quota exceeded. Never retried."""
