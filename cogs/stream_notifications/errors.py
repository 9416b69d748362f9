"""Error taxonomy of the stream notification cog.

Every error carries a ``string_key`` so the command layer can answer with a
localized short message instead of a traceback.
"""

from __future__ import annotations

from typing import Any, Optional


class StreamNotificationError(Exception):
    string_key = "error.generic"

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.string_key)
        self.details = details


class NotFound(StreamNotificationError):
    """Streamer, hook or record does not exist."""

    string_key = "error.not_found"


class InvalidInput(StreamNotificationError):
    """Malformed username, bad signature or an unknown option."""

    string_key = "error.invalid_input"


class UpstreamUnavailable(StreamNotificationError):
    """Platform API error or timeout after all retries."""

    string_key = "error.upstream"

    def __init__(self, message: str = "", *, status: Optional[int] = None, **details: Any):
        super().__init__(message, **details)
        self.status = status


class AlreadyTracked(StreamNotificationError):
    string_key = "error.already_tracked"


class NotTracked(StreamNotificationError):
    string_key = "error.not_tracked"


class AlreadyRunning(StreamNotificationError):
    string_key = "error.already_running"


class NotRunning(StreamNotificationError):
    string_key = "error.not_running"


class AlreadySubscribed(StreamNotificationError):
    string_key = "error.already_subscribed"


class NotSubscribed(StreamNotificationError):
    string_key = "error.not_subscribed"


class DeliveryFailed(StreamNotificationError):
    """Discord rejected a send/edit/delete.

    ``stale`` is set when the message or channel no longer exists, the
    dispatcher then drops its record and sends a fresh message.
    """

    string_key = "error.delivery"

    def __init__(self, message: str = "", *, stale: bool = False, **details: Any):
        super().__init__(message, **details)
        self.stale = stale


__all__ = [
    "AlreadyRunning",
    "AlreadySubscribed",
    "AlreadyTracked",
    "DeliveryFailed",
    "InvalidInput",
    "NotFound",
    "NotRunning",
    "NotSubscribed",
    "NotTracked",
    "StreamNotificationError",
    "UpstreamUnavailable",
]
