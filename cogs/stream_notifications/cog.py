"""Stream notification cog: provider adapters, dispatcher and /streams commands."""

from __future__ import annotations

from .admin import StreamAdminMixin
from .base import StreamNotificationsBase


class StreamNotificationsCog(StreamAdminMixin, StreamNotificationsBase):
    """Meldet Go-Live, Updates und Stream-Ende abonnierter Streamer in Discord."""


__all__ = ["StreamNotificationsCog"]
