"""Shared logger for the stream notification cog."""

import logging

log = logging.getLogger("StreamNotifications")
