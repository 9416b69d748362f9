"""Platform adapters."""

from .base import StreamProvider
from .mixer import MixerClient, MixerProvider
from .twitch import TwitchHelixClient, TwitchProvider
from .twitch_webhook import TwitchHubClient, TwitchWebhookProvider
from .youtube import YouTubeClient, YouTubeProvider

__all__ = [
    "MixerClient",
    "MixerProvider",
    "StreamProvider",
    "TwitchHelixClient",
    "TwitchHubClient",
    "TwitchProvider",
    "TwitchWebhookProvider",
    "YouTubeClient",
    "YouTubeProvider",
]
