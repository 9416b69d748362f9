import asyncio
import sys
from pathlib import Path

import pytest

# Add root to sys.path
root = Path(__file__).parent.parent
sys.path.insert(0, str(root))

from cogs.stream_notifications.errors import AlreadySubscribed, InvalidInput, NotSubscribed
from cogs.stream_notifications.events import StreamEventQueue
from cogs.stream_notifications.models import NotificationRecord, RenderableFields, StreamerRef, Subscription, utcnow
from cogs.stream_notifications.providers.base import StreamProvider
from cogs.stream_notifications.sharding import FreeMessage, TrackMessage
from cogs.stream_notifications.storage import StreamStore
from cogs.stream_notifications.subscriptions import SubscriptionService
from service import db


class DirectoryProvider(StreamProvider):
    """Kennt nur die Streamer aus ``directory``; kein Polling."""

    platform = "twitch"
    url_hosts = ("twitch.tv",)

    def __init__(self, queue, directory):
        super().__init__(queue)
        self.directory = directory

    def _normalize_query(self, query):
        if not query or " " in query:
            raise InvalidInput(query)
        return query.lower()

    async def _lookup(self, query):
        for external_id, name in self.directory.items():
            if query in (external_id, name.lower()):
                return StreamerRef(self.platform, external_id, name)
        raise InvalidInput(query)

    async def _fetch_live(self, external_ids):
        return {}

    def render_status(self, status, locale):
        return RenderableFields(title="", url="", author_name="")


class FakeBridge:
    is_lead = False

    def __init__(self):
        self.sent = []

    async def notify_lead(self, message):
        self.sent.append(message)
        return True


def _with_service(fn, bridge=None):
    async def runner():
        conn = await db.connect(db.MEMORY)
        store = StreamStore(conn)
        provider = DirectoryProvider(StreamEventQueue(), {"42": "Streamer", "77": "Other"})
        service = SubscriptionService(store, {"twitch": provider}, bridge=bridge)
        try:
            return await fn(service, store, provider)
        finally:
            await conn.close()

    return asyncio.run(runner())


def test_follow_tracks_and_last_unfollow_frees():
    async def scenario(service, store, provider):
        await service.follow("twitch", "Streamer", "guild", "1")
        await service.follow("twitch", "42", "user", "7")
        tracked_after_follow = provider.is_subscribed("42")

        await service.unfollow("twitch", "42", "guild", "1")
        still_tracked = provider.is_subscribed("42")

        await service.unfollow("twitch", "42", "user", "7")
        return tracked_after_follow, still_tracked, provider.is_subscribed("42")

    assert _with_service(scenario) == (True, True, False)


def test_double_follow_and_unknown_unfollow():
    async def scenario(service, store, provider):
        await service.follow("twitch", "streamer", "guild", "1")
        with pytest.raises(AlreadySubscribed):
            await service.follow("twitch", "https://twitch.tv/Streamer", "guild", "1")
        with pytest.raises(NotSubscribed):
            await service.unfollow("twitch", "77", "guild", "1")
        with pytest.raises(InvalidInput):
            await service.follow("mixer", "streamer", "guild", "1")
        return await store.count_subscribers("twitch", "42")

    assert _with_service(scenario) == 1


def test_unfollow_drops_live_record():
    async def scenario(service, store, provider):
        await service.follow("twitch", "streamer", "guild", "1")
        await store.upsert_notification(
            NotificationRecord("guild", "1", "twitch", "42", "s1", "c1", "m1", utcnow())
        )
        await service.unfollow("twitch", "42", "guild", "1")
        return await store.all_notifications()

    assert _with_service(scenario) == []


def test_find_matches_name_or_id():
    async def scenario(service, store, provider):
        await service.follow("twitch", "streamer", "guild", "1")
        by_name = await service.find("twitch", "STREAMER", "guild", "1")
        by_id = await service.find("twitch", "42", "guild", "1")
        with pytest.raises(NotSubscribed):
            await service.find("twitch", "Other", "guild", "1")
        return by_name, by_id

    by_name, by_id = _with_service(scenario)
    assert by_name == by_id
    assert by_name.display_name == "Streamer"


def test_resync_tracks_everything_in_the_store():
    async def scenario(service, store, provider):
        await store.add_subscription(Subscription("twitch", "42", "guild", "1", "Streamer"))
        await store.add_subscription(Subscription("twitch", "77", "guild", "1", "Other"))
        await store.add_subscription(Subscription("youtube", "UCx", "guild", "1", "Disabled"))
        added = await service.resync()
        again = await service.resync()
        return added, again, sorted(ref.external_id for ref in provider.tracked())

    assert _with_service(scenario) == (2, 0, ["42", "77"])


def test_follower_asks_lead_instead_of_tracking():
    bridge = FakeBridge()

    async def scenario(service, store, provider):
        await service.follow("twitch", "streamer", "guild", "1")
        await service.unfollow("twitch", "42", "guild", "1")
        return provider.is_subscribed("42")

    assert _with_service(scenario, bridge=bridge) is False
    assert bridge.sent == [TrackMessage("twitch", "42", "Streamer"), FreeMessage("twitch", "42")]


def test_lead_ignores_free_when_resubscribed():
    async def scenario(service, store, provider):
        await service.handle_track(TrackMessage("twitch", "42", "Streamer"))
        await store.add_subscription(Subscription("twitch", "42", "guild", "1", "Streamer"))
        kept = await service.handle_free(FreeMessage("twitch", "42"))
        await store.delete_subscription("twitch", "42", "guild", "1")
        freed = await service.handle_free(FreeMessage("twitch", "42"))
        return kept, freed, provider.is_subscribed("42")

    assert _with_service(scenario) == ({"freed": False}, {"freed": True}, False)
