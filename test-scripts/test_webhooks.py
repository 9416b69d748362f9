import asyncio
import hashlib
import hmac
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

from aiohttp.test_utils import TestClient, TestServer

# Add root to sys.path
root = Path(__file__).parent.parent
sys.path.insert(0, str(root))

from cogs.stream_notifications.models import RegisteredHook
from cogs.stream_notifications.storage import StreamStore
from cogs.stream_notifications.webhooks import HubClient, WebhookEndpoint, verify_signature
from service import db


class FakeHub(HubClient):
    def __init__(self, fail=False):
        self.subscribed = []
        self.unsubscribed = []
        self.fail = fail

    async def subscribe(self, streamer_id, callback_url, lease_seconds, secret):
        if self.fail:
            from cogs.stream_notifications.errors import UpstreamUnavailable

            raise UpstreamUnavailable("hub down")
        self.subscribed.append((streamer_id, callback_url, lease_seconds))

    async def unsubscribe(self, streamer_id, callback_url):
        self.unsubscribed.append((streamer_id, callback_url))


class _Clock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


def _sign(secret, body, algo="sha256"):
    return f"{algo}=" + hmac.new(secret.encode(), body, getattr(hashlib, algo)).hexdigest()


def _endpoint(**kwargs):
    kwargs.setdefault("domain", "streams.example.org")
    kwargs.setdefault("host", "0.0.0.0")
    kwargs.setdefault("lease_seconds", 1000)
    return WebhookEndpoint(**kwargs)


async def _confirm(client, endpoint, hook, lease=1000):
    resp = await client.get(
        f"{endpoint.path}/{hook.hook_id}",
        params={"hub.mode": "subscribe", "hub.challenge": "ch-123", "hub.lease_seconds": str(lease)},
    )
    return resp.status, await resp.text()


def test_verify_signature():
    body = b'{"data": []}'
    assert verify_signature("s", body, _sign("s", body))
    assert verify_signature("s", body, _sign("s", body, "sha1"))
    assert not verify_signature("s", body, _sign("other", body))
    assert not verify_signature("s", body, None)
    assert not verify_signature("s", body, "garbage")
    assert not verify_signature("s", body, "md5=" + hashlib.md5(body).hexdigest())


def test_handshake_and_signed_delivery():
    async def scenario():
        calls = []

        async def handler(hook, data):
            calls.append((hook.streamer_id, data))

        endpoint = _endpoint()
        hub = FakeHub()
        endpoint.attach("twitch", hub, handler)
        hook = await endpoint.register_hook("twitch", "42")
        assert hook is not None and hook.pending
        assert hub.subscribed[0][1] == f"https://streams.example.org/webhooks/{hook.hook_id}"

        async with TestClient(TestServer(endpoint.make_app())) as client:
            # POST auf einen noch nicht bestätigten Hook
            body = json.dumps({"data": []}).encode()
            resp = await client.post(
                f"/webhooks/{hook.hook_id}", data=body, headers={"X-Hub-Signature": _sign(hook.secret, body)}
            )
            assert resp.status == 400

            status, text = await _confirm(client, endpoint, hook)
            assert (status, text) == (200, "ch-123")
            assert not hook.pending

            wrong = await client.post(
                f"/webhooks/{hook.hook_id}", data=body, headers={"X-Hub-Signature": _sign("wrong", body)}
            )
            missing = await client.post(f"/webhooks/{hook.hook_id}", data=body)
            calls_after_bad = len(calls)

            right = await client.post(
                f"/webhooks/{hook.hook_id}", data=body, headers={"X-Hub-Signature": _sign(hook.secret, body)}
            )
            right_text = await right.text()

        result = (wrong.status, missing.status, calls_after_bad, right.status, right_text, list(calls), endpoint.rejected)
        await endpoint.stop()
        return result

    wrong, missing, calls_after_bad, right, right_text, calls, rejected = asyncio.run(scenario())
    assert wrong == 400
    assert missing == 400
    assert calls_after_bad == 0
    assert right == 200
    assert right_text == ""
    assert calls == [("42", {"data": []})]
    assert rejected == 2


def test_foreign_host_rejected_before_signature_check():
    async def scenario():
        calls = []

        async def handler(hook, data):
            calls.append(data)

        endpoint = _endpoint()
        endpoint.attach("twitch", FakeHub(), handler)
        hook = await endpoint.register_hook("twitch", "42")
        async with TestClient(TestServer(endpoint.make_app())) as client:
            await _confirm(client, endpoint, hook)
            body = b'{"data": []}'
            bad_host = await client.post(
                f"/webhooks/{hook.hook_id}",
                data=body,
                headers={"X-Hub-Signature": _sign(hook.secret, body), "Host": "evil.example.com"},
            )
            public_host = await client.post(
                f"/webhooks/{hook.hook_id}",
                data=body,
                headers={"X-Hub-Signature": _sign(hook.secret, body), "Host": "streams.example.org"},
            )
        result = bad_host.status, public_host.status, endpoint.rejected, len(calls)
        await endpoint.stop()
        return result

    bad_host, public_host, rejected, calls = asyncio.run(scenario())
    assert bad_host == 400
    assert rejected == 0
    assert public_host == 200
    assert calls == 1


def test_unknown_hook_and_mode():
    async def scenario():
        endpoint = _endpoint()

        async def handler(hook, data):
            pass

        endpoint.attach("twitch", FakeHub(), handler)
        hook = await endpoint.register_hook("twitch", "42")
        async with TestClient(TestServer(endpoint.make_app())) as client:
            unknown = await client.get("/webhooks/nope", params={"hub.mode": "subscribe", "hub.challenge": "x"})
            bad_mode = await client.get(f"/webhooks/{hook.hook_id}", params={"hub.mode": "dance"})
            denied = await client.get(f"/webhooks/{hook.hook_id}", params={"hub.mode": "denied", "hub.reason": "no"})
        result = unknown.status, bad_mode.status, denied.status, endpoint.has_hook("twitch", "42")
        await endpoint.stop()
        return result

    unknown, bad_mode, denied, still_there = asyncio.run(scenario())
    assert unknown == 400
    assert bad_mode == 400
    assert denied == 200
    assert still_there is False


def test_confirmed_hook_supersedes_older_one():
    async def scenario():
        endpoint = _endpoint()

        async def handler(hook, data):
            pass

        endpoint.attach("twitch", FakeHub(), handler)
        first = await endpoint.register_hook("twitch", "42")
        async with TestClient(TestServer(endpoint.make_app())) as client:
            await _confirm(client, endpoint, first)
            second = await endpoint.register_hook("twitch", "42")
            await _confirm(client, endpoint, second)
        remaining = [h.hook_id for h in endpoint.hooks_for("twitch", "42")]
        renewals = set(endpoint._renewals)
        await endpoint.stop()
        return first.hook_id, second.hook_id, remaining, renewals

    first, second, remaining, renewals = asyncio.run(scenario())
    assert remaining == [second]
    assert renewals == {second}


def test_renewal_fires_at_ninety_percent_of_lease():
    clock = _Clock()
    endpoint = _endpoint(clock=clock)
    hook = RegisteredHook("h1", "twitch", "42", "secret", lease_seconds=1000, registered_at=clock.now)
    assert endpoint.renewal_delay(hook) == 900.0
    clock.now += timedelta(seconds=950)
    assert endpoint.renewal_delay(hook) == 0.0


def test_failed_subscribe_drops_pending_hook():
    async def scenario():
        endpoint = _endpoint()

        async def handler(hook, data):
            pass

        endpoint.attach("twitch", FakeHub(fail=True), handler)
        hook = await endpoint.register_hook("twitch", "42")
        return hook, dict(endpoint.hooks)

    hook, hooks = asyncio.run(scenario())
    assert hook is None
    assert hooks == {}


def test_unregister_sends_unsubscribe():
    async def scenario():
        endpoint = _endpoint()
        hub = FakeHub()

        async def handler(hook, data):
            pass

        endpoint.attach("twitch", hub, handler)
        hook = await endpoint.register_hook("twitch", "42")
        async with TestClient(TestServer(endpoint.make_app())) as client:
            await _confirm(client, endpoint, hook)
        removed = await endpoint.unregister_streamer("twitch", "42")
        return removed, hub.unsubscribed, dict(endpoint._renewals)

    removed, unsubscribed, renewals = asyncio.run(scenario())
    assert removed == 1
    assert len(unsubscribed) == 1 and unsubscribed[0][0] == "42"
    assert renewals == {}


def test_leases_survive_restart_via_store():
    async def scenario():
        conn = await db.connect(db.MEMORY)
        store = StreamStore(conn)
        clock = _Clock()

        async def handler(hook, data):
            pass

        first = _endpoint(store=store, clock=clock)
        first.attach("twitch", FakeHub(), handler)
        hook = await first.register_hook("twitch", "42")
        async with TestClient(TestServer(first.make_app())) as client:
            await _confirm(client, first, hook)
        await first.stop()

        # Neustart innerhalb der Hub-Todeszeit -> Hook bleibt
        clock.now += timedelta(seconds=60)
        second = _endpoint(store=store, clock=clock)
        second.attach("twitch", FakeHub(), handler)
        restored = await second.restore("twitch")
        restored_ids = [h.hook_id for h in restored]
        await second.stop()

        # Neustart nach 10 Minuten -> Hook wird verworfen und abgemeldet
        clock.now += timedelta(minutes=10)
        third = _endpoint(store=store, clock=clock)
        hub3 = FakeHub()
        third.attach("twitch", hub3, handler)
        late = await third.restore("twitch")
        await third.stop()
        await conn.close()
        return hook.hook_id, restored_ids, late, hub3.unsubscribed

    hook_id, restored_ids, late, unsubscribed = asyncio.run(scenario())
    assert restored_ids == [hook_id]
    assert late == []
    assert len(unsubscribed) == 1


def test_non_hex_signature_is_rejected_with_400():
    body = b"{}"
    assert not verify_signature("s", body, "sha256=éé")
    assert not verify_signature("s", body, "sha256=zz")

    async def scenario():
        calls = []

        async def handler(hook, data):
            calls.append(data)

        endpoint = _endpoint()
        endpoint.attach("twitch", FakeHub(), handler)
        hook = await endpoint.register_hook("twitch", "42")
        async with TestClient(TestServer(endpoint.make_app())) as client:
            await _confirm(client, endpoint, hook)
            resp = await client.post(
                f"/webhooks/{hook.hook_id}", data=body, headers={"X-Hub-Signature": "sha256=éabc"}
            )
            status = resp.status
        result = (status, calls, endpoint.rejected)
        await endpoint.stop()
        return result

    assert asyncio.run(scenario()) == (400, [], 1)


def test_expired_lease_rejects_push_and_allows_reregistration():
    async def scenario():
        calls = []

        async def handler(hook, data):
            calls.append(data)

        clock = _Clock()
        hub = FakeHub()
        endpoint = _endpoint(clock=clock)
        endpoint.attach("twitch", hub, handler)
        hook = await endpoint.register_hook("twitch", "42")
        async with TestClient(TestServer(endpoint.make_app())) as client:
            await _confirm(client, endpoint, hook, lease=100)
            active_before = endpoint.has_hook("twitch", "42")

            # Erneuerung ist ausgeblieben, Lease längst vorbei
            clock.now += timedelta(seconds=10000)
            expired_visible = endpoint.has_hook("twitch", "42")
            body = b'{"data": []}'
            resp = await client.post(
                f"/webhooks/{hook.hook_id}", data=body, headers={"X-Hub-Signature": _sign(hook.secret, body)}
            )
            status = resp.status
        result = (active_before, expired_visible, status, calls, hook.hook_id in endpoint.hooks)
        fresh = await endpoint.register_hook("twitch", "42")
        result += (fresh is not None and endpoint.has_hook("twitch", "42"),)
        await endpoint.stop()
        return result

    assert asyncio.run(scenario()) == (True, False, 400, [], False, True)
