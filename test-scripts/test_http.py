import asyncio
import sys
import time
from pathlib import Path

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

# Add root to sys.path
root = Path(__file__).parent.parent
sys.path.insert(0, str(root))

from cogs.stream_notifications.constants import HTTP_MAX_RETRY_DELAY_SECONDS
from cogs.stream_notifications.errors import UpstreamUnavailable
from cogs.stream_notifications.providers.http import JsonApiClient, retry_delay
from cogs.stream_notifications.providers.twitch import TwitchHelixClient


def test_retry_delay_prefers_retry_after():
    assert retry_delay({"Retry-After": "3"}, 1.0) == 3.0
    assert retry_delay({"Ratelimit-Reset": "1010"}, 1.0, now=1000.0) == 10.0
    assert retry_delay({"Ratelimit-Reset": "900"}, 1.0, now=1000.0) == 0.0
    assert retry_delay({"Retry-After": "9999"}, 1.0) == HTTP_MAX_RETRY_DELAY_SECONDS
    assert retry_delay({"Retry-After": "soon"}, 2.5) == 2.5
    assert retry_delay({}, 2.5) == 2.5


def _run_against(responses, path="/streams", **client_kwargs):
    """Startet einen lokalen Server, der die Antworten der Reihe nach liefert."""

    async def scenario():
        hits = []
        script = list(responses)

        async def handler(request):
            hits.append(request.path)
            status, body, headers = script.pop(0) if len(script) > 1 else script[0]
            if body is None:
                return web.Response(status=status, headers=headers)
            return web.json_response(body, status=status, headers=headers)

        app = web.Application()
        app.router.add_get(path, handler)
        sleeps = []

        async def fake_sleep(delay):
            sleeps.append(delay)

        async with TestServer(app) as server:
            client = JsonApiClient(sleep=fake_sleep, **client_kwargs)
            try:
                result = await client.get(str(server.make_url(path)))
            except UpstreamUnavailable as exc:
                result = exc
            finally:
                await client.aclose()
        return result, hits, sleeps

    return asyncio.run(scenario())


def test_429_is_retried_after_header_delay():
    result, hits, sleeps = _run_against(
        [
            (429, None, {"Retry-After": "2"}),
            (200, {"data": [1]}, {}),
        ]
    )
    assert result == {"data": [1]}
    assert len(hits) == 2
    assert sleeps == [2.0]


def test_exhausted_retries_raise_upstream_unavailable():
    result, hits, sleeps = _run_against([(503, None, {})], max_attempts=3)
    assert isinstance(result, UpstreamUnavailable)
    assert result.status == 503
    assert len(hits) == 3
    # Backoff verdoppelt sich, nach dem letzten Versuch wird nicht mehr gewartet
    assert sleeps == [1.0, 2.0]


def test_404_returns_none():
    result, hits, _ = _run_against([(404, None, {})])
    assert result is None
    assert len(hits) == 1


def test_client_error_is_not_retried():
    result, hits, sleeps = _run_against([(401, {"message": "invalid token"}, {})])
    assert isinstance(result, UpstreamUnavailable)
    assert result.status == 401
    assert len(hits) == 1
    assert sleeps == []


def test_external_session_is_left_open():
    async def scenario():
        import aiohttp

        async with aiohttp.ClientSession() as session:
            client = JsonApiClient(session)
            await client.aclose()
            return session.closed

    assert asyncio.run(scenario()) is False


def test_twitch_401_drops_cached_token():
    async def scenario():
        async def handler(request):
            return web.json_response({"message": "invalid oauth token"}, status=401)

        app = web.Application()
        app.router.add_get("/helix/streams", handler)
        async with TestServer(app) as server:
            client = TwitchHelixClient("cid", "secret")
            # gültig aussehendes, aber widerrufenes Token im Cache
            client._token = "revoked"
            client._token_expiry = time.time() + 60 * 24 * 3600
            try:
                with pytest.raises(UpstreamUnavailable):
                    await client.get(str(server.make_url("/helix/streams")))
            finally:
                await client.aclose()
        return client._token, client._token_expiry

    assert asyncio.run(scenario()) == (None, 0.0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
