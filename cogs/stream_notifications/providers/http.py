"""Shared aiohttp client with rate-limit aware retries for the platform APIs."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

import aiohttp

from ..constants import HTTP_MAX_ATTEMPTS, HTTP_MAX_RETRY_DELAY_SECONDS, HTTP_TIMEOUT_SECONDS
from ..errors import UpstreamUnavailable

Params = Union[Mapping[str, str], List[Tuple[str, str]], None]

_RETRY_STATUSES = (500, 502, 503, 504)


def retry_delay(headers: Mapping[str, str], fallback: float, now: Optional[float] = None) -> float:
    """Delay before retrying a 429.

    ``Retry-After`` holds seconds; ``Ratelimit-Reset`` (Twitch) is an epoch
    timestamp. Missing or garbage headers fall back to ``fallback``.
    """
    raw = headers.get("Retry-After")
    if raw:
        try:
            return max(0.0, min(HTTP_MAX_RETRY_DELAY_SECONDS, float(raw)))
        except ValueError:
            pass
    raw = headers.get("Ratelimit-Reset")
    if raw:
        try:
            reset = float(raw) - (time.time() if now is None else now)
            return max(0.0, min(HTTP_MAX_RETRY_DELAY_SECONDS, reset))
        except ValueError:
            pass
    return fallback


class JsonApiClient:
    """
    Async JSON-Client für eine Plattform-API.

    - Eine wiederverwendete aiohttp.ClientSession (lazy erstellt)
    - Keine Secrets im Log
    - 429: wartet laut Retry-After/Ratelimit-Reset und wiederholt denselben Request
    - 5xx/Netzwerkfehler: Backoff, danach UpstreamUnavailable
    - 404 liefert ``None`` statt einer Exception
    """

    name = "api"

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        *,
        max_attempts: int = HTTP_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._session = session
        self._own_session = False
        self._max_attempts = max(1, int(max_attempts))
        self._sleep = sleep
        self._log = logging.getLogger(f"StreamNotifications.{self.name}")

    # ---- Session lifecycle -------------------------------------------------
    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=HTTP_TIMEOUT_SECONDS))
            self._own_session = True
        return self._session

    async def aclose(self) -> None:
        if not self._own_session:
            return
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
        self._own_session = False

    async def __aenter__(self):
        self._ensure_session()
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def _auth_headers(self) -> Dict[str, str]:
        return {}

    def _on_unauthorized(self) -> None:
        """Called on HTTP 401 so clients with cached credentials can drop them."""

    # ---- Core request ------------------------------------------------------
    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Params = None,
        json: Any = None,
        data: Any = None,
        expect_json: bool = True,
    ) -> Optional[Any]:
        session = self._ensure_session()
        backoff = 1.0
        last_status: Optional[int] = None
        for attempt in range(1, self._max_attempts + 1):
            headers = await self._auth_headers()
            try:
                async with session.request(method, url, params=params, json=json, data=data, headers=headers) as r:
                    last_status = r.status
                    if r.status == 429:
                        delay = retry_delay(r.headers, backoff)
                        self._log.warning(
                            "%s: Rate-Limit (429) auf %s, warte %.1fs (Versuch %d/%d)",
                            self.name, r.url.path, delay, attempt, self._max_attempts,
                        )
                        if attempt < self._max_attempts:
                            await self._sleep(delay)
                            backoff *= 2
                        continue
                    if r.status in _RETRY_STATUSES:
                        self._log.warning("%s: HTTP %s auf %s", self.name, r.status, r.url.path)
                        if attempt < self._max_attempts:
                            await self._sleep(backoff)
                            backoff *= 2
                        continue
                    if r.status == 404:
                        return None
                    if r.status >= 400:
                        if r.status == 401:
                            self._on_unauthorized()
                        txt = await r.text()
                        self._log.error(
                            "%s: HTTP %s auf %s: %s", self.name, r.status, r.url.path, txt[:300].replace("\n", " ")
                        )
                        raise UpstreamUnavailable(f"{self.name} HTTP {r.status}", status=r.status)
                    if not expect_json:
                        return r.status
                    return await r.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                self._log.warning("%s: Request fehlgeschlagen (%r), Versuch %d/%d", self.name, exc, attempt, self._max_attempts)
                if attempt < self._max_attempts:
                    await self._sleep(backoff)
                    backoff *= 2
        raise UpstreamUnavailable(f"{self.name} retries exhausted", status=last_status)

    async def get(self, url: str, params: Params = None) -> Optional[Any]:
        return await self.request("GET", url, params=params)
