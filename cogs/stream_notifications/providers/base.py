"""Provider contract every streaming platform implements."""

from __future__ import annotations

import abc
import asyncio
import re
from datetime import datetime
from typing import Callable, ClassVar, Dict, Iterable, List, Mapping, Optional

from discord.ext import tasks

from ..change_detector import ChangeDetector, Transition
from ..errors import AlreadyRunning, AlreadyTracked, InvalidInput, NotRunning, NotTracked, UpstreamUnavailable
from ..events import StreamEventQueue
from ..logger import log
from ..models import PlatformPayload, RenderableFields, StreamerRef, StreamStatus, utcnow

_URL_PREFIX = re.compile(r"^(?:https?://)?(?:www\.|m\.)?", re.IGNORECASE)


class StreamProvider(abc.ABC):
    """Base adapter: tracking set, change detection, poll loop and event emission.

    Subclasses implement the platform specific parts:

    * ``_normalize_query`` - reject malformed input before any network call
    * ``_lookup``          - resolve a normalized query to a ``StreamerRef``
    * ``_fetch_live``      - fetch the live state of a batch of tracked ids
    * ``render_status``    - display fields for the dispatcher
    """

    platform: ClassVar[str] = ""
    url_hosts: ClassVar[tuple] = ()

    def __init__(
        self,
        queue: StreamEventQueue,
        *,
        poll_interval: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._queue = queue
        self._clock = clock
        self.poll_interval = poll_interval
        self._tracked: Dict[str, StreamerRef] = {}
        self._detector: ChangeDetector = ChangeDetector(clock)
        self._running = False
        self._poll_loop: Optional[tasks.Loop] = None
        self._poll_lock = asyncio.Lock()
        self.log = log.getChild(self.platform or "provider")

    # -------------------------------------------------------
    # Lookup
    # -------------------------------------------------------
    async def get_streamer(self, username_or_id: str) -> StreamerRef:
        query = self._normalize_query(self._strip_url(username_or_id or ""))
        return await self._lookup(query)

    def _strip_url(self, raw: str) -> str:
        text = raw.strip()
        text = _URL_PREFIX.sub("", text)
        for host in self.url_hosts:
            if text.lower().startswith(host + "/"):
                text = text[len(host) + 1:]
                break
        return text.split("?", 1)[0].strip("/ ")

    @abc.abstractmethod
    def _normalize_query(self, query: str) -> str:
        """Return the canonical query or raise ``InvalidInput``."""

    @abc.abstractmethod
    async def _lookup(self, query: str) -> StreamerRef:
        ...

    # -------------------------------------------------------
    # Tracking set
    # -------------------------------------------------------
    async def add_subscription(self, ref: StreamerRef) -> None:
        if ref.platform != self.platform:
            raise InvalidInput(f"{ref.platform} streamer on {self.platform} provider")
        if ref.external_id in self._tracked:
            raise AlreadyTracked(f"{self.platform}:{ref.external_id}")
        self._tracked[ref.external_id] = StreamerRef(ref.platform, ref.external_id, ref.display_name)
        self.log.info("Tracke jetzt %s (%s)", ref.display_name, ref.external_id)
        await self._on_tracked(ref)

    async def remove_subscription(self, external_id: str) -> None:
        if external_id not in self._tracked:
            raise NotTracked(f"{self.platform}:{external_id}")
        ref = self._tracked.pop(external_id)
        self._detector.forget(external_id)
        self.log.info("Tracke %s (%s) nicht mehr", ref.display_name, external_id)
        await self._on_untracked(ref)

    def is_subscribed(self, external_id: str) -> bool:
        return external_id in self._tracked

    def tracked(self) -> List[StreamerRef]:
        return list(self._tracked.values())

    async def _on_tracked(self, ref: StreamerRef) -> None:
        """Hook for adapters with per-streamer resources (webhook leases)."""

    async def _on_untracked(self, ref: StreamerRef) -> None:
        """Release per-streamer resources; caches are already freed."""

    # -------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------
    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            raise AlreadyRunning(f"{self.platform} provider already running")
        self._running = True
        self._detector = ChangeDetector(self._clock)
        await self._on_start()
        if self.poll_interval:
            self._poll_loop = tasks.loop(seconds=float(self.poll_interval))(self._poll_tick)
            self._poll_loop.start()
        self.log.info("%s-Provider gestartet (Intervall=%ss)", self.platform, self.poll_interval)

    async def stop(self) -> None:
        if not self._running:
            raise NotRunning(f"{self.platform} provider not running")
        self._running = False
        if self._poll_loop is not None:
            self._poll_loop.cancel()
            self._poll_loop = None
        try:
            await self._on_stop()
        finally:
            self._detector.clear()
            await self.aclose()
        self.log.info("%s-Provider gestoppt", self.platform)

    async def _on_start(self) -> None:
        ...

    async def _on_stop(self) -> None:
        ...

    async def aclose(self) -> None:
        """Close HTTP sessions owned by the adapter."""

    # -------------------------------------------------------
    # Polling
    # -------------------------------------------------------
    async def _poll_tick(self) -> None:
        try:
            await self.poll_once()
        except asyncio.CancelledError:
            raise
        except Exception:
            self.log.exception("Polling-Tick fehlgeschlagen")

    async def poll_once(self) -> int:
        """Fetch all tracked streamers once and emit the detected transitions.

        Returns the number of emitted events. Batches that fail upstream are
        skipped entirely ("unknown"), the detector stays untouched for them.
        """
        async with self._poll_lock:
            ids = list(self._tracked)
            if not ids:
                return 0
            emitted = 0
            for batch in self._batches(ids):
                try:
                    live = await self._fetch_live(batch)
                except UpstreamUnavailable as exc:
                    self.log.warning("%s: Fetch fehlgeschlagen, nächster Versuch im nächsten Intervall: %s", self.platform, exc)
                    continue
                for external_id, payload in live.items():
                    if self.ingest(external_id, payload):
                        emitted += 1
            return emitted

    def _batches(self, ids: List[str]) -> Iterable[List[str]]:
        yield ids

    @abc.abstractmethod
    async def _fetch_live(self, external_ids: List[str]) -> Mapping[str, Optional[PlatformPayload]]:
        """Map each id whose state is *known* to its payload (``None`` = offline).

        Ids missing from the result are unknown for this cycle.
        """

    # -------------------------------------------------------
    # Detection + Emission
    # -------------------------------------------------------
    def ingest(self, external_id: str, payload: Optional[PlatformPayload]) -> bool:
        """Feed one observation into the detector; returns whether an event was emitted."""
        if external_id not in self._tracked:
            self.log.debug("Ignoriere Payload für nicht getrackten Streamer %s", external_id)
            return False
        transition = self._detector.observe(external_id, payload)
        if transition is None:
            return False
        self._emit(external_id, transition)
        return True

    def _emit(self, external_id: str, transition: Transition) -> None:
        ref = self._tracked[external_id]
        payload = transition.payload
        if payload.broadcaster_name and payload.broadcaster_name != ref.display_name:
            self.log.info("Streamer umbenannt: %s -> %s", ref.display_name, payload.broadcaster_name)
            ref.display_name = payload.broadcaster_name
        status = StreamStatus(
            platform=self.platform,
            external_id=external_id,
            state=transition.state,
            stream_id=payload.session_id,
            previous_stream_id=transition.previous_session_id,
            payload=payload,
            streamer=StreamerRef(ref.platform, ref.external_id, ref.display_name),
            no_everyone=self.suppress_everyone(payload),
        )
        self.log.debug("%s %s (%s) -> %s", self.platform, ref.display_name, external_id, transition.state)
        self._queue.publish(status)

    def suppress_everyone(self, payload: PlatformPayload) -> bool:
        return False

    # -------------------------------------------------------
    # Rendering
    # -------------------------------------------------------
    @abc.abstractmethod
    def render_status(self, status: StreamStatus, locale: str) -> RenderableFields:
        ...
