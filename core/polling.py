"""
ResoCtrl -- Pollers

Fixed-cadence background fetches against the mixer.

    SnapshotPoller   GET /composition every 0.5s -> Reconciler
    PreviewPoller    GET /composition/thumbnail every 1.0s -> one live handle

Each poller keeps at most one fetch in flight. When a fetch outlasts the
interval, the ticks that land in the meantime are skipped rather than queued,
so snapshots are applied in the order they were requested.
"""

import asyncio
import logging
from enum import Enum

from core import remote

logger = logging.getLogger(__name__)

SNAPSHOT_INTERVAL = 0.5
PREVIEW_INTERVAL = 1.0


class PollerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class Poller:
    """Timer plus single-in-flight guard. Subclasses implement poll_once()."""

    name = "poller"

    def __init__(self, interval: float):
        self.interval = interval
        self.skipped_ticks = 0
        self._timer = None
        self._inflight = None

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def inflight(self):
        """The fetch task currently running, if any."""
        if self._inflight is not None and not self._inflight.done():
            return self._inflight
        return None

    def start(self):
        """Begin ticking. The first tick fires immediately."""
        if self.running:
            return
        self._timer = asyncio.create_task(self._run(), name=f"{self.name}-timer")

    async def _run(self):
        while True:
            self.tick()
            await asyncio.sleep(self.interval)

    def tick(self):
        """Start one fetch unless the previous one is still out.

        Returns the fetch task, or None when the tick was skipped.
        """
        if self.inflight is not None:
            self.skipped_ticks += 1
            logger.debug("%s: previous fetch still in flight, skipping tick", self.name)
            return None
        self._inflight = asyncio.create_task(self._guarded(), name=f"{self.name}-fetch")
        return self._inflight

    async def _guarded(self):
        try:
            await self.poll_once()
        except asyncio.CancelledError:
            raise
        except Exception:
            # A broken tick must not stop the timer
            logger.exception("%s: poll failed", self.name)

    async def poll_once(self):
        raise NotImplementedError

    async def stop(self):
        """Cancel the timer and any in-flight fetch, and wait for both."""
        tasks = [t for t in (self._timer, self._inflight) if t is not None and not t.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._timer = None
        self._inflight = None


class SnapshotPoller(Poller):
    """Keeps the Reconciler fed with the mixer's composition.

    Args:
        client: Session's httpx.AsyncClient.
        settings: ConnectionSettings for this session.
        reconciler: Receives every successful snapshot.
        on_update: Coroutine function awaited with the poller after every
            fetch, success or not.
    """

    name = "snapshot"

    def __init__(self, client, settings, reconciler, on_update=None, interval: float = SNAPSHOT_INTERVAL):
        super().__init__(interval)
        self.client = client
        self.settings = settings
        self.reconciler = reconciler
        self.on_update = on_update
        self.state = PollerState.IDLE
        self.last_error = None

    @property
    def connected(self) -> bool:
        return self.state == PollerState.CONNECTED

    async def poll_once(self):
        was_connected = self.connected
        if self.state == PollerState.IDLE:
            # Later fetches keep reporting the last outcome while they run
            self.state = PollerState.FETCHING
        try:
            composition = await remote.fetch_composition(self.client, self.settings)
        except remote.RemoteError as e:
            # Keep the last snapshot on screen; only the status indicator changes
            self.state = PollerState.DISCONNECTED
            self.last_error = str(e)
            if was_connected:
                logger.info("Lost mixer at %s: %s", self.settings.label(), e)
        else:
            self.reconciler.apply_snapshot(composition)
            self.state = PollerState.CONNECTED
            self.last_error = None
            if not was_connected:
                logger.info("Connected to mixer at %s", self.settings.label())
        if self.on_update is not None:
            await self.on_update(self)


class PreviewPoller(Poller):
    """Holds exactly one live master-preview handle.

    A failed fetch leaves the previous frame in place. stop() always releases
    whatever is held.
    """

    name = "preview"

    def __init__(self, client, settings, interval: float = PREVIEW_INTERVAL):
        super().__init__(interval)
        self.client = client
        self.settings = settings
        self.handle = None
        self.frames = 0

    async def poll_once(self):
        handle = await remote.fetch_master_thumbnail(self.client, self.settings)
        if handle is None:
            return
        self.install(handle)

    def install(self, handle):
        """Swap in a new preview and release the old one in the same step."""
        previous, self.handle = self.handle, handle
        self.frames += 1
        if previous is not None:
            previous.release()

    async def stop(self):
        await super().stop()
        if self.handle is not None:
            self.handle.release()
            self.handle = None
