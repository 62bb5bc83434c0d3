"""
ResoCtrl -- Control Session

Everything tied to one mixer connection: HTTP client, reconciled composition,
both pollers, clip thumbnails and in-flight commands.

A session is built for one ConnectionSettings and never re-pointed. Changing
settings means close() on the old session (which releases every image it
holds) and a fresh ControlSession for the new endpoint.

Usage:
    session = ControlSession(settings)
    session.start()
    ...
    session.set_opacity(0, 0.3)   # UI updates now, PUT goes out in the background
    ...
    await session.close()
"""

import asyncio
import logging

import httpx

from core import remote
from core.polling import PREVIEW_INTERVAL, SNAPSHOT_INTERVAL, PreviewPoller, SnapshotPoller
from core.reconciler import Reconciler
from core.thumbnails import ThumbnailLoader

logger = logging.getLogger(__name__)


class ControlSession:
    """One connection's worth of state.

    Args:
        settings: Mixer endpoint.
        snapshot_interval: Seconds between composition polls.
        preview_interval: Seconds between master preview fetches.
        transport: Optional httpx transport (tests pass an httpx.MockTransport).
    """

    def __init__(self, settings, snapshot_interval: float = SNAPSHOT_INTERVAL,
                 preview_interval: float = PREVIEW_INTERVAL, transport=None):
        self.settings = settings
        self.client = httpx.AsyncClient(transport=transport)
        self.reconciler = Reconciler()
        self.thumbnails = ThumbnailLoader(self.client, settings)
        self.preview = PreviewPoller(self.client, settings, interval=preview_interval)
        self.snapshot = SnapshotPoller(
            self.client, settings, self.reconciler,
            on_update=self._on_snapshot, interval=snapshot_interval,
        )
        self._commands = set()
        self.closed = False

    # ─── Lifecycle ──────────────────────────────────────────────────

    def start(self):
        if self.closed:
            raise RuntimeError("Session is closed; build a new one for new settings")
        logger.info("Session started for %s", self.settings.label())
        self.snapshot.start()

    async def _on_snapshot(self, poller):
        if poller.connected:
            self.preview.start()
            self.thumbnails.ensure_loaded(self.reconciler.composition)
        elif self.preview.running or self.preview.handle is not None:
            # Preview only runs while connected
            await self.preview.stop()

    async def close(self):
        """Stop everything and release every image handle. Safe to call twice."""
        if self.closed:
            return
        self.closed = True
        await self.snapshot.stop()
        await self.preview.stop()
        await self.thumbnails.close()
        pending = [t for t in self._commands if not t.done()]
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._commands.clear()
        await self.client.aclose()
        logger.info("Session closed for %s", self.settings.label())

    async def drain(self):
        """Wait until no fetch, load or command is in flight.

        Timers keep running; this only waits out work already started.
        """
        while True:
            await asyncio.sleep(0)
            pending = [
                t for t in (self.snapshot.inflight, self.preview.inflight, self.thumbnails.task)
                if t is not None
            ]
            pending += [t for t in self._commands if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ─── Status ─────────────────────────────────────────────────────

    @property
    def connected(self) -> bool:
        return self.snapshot.connected

    @property
    def status(self) -> str:
        return self.snapshot.state.value

    @property
    def last_error(self):
        return self.snapshot.last_error

    @property
    def composition(self):
        return self.reconciler.composition

    @property
    def preview_handle(self):
        return self.preview.handle

    def thumbnail_for(self, layer_index: int, clip_index: int):
        """Thumbnail handle for the clip currently at this position, or None."""
        if not self.reconciler.has_clip(layer_index, clip_index):
            return None
        clip = self.reconciler.composition.layers[layer_index].clips[clip_index]
        return self.thumbnails.get(layer_index, clip_index, clip)

    # ─── Commands ───────────────────────────────────────────────────

    def _dispatch(self, label: str, coro):
        """Send a command in the background. The next poll shows the outcome."""
        if self.closed:
            coro.close()
            logger.warning("Dropped %s: session for %s is closed", label, self.settings.label())
            return None
        task = asyncio.create_task(coro, name=f"command-{label}")
        self._commands.add(task)
        task.add_done_callback(self._command_done)
        return task

    def _command_done(self, task):
        self._commands.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Command %s raised", task.get_name(), exc_info=exc)
        elif task.result() is False:
            logger.warning("Command %s failed", task.get_name())

    def trigger_clip(self, layer_index: int, clip_index: int):
        return self._dispatch(
            f"trigger-{layer_index}-{clip_index}",
            remote.trigger_clip(self.client, self.settings, layer_index, clip_index),
        )

    def clear_layer(self, layer_index: int):
        return self._dispatch(
            f"clear-{layer_index}",
            remote.clear_layer(self.client, self.settings, layer_index),
        )

    def set_opacity(self, layer_index: int, value: float):
        """Move the fader locally first, then tell the mixer.

        The value is clamped to [0, 1] once; the mixer gets what the UI shows.
        """
        value = max(0.0, min(1.0, float(value)))
        self.reconciler.apply_opacity(layer_index, value)
        return self._dispatch(
            f"opacity-{layer_index}",
            remote.set_opacity(self.client, self.settings, layer_index, value),
        )

    def trigger_column(self, column_index: int):
        return self._dispatch(
            f"column-{column_index}",
            remote.trigger_column(self.client, self.settings, column_index),
        )

    async def reload_thumbnails(self):
        """Drop all thumbnails; the next snapshot fetches them again."""
        await self.thumbnails.reset()
        if self.connected:
            self.thumbnails.ensure_loaded(self.reconciler.composition)
