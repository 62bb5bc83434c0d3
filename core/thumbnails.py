"""
ResoCtrl -- Thumbnail Loader

Fetches one thumbnail per clip, once per session.

Loading starts the first time a composition is seen while connected and is
not repeated on later polls; the mixer's clip art rarely changes and a full
fan-out every 500ms would flood it. reset() drops everything so the next
snapshot loads again.

Thumbnails are keyed by clip id, so they follow their clip if the mixer
reorders layers or clips. A clip without an id falls back to its
(layer_index, clip_index) position at load time.
"""

import asyncio
import logging

from core import remote

logger = logging.getLogger(__name__)


def clip_key(layer_index: int, clip_index: int, clip):
    if clip.id is not None:
        return clip.id
    return (layer_index, clip_index)


class ThumbnailLoader:
    def __init__(self, client, settings):
        self.client = client
        self.settings = settings
        self.loaded = False
        self.loads = 0
        self._thumbnails = {}
        self._task = None

    @property
    def task(self):
        """The load currently running, if any."""
        if self._task is not None and not self._task.done():
            return self._task
        return None

    def __len__(self):
        return len(self._thumbnails)

    def get(self, layer_index: int, clip_index: int, clip):
        return self._thumbnails.get(clip_key(layer_index, clip_index, clip))

    def ensure_loaded(self, composition):
        """Start the one load for this session if it has not happened yet."""
        if self.loaded or self.task is not None or composition is None:
            return None
        self._task = asyncio.create_task(self.load(composition), name="thumbnail-load")
        return self._task

    async def load(self, composition):
        """Fetch every clip's thumbnail concurrently and commit them together."""
        self.loads += 1
        fetched = {}

        async def fetch_one(layer_index, clip_index, clip):
            handle = await remote.fetch_clip_thumbnail(self.client, self.settings, layer_index, clip_index)
            if handle is None:
                return
            duplicate = fetched.pop(clip_key(layer_index, clip_index, clip), None)
            if duplicate is not None:
                duplicate.release()
            fetched[clip_key(layer_index, clip_index, clip)] = handle

        jobs = [
            fetch_one(li, ci, clip)
            for li, layer in enumerate(composition.layers)
            for ci, clip in enumerate(layer.clips)
        ]
        try:
            results = await asyncio.gather(*jobs, return_exceptions=True)
        except asyncio.CancelledError:
            for handle in fetched.values():
                handle.release()
            raise

        for result in results:
            if isinstance(result, Exception):
                logger.warning("Thumbnail fetch raised: %r", result)

        previous, self._thumbnails = self._thumbnails, fetched
        self.loaded = True
        for handle in previous.values():
            handle.release()
        logger.info("Loaded %d/%d clip thumbnails", len(fetched), len(jobs))

    async def reset(self):
        """Cancel any load in progress and release every thumbnail."""
        task = self.task
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._task = None
        handles, self._thumbnails = self._thumbnails, {}
        for handle in handles.values():
            handle.release()
        self.loaded = False

    close = reset
