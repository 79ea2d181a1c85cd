"""Listener side of the chunked fallback: poll for and play the newest chunk."""

import asyncio
import logging
from typing import Callable, Optional

from ..audio.base import AudioPlayer
from ..errors import StorageError, StreamNotFoundError
from ..models.audio import StoredObject, channel_prefix
from ..storage.base import ObjectStorage

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 3.0
DEFAULT_MAX_MISSED_POLLS = 3


class LatestChunkPoller:
    """Polls a channel's namespace and hands each new newest chunk to a player.

    Consumers only ever read the newest object, so out-of-order uploads are
    harmless. After ``max_missed_polls`` consecutive polls find nothing the
    poller stops and surfaces StreamNotFoundError instead of retrying forever.
    """

    def __init__(self,
                 channel_code: str,
                 storage: ObjectStorage,
                 player: Optional[AudioPlayer] = None,
                 poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
                 max_missed_polls: int = DEFAULT_MAX_MISSED_POLLS,
                 on_error: Optional[Callable[[Exception], None]] = None):
        self.channel_code = channel_code
        self.storage = storage
        self.player = player
        self.poll_interval_seconds = poll_interval_seconds
        self.max_missed_polls = max(1, max_missed_polls)
        self.on_error = on_error

        self.muted = False
        self.last_key: Optional[str] = None
        self.last_url: Optional[str] = None
        self.chunks_played = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def fetch_latest(self) -> StoredObject:
        """Return the newest chunk of the channel.

        Raises:
            StreamNotFoundError: if the channel has no chunk or cannot be listed
        """
        try:
            objects = await self.storage.list_objects(channel_prefix(self.channel_code), limit=1)
        except StreamNotFoundError:
            raise
        except StorageError as e:
            raise StreamNotFoundError(f"Stream not found: {e.detail}")
        if not objects:
            raise StreamNotFoundError()
        latest = objects[0]
        if latest.public_url is None:
            latest = StoredObject(
                key=latest.key,
                size=latest.size,
                created_at=latest.created_at,
                public_url=self.storage.public_url(latest.key),
            )
        return latest

    async def poll_once(self) -> Optional[StoredObject]:
        """Fetch the newest chunk and play it if it has not been seen yet.

        Returns:
            The newly seen chunk, or None if the newest one was already handled
        """
        latest = await self.fetch_latest()
        if latest.key == self.last_key:
            return None
        self.last_key = latest.key
        self.last_url = latest.public_url

        if self.muted or self.player is None:
            return latest
        try:
            data = await self.storage.download(latest.key)
        except StorageError as e:
            logger.warning(f"Skipping chunk {latest.key}: {e}")
            return latest
        await self.player.play(data)
        self.chunks_played += 1
        logger.debug(f"Playing chunk {latest.key}")
        return latest

    async def run(self) -> None:
        """Poll until cancelled or until the stream is declared not found."""
        missed = 0
        while True:
            try:
                await self.poll_once()
                missed = 0
            except StreamNotFoundError as e:
                missed += 1
                logger.info(f"No chunk for channel {self.channel_code} "
                            f"({missed}/{self.max_missed_polls}): {e.detail}")
                if missed >= self.max_missed_polls:
                    raise
            await asyncio.sleep(self.poll_interval_seconds)

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self.run())
        self._task.add_done_callback(self._on_done)
        logger.info(f"Polling channel {self.channel_code} every {self.poll_interval_seconds}s")

    def _on_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        logger.error(f"Polling for channel {self.channel_code} stopped: {error}")
        if self.on_error is not None:
            self.on_error(error)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self.player is not None:
            await self.player.stop()
